from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from .config_loader import PipelineConfig

LOG_LEVEL_ENV = "TRISPLIT_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LEVEL = "WARNING"


def level_value(name: Optional[str]) -> int:
    """Numeric level for ``name`` ("info", "DEBUG", "15"); unknown names map to INFO."""
    text = (name or "INFO").strip().upper()
    if text.isdigit():
        return int(text)
    value = logging.getLevelName(text)
    return value if isinstance(value, int) else logging.INFO


def effective_level(
    config: Optional[PipelineConfig], level_override: Optional[str] = None
) -> Tuple[str, int]:
    """Pick the run's level: env var, then the CLI flag, then the YAML value, then WARNING."""
    configured = config.logging.level if config is not None else None
    for source in (os.getenv(LOG_LEVEL_ENV), level_override, configured):
        if source:
            return source.upper(), level_value(source)
    return DEFAULT_LEVEL, level_value(DEFAULT_LEVEL)


def configure_logging(config: Optional[PipelineConfig], level_override: Optional[str] = None) -> int:
    name, value = effective_level(config, level_override)
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(value)
    else:
        logging.basicConfig(level=value, format=LOG_FORMAT)
    logging.getLogger(__name__).debug("Logging configured at %s", name)
    return value
