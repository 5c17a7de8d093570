from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]

from .errors import ProfileError
from .identity import validate_dedupe_keys
from .models import GROUP_SECTIONS, ExportOptions, Profile
from .transforms import is_known_transform

logger = logging.getLogger(__name__)

MISSING_HEADER_BEHAVIORS = {"error", "ignore"}
MALFORMED_PHONE_POLICIES = {"passthrough", "reject"}


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class PipelineConfig:
    inputs: Dict[str, Optional[str]]
    outputs: OutputsConfig
    export: ExportOptions = field(default_factory=ExportOptions)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    secondary_contacts: Optional[bool] = None


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _flag(args: argparse.Namespace, name: str, configured: Any, default: bool) -> bool:
    value = getattr(args, name, None)
    if value is None:
        return bool(default if configured is None else configured)
    return bool(value)


def load_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs = config_data.get("inputs", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    export_cfg = config_data.get("export", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    export = ExportOptions(
        output_csv=_flag(args, "output_csv", export_cfg.get("csv"), True),
        output_excel=_flag(args, "output_excel", export_cfg.get("excel"), False),
        output_json=_flag(args, "output_json", export_cfg.get("json"), False),
        tag=getattr(args, "tag", None) or export_cfg.get("tag") or None,
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    secondary = getattr(args, "secondary_contacts", None)
    if secondary is None:
        secondary = config_data.get("secondary_contacts")

    resolved_inputs = {
        "input_path": getattr(args, "input", None) or inputs.get("input_path"),
        "profile_path": getattr(args, "profile", None) or inputs.get("profile_path"),
    }

    return PipelineConfig(
        inputs=resolved_inputs,
        outputs=outputs,
        export=export,
        logging=logging_config,
        secondary_contacts=None if secondary is None else bool(secondary),
    )


def parse_profile(payload: Any) -> Profile:
    """Build a ``Profile`` from a decoded profile document, rejecting invalid shapes."""
    if not isinstance(payload, dict):
        raise ProfileError("Profile document must be a JSON object")
    raw_mappings = payload.get("mappings", payload.get("Mappings", []))
    if not isinstance(raw_mappings, list):
        raise ProfileError("Profile 'mappings' must be a list")
    for index, item in enumerate(raw_mappings):
        if not isinstance(item, dict):
            raise ProfileError(f"Mapping #{index + 1} must be an object")
    groups = payload.get("groups", payload.get("Groups")) or {}
    if not isinstance(groups, dict):
        raise ProfileError("Profile 'groups' must be an object")
    for names in GROUP_SECTIONS.values():
        section = next((groups[name] for name in names if groups.get(name) is not None), {})
        if not isinstance(section, dict) or not all(
            isinstance(value, dict) for value in section.values()
        ):
            raise ProfileError(f"Group section '{names[0]}' must map labels to objects")

    profile = Profile.from_mapping(payload)
    for index, mapping in enumerate(profile.mappings, start=1):
        if not mapping.source_column or not mapping.target_property:
            raise ProfileError(
                f"Mapping #{index} needs both a source column and a target property"
            )
        for transform in mapping.transforms:
            if not is_known_transform(transform.verb):
                logger.warning(
                    "Mapping %s uses unknown transform '%s'; it will be ignored",
                    mapping.source_column,
                    transform.verb,
                )

    profile.dedupe_keys = validate_dedupe_keys(profile.dedupe_keys)
    if profile.missing_header_behavior == "warn":
        profile.missing_header_behavior = "ignore"
    if profile.missing_header_behavior not in MISSING_HEADER_BEHAVIORS:
        raise ProfileError(
            f"Unknown missing header behavior '{profile.missing_header_behavior}'"
        )
    if profile.malformed_phone_policy not in MALFORMED_PHONE_POLICIES:
        raise ProfileError(f"Unknown malformed phone policy '{profile.malformed_phone_policy}'")
    return profile


def load_profile(path: Optional[str]) -> Profile:
    if not path:
        raise ProfileError("No profile path given")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise ProfileError(f"Profile not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ProfileError(f"Profile {path} is not valid JSON: {exc}") from exc
    profile = parse_profile(payload)
    if not profile.name:
        profile.name = Path(path).stem
    logger.info("Loaded profile %s with %d mappings", profile.name, len(profile.mappings))
    return profile
