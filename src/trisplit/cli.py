from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .common import (
    InputError,
    PipelineConfig,
    ProfileError,
    RunOutcome,
    UnifiedProcessor,
    load_config,
    load_profile,
)
from .logging_utils import configure_logging
from .models import SEVERITY_INFO, ProgressEvent

logger = logging.getLogger(__name__)


def _log_progress(event: ProgressEvent) -> None:
    # warnings and errors are already logged by the processor itself
    if event.severity == SEVERITY_INFO:
        logger.info("[%3d%%] %s", event.percent, event.message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Split a flat data extract into contacts, phones and properties."
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--input", type=str, default=None, help="CSV/TSV/TXT or Excel extract.")
    parser.add_argument("--profile", type=str, default=None, help="Path to JSON mapping profile.")
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--csv", dest="output_csv", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument(
        "--excel", dest="output_excel", action=argparse.BooleanOptionalAction, default=None
    )
    parser.add_argument("--json", dest="output_json", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--tag", type=str, default=None, help="Replace the profile tags on every record.")
    parser.add_argument(
        "--secondary-contacts",
        dest="secondary_contacts",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Write secondary contacts to their own files (default: profile setting).",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    return parser


def run(args: argparse.Namespace, config: Optional[PipelineConfig] = None) -> RunOutcome:
    config = config or load_config(args)
    input_path = config.inputs.get("input_path")
    if not input_path:
        raise InputError("An input file is required (--input or inputs.input_path)")
    profile = load_profile(config.inputs.get("profile_path"))
    processor = UnifiedProcessor(
        profile,
        progress=_log_progress,
        secondary_contacts=config.secondary_contacts,
    )
    return processor.process(str(input_path), str(config.outputs.dir), config.export)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    try:
        outcome = run(args, config=config)
    except (InputError, ProfileError) as exc:
        logger.error("%s", exc)
        return 1

    if not outcome.success:
        logger.error("Run failed during %s: %s", outcome.failed_stage, outcome.error_message)
        if outcome.failure_log_path:
            logger.error("Details: %s", outcome.failure_log_path)
        return 1

    for path in outcome.all_files():
        logger.info("Saved: %s", path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
