from __future__ import annotations

import json
import logging
import os
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .contexts import build_contexts
from .errors import InputError, OutputWriteError, RunCancelled, TriSplitError
from .export import KINDS, PRIMARY, ExportAssembler, ExportSet
from .household import HouseholdResolver
from .identity import PersistenceEngine
from .mapping import MappingResolver
from .models import (
    SEVERITY_ERROR,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    ContactContext,
    ExportOptions,
    Profile,
    ProgressEvent,
    RunOutcome,
)
from .normalization import normalize_association
from .readers import InputReader
from .writers import EXTENSIONS, TabularWriter

logger = logging.getLogger(__name__)

STAGE_VALIDATE = "validate options"
STAGE_READ = "read input"
STAGE_HEADERS = "check headers"
STAGE_ROWS = "process rows"
STAGE_WRITE = "write outputs"
STAGE_REPORT = "write report"

ProgressCallback = Callable[[ProgressEvent], None]

_FORMAT_MESSAGES = {
    "csv": ("Writing CSV files...", 90),
    "excel": ("Writing Excel workbooks...", 92),
    "json": ("Writing JSON files...", 94),
}
_PROGRESS_EVERY = 100


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def _cancelled(cancel: Optional[Any]) -> bool:
    return cancel is not None and cancel.is_set()


def output_file_name(kind: str, partition: str, fmt: str, timestamp: str) -> str:
    prefix = kind if partition == PRIMARY else f"{partition}-{kind}"
    return f"{prefix}-{timestamp}.{EXTENSIONS[fmt]}"


def file_key(kind: str, partition: str) -> str:
    return kind if partition == PRIMARY else f"{partition}_{kind}"


class UnifiedProcessor:
    def __init__(
        self,
        profile: Profile,
        reader: Optional[InputReader] = None,
        writer: Optional[TabularWriter] = None,
        progress: Optional[ProgressCallback] = None,
        secondary_contacts: Optional[bool] = None,
    ):
        self.profile = profile
        self.secondary_mode = (
            profile.create_secondary_contacts_file
            if secondary_contacts is None
            else bool(secondary_contacts)
        )
        self.reader = reader or InputReader()
        self.writer = writer or TabularWriter()
        self.progress = progress
        self.resolver = MappingResolver(profile)
        self.household = HouseholdResolver(self.resolver, self.secondary_mode)
        self.stage = ""
        self._percent = 0
        self.reset()

    def reset(self, options: Optional[ExportOptions] = None) -> None:
        """Start a fresh run: new identity table, empty stores, cleared counters."""
        self.engine = PersistenceEngine(
            self.profile,
            secondary_mode=self.secondary_mode,
            export_tag=options.tag if options is not None else None,
            warn=self._warn,
        )
        self.warnings: List[str] = []
        self.missing_headers: List[str] = []
        self.rows_processed = 0
        self.rows_skipped = 0

    # progress

    def _emit(self, percent: int, message: str, severity: str = SEVERITY_INFO) -> None:
        self._percent = percent
        if self.progress is None:
            return
        try:
            self.progress(ProgressEvent(percent=percent, message=message, severity=severity))
        except Exception:
            logger.exception("Progress callback raised; continuing")

    @staticmethod
    def _row_progress(done: int, total: int) -> Tuple[int, str]:
        if total <= 0:
            return 15, f"Processed {done:,} rows"
        return 15 + int(70 * min(done, total) / total), f"Processed {done:,} of {total:,} rows"

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)
        self._emit(self._percent, message, SEVERITY_WARNING)

    # rows

    def check_headers(self, headers: List[str]) -> List[str]:
        self.resolver.bind_headers(headers)
        missing = self.resolver.missing_source_columns(headers)
        self.missing_headers = missing
        if not missing:
            return missing
        message = f"Input is missing mapped column(s): {', '.join(missing)}"
        if self.profile.missing_header_behavior == "error":
            raise InputError(message)
        self._warn(message)
        return missing

    def _persist_property_only(
        self,
        row: Mapping[str, Any],
        contexts: List[ContactContext],
        primary: ContactContext,
    ) -> None:
        present = {normalize_association(context.association) for context in contexts}
        for label in self.resolver.property_associations():
            if normalize_association(label) in present or self.resolver.is_mailing(label):
                continue
            for group in self.resolver.property_groups_for(label):
                snapshot = self.resolver.build_snapshot(row, label, group, explicit_only=True)
                self.engine.persist_property_snapshot(
                    primary.import_id, snapshot, label, primary.is_secondary
                )

    def process_row(self, row: Mapping[str, Any]) -> List[ContactContext]:
        """Split, resolve and persist one row; returns the persisted contexts."""
        contexts = [context for context in build_contexts(row, self.resolver) if context.has_identity]
        if not contexts:
            self.rows_skipped += 1
            logger.debug("Row produced no contacts; skipped")
            return []

        primary = self.household.resolve(row, contexts)
        for context in contexts:
            self.engine.assign_import_id(context)
        self.household.link(contexts)

        mailing_label = self.profile.mailing_association
        for context in contexts:
            self.engine.persist_contact(context)
            for snapshot in context.property_groups.values():
                self.engine.persist_property_snapshot(
                    context.import_id, snapshot, context.association, context.is_secondary
                )
            if context.mailing is not None:
                self.engine.persist_property_snapshot(
                    context.import_id, context.mailing, mailing_label, context.is_secondary
                )
        if primary is not None:
            self._persist_property_only(row, contexts, primary)
        self.engine.process_phone_numbers(row, contexts, primary, self.resolver)
        self.rows_processed += 1
        return contexts

    # outputs

    def _write_sets(
        self,
        output_dir: str,
        options: ExportOptions,
        sets: Dict[str, Dict[str, ExportSet]],
        timestamp: str,
        outcome: RunOutcome,
        cancel: Optional[Any],
    ) -> None:
        for fmt in options.formats():
            message, percent = _FORMAT_MESSAGES[fmt]
            self._emit(percent, message)
            for kind in KINDS:
                for partition, export_set in sets[kind].items():
                    path = os.path.join(output_dir, output_file_name(kind, partition, fmt, timestamp))
                    written = self.writer.write(
                        path,
                        export_set.rows,
                        export_set.columns,
                        fmt,
                        cancel,
                        sheet_name=kind.title(),
                    )
                    if written:
                        outcome.files.setdefault(fmt, {})[file_key(kind, partition)] = written

    def _write_report(
        self, output_dir: str, timestamp: str, source_file: str, outcome: RunOutcome
    ) -> str:
        path = os.path.join(output_dir, f"processing_report-{timestamp}.json")
        report = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "profile": self.profile.name,
            "source_file": source_file,
            "rows_processed": self.rows_processed,
            "rows_skipped": self.rows_skipped,
            "record_counts": outcome.record_counts,
            "missing_headers": list(self.missing_headers),
            "warnings": list(self.warnings),
            "files": outcome.files,
        }
        try:
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(report, handle, indent=2)
        except OSError as exc:
            raise OutputWriteError(path, str(exc)) from exc
        logger.debug("Wrote processing report %s", path)
        return path

    def _write_failure_log(self, output_dir: str, timestamp: str, exc: BaseException) -> Optional[str]:
        path = os.path.join(output_dir or ".", f"failure-{timestamp}.log")
        lines = [
            f"timestamp: {datetime.now(timezone.utc).isoformat()}",
            f"stage: {self.stage}",
            f"profile: {self.profile.name}",
            f"exception: {type(exc).__name__}",
            f"message: {exc}",
            "",
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        ]
        try:
            os.makedirs(output_dir or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                handle.write("\n".join(lines))
        except OSError as log_exc:
            logger.warning("Could not write failure log %s: %s", path, log_exc)
            return None
        return path

    def process(
        self,
        input_path: str,
        output_dir: str,
        options: Optional[ExportOptions] = None,
        cancel: Optional[Any] = None,
    ) -> RunOutcome:
        """Run the whole pipeline; failures are reported on the outcome, never raised."""
        options = options if options is not None else ExportOptions()
        outcome = RunOutcome()
        timestamp = _timestamp()
        self.stage = STAGE_VALIDATE
        self._percent = 0
        try:
            self.reset(options)
            if not options.any_enabled():
                raise TriSplitError("At least one output format must be selected")
            os.makedirs(output_dir, exist_ok=True)

            self.stage = STAGE_READ
            self._emit(5, "Loading input file...")
            data = self.reader.read(input_path)

            self.stage = STAGE_HEADERS
            self.check_headers(list(data.headers))

            self.stage = STAGE_ROWS
            self._emit(15, "Processing rows...")
            total = data.total_rows
            done = 0
            for row in data.rows:
                if _cancelled(cancel):
                    raise RunCancelled(f"Cancelled after {done} rows")
                self.process_row(row)
                done += 1
                if done % _PROGRESS_EVERY == 0 or done == total:
                    self._emit(*self._row_progress(done, total))
            if not done:
                raise InputError(f"Input file has no data rows: {input_path}")
            if done != total:
                self._emit(*self._row_progress(done, total))

            self.stage = STAGE_WRITE
            assembler = ExportAssembler(self.engine, self.secondary_mode)
            sets = assembler.assemble()
            outcome.record_counts = assembler.record_counts(sets)
            self._write_sets(output_dir, options, sets, timestamp, outcome, cancel)

            if options.output_json:
                self.stage = STAGE_REPORT
                self._emit(96, "Writing processing report...")
                report = self._write_report(output_dir, timestamp, data.source_file or input_path, outcome)
                outcome.files.setdefault("json", {})["processing_report"] = report

            outcome.success = True
            self._emit(100, "Processing complete")
        except Exception as exc:
            logger.error("Run failed during %s: %s", self.stage, exc)
            outcome.success = False
            outcome.error_message = str(exc)
            outcome.failed_stage = self.stage
            outcome.failure_log_path = self._write_failure_log(output_dir, timestamp, exc)
            self._emit(self._percent, f"Processing failed during {self.stage}: {exc}", SEVERITY_ERROR)
        finally:
            outcome.rows_processed = self.rows_processed
            outcome.rows_skipped = self.rows_skipped
            outcome.warnings = list(self.warnings)
        return outcome
