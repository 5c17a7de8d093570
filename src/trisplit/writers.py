from __future__ import annotations

import csv
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .errors import OutputWriteError, RunCancelled
from .normalization import safe_get

logger = logging.getLogger(__name__)

CSV = "csv"
EXCEL = "excel"
JSON = "json"

EXTENSIONS = {CSV: "csv", EXCEL: "xlsx", JSON: "json"}


def _cancelled(cancel: Optional[Any]) -> bool:
    return cancel is not None and cancel.is_set()


class TabularWriter:
    def __init__(self, default_sheet: str = "Sheet1"):
        self.default_sheet = default_sheet

    def write(
        self,
        path: str,
        rows: Sequence[Dict[str, Any]],
        columns: Sequence[str],
        fmt: str,
        cancel: Optional[Any] = None,
        sheet_name: Optional[str] = None,
    ) -> str:
        """Write ``rows`` to ``path`` and return it, or "" when there is nothing to write.

        The cancellation token is checked once per record; a set token raises
        ``RunCancelled`` before anything reaches disk.
        """
        if not rows:
            return ""
        if fmt not in EXTENSIONS:
            raise OutputWriteError(path, f"unsupported output format '{fmt}'")

        records: List[Dict[str, str]] = []
        for row in rows:
            if _cancelled(cancel):
                raise RunCancelled(f"Cancelled while writing {path}")
            records.append({column: safe_get(row, column) for column in columns})

        frame = pd.DataFrame(records, columns=list(columns))
        try:
            if fmt == CSV:
                frame.to_csv(path, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
            elif fmt == EXCEL:
                sheet = (sheet_name or self.default_sheet)[:31]
                with pd.ExcelWriter(path, engine="openpyxl") as writer:
                    frame.to_excel(writer, sheet_name=sheet, index=False)
            else:
                with open(path, "w", encoding="utf-8") as handle:
                    json.dump(records, handle, indent=2, ensure_ascii=False)
        except (OSError, ValueError) as exc:
            raise OutputWriteError(path, str(exc)) from exc
        logger.debug("Wrote %d rows to %s", len(records), path)
        return path
