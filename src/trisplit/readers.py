from __future__ import annotations

import csv
import logging
import os
from typing import Any, Dict, List, Optional

import pandas as pd

from .errors import InputError
from .models import InputData
from .normalization import safe_get, warn_missing

logger = logging.getLogger(__name__)

DELIMITED_EXTENSIONS = {".csv", ".tsv", ".txt"}
EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
SUPPORTED_EXTENSIONS = DELIMITED_EXTENSIONS | EXCEL_EXTENSIONS


def _read_delimited(path: str) -> pd.DataFrame:
    extension = os.path.splitext(path)[1].lower()
    if extension == ".tsv":
        return pd.read_csv(path, dtype=str, keep_default_na=False, sep="\t", encoding="utf-8-sig")
    # sep=None lets the python engine sniff comma, tab, semicolon or pipe
    return pd.read_csv(
        path, dtype=str, keep_default_na=False, sep=None, engine="python", encoding="utf-8-sig"
    )


def _read_excel(path: str, sheet_name: Any = 0) -> pd.DataFrame:
    return pd.read_excel(
        path, sheet_name=sheet_name, dtype=str, keep_default_na=False, engine="openpyxl"
    )


def _rows_from_frame(frame: pd.DataFrame, headers: List[str]) -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    for values in frame.itertuples(index=False, name=None):
        record = dict(zip(headers, values))
        rows.append({header: safe_get(record, header) for header in headers})
    return rows


class InputReader:
    """Reads a flat extract into header-keyed string rows."""

    def __init__(self, sheet_name: Optional[Any] = 0):
        self.sheet_name = sheet_name

    def read(self, path: str) -> InputData:
        if warn_missing(path, "Input"):
            raise InputError(f"Input file not found: {path}")
        extension = os.path.splitext(path)[1].lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise InputError(
                f"Unsupported input type '{extension or path}'; expected one of "
                f"{', '.join(sorted(SUPPORTED_EXTENSIONS))}"
            )
        try:
            if extension in EXCEL_EXTENSIONS:
                frame = _read_excel(path, self.sheet_name)
            else:
                frame = _read_delimited(path)
        except pd.errors.EmptyDataError as exc:
            raise InputError(f"Input file is empty: {path}") from exc
        except (pd.errors.ParserError, csv.Error, UnicodeDecodeError, ValueError) as exc:
            raise InputError(f"Could not read {path}: {exc}") from exc

        headers = [str(column).strip() for column in frame.columns]
        rows = _rows_from_frame(frame, headers)
        logger.info("Read %d rows with %d columns from %s", len(rows), len(headers), path)
        return InputData(headers=headers, rows=rows, total_rows=len(rows), source_file=path)
