from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from ..errors import BulkInputError
from ..services.normalizer import is_blank
from .columns import COLUMN_LABELS, normalize_header

"""Workbook reader for bulk uploads.

Line 1 of the data sheet is the header row, lines 2+ are data rows. Header
cells are matched to the canonical columns after case-folding and stripping
non-alphanumerics; any missing canonical column aborts the whole upload.
Extra columns (e.g. the "Error Reason" column of an error report) are ignored.
"""


class WorkbookReadError(BulkInputError):
    """Raised when the upload cannot be opened as an .xlsx workbook."""

class EmptySheetError(BulkInputError):
    """Raised when the data sheet has no header or no data rows."""

class MissingColumnsError(BulkInputError):
    """Raised when expected columns are missing in sheet header."""


@dataclass
class RawRow:
    row_number: int  # spreadsheet line (header = 1)
    cells: dict[str, Any]  # canonical label -> raw cell


@dataclass
class SheetData:
    sheet_name: str
    columns: list[str]  # header cells as written in the file
    rows: list[RawRow]


def read_workbook(source: Path | bytes, sheet_name: str = "Users") -> tuple[str, pd.DataFrame]:
    """Read the data sheet of a workbook as a raw, header-less DataFrame.

    Parameters
    ----------
    source: ファイルパス、またはアップロードされたバイト列
    sheet_name: preferred sheet; the first sheet is used when it is absent

    Cells keep their native types (dtype=object) so that 16-digit card
    numbers and dates are not coerced through float64.
    """
    handle: Any = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        xls = pd.ExcelFile(handle, engine="openpyxl")
        names = [str(n) for n in xls.sheet_names]
        if not names:
            raise EmptySheetError("workbook has no sheets")
        target = sheet_name if sheet_name in names else names[0]
        # "NA" 等を NaN 化しない (keep_default_na=False)
        df = xls.parse(target, header=None, dtype=object, keep_default_na=False)
    except BulkInputError:
        raise
    except Exception as e:
        raise WorkbookReadError(f"unable to read workbook: {e}") from e
    return target, df


def resolve_headers(header_cells: list[Any]) -> dict[str, int]:
    """Map each canonical label to its column index.

    Raises:
        MissingColumnsError: if any canonical column is absent after normalization
    """
    positions: dict[str, int] = {}
    for idx, cell in enumerate(header_cells):
        positions.setdefault(normalize_header(cell), idx)
    resolved: dict[str, int] = {}
    missing: list[str] = []
    for label in COLUMN_LABELS:
        key = normalize_header(label)
        if key in positions:
            resolved[label] = positions[key]
        else:
            missing.append(label)
    if missing:
        raise MissingColumnsError(f"missing columns: {missing}")
    return resolved


def extract_rows(df: pd.DataFrame, sheet_name: str) -> SheetData:
    """Resolve the header and pull every non-blank data row.

    Steps:
    1. Validate that a header row exists
    2. Resolve canonical columns from line 1
    3. Skip rows whose cells are all blank; keep the spreadsheet line number
    4. Fail if no data rows remain
    """
    if df.shape[0] < 1 or all(is_blank(v) for v in df.iloc[0].tolist()):
        raise EmptySheetError(f"sheet '{sheet_name}' is empty")
    header_cells = df.iloc[0].tolist()
    positions = resolve_headers(header_cells)

    rows: list[RawRow] = []
    for idx in range(1, df.shape[0]):
        raw = df.iloc[idx].tolist()
        if all(is_blank(v) for v in raw):
            continue
        cells = {label: raw[col] if col < len(raw) else None for label, col in positions.items()}
        rows.append(RawRow(row_number=idx + 1, cells=cells))

    if not rows:
        raise EmptySheetError(f"sheet '{sheet_name}' has no data rows")
    columns = ["" if is_blank(c) else str(c).strip() for c in header_cells]
    return SheetData(sheet_name=sheet_name, columns=columns, rows=rows)


def load_rows(source: Path | bytes, sheet_name: str = "Users") -> SheetData:
    target, df = read_workbook(source, sheet_name=sheet_name)
    return extract_rows(df, target)
