"""Reading uploads into cell matrices and writing canonical workbooks."""

from __future__ import annotations

import io
import json
import math
import re
import zipfile
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException

WORKBOOK_SUFFIXES = (".xlsx", ".xlsm")
JSON_SUFFIX = ".json"
# json_to_matrix pads two blank rows, so headers sit at row 2
JSON_HEADER_ROW = 2
RECORD_KEY_RE = re.compile(r"^Unnamed: (\d+)$")


class WorkbookError(ValueError):
    pass


def canonical_filename(patient_id: str) -> str:
    return f"{patient_id}.xlsx"


def is_json_upload(filename: str) -> bool:
    return (filename or "").lower().endswith(JSON_SUFFIX)


def json_cell(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _trim(row: Sequence[Any]) -> list[Any]:
    cells = list(row)
    while cells and (cells[-1] is None or cells[-1] == ""):
        cells.pop()
    return cells


def json_to_matrix(records: Sequence[Any]) -> list[list[Any]]:
    """Flat row objects -> matrix: keys of the first object, two blank leading rows."""
    if not records:
        return []
    first = records[0]
    if not isinstance(first, dict):
        return [
            [json_cell(c) for c in r] if isinstance(r, (list, tuple)) else [json_cell(r)]
            for r in records
        ]
    headers = list(first.keys())
    rows = [[json_cell(r.get(h)) for h in headers] if isinstance(r, dict) else [] for r in records]
    return [[], [], headers, *rows]


def read_json(data: bytes) -> list[list[Any]]:
    try:
        doc = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WorkbookError(f"invalid JSON upload: {e}") from e
    if isinstance(doc, dict):
        doc = [doc]
    if not isinstance(doc, list):
        raise WorkbookError("JSON upload must be an array of rows or an object")
    return json_to_matrix(doc)


def read_xlsx(data: bytes) -> list[list[Any]]:
    """First sheet only, cached values, trailing empty cells dropped."""
    try:
        wb = load_workbook(io.BytesIO(data), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise WorkbookError(f"unreadable workbook: {e}") from e
    try:
        ws = wb.worksheets[0]
        return [_trim(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def read_matrix(data: bytes, filename: str) -> list[list[Any]]:
    if is_json_upload(filename):
        return read_json(data)
    if (filename or "").lower().endswith(WORKBOOK_SUFFIXES):
        return read_xlsx(data)
    raise WorkbookError(f"unsupported upload type: {filename}")


def write_matrix(matrix: Iterable[Sequence[Any]], sheet_title: str = "Sheet1") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title
    for i, row in enumerate(matrix):
        try:
            ws.append([c if c != "" else None for c in row])
        except (ValueError, TypeError, IllegalCharacterError) as e:
            raise WorkbookError(f"row {i}: cannot write cell: {e}") from e
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def matrix_to_records(matrix: Sequence[Sequence[Any]]) -> list[dict[str, Any]]:
    return [
        {f"Unnamed: {i}": json_cell(c) for i, c in enumerate(row)}
        for row in matrix
    ]


def records_to_matrix(records: Sequence[Mapping[str, Any]]) -> list[list[Any]]:
    """Inverse of matrix_to_records; other key shapes go through json_to_matrix."""
    if not records:
        return []
    keys = {k for r in records for k in r}
    if not all(RECORD_KEY_RE.match(k) for k in keys):
        return json_to_matrix(list(records))
    out = []
    for r in records:
        cells = {int(RECORD_KEY_RE.match(k).group(1)): v for k, v in r.items()}
        width = max(cells) + 1 if cells else 0
        out.append(_trim([cells.get(i) for i in range(width)]))
    return out
