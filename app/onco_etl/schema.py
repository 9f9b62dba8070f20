"""Canonical workbook layout.

Row 0 is a title row, row 1 carries units/threshold hints, row 2 the header
labels, data from row 3. Columns 0-6 are fixed; every column from 7 on is one
metric, with its header label (row 2) aligned to its units hint (row 1).
"""

import re
from typing import Any, Iterable, Optional

ROW_TITLE = 0
ROW_UNITS = 1
ROW_HEADERS = 2
ROW_DATA_START = 3

COL_DATE = 0
COL_PHASE = 1
COL_CYCLE = 2
COL_PREV_CYCLE = 3
COL_SCHEME = 4
COL_EVENT = 5
COL_SCHEME_DETAIL = 6
FIRST_METRIC_COL = 7

# header labels for the fixed columns; column 3 has no header label
FIXED_HEADERS = {
    COL_DATE: "子类",
    COL_PHASE: "项目",
    COL_CYCLE: "周期",
    COL_PREV_CYCLE: None,
    COL_SCHEME: "方案",
    COL_EVENT: "处置",
    COL_SCHEME_DETAIL: "方案",
}

# roles a column mapping can assign, in column order
FIXED_ROLES = {
    "phase": COL_PHASE,
    "cycle": COL_CYCLE,
    "prev_cycle": COL_PREV_CYCLE,
    "scheme": COL_SCHEME,
    "event": COL_EVENT,
    "scheme_detail": COL_SCHEME_DETAIL,
}

UNITS_DATE_MARKER = "日期\\单位"
UNITS_CYCLE_MARKER = "当下周期"
UNITS_PREV_CYCLE_MARKER = "前序周期"

TITLE_SUFFIX = "肿瘤病程周期表"

DEFAULT_TEMPLATE_METRICS = [
    "Weight",
    "Handgrip",
    "ECOG",
    "MRD",
    "CEA",
    "CA19-9",
    "CA125",
    "AFP",
    "白细胞",
    "血小板",
    "中性粒细胞",
    "谷丙转氨酶",
    "谷草转氨酶",
]

_THRESHOLD_RE = re.compile(r"[<>]\s*([\d.]+)")


def title_for(patient_name: Optional[str]) -> str:
    name = (patient_name or "").strip()
    return f"{name} - {TITLE_SUFFIX}" if name else TITLE_SUFFIX


def units_row_prefix() -> list[Any]:
    row: list[Any] = [None] * FIRST_METRIC_COL
    row[COL_DATE] = UNITS_DATE_MARKER
    row[COL_CYCLE] = UNITS_CYCLE_MARKER
    row[COL_PREV_CYCLE] = UNITS_PREV_CYCLE_MARKER
    return row


def header_row_prefix() -> list[Any]:
    return [FIXED_HEADERS[i] for i in range(FIRST_METRIC_COL)]


def canonical_header_block(
    metric_names: Iterable[str],
    patient_name: Optional[str] = None,
    units: Optional[Iterable[str]] = None,
) -> list[list[Any]]:
    """Build rows 0-2 for the given metric header labels.

    units, when given, must be parallel to metric_names.
    """
    names = list(metric_names)
    hints = list(units) if units is not None else [None] * len(names)
    if len(hints) != len(names):
        raise ValueError("units must align with metric_names")
    width = FIRST_METRIC_COL + len(names)
    title: list[Any] = [None] * width
    title[0] = title_for(patient_name)
    return [
        title,
        units_row_prefix() + hints,
        header_row_prefix() + names,
    ]


def parse_threshold(hint: Any) -> Optional[float]:
    if not isinstance(hint, str):
        return None
    m = _THRESHOLD_RE.search(hint)
    if not m:
        return None
    try:
        return float(m.group(1))
    except ValueError:
        return None


def cell(row: Any, idx: int) -> Any:
    """Safe positional access; rows may be shorter than the header."""
    if not isinstance(row, (list, tuple)) or idx < 0 or idx >= len(row):
        return None
    return row[idx]


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")
