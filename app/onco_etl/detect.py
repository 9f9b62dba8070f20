"""Heuristic canonical-format detection.

A multi-signal vote, not a schema validator: files that miss it fall through
to column mapping, so the thresholds lean towards false negatives.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from . import schema

logger = logging.getLogger(__name__)

MIN_HEADER_CELLS = 10
MIN_FIXED_MATCHES = 4
MIN_METRIC_MATCHES = 5
HEADER_SCAN_ROWS = 20

CANONICAL_METRICS = [
    "Weight", "Handgrip", "ECOG", "MRD", "aMRD", "CEA", "HE4",
    "CA19-9", "CA125", "CA724", "AFP", "肺", "肝脏", "淋巴", "盆腔",
    "白细胞", "血小板", "中性粒细胞", "谷草转氨酶", "谷丙转氨酶",
    "ROMA绝经后指数", "ROMA绝经前指数",
]

# labels written by an older, incompatible export layout
INVALID_HEADERS = [
    "Lab Result", "Tumor Burden", "Tumor Size", "Performance Status",
    "体重", "握力", "Date", "Phase", "Cycle", "Scheme", "Event",
]

# the six labelled fixed columns (column 3 carries no label)
FIXED_LABEL_CHECKS = [
    (schema.COL_DATE, "子类"),
    (schema.COL_PHASE, "项目"),
    (schema.COL_CYCLE, "周期"),
    (schema.COL_SCHEME, "方案"),
    (schema.COL_EVENT, "处置"),
    (schema.COL_SCHEME_DETAIL, "方案"),
]

# header-row scan signals
SCAN_METRIC_HEADERS = ["Weight", "Handgrip", "CEA", "MRD", "AFP", "白细胞"]
SCAN_FIXED_HEADERS = ["子类", "项目", "周期"]
UNIT_PATTERNS = [schema.UNITS_DATE_MARKER, "KG", "<", "mm"]


@dataclass
class DetectionResult:
    is_canonical: bool
    header_count: int = 0
    fixed_matches: int = 0
    metric_count: int = 0
    invalid_headers: list[str] = field(default_factory=list)
    has_units_marker: bool = False

    def __bool__(self) -> bool:
        return self.is_canonical

    def as_dict(self) -> dict:
        return {
            "is_canonical": self.is_canonical,
            "header_count": self.header_count,
            "fixed_matches": self.fixed_matches,
            "metric_count": self.metric_count,
            "invalid_headers": list(self.invalid_headers),
            "has_units_marker": self.has_units_marker,
        }


def has_units_marker(units_row: Optional[Sequence[Any]]) -> bool:
    if not isinstance(units_row, (list, tuple)):
        return False
    if schema.cell(units_row, schema.COL_DATE) == schema.UNITS_DATE_MARKER:
        return True
    return (
        schema.cell(units_row, schema.COL_CYCLE) == schema.UNITS_CYCLE_MARKER
        and schema.cell(units_row, schema.COL_PREV_CYCLE) == schema.UNITS_PREV_CYCLE_MARKER
    )


def detect_canonical_format(
    headers: Optional[Sequence[Any]], units_row: Optional[Sequence[Any]]
) -> DetectionResult:
    if not isinstance(headers, (list, tuple)):
        return DetectionResult(is_canonical=False)
    header_count = len(headers)
    if header_count < MIN_HEADER_CELLS:
        return DetectionResult(is_canonical=False, header_count=header_count)

    fixed = sum(1 for idx, label in FIXED_LABEL_CHECKS if schema.cell(headers, idx) == label)
    metric_count = sum(1 for h in headers if h and h in CANONICAL_METRICS)
    invalid = [h for h in headers if h and h in INVALID_HEADERS]
    marker = has_units_marker(units_row)

    ok = (
        fixed >= MIN_FIXED_MATCHES
        and metric_count >= MIN_METRIC_MATCHES
        and not invalid
        and marker
    )
    return DetectionResult(
        is_canonical=ok,
        header_count=header_count,
        fixed_matches=fixed,
        metric_count=metric_count,
        invalid_headers=invalid,
        has_units_marker=marker,
    )


def is_canonical_format(headers, units_row) -> bool:
    return detect_canonical_format(headers, units_row).is_canonical


def _row_text(row: Sequence[Any]) -> str:
    return " ".join("" if c is None else str(c) for c in row)


def find_header_row(matrix: Sequence[Sequence[Any]], max_scan: int = HEADER_SCAN_ROWS) -> int:
    """Index of the first row that looks like a header row, 0 if none does."""
    for i, row in enumerate(matrix[:max_scan]):
        if not isinstance(row, (list, tuple)) or len(row) < 5:
            continue
        text = _row_text(row)
        has_metric = any(m in text for m in SCAN_METRIC_HEADERS)
        has_fixed = sum(1 for f in SCAN_FIXED_HEADERS if f in text) >= 2
        looks_like_units = sum(1 for u in UNIT_PATTERNS if u in text) >= 2
        if (has_metric or has_fixed) and not looks_like_units:
            logger.info("header row located at %d", i)
            return i
    logger.warning("no header row found in first %d rows, defaulting to 0", max_scan)
    return 0
