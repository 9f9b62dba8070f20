"""Observation extraction from canonical matrices."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Optional, Sequence

from . import metrics, schema
from .dates import isoformat, normalize_date
from .detect import CANONICAL_METRICS

logger = logging.getLogger(__name__)

STATUS_FINAL = "final"
CATEGORY_TUMOR_MARKER = "tumor-marker"
CATEGORY_LABORATORY = "laboratory"

_COMPARATOR_RE = re.compile(r"^[<>≤≥=]+\s*")
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class Quantity:
    """Parsed metric cell: value is None when the text is present but not numeric."""

    value: Optional[float]
    text: str


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def parse_quantity(value: Any) -> Quantity:
    text = cell_text(value)
    if isinstance(value, bool):
        return Quantity(None, text)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return Quantity(None, text)
        return Quantity(float(value), text)
    if not isinstance(value, str):
        return Quantity(None, text)
    s = _COMPARATOR_RE.sub("", value.strip().replace(",", ""))
    m = _LEADING_NUMBER_RE.match(s)
    if not m:
        return Quantity(None, text)
    try:
        return Quantity(float(m.group(0)), text)
    except ValueError:
        return Quantity(None, text)


@dataclass(frozen=True)
class Observation:
    patient_id: str
    effective_datetime: datetime
    category: str
    code: str
    code_display: str
    status: str
    value_quantity: Optional[float]
    value_string: str

    def as_row(self) -> dict:
        row = asdict(self)
        row["effective_datetime"] = isoformat(self.effective_datetime)
        return row


def category_for(label: Any) -> str:
    if metrics.category_of(label) is metrics.MetricCategory.MOLECULAR:
        return CATEGORY_TUMOR_MARKER
    return CATEGORY_LABORATORY


def locate_header_row(matrix: Sequence[Sequence[Any]]) -> Optional[int]:
    """Row holding the fixed date label, else the first row naming a canonical metric."""
    date_label = schema.FIXED_HEADERS[schema.COL_DATE]
    for i, row in enumerate(matrix):
        if schema.cell(row, schema.COL_DATE) == date_label:
            return i
    for i, row in enumerate(matrix):
        if isinstance(row, (list, tuple)) and any(c in CANONICAL_METRICS for c in row if isinstance(c, str)):
            logger.warning("no %r header row, using metric row %d", date_label, i)
            return i
    return None


def extract_observations(matrix: Sequence[Sequence[Any]], patient_id: str) -> list[Observation]:
    header_idx = locate_header_row(matrix)
    if header_idx is None:
        logger.warning("no header row in matrix for patient=%s", patient_id)
        return []
    header = matrix[header_idx]

    out: list[Observation] = []
    skipped = 0
    for row in matrix[header_idx + 1 :]:
        if not isinstance(row, (list, tuple)) or not row:
            continue
        when = normalize_date(schema.cell(row, schema.COL_DATE))
        if when is None:
            skipped += 1
            continue
        for j in range(schema.FIRST_METRIC_COL, min(len(row), len(header))):
            label = header[j]
            value = row[j]
            if schema.is_blank(label) or schema.is_blank(value):
                continue
            q = parse_quantity(value)
            out.append(
                Observation(
                    patient_id=patient_id,
                    effective_datetime=when,
                    category=category_for(label),
                    code=metrics.canonical_code(label),
                    code_display=metrics.display_name(label),
                    status=STATUS_FINAL,
                    value_quantity=q.value,
                    value_string=q.text,
                )
            )
    if skipped:
        logger.info("skipped %d rows without a usable date", skipped)
    logger.info("extracted %d observations for patient=%s", len(out), patient_id)
    return out
