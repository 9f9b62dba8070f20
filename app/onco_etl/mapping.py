"""Column mappings from a source sheet to canonical roles.

Built once per ingested file, either from an explicit manual payload or from
the structure-analysis oracle, and never modified afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from . import schema
from .oracle import AnalysisResult

logger = logging.getLogger(__name__)

MIN_METRIC_CONFIDENCE = 0.5

# fixed-role suggestions that feed the auxiliary event-column list, in order
EVENT_LIKE_ROLES = ("phase", "event", "cycle", "scheme")


@dataclass(frozen=True)
class ColumnRef:
    index: Optional[int] = None
    name: Optional[str] = None

    def resolve(self, headers: Sequence[Any]) -> Optional[int]:
        """Column position in headers.

        An index whose header agrees with the name wins, then the first header
        matching the name, then a bare in-range index.
        """
        in_range = self.index is not None and 0 <= self.index < len(headers)
        if self.name:
            target = self.name.strip()
            if in_range and str(headers[self.index]).strip() == target:
                return self.index
            for i, h in enumerate(headers):
                if h is not None and str(h).strip() == target:
                    return i
        if in_range:
            return self.index
        return None

    def describe(self) -> str:
        if self.name and self.index is not None:
            return f"{self.name!r} (index {self.index})"
        if self.name:
            return repr(self.name)
        if self.index is not None:
            return f"index {self.index}"
        return "<unset>"


@dataclass(frozen=True)
class MetricColumn:
    source: ColumnRef
    canonical: str


@dataclass(frozen=True)
class ColumnMapping:
    date: ColumnRef
    metrics: tuple[MetricColumn, ...] = ()
    event_columns: tuple[str, ...] = ()
    fixed: tuple[tuple[str, ColumnRef], ...] = ()
    header_row: Optional[int] = None

    def fixed_ref(self, role: str) -> Optional[ColumnRef]:
        for r, ref in self.fixed:
            if r == role:
                return ref
        return None

    def as_dict(self) -> dict:
        return {
            "date_col": self.date.name,
            "date_col_index": self.date.index,
            "metrics": {
                (m.source.name if m.source.name else str(m.source.index)): m.canonical
                for m in self.metrics
            },
            "events": list(self.event_columns),
            "fixed": {
                role: (ref.name if ref.name else ref.index) for role, ref in self.fixed
            },
            "header_row": self.header_row,
        }


def _ref(value: Any) -> ColumnRef:
    if isinstance(value, bool):
        raise ValueError(f"invalid column reference: {value!r}")
    if isinstance(value, int):
        return ColumnRef(index=value)
    if isinstance(value, str) and value.strip():
        return ColumnRef(name=value.strip())
    if isinstance(value, dict):
        idx = value.get("index", value.get("sourceIndex"))
        name = value.get("name", value.get("sourceName"))
        return ColumnRef(index=int(idx) if idx is not None else None, name=name or None)
    raise ValueError(f"invalid column reference: {value!r}")


def manual_mapping(payload: dict) -> ColumnMapping:
    """Build a mapping from the manual payload shape.

    {"date_col": "Date", "date_col_index": 0,
     "metrics": {"cea_value": "CEA"}, "events": ["Phase", "Notes"],
     "fixed": {"cycle": "Cycle"}, "header_row": 0}
    """
    if not isinstance(payload, dict):
        raise ValueError("mapping must be an object")
    date_name = payload.get("date_col") or None
    date_index = payload.get("date_col_index")
    date = ColumnRef(
        index=int(date_index) if date_index is not None else None,
        name=str(date_name).strip() if date_name else None,
    )

    raw_metrics = payload.get("metrics") or {}
    metrics = []
    if isinstance(raw_metrics, dict):
        for source, canonical in raw_metrics.items():
            if canonical:
                metrics.append(MetricColumn(ColumnRef(name=str(source).strip()), str(canonical).strip()))
    else:
        for item in raw_metrics:
            canonical = (item or {}).get("canonical")
            if canonical:
                metrics.append(MetricColumn(_ref(item.get("source")), str(canonical).strip()))

    events = tuple(str(e).strip() for e in (payload.get("events") or []) if e)

    fixed = []
    for role, value in (payload.get("fixed") or {}).items():
        if role not in schema.FIXED_ROLES:
            raise ValueError(f"unknown fixed role: {role}")
        if value is None or value == "":
            continue
        fixed.append((role, _ref(value)))

    header_row = payload.get("header_row")
    return ColumnMapping(
        date=date,
        metrics=tuple(metrics),
        event_columns=events,
        fixed=tuple(fixed),
        header_row=int(header_row) if header_row is not None else None,
    )


def mapping_from_analysis(result: AnalysisResult, header_row: Optional[int] = None) -> ColumnMapping:
    """Convert an oracle analysis into a mapping, dropping low-confidence metrics."""
    dc = result.date_column
    date = ColumnRef(index=dc.source_index, name=dc.source_name or None) if dc else ColumnRef(index=0)

    metrics = []
    for source_name, m in result.metric_mappings.items():
        if not m.canonical_name:
            continue
        if m.confidence >= MIN_METRIC_CONFIDENCE or m.is_custom_metric:
            metrics.append(MetricColumn(ColumnRef(index=m.source_index, name=source_name), m.canonical_name))
        else:
            logger.info("dropping metric suggestion %s confidence=%.2f", source_name, m.confidence)

    f = result.fixed_column_mappings
    events = []
    for role in EVENT_LIKE_ROLES:
        s = getattr(f, role)
        if s is not None and s.source_name:
            events.append(s.source_name)

    fixed = []
    for role in schema.FIXED_ROLES:
        s = getattr(f, role)
        if s is not None:
            fixed.append((role, ColumnRef(index=s.source_index, name=s.source_name or None)))

    return ColumnMapping(
        date=date,
        metrics=tuple(metrics),
        event_columns=tuple(events),
        fixed=tuple(fixed),
        header_row=header_row,
    )
