"""Per-metric value series for the timeline chart."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from . import schema
from .dates import isoformat, normalize_date
from .observations import locate_header_row, parse_quantity


@dataclass(frozen=True)
class SeriesPoint:
    date: datetime
    value: float
    is_alert: bool = False


@dataclass
class MetricSeries:
    name: str
    column: int
    unit: str = ""
    threshold: Optional[float] = None
    points: list[SeriesPoint] = field(default_factory=list)

    @property
    def range_min(self) -> Optional[float]:
        return min((p.value for p in self.points), default=None)

    @property
    def range_max(self) -> Optional[float]:
        return max((p.value for p in self.points), default=None)

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "column": self.column,
            "unit": self.unit,
            "threshold": self.threshold,
            "range_min": self.range_min,
            "range_max": self.range_max,
            "points": [
                {"date": isoformat(p.date), "value": p.value, "is_alert": p.is_alert}
                for p in self.points
            ],
        }


def metric_series(matrix: Sequence[Sequence[Any]]) -> dict[str, MetricSeries]:
    header_idx = locate_header_row(matrix)
    if header_idx is None:
        return {}
    header = matrix[header_idx]
    units = matrix[header_idx - 1] if header_idx >= 1 else None

    out: dict[str, MetricSeries] = {}
    columns: dict[int, MetricSeries] = {}
    for j in range(schema.FIRST_METRIC_COL, len(header)):
        if schema.is_blank(header[j]):
            continue
        # trimmed so "CEA " and "CEA" share one series
        name = str(header[j]).strip()
        if name not in out:
            hint = schema.cell(units, j)
            out[name] = MetricSeries(
                name=name,
                column=j,
                unit="" if schema.is_blank(hint) else str(hint),
                threshold=schema.parse_threshold(hint),
            )
        columns[j] = out[name]

    for row in matrix[header_idx + 1 :]:
        when = normalize_date(schema.cell(row, schema.COL_DATE))
        if when is None:
            continue
        for j, s in columns.items():
            value = schema.cell(row, j)
            if schema.is_blank(value):
                continue
            q = parse_quantity(value)
            if q.value is None:
                continue
            alert = s.threshold is not None and q.value > s.threshold
            s.points.append(SeriesPoint(when, q.value, alert))

    for s in out.values():
        s.points.sort(key=lambda p: p.date)
    return out
