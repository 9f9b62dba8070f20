"""Treatment phase and event reconstruction from canonical rows.

Segmentation is a left fold over date-sorted rows. The accumulator carries the
closed phases and the single open phase; `step` is pure, so any prefix of the
rows can be replayed and checked on its own.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from functools import reduce
from typing import Any, Optional, Sequence

from . import schema
from .dates import isoformat, normalize_date
from .observations import locate_header_row

CYCLE_RE = re.compile(r"C\d+|AS\d+")
AS_CYCLE_RE = re.compile(r"AS\d+")
AS_PHASE = "AS"
DEFAULT_PHASE_NAME = "Treatment"
DEFAULT_PHASE_DAYS = 21
SURGERY_TRIGGER = "术"
SURGERY_MARKERS = ("术", "腹腔镜")

TYPE_MEDICATION = "medication"
TYPE_SURGERY = "surgery"


@dataclass(frozen=True)
class TimelineRow:
    date: datetime
    phase: Optional[str] = None
    cycle: Optional[str] = None
    scheme: Optional[str] = None
    event: Optional[str] = None


@dataclass(frozen=True)
class Phase:
    start: datetime
    name: str
    cycle: str = ""
    scheme: str = ""
    type: str = TYPE_MEDICATION
    end: Optional[datetime] = None  # None while open
    duration: int = 0

    def as_dict(self) -> dict:
        return {
            "start": isoformat(self.start),
            "end": isoformat(self.end) if self.end else None,
            "name": self.name,
            "cycle": self.cycle,
            "scheme": self.scheme,
            "duration": self.duration,
            "type": self.type,
        }


@dataclass(frozen=True)
class EventMarker:
    date: datetime
    name: str
    overlap_index: int = 0

    def as_dict(self) -> dict:
        return {"date": isoformat(self.date), "name": self.name, "overlap_index": self.overlap_index}


@dataclass(frozen=True)
class SegmentState:
    closed: tuple[Phase, ...] = ()
    open: Optional[Phase] = None


@dataclass
class Timeline:
    phases: list[Phase] = field(default_factory=list)
    events: list[EventMarker] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "phases": [p.as_dict() for p in self.phases],
            "events": [e.as_dict() for e in self.events],
        }


def _text(value: Any) -> Optional[str]:
    if schema.is_blank(value):
        return None
    return str(value).strip()


def extract_cycle(raw: Optional[str]) -> Optional[str]:
    """Pull the C<n>/AS<n> token out of a cycle cell; other labels are kept whole."""
    if not raw:
        return None
    m = CYCLE_RE.search(raw)
    return m.group(0) if m else raw


def is_surveillance(cycle: Optional[str]) -> bool:
    return bool(cycle) and AS_CYCLE_RE.match(cycle) is not None


def duration_days(start: datetime, end: datetime) -> int:
    return max(0, math.ceil((end - start).total_seconds() / 86400))


def close_phase(phase: Phase, end: datetime) -> Phase:
    return replace(phase, end=end, duration=duration_days(phase.start, end))


def timeline_rows(matrix: Sequence[Sequence[Any]]) -> list[TimelineRow]:
    """Data rows with a resolvable date, stably sorted by that date."""
    header_idx = locate_header_row(matrix)
    if header_idx is None:
        header_idx = schema.ROW_HEADERS
    rows = []
    for src in matrix[header_idx + 1 :]:
        when = normalize_date(schema.cell(src, schema.COL_DATE))
        if when is None:
            continue
        rows.append(
            TimelineRow(
                date=when,
                phase=_text(schema.cell(src, schema.COL_PHASE)),
                cycle=_text(schema.cell(src, schema.COL_CYCLE)),
                scheme=_text(schema.cell(src, schema.COL_SCHEME)),
                event=_text(schema.cell(src, schema.COL_EVENT)),
            )
        )
    rows.sort(key=lambda r: r.date)
    return rows


def step(state: SegmentState, row: TimelineRow) -> SegmentState:
    current = state.open
    cycle = extract_cycle(row.cycle)
    surveillance = is_surveillance(cycle)

    if surveillance:
        opens_cycle = current is None or current.name != AS_PHASE
    else:
        opens_cycle = bool(cycle) and (current is None or current.cycle != cycle)

    opens_non_cycle = bool(
        not cycle
        and row.phase
        and row.phase != row.event
        and (current is None or not current.cycle or SURGERY_TRIGGER in row.phase)
    )

    if opens_cycle or opens_non_cycle:
        closed = state.closed
        if current is not None:
            closed = closed + (close_phase(current, row.date),)
        if surveillance:
            name, cycle_label, scheme = AS_PHASE, AS_PHASE, ""
        else:
            name = row.phase or (current.name if current else DEFAULT_PHASE_NAME)
            cycle_label = cycle or ""
            scheme = row.scheme or (current.scheme if current else "")
        kind = (
            TYPE_SURGERY
            if row.phase and any(m in row.phase for m in SURGERY_MARKERS)
            else TYPE_MEDICATION
        )
        return SegmentState(
            closed=closed,
            open=Phase(start=row.date, name=name, cycle=cycle_label, scheme=scheme, type=kind),
        )

    if row.scheme and current is not None and current.name != AS_PHASE:
        return replace(state, open=replace(current, scheme=row.scheme))
    return state


def finish(state: SegmentState, rows: Sequence[TimelineRow]) -> list[Phase]:
    """Close the open phase at max(start + 21 days, latest row date)."""
    phases = list(state.closed)
    if state.open is not None and rows:
        latest = max(r.date for r in rows)
        default_end = state.open.start + timedelta(days=DEFAULT_PHASE_DAYS)
        phases.append(close_phase(state.open, max(default_end, latest)))
    return phases


def assign_overlap(events: Sequence[EventMarker]) -> list[EventMarker]:
    """Sort by date and rank same-date events 0, 1, 2, ... for render offsets."""
    out = []
    last = None
    rank = 0
    for e in sorted(events, key=lambda e: e.date):
        if last is not None and e.date == last:
            rank += 1
        else:
            rank = 0
            last = e.date
        out.append(replace(e, overlap_index=rank))
    return out


def segment_rows(rows: Sequence[TimelineRow]) -> Timeline:
    state = reduce(step, rows, SegmentState())
    events = [EventMarker(date=r.date, name=r.event) for r in rows if r.event]
    return Timeline(phases=finish(state, rows), events=assign_overlap(events))


def segment(matrix: Sequence[Sequence[Any]]) -> Timeline:
    return segment_rows(timeline_rows(matrix))
