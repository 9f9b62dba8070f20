"""Rewrite an arbitrary sheet into the canonical layout using a column mapping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from . import metrics, schema
from .dates import normalize_date
from .detect import UNIT_PATTERNS, find_header_row, has_units_marker
from .mapping import ColumnMapping

logger = logging.getLogger(__name__)

EVENT_SEPARATOR = "; "

# header labels that identify a fixed role when an event-like column is mapped by name
ROLE_SYNONYMS = {
    "phase": {"项目", "阶段", "治疗阶段", "phase", "stage"},
    "cycle": {"周期", "疗程", "cycle"},
    "prev_cycle": {"前序周期", "previous cycle", "prev cycle"},
    "scheme": {"方案", "治疗方案", "scheme", "regimen"},
    "event": {"处置", "事件", "event", "events"},
    "scheme_detail": {"方案详情", "方案明细", "scheme detail"},
}


@dataclass
class TransformContext:
    patient_name: Optional[str] = None
    header_row: Optional[int] = None


@dataclass
class TransformResult:
    success: bool
    data: list[list[Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def role_for_label(label: Any) -> Optional[str]:
    if label is None:
        return None
    key = str(label).strip().lower()
    for role, names in ROLE_SYNONYMS.items():
        if key in names:
            return role
    return None


def looks_like_units_row(row: Any) -> bool:
    if not isinstance(row, (list, tuple)):
        return False
    if has_units_marker(row):
        return True
    text = " ".join("" if c is None else str(c) for c in row)
    return sum(1 for u in UNIT_PATTERNS if u in text) >= 2


def _blank_row(row: Any) -> bool:
    return not isinstance(row, (list, tuple)) or all(schema.is_blank(c) for c in row)


def _resolve_fixed(
    mapping: ColumnMapping, headers: Sequence[Any], date_idx: int, warnings: list[str]
) -> tuple[dict[str, int], list[int]]:
    """Fixed role -> source index, plus event-like columns with no role of their own."""
    roles: dict[str, int] = {}
    used = {date_idx}
    for role, ref in mapping.fixed:
        idx = ref.resolve(headers)
        if idx is None:
            warnings.append(f"{role} column {ref.describe()} not found")
            continue
        if role not in roles:
            roles[role] = idx
            used.add(idx)

    extra: list[int] = []
    for name in mapping.event_columns:
        idx = next(
            (i for i, h in enumerate(headers) if h is not None and str(h).strip() == name),
            None,
        )
        if idx is None:
            warnings.append(f"event column {name!r} not found")
            continue
        if idx in used:
            continue
        role = role_for_label(headers[idx])
        if role and role not in roles:
            roles[role] = idx
        else:
            extra.append(idx)
        used.add(idx)
    return roles, extra


def transform_to_canonical(
    raw: Sequence[Sequence[Any]],
    mapping: ColumnMapping,
    context: Optional[TransformContext] = None,
) -> TransformResult:
    context = context or TransformContext()
    if not raw:
        return TransformResult(False, errors=["input sheet is empty"])

    if mapping.header_row is not None:
        header_idx = mapping.header_row
    elif context.header_row is not None:
        header_idx = context.header_row
    else:
        header_idx = find_header_row(raw)
    if header_idx < 0 or header_idx >= len(raw) or not isinstance(raw[header_idx], (list, tuple)):
        return TransformResult(False, errors=[f"header row {header_idx} is out of range"])
    headers = list(raw[header_idx])

    errors: list[str] = []
    warnings: list[str] = []

    date_idx = mapping.date.resolve(headers)
    if date_idx is None:
        errors.append(f"date column {mapping.date.describe()} not found in header row")

    metric_cols: list[tuple[int, str]] = []
    seen_names: set[str] = set()
    for m in mapping.metrics:
        idx = m.source.resolve(headers)
        if idx is None:
            warnings.append(f"metric source {m.source.describe()} not found")
            continue
        name = metrics.canonical_name(m.canonical)
        if name in seen_names:
            warnings.append(f"metric {name!r} mapped more than once, keeping first column")
            continue
        seen_names.add(name)
        metric_cols.append((idx, name))
    if not metric_cols:
        errors.append("no metric columns could be mapped")

    if errors:
        return TransformResult(False, errors=errors, warnings=warnings)

    roles, extra_events = _resolve_fixed(mapping, headers, date_idx, warnings)

    units_src = raw[header_idx + 1] if header_idx + 1 < len(raw) else None
    if looks_like_units_row(units_src):
        data_start = header_idx + 2
    else:
        units_src = None
        data_start = header_idx + 1

    units = []
    for idx, name in metric_cols:
        hint = schema.cell(units_src, idx) if units_src is not None else None
        if schema.is_blank(hint):
            d = metrics.lookup(name)
            hint = d.units_hint if d and d.units_hint else None
        units.append(hint)

    out = schema.canonical_header_block([n for _, n in metric_cols], context.patient_name, units)
    width = schema.FIRST_METRIC_COL + len(metric_cols)

    rows = dated = 0
    for src in raw[data_start:]:
        if _blank_row(src):
            continue
        row: list[Any] = [None] * width
        row[schema.COL_DATE] = schema.cell(src, date_idx)
        for role, idx in roles.items():
            row[schema.FIXED_ROLES[role]] = schema.cell(src, idx)
        if extra_events:
            parts = [row[schema.COL_EVENT]] + [schema.cell(src, i) for i in extra_events]
            texts = [str(p).strip() for p in parts if not schema.is_blank(p)]
            row[schema.COL_EVENT] = EVENT_SEPARATOR.join(texts) if texts else None
        for k, (idx, _) in enumerate(metric_cols):
            row[schema.FIRST_METRIC_COL + k] = schema.cell(src, idx)
        rows += 1
        if normalize_date(row[schema.COL_DATE]) is not None:
            dated += 1
        out.append(row)

    if rows and not dated:
        return TransformResult(
            False,
            errors=[f"date column {mapping.date.describe()} holds no parseable dates"],
            warnings=warnings,
        )
    if rows - dated:
        warnings.append(f"{rows - dated} rows have no parseable date")

    logger.info(
        "transformed %d rows, %d metrics, header_row=%d date_col=%d",
        rows,
        len(metric_cols),
        header_idx,
        date_idx,
    )
    return TransformResult(True, data=out, warnings=warnings)
