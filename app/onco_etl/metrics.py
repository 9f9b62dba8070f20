"""Metric dictionary: raw column labels (English/Chinese synonyms) to canonical metrics.

The table is loaded once from mappings/metric_dictionary.csv and is read-only
afterwards. Lookup is exact after trimming whitespace; case and full-width
variants ("cea", "ＣＥＡ") are not folded and resolve as unknown labels.
"""

from __future__ import annotations

import csv
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

THIS_DIR = os.path.dirname(os.path.abspath(__file__))
DICTIONARY_PATH = os.path.join(THIS_DIR, "mappings", "metric_dictionary.csv")


class MetricCategory(Enum):
    MOLECULAR = "MOLECULAR"
    LABORATORY = "LABORATORY"
    OTHER = "OTHER"


@dataclass(frozen=True)
class MetricDefinition:
    code: str
    name: str  # label used in canonical header rows
    chinese: str
    english: str
    category: MetricCategory
    unit: str = ""
    threshold_hint: str = ""
    aliases: tuple[str, ...] = ()

    @property
    def labels(self) -> tuple[str, ...]:
        return (self.code, self.name, self.chinese, self.english) + self.aliases

    @property
    def units_hint(self) -> str:
        return self.threshold_hint or self.unit


def load_dictionary(path: str = DICTIONARY_PATH) -> list[MetricDefinition]:
    out = []
    with open(path, newline="", encoding="utf-8") as f:
        r = csv.DictReader(f)
        for row in r:
            code = (row.get("code", "") or "").strip()
            if not code:
                continue
            aliases = tuple(
                a.strip() for a in (row.get("aliases", "") or "").split("|") if a.strip()
            )
            out.append(
                MetricDefinition(
                    code=code,
                    name=(row.get("name", "") or "").strip() or code,
                    chinese=(row.get("chinese", "") or "").strip(),
                    english=(row.get("english", "") or "").strip(),
                    category=MetricCategory((row.get("category", "") or "OTHER").strip()),
                    unit=(row.get("unit", "") or "").strip(),
                    threshold_hint=(row.get("threshold_hint", "") or "").strip(),
                    aliases=aliases,
                )
            )
    return out


def build_index(definitions: list[MetricDefinition]) -> dict[str, MetricDefinition]:
    index: dict[str, MetricDefinition] = {}
    for d in definitions:
        for label in d.labels:
            # first definition wins on a shared synonym
            if label and label not in index:
                index[label] = d
    return index


_DEFINITIONS = load_dictionary()
_INDEX = build_index(_DEFINITIONS)


def _key(label: Any) -> str:
    if label is None:
        return ""
    return str(label).strip()


def lookup(label: Any) -> Optional[MetricDefinition]:
    key = _key(label)
    if not key:
        return None
    return _INDEX.get(key)


def is_known(label: Any) -> bool:
    return lookup(label) is not None


def canonical_code(label: Any) -> str:
    """Dictionary code for a label; unknown labels become their own trimmed code."""
    d = lookup(label)
    return d.code if d else _key(label)


def canonical_name(label: Any) -> str:
    d = lookup(label)
    return d.name if d else _key(label)


def display_name(label: Any) -> str:
    d = lookup(label)
    if d and d.chinese:
        return d.chinese
    return _key(label)


def category_of(label: Any) -> MetricCategory:
    d = lookup(label)
    return d.category if d else MetricCategory.OTHER


def all_metrics() -> list[MetricDefinition]:
    return list(_DEFINITIONS)
