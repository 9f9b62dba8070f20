"""End-to-end ingestion: upload bytes -> canonical workbook + observations.

Consistency policy: the canonical workbook file is authoritative. It is fully
serialized in memory before anything is persisted, written first, and only
then are the patient's observations replaced in a single transaction. A failed
database step leaves observations_synced=False; jobs/resync_observations.py
rebuilds observations from the stored files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import psycopg

from . import schema
from .detect import DetectionResult, detect_canonical_format, find_header_row, has_units_marker
from .mapping import ColumnMapping, manual_mapping, mapping_from_analysis
from .metrics import lookup
from .observation_store import replace_observations
from .observations import Observation, extract_observations, locate_header_row
from .oracle import AnalysisResult, analyze_structure, build_samples
from .series import MetricSeries, metric_series
from .storage import LocalFileStore
from .timeline import Timeline, segment
from .transform import TransformContext, transform_to_canonical
from .workbook import (
    JSON_HEADER_ROW,
    canonical_filename,
    is_json_upload,
    read_matrix,
    records_to_matrix,
    write_matrix,
)

logger = logging.getLogger(__name__)

Sink = Callable[[str, Sequence[Observation], Optional[str]], int]


class IngestError(RuntimeError):
    pass


@dataclass
class UploadAnalysis:
    is_canonical: bool
    header_row: int
    headers: list[Any]
    samples: list[list[Any]]
    detection: DetectionResult
    mapping: Optional[ColumnMapping] = None
    analysis: Optional[AnalysisResult] = None


@dataclass
class IngestResult:
    patient_id: str
    file_path: Path
    data_rows: int
    observations: list[Observation] = field(default_factory=list)
    observations_synced: bool = True
    warnings: list[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "patient_id": self.patient_id,
            "file": self.file_path.name,
            "data_rows": self.data_rows,
            "observations": len(self.observations),
            "observations_synced": self.observations_synced,
            "warnings": list(self.warnings),
        }


def _units_candidate(raw: Sequence[Sequence[Any]], header_row: int) -> Optional[Sequence[Any]]:
    """Canonical files keep units above the header; some exports put them below."""
    before = raw[header_row - 1] if header_row >= 1 else None
    after = raw[header_row + 1] if header_row + 1 < len(raw) else None
    if has_units_marker(before) or not has_units_marker(after):
        return before
    return after


def upload_header_row(raw: Sequence[Sequence[Any]], filename: str) -> Optional[int]:
    """Known header row for JSON record uploads, None when it must be located."""
    if is_json_upload(filename) and len(raw) > JSON_HEADER_ROW:
        return JSON_HEADER_ROW
    return None


def analyze_upload(
    data: bytes,
    filename: str,
    oracle: Callable[..., AnalysisResult] = analyze_structure,
    deep: bool = False,
) -> UploadAnalysis:
    raw = read_matrix(data, filename)
    if not raw:
        raise IngestError("empty file")
    header_row = upload_header_row(raw, filename)
    if header_row is None:
        header_row = find_header_row(raw)
    headers = list(raw[header_row] or [])
    samples = build_samples(raw, header_row)
    detection = detect_canonical_format(headers, _units_candidate(raw, header_row))
    if detection:
        logger.info("upload %s is canonical (header row %d)", filename, header_row)
        return UploadAnalysis(True, header_row, headers, samples, detection)

    analysis = oracle(headers, samples, deep=deep)
    mapping = mapping_from_analysis(analysis, header_row=header_row)
    logger.info(
        "upload %s mapped by analysis: %d metrics, %d event columns",
        filename,
        len(mapping.metrics),
        len(mapping.event_columns),
    )
    return UploadAnalysis(False, header_row, headers, samples, detection, mapping, analysis)


def coerce_mapping(mapping: Union[ColumnMapping, Mapping[str, Any], None]) -> Optional[ColumnMapping]:
    if mapping is None or isinstance(mapping, ColumnMapping):
        return mapping
    try:
        return manual_mapping(dict(mapping))
    except (TypeError, ValueError) as e:
        raise IngestError(f"invalid mapping: {e}") from e


def build_canonical(
    raw: Sequence[Sequence[Any]],
    mapping: Optional[ColumnMapping],
    patient_name: Optional[str],
    is_canonical: bool = False,
    header_row: Optional[int] = None,
) -> tuple[list[list[Any]], list[str]]:
    if is_canonical:
        return [list(r) for r in raw], []
    if mapping is not None:
        context = TransformContext(patient_name=patient_name, header_row=header_row)
        result = transform_to_canonical(raw, mapping, context)
        if not result.success:
            raise IngestError("transform failed: " + ", ".join(result.errors))
        return result.data, result.warnings
    if len(raw) > schema.ROW_HEADERS and detect_canonical_format(
        raw[schema.ROW_HEADERS], raw[schema.ROW_UNITS]
    ):
        return [list(r) for r in raw], []
    raise IngestError("no canonical data to save: file is not canonical and no mapping was given")


def _data_rows(canonical: Sequence[Sequence[Any]]) -> int:
    return sum(
        1
        for r in canonical[schema.ROW_DATA_START :]
        if any(not schema.is_blank(c) for c in r)
    )


def require_canonical_layout(matrix: Sequence[Sequence[Any]]) -> int:
    """Header row index of a canonical matrix; IngestError when there is none to persist.

    Checked before the file store or the observation sink is touched.
    """
    header_idx = locate_header_row(matrix)
    if header_idx is None:
        raise IngestError("not a canonical dataset: no header row found")
    header = matrix[header_idx]
    if not any(not schema.is_blank(c) for c in header[schema.FIRST_METRIC_COL :]):
        raise IngestError("not a canonical dataset: header row has no metric columns")
    return header_idx


def persist_canonical(
    patient_id: str,
    canonical: list[list[Any]],
    store: Optional[LocalFileStore] = None,
    dsn: Optional[str] = None,
    sink: Sink = replace_observations,
) -> IngestResult:
    require_canonical_layout(canonical)
    store = store or LocalFileStore()
    observations = extract_observations(canonical, patient_id)
    payload = write_matrix(canonical)
    path = store.write(canonical_filename(patient_id), payload)

    synced = True
    try:
        sink(patient_id, observations, dsn)
    except psycopg.Error as e:
        synced = False
        logger.error("observation sync failed patient=%s error=%s", patient_id, e)
    return IngestResult(
        patient_id=patient_id,
        file_path=path,
        data_rows=_data_rows(canonical),
        observations=observations,
        observations_synced=synced,
    )


def ingest_dataset(
    data: bytes,
    filename: str,
    patient_id: str,
    patient_name: Optional[str] = None,
    mapping: Union[ColumnMapping, Mapping[str, Any], None] = None,
    is_canonical: bool = False,
    store: Optional[LocalFileStore] = None,
    dsn: Optional[str] = None,
    sink: Sink = replace_observations,
) -> IngestResult:
    raw = read_matrix(data, filename)
    canonical, warnings = build_canonical(
        raw, coerce_mapping(mapping), patient_name, is_canonical, upload_header_row(raw, filename)
    )
    result = persist_canonical(patient_id, canonical, store=store, dsn=dsn, sink=sink)
    result.warnings.extend(warnings)
    logger.info(
        "ingested %s for patient=%s rows=%d observations=%d synced=%s",
        filename,
        patient_id,
        result.data_rows,
        len(result.observations),
        result.observations_synced,
    )
    return result


def create_template(
    patient_id: str,
    patient_name: Optional[str],
    store: Optional[LocalFileStore] = None,
    metric_names: Sequence[str] = tuple(schema.DEFAULT_TEMPLATE_METRICS),
) -> Path:
    units = []
    for name in metric_names:
        d = lookup(name)
        units.append(d.units_hint if d and d.units_hint else None)
    block = schema.canonical_header_block(metric_names, patient_name, units)
    store = store or LocalFileStore()
    return store.write(canonical_filename(patient_id), write_matrix(block))


def load_dataset(patient_id: str, store: Optional[LocalFileStore] = None) -> list[list[Any]]:
    """Stored canonical matrix; FileNotFoundError when the patient has none."""
    store = store or LocalFileStore()
    filename = canonical_filename(patient_id)
    return read_matrix(store.read(filename), filename)


def save_dataset_rows(
    patient_id: str,
    records: Sequence[Mapping[str, Any]],
    store: Optional[LocalFileStore] = None,
    dsn: Optional[str] = None,
    sink: Sink = replace_observations,
) -> IngestResult:
    """Persist an edited dataset; rows replace the stored file and observations."""
    matrix = records_to_matrix(records)
    if not matrix:
        raise IngestError("no rows to save")
    return persist_canonical(patient_id, matrix, store=store, dsn=dsn, sink=sink)


def patient_timeline(
    patient_id: str, store: Optional[LocalFileStore] = None
) -> tuple[Timeline, dict[str, MetricSeries]]:
    matrix = load_dataset(patient_id, store)
    return segment(matrix), metric_series(matrix)
