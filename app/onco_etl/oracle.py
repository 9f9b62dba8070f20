"""Client for the external column-structure analysis service.

One request/response round trip, no retry. Any transport, HTTP or schema
failure is raised as AnalysisError; callers decide whether to fall back to a
manual mapping.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Literal, Optional, Sequence

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .workbook import json_cell

logger = logging.getLogger(__name__)

SAMPLE_ROWS = 3


class AnalysisError(RuntimeError):
    pass


def oracle_url_from_env(default: str | None = None) -> str:
    return os.getenv("ONC_ORACLE_URL", default or "http://localhost:8100/api/ai/analyze-file")


def oracle_timeout_from_env(default: float = 60.0) -> float:
    try:
        return float(os.getenv("ONC_ORACLE_TIMEOUT", str(default)))
    except ValueError:
        return default


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ColumnSuggestion(_Model):
    source_index: int = Field(alias="sourceIndex")
    source_name: Optional[str] = Field(default=None, alias="sourceName")
    confidence: float = 0.0


class DateColumnSuggestion(ColumnSuggestion):
    reasoning: str = ""


class MetricSuggestion(_Model):
    source_index: Optional[int] = Field(default=None, alias="sourceIndex")
    canonical_name: str = Field(default="", alias="canonicalName")
    category: str = ""
    confidence: float = 0.0
    reasoning: str = ""
    is_custom_metric: bool = Field(default=False, alias="isCustomMetric")


class FixedColumnMappings(_Model):
    phase: Optional[ColumnSuggestion] = None
    cycle: Optional[ColumnSuggestion] = None
    prev_cycle: Optional[ColumnSuggestion] = Field(default=None, alias="prevCycle")
    scheme: Optional[ColumnSuggestion] = None
    event: Optional[ColumnSuggestion] = None
    scheme_detail: Optional[ColumnSuggestion] = Field(default=None, alias="schemeDetail")


class UnmappedColumn(_Model):
    index: int
    name: str = ""
    reason: str = ""


class AnalysisSummary(_Model):
    detected_header_row: int = Field(default=0, alias="detectedHeaderRow")
    detected_data_start_row: int = Field(default=1, alias="detectedDataStartRow")
    total_columns: int = Field(default=0, alias="totalColumns")
    data_quality: Literal["good", "acceptable", "poor"] = Field(
        default="acceptable", alias="dataQuality"
    )


class AnalysisResult(_Model):
    thought_process: str = ""
    analysis: Optional[AnalysisSummary] = None
    date_column: Optional[DateColumnSuggestion] = Field(default=None, alias="dateColumn")
    fixed_column_mappings: FixedColumnMappings = Field(
        default_factory=FixedColumnMappings, alias="fixedColumnMappings"
    )
    metric_mappings: dict[str, MetricSuggestion] = Field(
        default_factory=dict, alias="metricMappings"
    )
    unmapped_columns: list[UnmappedColumn] = Field(default_factory=list, alias="unmappedColumns")
    warnings: list[str] = Field(default_factory=list)
    transformation_notes: str = Field(default="", alias="transformationNotes")


def build_samples(
    matrix: Sequence[Sequence[Any]], header_row: int, n: int = SAMPLE_ROWS
) -> list[list[Any]]:
    """Sample data rows after the header and the units row beneath it."""
    start = header_row + 2
    return [list(r) for r in matrix[start : start + n] if isinstance(r, (list, tuple))]


def analyze_structure(
    headers: Sequence[Any],
    samples: Sequence[Sequence[Any]],
    url: str | None = None,
    timeout: float | None = None,
    deep: bool = False,
) -> AnalysisResult:
    payload = {
        "headers": [json_cell(h) for h in headers],
        "samples": [[json_cell(c) for c in row] for row in samples],
        "useDeepAnalysis": bool(deep),
    }
    target = url or oracle_url_from_env()
    try:
        response = requests.post(
            target,
            json=payload,
            timeout=timeout if timeout is not None else oracle_timeout_from_env(),
        )
        response.raise_for_status()
        data = response.json()
    except requests.RequestException as e:
        logger.error("structure analysis request failed url=%s error=%s", target, e)
        raise AnalysisError(f"analysis request failed: {e}") from e
    except ValueError as e:
        raise AnalysisError("analysis response is not JSON") from e

    try:
        result = AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise AnalysisError(f"analysis response rejected: {e.error_count()} schema errors") from e

    logger.info(
        "structure analysis ok metrics=%d unmapped=%d warnings=%d",
        len(result.metric_mappings),
        len(result.unmapped_columns),
        len(result.warnings),
    )
    return result
