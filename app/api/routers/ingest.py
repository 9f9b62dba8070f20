import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from app.onco_etl.db import dsn_from_env
from app.onco_etl.ingest import (
    IngestError,
    analyze_upload,
    create_template,
    ingest_dataset,
    load_dataset,
    save_dataset_rows,
)
from app.onco_etl.oracle import AnalysisError
from app.onco_etl.schema import DEFAULT_TEMPLATE_METRICS
from app.onco_etl.storage import LocalFileStore
from app.onco_etl.workbook import WorkbookError, json_cell, matrix_to_records

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"])


def get_store() -> LocalFileStore:
    return LocalFileStore()


def get_dsn() -> str:
    return dsn_from_env()


class DatasetRows(BaseModel):
    rows: list[dict[str, Any]]


class TemplateRequest(BaseModel):
    patient_name: str
    metrics: Optional[list[str]] = None


def _parse_mapping_field(text: Optional[str]) -> tuple[Optional[dict], bool]:
    """Accepts {"isCanonical": true}, {"mapping": {...}} or a bare mapping object."""
    if not text:
        return None, False
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=422, detail=f"mapping is not valid JSON: {e}")
    if doc is None:
        return None, False
    if not isinstance(doc, dict):
        raise HTTPException(status_code=422, detail="mapping must be a JSON object")
    if doc.get("isCanonical") is True:
        return None, True
    if "mapping" in doc or "isCanonical" in doc:
        return doc.get("mapping"), False
    return doc, False


@router.post("/ingest/analyze")
async def analyze(file: UploadFile = File(...), deep: bool = Form(False)):
    data = await file.read()
    try:
        result = analyze_upload(data, file.filename or "", deep=deep)
    except (WorkbookError, IngestError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {
        "is_canonical": result.is_canonical,
        "header_row": result.header_row,
        "headers": [json_cell(h) for h in result.headers],
        "samples": [[json_cell(c) for c in r] for r in result.samples],
        "detection": result.detection.as_dict(),
        "mapping": result.mapping.as_dict() if result.mapping else None,
        "analysis": result.analysis.model_dump(by_alias=True) if result.analysis else None,
    }


@router.post("/patients/{patient_id}/dataset")
async def upload_dataset(
    patient_id: str,
    file: UploadFile = File(...),
    patient_name: str = Form(""),
    mapping: Optional[str] = Form(None),
    is_canonical: bool = Form(False),
    store: LocalFileStore = Depends(get_store),
    dsn: str = Depends(get_dsn),
):
    mapping_doc, canonical_flag = _parse_mapping_field(mapping)
    data = await file.read()
    try:
        result = ingest_dataset(
            data,
            file.filename or "",
            patient_id,
            patient_name or None,
            mapping=mapping_doc,
            is_canonical=is_canonical or canonical_flag,
            store=store,
            dsn=dsn,
        )
    except (WorkbookError, IngestError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return result.summary()


@router.get("/patients/{patient_id}/dataset")
def get_dataset(patient_id: str, store: LocalFileStore = Depends(get_store)):
    try:
        matrix = load_dataset(patient_id, store)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Not found")
    return {"rows": matrix_to_records(matrix)}


@router.put("/patients/{patient_id}/dataset")
def put_dataset(
    patient_id: str,
    body: DatasetRows,
    store: LocalFileStore = Depends(get_store),
    dsn: str = Depends(get_dsn),
):
    try:
        result = save_dataset_rows(patient_id, body.rows, store=store, dsn=dsn)
    except (WorkbookError, IngestError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return result.summary()


@router.post("/patients/{patient_id}/template")
def post_template(
    patient_id: str, body: TemplateRequest, store: LocalFileStore = Depends(get_store)
):
    names = body.metrics or DEFAULT_TEMPLATE_METRICS
    path = create_template(patient_id, body.patient_name, store=store, metric_names=names)
    return {"patient_id": patient_id, "file": path.name, "metrics": list(names)}
