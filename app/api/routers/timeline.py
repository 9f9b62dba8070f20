from typing import Optional

import psycopg
from fastapi import APIRouter, Depends, HTTPException

from app.onco_etl.ingest import patient_timeline
from app.onco_etl.observation_store import fetch_observations
from app.onco_etl.storage import LocalFileStore
from app.api.routers.ingest import get_dsn, get_store

router = APIRouter(tags=["timeline"])


@router.get("/patients/{patient_id}/timeline")
def get_timeline(patient_id: str, store: LocalFileStore = Depends(get_store)):
    try:
        timeline, series = patient_timeline(patient_id, store)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Not found")
    body = timeline.as_dict()
    body["metrics"] = {name: s.as_dict() for name, s in series.items()}
    return body


@router.get("/patients/{patient_id}/observations")
def get_observations(
    patient_id: str, code: Optional[str] = None, dsn: str = Depends(get_dsn)
):
    try:
        rows = fetch_observations(patient_id, dsn, code=code)
    except psycopg.Error as e:
        raise HTTPException(status_code=503, detail=f"observation store unavailable: {e}")
    return {"rows": rows, "count": len(rows)}
