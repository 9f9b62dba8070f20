from app.api.logging_setup import configure_logging
from app.api.middleware.reqlog import RequestLogMiddleware
import logging
from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from app.onco_etl.db import pg, dsn_from_env
from app.api.routers import ingest, timeline

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Oncology Ingestion API")


app.add_middleware(RequestLogMiddleware)

app.include_router(ingest.router)
app.include_router(timeline.router)


@app.get("/", include_in_schema=False)
def root():
    # send humans to docs
    return RedirectResponse(url="/docs")


@app.get("/health")
def health():
    # simple DB check
    try:
        with pg(dsn_from_env()) as conn, conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return {"ok": True}
    except Exception as e:
        return {"ok": False, "error": str(e)}
