import os
import logging
from logging.handlers import RotatingFileHandler


def log_dir_from_env(default: str | None = None) -> str:
    return os.environ.get("ONC_LOG_DIR", default or "./logs")


def _mk_handler(path):
    h = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    h.setFormatter(fmt)
    h.setLevel(logging.INFO)
    return h


def _attach(logger_name: str, tag: str, filename: str, outdir: str):
    logger = logging.getLogger(logger_name)
    if any(
        isinstance(h, RotatingFileHandler) and getattr(h, "_onc_tag", "") == tag
        for h in logger.handlers
    ):
        return
    h = _mk_handler(os.path.join(outdir, filename))
    h._onc_tag = tag
    logger.addHandler(h)
    logger.setLevel(logging.INFO)
    logger.propagate = True  # still print to console


def configure_logging(outdir: str | None = None):
    outdir = outdir or log_dir_from_env()
    os.makedirs(outdir, exist_ok=True)
    # onco.request -> requests logfile
    _attach("onco.request", "req", "onco-requests.log", outdir)
    # ingestion engine
    _attach("app.onco_etl", "etl", "onco-etl.log", outdir)
    # uvicorn + app errors -> general logfile
    _attach("uvicorn.error", "uvicorn", "onco-uvicorn.log", outdir)
    _attach("uvicorn.access", "access", "onco-access.log", outdir)
