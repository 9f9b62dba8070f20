#!/usr/bin/env python3
"""Rebuild observations from the stored canonical workbooks (the files are authoritative)."""
import argparse
import logging

import psycopg

from app.onco_etl.db import dsn_from_env
from app.onco_etl.ingest import load_dataset
from app.onco_etl.observation_store import replace_observations
from app.onco_etl.observations import extract_observations
from app.onco_etl.storage import LocalFileStore, data_dir_from_env
from app.onco_etl.workbook import WorkbookError

logger = logging.getLogger("jobs.resync_observations")


def resync(patient_ids, store, dsn):
    synced = failed = 0
    for pid in patient_ids:
        try:
            matrix = load_dataset(pid, store)
            n = replace_observations(pid, extract_observations(matrix, pid), dsn)
        except (FileNotFoundError, WorkbookError, psycopg.Error) as e:
            logger.error("resync failed patient=%s error=%s", pid, e)
            failed += 1
            continue
        logger.info("resynced patient=%s observations=%d", pid, n)
        synced += 1
    return synced, failed


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--dsn", default=dsn_from_env())
    ap.add_argument("--data-dir", default=data_dir_from_env())
    ap.add_argument("--patient-id", action="append", help="repeatable; default all stored files")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    store = LocalFileStore(args.data_dir)
    ids = args.patient_id or [name[: -len(".xlsx")] for name in store.names()]
    synced, failed = resync(ids, store, args.dsn)
    print(f"synced={synced} failed={failed}")


if __name__ == "__main__":
    main()
