#!/usr/bin/env python3
"""
Ingest one spreadsheet export for a patient.

  python jobs/ingest_workbook.py --patient-id 7f3c... --patient-name 张三 --input export.xlsx
  python jobs/ingest_workbook.py --patient-id 7f3c... --input export.xlsx --mapping mapping.json
  python jobs/ingest_workbook.py --patient-id 7f3c... --input export.xlsx --analyze

Without --mapping, --analyze or --canonical the file must already be in the
canonical layout.
"""
import argparse
import json
import logging
import sys

from app.onco_etl.db import dsn_from_env
from app.onco_etl.ingest import (
    IngestError,
    analyze_upload,
    build_canonical,
    coerce_mapping,
    ingest_dataset,
    require_canonical_layout,
    upload_header_row,
)
from app.onco_etl.observations import extract_observations
from app.onco_etl.oracle import AnalysisError
from app.onco_etl.storage import LocalFileStore, data_dir_from_env
from app.onco_etl.workbook import WorkbookError, read_matrix


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--dsn", default=dsn_from_env())
    ap.add_argument("--data-dir", default=data_dir_from_env())
    ap.add_argument("--patient-id", required=True)
    ap.add_argument("--patient-name", default="")
    ap.add_argument("--input", required=True)
    ap.add_argument("--mapping", help="manual mapping JSON file")
    ap.add_argument("--analyze", action="store_true", help="ask the analysis service for a mapping")
    ap.add_argument("--canonical", action="store_true", help="treat input as canonical")
    ap.add_argument("--dry-run", action="store_true", help="print counts, write nothing")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    with open(args.input, "rb") as f:
        data = f.read()

    mapping = None
    is_canonical = args.canonical
    try:
        if args.mapping:
            with open(args.mapping, "r", encoding="utf-8") as f:
                mapping = json.load(f)
        elif args.analyze and not is_canonical:
            result = analyze_upload(data, args.input)
            is_canonical = result.is_canonical
            mapping = result.mapping
            if result.analysis:
                for w in result.analysis.warnings:
                    print(f"[warn] {w}", file=sys.stderr)

        if args.dry_run:
            raw = read_matrix(data, args.input)
            canonical, warnings = build_canonical(
                raw,
                coerce_mapping(mapping),
                args.patient_name or None,
                is_canonical,
                upload_header_row(raw, args.input),
            )
            require_canonical_layout(canonical)
            obs = extract_observations(canonical, args.patient_id)
            for w in warnings:
                print(f"[warn] {w}", file=sys.stderr)
            print(f"rows={len(canonical)} observations={len(obs)} (dry run)")
            return

        res = ingest_dataset(
            data,
            args.input,
            args.patient_id,
            args.patient_name or None,
            mapping=mapping,
            is_canonical=is_canonical,
            store=LocalFileStore(args.data_dir),
            dsn=args.dsn,
        )
    except (WorkbookError, IngestError, AnalysisError) as e:
        print(f"[error] {e}", file=sys.stderr)
        sys.exit(1)

    for w in res.warnings:
        print(f"[warn] {w}", file=sys.stderr)
    print(
        f"file={res.file_path} rows={res.data_rows} observations={len(res.observations)} "
        f"synced={res.observations_synced}"
    )
    if not res.observations_synced:
        sys.exit(2)


if __name__ == "__main__":
    main()
