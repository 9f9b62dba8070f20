import json
import sys

import pytest
from conftest import canonical, data_row

from app.onco_etl.storage import LocalFileStore
from app.onco_etl.workbook import write_matrix
from jobs import ingest_workbook
from jobs.resync_observations import resync

METRICS = ["Weight", "CEA", "MRD", "CA125", "AFP"]


def workbook():
    rows = [data_row(45300, "化疗", "C1", "XELOX", None, 60, "3.1")]
    return write_matrix(canonical(METRICS, rows, units=["KG", "< 5", None, "< 35", "< 20"]))


def test_resync_rebuilds_from_files(tmp_path, fake_db):
    store = LocalFileStore(str(tmp_path))
    store.write("p1.xlsx", workbook())
    synced, failed = resync(["p1", "ghost"], store, "postgresql://test")
    assert (synced, failed) == (1, 1)
    assert sorted(r["code"] for r in fake_db.rows) == ["CEA", "WEIGHT"]


def test_ingest_job_dry_run_writes_nothing(tmp_path, monkeypatch, capsys):
    src = tmp_path / "export.json"
    src.write_text(json.dumps([{"Date": "2024-01-01", "CEA": "3.2"}]), encoding="utf-8")
    mapping = tmp_path / "mapping.json"
    mapping.write_text(json.dumps({"date_col": "Date", "metrics": {"CEA": "CEA"}}), encoding="utf-8")
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "ingest_workbook.py",
            "--data-dir", str(tmp_path / "data"),
            "--patient-id", "p1",
            "--input", str(src),
            "--mapping", str(mapping),
            "--dry-run",
        ],
    )
    ingest_workbook.main()
    assert "observations=1 (dry run)" in capsys.readouterr().out
    assert not (tmp_path / "data").exists()


def test_ingest_job_exits_on_non_canonical(tmp_path, monkeypatch):
    src = tmp_path / "export.json"
    src.write_text(json.dumps([{"Date": "2024-01-01", "CEA": "3.2"}]), encoding="utf-8")
    monkeypatch.setattr(
        sys, "argv", ["ingest_workbook.py", "--data-dir", str(tmp_path), "--patient-id", "p1", "--input", str(src)]
    )
    with pytest.raises(SystemExit) as e:
        ingest_workbook.main()
    assert e.value.code == 1
