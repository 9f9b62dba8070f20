import os
import tempfile
from collections import namedtuple
from contextlib import contextmanager

import pytest

# app.api.main configures file logging at import time
os.environ.setdefault("ONC_LOG_DIR", tempfile.mkdtemp(prefix="onco-logs-"))

from app.onco_etl.schema import canonical_header_block  # noqa: E402

Col = namedtuple("Col", "name")

OBS_COLS = [
    "patient_id",
    "effective_datetime",
    "category",
    "code",
    "code_display",
    "status",
    "value_quantity",
    "value_string",
]


def data_row(date, phase=None, cycle=None, scheme=None, event=None, *values):
    return [date, phase, cycle, None, scheme, event, None, *values]


def canonical(metric_names, rows, patient_name="张三", units=None):
    return canonical_header_block(metric_names, patient_name, units) + [list(r) for r in rows]


class FakeDB:
    """In-memory clinical.observation table behind Conn/Cur doubles."""

    def __init__(self):
        self.rows = []
        self.statements = []
        self.commits = 0


class Cur:
    def __init__(self, db):
        self.db = db
        self.description = None
        self._result = []

    def execute(self, q, p=None):
        verb = q.strip().split()[0].upper()
        self.db.statements.append(verb)
        if verb == "DELETE":
            self.db.rows = [r for r in self.db.rows if r["patient_id"] != p[0]]
        elif verb == "SELECT" and not p:
            self._result = [(1,)]
        elif verb == "SELECT":
            rows = [r for r in self.db.rows if r["patient_id"] == p[0]]
            if len(p) > 1:
                rows = [r for r in rows if r["code"] == p[1]]
            self._result = [tuple(r[c] for c in OBS_COLS) for r in rows]
            self.description = [Col(c) for c in OBS_COLS]

    def executemany(self, q, rows):
        self.db.statements.append("INSERT")
        self.db.rows.extend(dict(r) for r in rows)

    def fetchall(self):
        return self._result

    def fetchone(self):
        return self._result[0] if self._result else None

    def __enter__(self):
        return self

    def __exit__(self, a, b, c):
        pass


class Conn:
    def __init__(self, db):
        self.db = db

    def cursor(self):
        return Cur(self.db)

    @contextmanager
    def transaction(self):
        snapshot = list(self.db.rows)
        try:
            yield
        except Exception:
            self.db.rows = snapshot
            raise
        self.db.commits += 1

    def __enter__(self):
        return self

    def __exit__(self, a, b, c):
        pass


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDB()
    monkeypatch.setattr("app.onco_etl.observation_store.pg", lambda *a, **k: Conn(db))
    return db
