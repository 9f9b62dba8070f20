from typing import Iterable, Optional, Any
from .db import pg
from .observations import Observation

DELETE_SQL = "DELETE FROM clinical.observation WHERE patient_id = %s"

INSERT_SQL = """
INSERT INTO clinical.observation (
  patient_id, effective_datetime, category, code, code_display,
  status, value_quantity, value_string
) VALUES (
  %(patient_id)s, %(effective_datetime)s, %(category)s, %(code)s, %(code_display)s,
  %(status)s, %(value_quantity)s, %(value_string)s
)
"""

SELECT_SQL = """
SELECT patient_id, effective_datetime, category, code, code_display,
       status, value_quantity, value_string
FROM clinical.observation
WHERE patient_id = %s {code_filter}
ORDER BY effective_datetime, code
"""


def replace_observations(
    patient_id: str, observations: Iterable[Observation], dsn: Optional[str] = None
) -> int:
    """Clear the patient's observations and insert the new set in one transaction."""
    rows = [o.as_row() for o in observations]
    if any(r["patient_id"] != patient_id for r in rows):
        raise ValueError("observations belong to a different patient")
    with pg(dsn) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(DELETE_SQL, (patient_id,))
                if rows:
                    cur.executemany(INSERT_SQL, rows)
    return len(rows)


def fetch_observations(
    patient_id: str, dsn: Optional[str] = None, code: Optional[str] = None
) -> list[dict[str, Any]]:
    params: list[Any] = [patient_id]
    code_filter = ""
    if code:
        code_filter = "AND code = %s"
        params.append(code)
    with pg(dsn) as conn, conn.cursor() as cur:
        cur.execute(SELECT_SQL.format(code_filter=code_filter), params)
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, r)) for r in cur.fetchall()]
