import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from dateutil import parser as dtparser

# Spreadsheet serial 25569 is 1970-01-01 (epoch 1899-12-30).
UNIX_EPOCH = datetime(1970, 1, 1)
UNIX_EPOCH_SERIAL = 25569
SECONDS_PER_DAY = 86400

# missing day/month fall back to the 1st; two defaults differing only in year
# expose strings that carry no year at all
PARSE_DEFAULT = datetime(1970, 1, 1)
PARSE_DEFAULT_ALT = datetime(1971, 1, 1)


def from_serial(value: float) -> datetime:
    seconds = round((value - UNIX_EPOCH_SERIAL) * SECONDS_PER_DAY)
    return UNIX_EPOCH + timedelta(seconds=seconds)


def to_serial(dt: datetime) -> float:
    """Inverse of from_serial: days since 1899-12-30 as a float."""
    if isinstance(dt, datetime):
        delta = _naive(dt) - UNIX_EPOCH
    else:
        delta = datetime(dt.year, dt.month, dt.day) - UNIX_EPOCH
    return UNIX_EPOCH_SERIAL + delta.total_seconds() / SECONDS_PER_DAY


def _naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_date(value: Any) -> Optional[datetime]:
    """Turn a date cell (serial number, date object or string) into a naive datetime.

    Returns None when the cell carries no usable date; callers skip the row.
    Strings without a year are rejected; a missing day or month becomes 1.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        try:
            return from_serial(value)
        except OverflowError:
            return None
    if isinstance(value, str):
        s = value.strip()
        if not s or s.lower() == "nan":
            return None
        try:
            parsed = dtparser.parse(s, default=PARSE_DEFAULT)
            if dtparser.parse(s, default=PARSE_DEFAULT_ALT).year != parsed.year:
                return None
            return _naive(parsed)
        except (ValueError, OverflowError):
            return None
    return None


def isoformat(dt: datetime) -> str:
    return _naive(dt).isoformat()
