from datetime import date, datetime

import pytest

from app.onco_etl.dates import from_serial, isoformat, normalize_date, to_serial


def test_serial_45000_is_march_15_2023():
    assert normalize_date(45000) == datetime(2023, 3, 15)
    assert from_serial(25569) == datetime(1970, 1, 1)


def test_fractional_serial_keeps_time_of_day():
    assert normalize_date(45000.5) == datetime(2023, 3, 15, 12, 0)


@pytest.mark.parametrize("serial", [1, 25569, 43831.5, 45000, 60000])
def test_serial_round_trip(serial):
    assert to_serial(normalize_date(serial)) == pytest.approx(serial)


def test_strings_and_date_objects():
    assert normalize_date("2024-03-01") == datetime(2024, 3, 1)
    assert normalize_date("2024/3/1 08:30") == datetime(2024, 3, 1, 8, 30)
    assert normalize_date(date(2024, 3, 1)) == datetime(2024, 3, 1)
    assert normalize_date(datetime(2024, 3, 1, 9)) == datetime(2024, 3, 1, 9)


def test_aware_values_become_naive_utc():
    assert normalize_date("2024-03-01T08:00:00+08:00") == datetime(2024, 3, 1, 0, 0)


@pytest.mark.parametrize("value", [None, "", "   ", "nan", "NaN", "not a date", float("nan"), float("inf"), True])
def test_unusable_cells_are_none(value):
    assert normalize_date(value) is None


def test_isoformat():
    assert isoformat(datetime(2024, 3, 1)) == "2024-03-01T00:00:00"


def test_partial_strings_do_not_depend_on_today():
    assert normalize_date("2024-03") == datetime(2024, 3, 1)
    assert normalize_date("March 2024") == datetime(2024, 3, 1)


@pytest.mark.parametrize("value", ["Mar 5", "08:30", "3/5"])
def test_strings_without_year_are_rejected(value):
    assert normalize_date(value) is None
