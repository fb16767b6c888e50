from datetime import datetime, timedelta, timezone

import pytest

from tillcore.time_utils import parse_iso_datetime, to_utc_z, utc_day_bounds


@pytest.mark.parametrize("value,expected", [
    ("2026-10-18T09:30", datetime(2026, 10, 18, 9, 30)),
    ("2026-10-18T09:30:00Z", datetime(2026, 10, 18, 9, 30)),
    ("2026-10-18T10:30:00+01:00", datetime(2026, 10, 18, 9, 30)),
    ("2026-10-18", datetime(2026, 10, 18)),
    ("", None),
    (None, None),
])
def test_parse_iso_datetime(value, expected):
    assert parse_iso_datetime(value) == expected


def test_bare_end_date_covers_the_day():
    assert parse_iso_datetime("2026-10-18", end_of_day=True) == datetime(2026, 10, 19)


def test_parse_rejects_garbage():
    with pytest.raises(ValueError):
        parse_iso_datetime("yesterday")


def test_day_bounds():
    start, end = utc_day_bounds(datetime(2026, 10, 18, 23, 59))
    assert start == datetime(2026, 10, 18)
    assert end - start == timedelta(days=1)


def test_to_utc_z():
    assert to_utc_z(datetime(2026, 10, 18, 9, 30, 15, 999)) == "2026-10-18T09:30:15Z"
    aware = datetime(2026, 10, 18, 10, 30, tzinfo=timezone(timedelta(hours=1)))
    assert to_utc_z(aware) == "2026-10-18T09:30:00Z"
    assert to_utc_z(None) is None
