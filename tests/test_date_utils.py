from datetime import datetime

import pytest

from utils.date_utils import resolve_date_range


def test_bare_dates_cover_whole_days():
    start, end = resolve_date_range("2024-03-01", "2024-03-02")
    assert start == datetime(2024, 3, 1)
    assert end == datetime(2024, 3, 2, 23, 59, 59, 999999)


def test_times_are_kept():
    start, end = resolve_date_range("2024-03-01 08:30", "2024-03-01 17:00:15")
    assert start == datetime(2024, 3, 1, 8, 30)
    assert end == datetime(2024, 3, 1, 17, 0, 15)


def test_predefined_range_wins():
    now = datetime(2024, 3, 31, 12, 0)
    assert resolve_date_range("2020-01-01", None, "last7days", now=now) == (datetime(2024, 3, 24, 12, 0), None)


@pytest.mark.parametrize("args", [
    ("yesterday", None, None),
    ("2024-03-02", "2024-03-01", None),
    (None, None, "lastyear"),
])
def test_bad_windows(args):
    with pytest.raises(ValueError):
        resolve_date_range(*args)


def test_open_window():
    assert resolve_date_range(None, None) == (None, None)
