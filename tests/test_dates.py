"""
Date window tests: presets, custom ranges, clamping and provider timestamps.
"""
from datetime import date, datetime

import pytest

from trackprofit.errors import InvalidInput
from trackprofit.utils.dates import DateWindow, parse_day, parse_timestamp, resolve_preset, resolve_window

TODAY = date(2024, 6, 15)


@pytest.mark.parametrize("preset,start,end", [
    ("today", date(2024, 6, 15), date(2024, 6, 15)),
    ("yesterday", date(2024, 6, 14), date(2024, 6, 14)),
    ("last_7_days", date(2024, 6, 9), date(2024, 6, 15)),
    ("last_30_days", date(2024, 5, 17), date(2024, 6, 15)),
    ("this_month", date(2024, 6, 1), date(2024, 6, 15)),
    ("last_month", date(2024, 5, 1), date(2024, 5, 31)),
    ("last_3_months", date(2024, 3, 15), date(2024, 6, 15)),
    ("this_year", date(2024, 1, 1), date(2024, 6, 15)),
    ("last_year", date(2023, 1, 1), date(2023, 12, 31)),
])
def test_presets(preset, start, end):
    assert resolve_preset(preset, TODAY) == DateWindow(start, end)


def test_last_month_in_january():
    window = resolve_preset("last_month", date(2024, 1, 10))
    assert window == DateWindow(date(2023, 12, 1), date(2023, 12, 31))


def test_seven_day_window_has_seven_days():
    window = resolve_preset("last_7_days", TODAY)
    assert window.days == 7
    assert len(list(window.iter_days())) == 7


def test_unknown_preset():
    with pytest.raises(InvalidInput) as exc:
        resolve_window(preset="fortnight", today=TODAY)
    assert exc.value.field == "preset"


def test_default_preset_is_last_30_days():
    assert resolve_window(today=TODAY).days == 30


def test_custom_window():
    window = resolve_window(start="2024-06-01", end="2024-06-10", today=TODAY)
    assert window == DateWindow(date(2024, 6, 1), date(2024, 6, 10))


def test_explicit_dates_win_over_preset():
    window = resolve_window(preset="today", start="2024-06-01", end="2024-06-02", today=TODAY)
    assert window.start == date(2024, 6, 1)


@pytest.mark.parametrize("start,end,field", [
    ("2024-06-10", "2024-06-01", "end"),
    ("2024-06-01", "2024-07-01", "end"),
    ("June first", "2024-06-10", "start"),
    (None, "2024-06-10", "start"),
    ("2024-06-01", None, "end"),
])
def test_custom_window_validation(start, end, field):
    with pytest.raises(InvalidInput) as exc:
        resolve_window(start=start, end=end, today=TODAY)
    assert exc.value.field == field


@pytest.mark.parametrize("value,expected", [
    ("2024-06-10T23:00:00-05:00", date(2024, 6, 11)),
    ("2024-06-11T01:00:00+03:00", date(2024, 6, 10)),
    ("2024-06-10T23:00:00", date(2024, 6, 10)),
    ("2024-06-10", date(2024, 6, 10)),
])
def test_window_edges_use_utc_day(value, expected):
    assert parse_day(value, "start") == expected


def test_offset_window_edges():
    window = resolve_window(start="2024-06-01T22:00:00-04:00", end="2024-06-10T23:00:00-05:00", today=TODAY)
    assert window == DateWindow(date(2024, 6, 2), date(2024, 6, 11))


def test_custom_preset_requires_dates():
    with pytest.raises(InvalidInput):
        resolve_window(preset="custom", today=TODAY)


def test_history_is_clamped():
    window = resolve_window(start="2010-01-01", end="2024-06-01", max_months=37, today=TODAY)
    assert window.start == date(2021, 5, 15)
    assert window.end == date(2024, 6, 1)


def test_window_bounds_are_inclusive():
    window = DateWindow(date(2024, 6, 1), date(2024, 6, 1))
    assert window.contains(datetime(2024, 6, 1, 0, 0))
    assert window.contains(datetime(2024, 6, 1, 23, 59, 59))
    assert not window.contains(datetime(2024, 6, 2, 0, 0))
    assert not window.contains(None)


class TestParseTimestamp:

    def test_offset_is_converted_to_utc(self):
        assert parse_timestamp("2024-06-01T02:00:00+02:00") == datetime(2024, 6, 1, 0, 0)

    def test_compact_date(self):
        assert parse_timestamp("20240601") == datetime(2024, 6, 1)

    def test_naive_passthrough(self):
        assert parse_timestamp("2024-06-01 10:30:00") == datetime(2024, 6, 1, 10, 30)

    @pytest.mark.parametrize("value", [None, "", "  ", "not a date"])
    def test_blank_or_garbage(self, value):
        assert parse_timestamp(value) is None
