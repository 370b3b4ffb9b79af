"""
Unit tests for the calendar-day helpers.
"""
from datetime import date, datetime

from opsboard.services.dates import (
    add_weeks,
    any_date_overlap,
    count_weekdays,
    days_until,
    enumerate_days,
    enumerate_ymd,
    monday_of,
    parse_ymd,
    ranges_overlap,
    to_ymd,
)


def test_parse_ymd_accepts_dates_datetimes_and_iso_strings():
    assert parse_ymd(date(2025, 3, 1)) == date(2025, 3, 1)
    assert parse_ymd(datetime(2025, 3, 1, 18, 30)) == date(2025, 3, 1)
    assert parse_ymd("2025-03-01") == date(2025, 3, 1)
    assert parse_ymd("2025-03-01T09:00:00Z") == date(2025, 3, 1)


def test_parse_ymd_returns_none_for_blanks_and_garbage():
    assert parse_ymd(None) is None
    assert parse_ymd("") is None
    assert parse_ymd("   ") is None
    assert parse_ymd("not a date") is None
    assert to_ymd("nope") is None


def test_enumerate_days_is_inclusive():
    days = enumerate_days(date(2025, 6, 2), date(2025, 6, 4))
    assert days == [date(2025, 6, 2), date(2025, 6, 3), date(2025, 6, 4)]
    assert enumerate_ymd("2025-12-31", "2026-01-01") == ["2025-12-31", "2026-01-01"]


def test_enumerate_days_empty_when_reversed_or_missing():
    assert enumerate_days(date(2025, 6, 4), date(2025, 6, 2)) == []
    assert enumerate_days(None, date(2025, 6, 2)) == []
    assert enumerate_days("2025-06-02", None) == []


def test_count_weekdays_skips_weekends_and_bank_holidays():
    # Mon 2 June to Sun 8 June 2025
    assert count_weekdays("2025-06-02", "2025-06-08") == 5
    assert count_weekdays("2025-06-02", "2025-06-08", excluded=[date(2025, 6, 4)]) == 4
    assert count_weekdays("2025-06-07", "2025-06-08") == 0


def test_ranges_overlap_inclusive():
    assert ranges_overlap("2025-06-01", "2025-06-03", "2025-06-03", "2025-06-05")
    assert not ranges_overlap("2025-06-01", "2025-06-02", "2025-06-03", None)
    # Missing end means a single day
    assert ranges_overlap("2025-06-03", None, "2025-06-01", "2025-06-05")
    assert not ranges_overlap(None, None, "2025-06-01", "2025-06-05")


def test_any_date_overlap():
    assert any_date_overlap(["2025-06-01", date(2025, 6, 2)], ["2025-06-02"])
    assert not any_date_overlap(["2025-06-01"], ["2025-06-02", "2025-06-03"])
    assert not any_date_overlap([], ["2025-06-02"])


def test_add_weeks_and_monday_of():
    assert add_weeks(date(2025, 1, 1), 52) == date(2025, 12, 31)
    assert add_weeks(date(2025, 1, 1), None) is None
    assert add_weeks(None, 4) is None
    # Sunday belongs to the week that started on the Monday before it
    assert monday_of(date(2025, 6, 8)) == date(2025, 6, 2)
    assert monday_of("2025-06-02") == date(2025, 6, 2)


def test_days_until():
    today = date(2025, 6, 2)
    assert days_until("2025-06-10", today=today) == 8
    assert days_until(date(2025, 5, 31), today=today) == -2
    assert days_until(None, today=today) is None
