"""
Unit tests for salary schedules and periods.

Covers:
  - Monthly due day clamps to the month's length (leap years included)
  - Weekly due weekday maps 1 = Monday .. 7 = Sunday
  - Week periods normalise to their Monday
  - Month keys parse and render as YYYY-MM
"""

from datetime import date

import pytest

from app.services.salary_schedule import (
    MonthlySchedule,
    MonthPeriod,
    WeeklySchedule,
    WeekPeriod,
    due_date,
    salary_description,
    salary_notes,
)


@pytest.mark.parametrize(
    "due_day,year,month,expected",
    [
        (31, 2026, 2, date(2026, 2, 28)),
        (31, 2028, 2, date(2028, 2, 29)),
        (30, 2026, 2, date(2026, 2, 28)),
        (31, 2026, 4, date(2026, 4, 30)),
        (31, 2026, 1, date(2026, 1, 31)),
        (15, 2026, 6, date(2026, 6, 15)),
        (1, 2026, 12, date(2026, 12, 1)),
    ],
)
def test_monthly_due_day_is_clamped(due_day, year, month, expected):
    assert due_date(MonthlySchedule(due_day), MonthPeriod(year, month)) == expected


def test_weekly_due_weekday_maps_to_dates_in_the_week():
    week = WeekPeriod(date(2026, 10, 19))  # a Monday
    assert due_date(WeeklySchedule(1), week) == date(2026, 10, 19)
    assert due_date(WeeklySchedule(5), week) == date(2026, 10, 23)
    assert due_date(WeeklySchedule(7), week) == date(2026, 10, 25)


def test_week_period_normalises_to_monday():
    assert WeekPeriod(date(2026, 10, 22)).week_start == date(2026, 10, 19)
    assert WeekPeriod(date(2026, 10, 25)).week_start == date(2026, 10, 19)
    assert WeekPeriod.containing(date(2026, 10, 26)).key == "2026-10-26"
    assert WeekPeriod(date(2026, 10, 22)) == WeekPeriod(date(2026, 10, 19))


def test_week_period_bounds():
    week = WeekPeriod(date(2026, 12, 30))
    assert week.start == date(2026, 12, 28)
    assert week.end == date(2027, 1, 3)


def test_month_period_parse_and_bounds():
    period = MonthPeriod.parse("2028-02")
    assert period.key == "2028-02"
    assert period.start == date(2028, 2, 1)
    assert period.end == date(2028, 2, 29)
    assert MonthPeriod.containing(date(2026, 10, 19)) == MonthPeriod(2026, 10)


@pytest.mark.parametrize("key", ["2026-13", "2026", "abcd-ef", ""])
def test_month_period_rejects_bad_keys(key):
    with pytest.raises(ValueError):
        MonthPeriod.parse(key)


def test_mismatched_schedule_and_period_is_rejected():
    with pytest.raises(ValueError):
        due_date(MonthlySchedule(5), WeekPeriod(date(2026, 10, 19)))
    with pytest.raises(ValueError):
        due_date(WeeklySchedule(2), MonthPeriod(2026, 10))


def test_description_and_notes_carry_the_period_key():
    month = MonthPeriod(2026, 10)
    week = WeekPeriod(date(2026, 10, 19))
    assert salary_description("Giorgi", month) == "Salary - Giorgi (2026-10)"
    assert salary_notes("owner-1", month) == "salary_owner_id=owner-1;salary_month=2026-10"
    assert salary_notes("owner-1", week) == "salary_owner_id=owner-1;salary_week_start=2026-10-19"
