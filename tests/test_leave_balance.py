from datetime import date

import pytest

from leave_balance import (
    current_period,
    days_taken,
    holiday_balance,
    is_anniversary_today,
    vacation_balance,
    years_of_service,
)
from models import Employee, Event, EventType

START = date(2024, 8, 1)


def _employee(**fields):
    fields.setdefault("vacation_days_per_year", 20)
    return Employee(id=1, name="Alice", email="alice@example.com", start_date=START, **fields)


def _event(event_id, start, end, event_type=EventType.VACATION, moderated=True):
    return Event(id=event_id, employee_id=1, type=event_type, start_date=start, end_date=end, moderated=moderated)


def test_period_rolls_over_on_the_anniversary():
    assert current_period(START, date(2025, 7, 31)) == (date(2024, 8, 1), date(2025, 7, 31))
    assert current_period(START, date(2025, 8, 1)) == (date(2025, 8, 1), date(2026, 7, 31))


def test_vacation_counts_only_in_the_period_it_started():
    events = [_event(1, date(2024, 8, 10), date(2024, 8, 14))]
    assert days_taken(events, START, EventType.VACATION, date(2025, 7, 31)) == 5
    assert days_taken(events, START, EventType.VACATION, date(2025, 8, 1)) == 0

    before = vacation_balance(_employee(), events, date(2025, 7, 31))
    assert (before.days_taken, before.days_left) == (5, 15)
    after = vacation_balance(_employee(), events, date(2025, 8, 1))
    assert (after.days_taken, after.days_left) == (0, 20)


def test_leave_crossing_the_anniversary_counts_fully_against_the_earlier_period():
    events = [_event(1, date(2025, 7, 30), date(2025, 8, 3))]
    assert days_taken(events, START, EventType.VACATION, date(2025, 7, 31)) == 5
    assert days_taken(events, START, EventType.VACATION, date(2025, 8, 5)) == 0


def test_unmoderated_and_other_types_are_ignored():
    events = [
        _event(1, date(2024, 9, 2), date(2024, 9, 3), moderated=False),
        _event(2, date(2024, 9, 4), date(2024, 9, 4), event_type=EventType.SICK_DAY),
        _event(3, date(2024, 9, 5), None, event_type=EventType.HOLIDAY),
    ]
    assert vacation_balance(_employee(), events, date(2024, 10, 1)).days_taken == 0
    holidays = holiday_balance(_employee(holiday_days_per_year=14), events, date(2024, 10, 1))
    assert (holidays.days_taken, holidays.days_left) == (1, 13)


def test_leap_day_start_uses_feb_28_in_common_years():
    leap_start = date(2024, 2, 29)
    assert current_period(leap_start, date(2025, 3, 1)) == (date(2025, 2, 28), date(2026, 2, 27))
    assert current_period(leap_start, date(2025, 2, 27)) == (date(2024, 2, 29), date(2025, 2, 27))
    assert is_anniversary_today(leap_start, date(2025, 2, 28))


@pytest.mark.parametrize("today, years", [
    (date(2025, 7, 31), 0),
    (date(2025, 8, 1), 1),
    (date(2027, 8, 2), 3),
])
def test_years_of_service(today, years):
    assert years_of_service(START, today) == years
