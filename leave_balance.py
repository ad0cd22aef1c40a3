import calendar
from datetime import date, timedelta
from typing import Iterable, NamedTuple, Tuple

from models import Employee, Event, EventType


class LeaveBalance(NamedTuple):
    days_taken: int
    days_left: int
    period_start: date
    period_end: date


def _anniversary_in_year(start_date: date, year: int) -> date:
    # Feb 29 starters celebrate on Feb 28 in non-leap years.
    if start_date.month == 2 and start_date.day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return start_date.replace(year=year)


def current_period(start_date: date, today: date) -> Tuple[date, date]:
    """Anniversary-based entitlement period containing ``today``.

    Starts on the most recent anniversary of ``start_date`` on or before today
    and ends the day before the next one.
    """
    period_start = _anniversary_in_year(start_date, today.year)
    if today < period_start:
        period_start = _anniversary_in_year(start_date, today.year - 1)
    period_end = _anniversary_in_year(start_date, period_start.year + 1) - timedelta(days=1)
    return period_start, period_end


def inclusive_day_count(start: date, end: date = None) -> int:
    return ((end or start) - start).days + 1


def days_taken(events: Iterable[Event], start_date: date, event_type: EventType, today: date) -> int:
    """Days of moderated leave of one type inside the current period.

    Events are attributed to the period of their start date only, so a leave
    that crosses an anniversary counts fully against the earlier period.
    """
    period_start, period_end = current_period(start_date, today)
    return sum(
        inclusive_day_count(event.start_date, event.end_date)
        for event in events
        if event.moderated and event.type == event_type and period_start <= event.start_date <= period_end
    )


def balance(employee: Employee, events: Iterable[Event], event_type: EventType, today: date) -> LeaveBalance:
    if event_type == EventType.VACATION:
        allowance = employee.vacation_days_per_year
    elif event_type == EventType.HOLIDAY:
        allowance = employee.holiday_days_per_year
    else:
        raise ValueError(f"No yearly allowance for event type {event_type.value}")
    taken = days_taken(events, employee.start_date, event_type, today)
    period_start, period_end = current_period(employee.start_date, today)
    return LeaveBalance(taken, allowance - taken, period_start, period_end)


def vacation_balance(employee: Employee, events: Iterable[Event], today: date) -> LeaveBalance:
    return balance(employee, events, EventType.VACATION, today)


def holiday_balance(employee: Employee, events: Iterable[Event], today: date) -> LeaveBalance:
    return balance(employee, events, EventType.HOLIDAY, today)


def is_anniversary_today(start_date: date, today: date) -> bool:
    return _anniversary_in_year(start_date, today.year) == today


def years_of_service(start_date: date, today: date) -> int:
    years = today.year - start_date.year
    if today < _anniversary_in_year(start_date, today.year):
        years -= 1
    return years
