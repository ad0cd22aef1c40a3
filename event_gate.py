from datetime import date
from typing import Iterable, Optional

from models import ABSENCE_EVENT_TYPES, Employee, EventType
from timeutils import weekday_number


async def has_event_for_date(store, employee_id: int, day: date, types: Optional[Iterable[EventType]] = None) -> bool:
    """True when a moderated event of one of ``types`` covers ``day``.

    Global events (company holidays) apply to every employee.
    """
    events = await store.find_events_covering(employee_id, day, types=list(types) if types else None, include_global=True)
    return any(event.moderated for event in events)


def is_recurring_home_office_day(employee: Employee, day: date) -> bool:
    return weekday_number(day) in employee.recurring_home_office_days


async def is_tracking_suppressed(ctx, employee: Employee, day: date) -> bool:
    """Whether attendance prompts must be skipped for the employee on ``day``."""
    if employee.exempt_from_tracking:
        return True
    if is_recurring_home_office_day(employee, day):
        return True
    return await has_event_for_date(ctx.store, employee.id, day, ABSENCE_EVENT_TYPES)
