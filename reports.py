"""Admin reports and employee status texts.

Admins are excluded from every attendance statistic. Admin identity is looked
up on each call, so a freshly promoted admin disappears from the next report.
"""
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

import config
from event_gate import is_recurring_home_office_day
from leave_balance import holiday_balance, is_anniversary_today, vacation_balance, years_of_service
from models import (
    ABSENCE_EVENT_TYPES,
    IN_OFFICE_STATUSES,
    PRESENT_STATUSES,
    AttendanceCheckIn,
    CheckInStatus,
    Employee,
    Event,
    EventSubtype,
    EventType,
)
from timeutils import format_date, work_hours_for_today

logger = logging.getLogger(__name__)


def _bullets(names: Iterable[str]) -> str:
    return "\n".join(f"   • {name}" for name in names)


def _percent(part: int, whole: int) -> int:
    return int(part * 100 / whole + 0.5) if whole else 0


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


async def reportable_employees(ctx) -> List[Employee]:
    """Active employees minus anyone whose email belongs to an admin."""
    admin_emails = await ctx.store.get_admin_emails()
    employees = await ctx.store.list_active_employees()
    return [e for e in employees if e.email.lower() not in admin_emails]


def _absence_by_employee(events: Iterable[Event], employee_ids: Set[int], day: date) -> Dict[int, EventType]:
    """Today's absence type per employee; global holidays apply to everyone."""
    absences = {}
    for event in events:
        if not event.moderated or not event.covers(day) or event.type not in ABSENCE_EVENT_TYPES:
            continue
        targets = employee_ids if event.is_global else {event.employee_id} & employee_ids
        for employee_id in targets:
            # Vacation and sick leave take precedence over a home office entry on the same day.
            current = absences.get(employee_id)
            if current is None or current == EventType.HOME_OFFICE:
                absences[employee_id] = event.type
    return absences


async def _day_absences(ctx, employees: List[Employee], day: date) -> Dict[int, EventType]:
    events = await ctx.store.list_events_overlapping(day, day, types=ABSENCE_EVENT_TYPES)
    absences = _absence_by_employee(events, {e.id for e in employees}, day)
    for employee in employees:
        if employee.id not in absences and is_recurring_home_office_day(employee, day):
            absences[employee.id] = EventType.HOME_OFFICE
    return absences


async def build_morning_report(ctx) -> str:
    today = ctx.clock.today()
    employees = await reportable_employees(ctx)
    absences = await _day_absences(ctx, employees, today)

    groups = {event_type: [] for event_type in ABSENCE_EVENT_TYPES}
    for employee in employees:
        if employee.id in absences:
            groups[absences[employee.id]].append(employee.name)
    expected = len(employees) - len(absences)

    message = f"📅 Daily Report - {format_date(today)}\n\n"
    message += f"Expected in office: {_plural(expected, 'employee')}\n"
    sections = [
        (EventType.HOME_OFFICE, "🏠 Home office"),
        (EventType.VACATION, "🏖 On vacation"),
        (EventType.SICK_DAY, "🤒 Sick"),
        (EventType.HOLIDAY, "🎉 Holiday"),
    ]
    for event_type, title in sections:
        names = groups[event_type]
        if names:
            message += f"\n{title}: {len(names)}\n{_bullets(names)}\n"
    message += f"\nTotal team: {len(employees)}"
    return message


async def _flag_lines(ctx, flags: List[Event], subtype: EventSubtype, names: Dict[int, str], day: date) -> List[str]:
    lines = []
    for event in flags:
        if event.subtype != subtype or event.employee_id not in names:
            continue
        record = await ctx.store.get_checkin(event.employee_id, day)
        if subtype == EventSubtype.LATE_ARRIVAL:
            at_time = record.actual_arrival_time if record and record.actual_arrival_time else "not confirmed"
        else:
            at_time = record.actual_departure_time if record and record.actual_departure_time else "unknown"
        lines.append(f"{names[event.employee_id]} ({at_time})")
    return lines


async def build_end_of_day_report(ctx) -> str:
    today = ctx.clock.today()
    employees = await reportable_employees(ctx)
    names = {e.id: e.name for e in employees}
    checkins = [c for c in await ctx.store.list_checkins(today) if c.employee_id in names]
    flags = [f for f in await ctx.store.list_flag_events(today) if f.employee_id in names]

    present = sum(1 for c in checkins if c.status in PRESENT_STATUSES)
    missed = [names[c.employee_id] for c in checkins if c.status == CheckInStatus.MISSED]
    late = await _flag_lines(ctx, flags, EventSubtype.LATE_ARRIVAL, names, today)
    early = await _flag_lines(ctx, flags, EventSubtype.LEFT_EARLY, names, today)

    message = f"📊 End of Day Report - {format_date(today)}\n\n"
    message += f"✅ Present: {present}/{len(checkins)}"
    if checkins:
        message += f" ({_percent(present, len(checkins))}%)"
    message += "\n"
    if late:
        message += f"⚠️ Late arrivals: {len(late)}\n{_bullets(late)}\n"
    if early:
        message += f"⏰ Early leaves: {len(early)}\n{_bullets(early)}\n"
    if missed:
        message += f"❌ Missed check-ins: {len(missed)}\n{_bullets(missed)}\n"
    message += f"\nEvents created: {len(flags)}"
    return message


def previous_week(today: date) -> Tuple[date, date]:
    """Monday through Sunday of the week before the one containing ``today``."""
    monday = today - timedelta(days=today.weekday() + 7)
    return monday, monday + timedelta(days=6)


def _days_within(event: Event, start: date, end: date) -> int:
    first = max(event.start_date, start)
    last = min(event.last_day, end)
    return (last - first).days + 1 if first <= last else 0


async def build_weekly_report(ctx, today: Optional[date] = None) -> str:
    week_start, week_end = previous_week(today or ctx.clock.today())
    employees = await reportable_employees(ctx)
    ids = {e.id for e in employees}

    checkins = [c for c in await ctx.store.list_checkins(week_start, week_end) if c.employee_id in ids]
    present = sum(1 for c in checkins if c.status in PRESENT_STATUSES)
    late = sum(
        1 for f in await ctx.store.list_flag_events(week_start, week_end)
        if f.employee_id in ids and f.subtype == EventSubtype.LATE_ARRIVAL
    )
    events = await ctx.store.list_events_overlapping(
        week_start, week_end, types=[EventType.HOME_OFFICE, EventType.VACATION, EventType.SICK_DAY]
    )
    day_counts = {EventType.HOME_OFFICE: 0, EventType.VACATION: 0, EventType.SICK_DAY: 0}
    for event in events:
        if event.employee_id in ids:
            day_counts[event.type] += _days_within(event, week_start, week_end)

    message = "📊 Weekly Report\n"
    message += f"{format_date(week_start)} - {format_date(week_end)}\n\n"
    message += "📈 Attendance:\n"
    message += f"   Total check-ins: {len(checkins)}\n"
    message += f"   Attendance rate: {_percent(present, len(checkins))}%\n"
    message += f"   Late arrivals: {late}\n\n"
    message += "📅 Events:\n"
    message += f"   Home office days: {day_counts[EventType.HOME_OFFICE]}\n"
    message += f"   Vacation days: {day_counts[EventType.VACATION]}\n"
    message += f"   Sick days: {day_counts[EventType.SICK_DAY]}"
    return message


async def build_team_status(ctx) -> str:
    today = ctx.clock.today()
    employees = await reportable_employees(ctx)
    absences = await _day_absences(ctx, employees, today)
    records: Dict[int, AttendanceCheckIn] = {c.employee_id: c for c in await ctx.store.list_checkins(today)}

    in_office, left, home_office, on_vacation, sick, holiday, missed, not_arrived = ([] for _ in range(8))
    for employee in employees:
        absence = absences.get(employee.id)
        if absence == EventType.VACATION:
            on_vacation.append(employee.name)
        elif absence == EventType.SICK_DAY:
            sick.append(employee.name)
        elif absence == EventType.HOLIDAY:
            holiday.append(employee.name)
        elif absence == EventType.HOME_OFFICE:
            home_office.append(employee.name)
        else:
            record = records.get(employee.id)
            if record and record.status in IN_OFFICE_STATUSES:
                in_office.append(f"{employee.name} ({record.actual_arrival_time})")
            elif record and record.status == CheckInStatus.LEFT:
                left.append(f"{employee.name} ({record.actual_arrival_time} - {record.actual_departure_time})")
            elif record and record.status == CheckInStatus.MISSED:
                missed.append(employee.name)
            elif not employee.exempt_from_tracking:
                not_arrived.append(employee.name)

    sections = [
        ("🏢 In Office", in_office),
        ("👋 Left", left),
        ("🏠 Home Office", home_office),
        ("🏖 On Vacation", on_vacation),
        ("🤒 Sick", sick),
        ("🎉 Holiday", holiday),
        ("❌ Missed", missed),
        ("⏳ Not Arrived", not_arrived),
    ]
    message = f"📊 Team Status - {format_date(today)}\n"
    for title, names in sections:
        message += f"\n{title}: {len(names)}\n"
        if names:
            message += _bullets(names) + "\n"
    return message.rstrip()


def build_missed_alert(names: List[str], at_time: str) -> str:
    return f"❌ Missed Check-ins (as of {at_time})\n\n{_bullets(names)}"


def anniversary_messages(employee: Employee, today: date) -> Optional[Tuple[str, str]]:
    """(employee text, admin text) on a work anniversary; None on any other day or in the first year."""
    if not is_anniversary_today(employee.start_date, today):
        return None
    years = years_of_service(employee.start_date, today)
    if years < 1:
        return None
    employee_text = (
        f"🎉 Happy Work Anniversary!\n\n"
        f"Today marks {_plural(years, 'year')} with the company!\n\n"
        f"🏖 Your vacation balance has been reset to {employee.vacation_days_per_year} days\n"
        f"🎉 Your holiday balance has been reset to {employee.holiday_days_per_year} days\n\n"
        f"Thank you for your dedication and hard work! 🌟\n\n"
        f"Use /balance to see your updated balance."
    )
    admin_text = (
        f"🎂 Work Anniversary Alert\n\n"
        f"{employee.name} celebrates {_plural(years, 'year')} with the company today!\n\n"
        f"Their vacation and holiday balances have been automatically reset."
    )
    return employee_text, admin_text


async def build_balance_text(ctx, employee: Employee) -> str:
    today = ctx.clock.today()
    events = await ctx.store.list_events_for_employee(employee.id, types=[EventType.VACATION, EventType.HOLIDAY])
    vacation = vacation_balance(employee, events, today)
    holiday = holiday_balance(employee, events, today)
    return (
        f"📊 Your Balance\n"
        f"Period: {format_date(vacation.period_start)} - {format_date(vacation.period_end)}\n\n"
        f"🏖 Vacation Days:\n"
        f"   Used: {vacation.days_taken} / {employee.vacation_days_per_year}\n"
        f"   Remaining: {vacation.days_left}\n\n"
        f"🎉 Holiday Days:\n"
        f"   Used: {holiday.days_taken} / {employee.holiday_days_per_year}\n"
        f"   Remaining: {holiday.days_left}"
    )


async def build_my_status_text(ctx, employee: Employee) -> str:
    today = ctx.clock.today()
    record = await ctx.store.get_checkin(employee.id, today)

    message = f"📊 Your Status - {format_date(today)}\n\n"
    message += f"👤 Name: {employee.name}\n"
    message += f"📧 Email: {employee.email}\n\n"
    message += "⏰ Schedule:\n"
    message += f"   Arrival window: {employee.arrival_window_start} - {employee.arrival_window_end}\n"
    message += f"   Work hours today: {work_hours_for_today(employee, ctx.clock)}h\n"
    if employee.half_day_on_fridays:
        message += f"   Friday work hours: {employee.work_hours_on_friday}h\n"
    if employee.recurring_home_office_days:
        days = ", ".join(config.DAYS_OF_WEEK[d] for d in sorted(employee.recurring_home_office_days))
        message += f"   Recurring home office: {days}\n"
    if employee.exempt_from_tracking:
        message += "   Attendance tracking: exempt\n"

    if record:
        message += "\n✅ Today's Check-in:\n"
        message += f"   Status: {record.status.value}\n"
        if record.actual_arrival_time:
            message += f"   Arrived: {record.actual_arrival_time}\n"
        if record.actual_departure_time:
            suffix = " (auto)" if record.auto_checked_out else ""
            message += f"   Left: {record.actual_departure_time}{suffix}\n"
    else:
        message += "\n⏳ No check-in yet today"
    return message.rstrip()
