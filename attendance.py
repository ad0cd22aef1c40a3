"""Per-employee, per-day check-in state machine.

Every transition is a conditional store update guarded by the set of states
it may start from, so duplicate scheduler ticks and concurrent chat actions
resolve to a single winner; the loser gets ``None`` back and performs no side
effects.
"""
import logging
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional

import config
from errors import InvalidTransitionError, NotFoundError, ValidationError
from event_gate import has_event_for_date, is_recurring_home_office_day
from keyboards import arrival_keyboard, departure_keyboard
from models import (
    ABSENCE_EVENT_TYPES,
    AWAITING_ARRIVAL_STATUSES,
    IN_OFFICE_STATUSES,
    PRESENT_STATUSES,
    AttendanceCheckIn,
    AttendanceKind,
    CheckInStatus,
    Employee,
    Event,
    EventSubtype,
    EventType,
)
from timeutils import (
    calculate_departure_time,
    combine,
    format_date,
    format_duration,
    is_late,
    parse_hhmm,
    to_minutes,
    work_hours_for_today,
)

logger = logging.getLogger(__name__)

CONFIRM_ARRIVAL_FROM = AWAITING_ARRIVAL_STATUSES + (CheckInStatus.MISSED,)
DEFER_ARRIVAL_FROM = AWAITING_ARRIVAL_STATUSES
INITIATE_DEPARTURE_FROM = (CheckInStatus.ARRIVED,)
CONFIRM_DEPARTURE_FROM = IN_OFFICE_STATUSES
DEFER_DEPARTURE_FROM = (CheckInStatus.WAITING_DEPARTURE,)
MARK_MISSED_FROM = AWAITING_ARRIVAL_STATUSES
# WAITING_DEPARTURE is included so an unanswered departure prompt is also closed after the buffer.
AUTO_CHECKOUT_FROM = IN_OFFICE_STATUSES


class ArrivalResult(NamedTuple):
    record: AttendanceCheckIn
    arrival_time: str
    expected_departure: str
    minutes_late: int = 0
    already_confirmed: bool = False

    @property
    def late(self) -> bool:
        return self.minutes_late > 0


class DepartureResult(NamedTuple):
    record: AttendanceCheckIn
    departure_time: str
    expected_departure: str
    minutes_early: int = 0

    @property
    def left_early(self) -> bool:
        return self.minutes_early > config.EARLY_LEAVE_THRESHOLD_MINUTES


class ManualAttendanceResult(NamedTuple):
    kind: AttendanceKind
    employee: Employee
    at_time: str
    arrival: Optional[ArrivalResult] = None
    departure: Optional[DepartureResult] = None


def _window(employee: Employee) -> str:
    return f"{employee.arrival_window_start}-{employee.arrival_window_end}"


def _expected_departure_at(record: AttendanceCheckIn, employee: Employee, clock) -> Optional[datetime]:
    if record.expected_departure_at:
        return record.expected_departure_at
    if not record.actual_arrival_time:
        return None
    return combine(record.date, record.actual_arrival_time) + timedelta(hours=work_hours_for_today(employee, clock))


async def _record_flag(ctx, employee: Employee, day: date, subtype: EventSubtype, notes: str, admin_text: Optional[str]) -> Optional[Event]:
    """Creates the day's late/early flag once; later callers find it and do nothing."""
    if await ctx.store.find_flag_event(employee.id, day, subtype):
        return None
    event = await ctx.store.create_event(
        employee.id, EventType.LATE_LEFT_EARLY, day,
        end_date=day, notes=notes, moderated=True, subtype=subtype,
    )
    if event is None:
        return None
    logger.info(f"{subtype.value} recorded for {employee.name} on {day.isoformat()}: {notes}")
    if admin_text:
        await ctx.notifier.send_to_admins(admin_text)
    return event


async def initiate_arrival(ctx, employee: Employee) -> Optional[AttendanceCheckIn]:
    """Opens today's record and asks the employee whether they are in the office."""
    if employee.telegram_id is None:
        return None
    today = ctx.clock.today()
    if employee.exempt_from_tracking or is_recurring_home_office_day(employee, today):
        return None
    if await has_event_for_date(ctx.store, employee.id, today, ABSENCE_EVENT_TYPES):
        return None
    record = await ctx.store.create_checkin(
        employee.id, today, CheckInStatus.WAITING_ARRIVAL, asked_arrival_at=ctx.clock.now()
    )
    if record is None:
        return None
    await ctx.notifier.send_to_user(
        employee.telegram_id,
        f"Good morning, {employee.name}! 👋\n\nDid you arrive at the office?",
        reply_markup=arrival_keyboard(),
    )
    return record


async def confirm_arrival(ctx, record: AttendanceCheckIn, employee: Employee, at_time: str, notify_admins: bool = True) -> ArrivalResult:
    hours = work_hours_for_today(employee, ctx.clock)
    if record.status in PRESENT_STATUSES:
        return ArrivalResult(
            record, record.actual_arrival_time,
            calculate_departure_time(record.actual_arrival_time, hours), already_confirmed=True,
        )
    expected_departure = calculate_departure_time(at_time, hours)
    updated = await ctx.store.update_checkin(
        record.id,
        only_if_status=CONFIRM_ARRIVAL_FROM,
        status=CheckInStatus.ARRIVED,
        actual_arrival_time=at_time,
        confirmed_arrival_at=ctx.clock.now(),
        expected_departure_at=combine(record.date, at_time) + timedelta(hours=hours),
    )
    if updated is None:
        current = await ctx.store.get_checkin(employee.id, record.date)
        if current and current.status in PRESENT_STATUSES:
            return ArrivalResult(
                current, current.actual_arrival_time,
                calculate_departure_time(current.actual_arrival_time, hours), already_confirmed=True,
            )
        raise InvalidTransitionError(f"Cannot confirm arrival from {record.status.value}")

    minutes_late = 0
    if is_late(at_time, employee.arrival_window_end):
        minutes_late = to_minutes(at_time) - to_minutes(employee.arrival_window_end)
        admin_text = None
        if notify_admins:
            admin_text = (
                f"⚠️ Late Arrival\n\n"
                f"👤 {employee.name}\n"
                f"⏰ Arrived: {at_time}\n"
                f"📅 Window: {_window(employee)}\n"
                f"📆 Date: {format_date(record.date)}"
            )
        await _record_flag(
            ctx, employee, record.date, EventSubtype.LATE_ARRIVAL,
            f"Late arrival: {at_time} (window: {_window(employee)})", admin_text,
        )
    logger.info(f"{employee.name} arrived at {at_time}{' (late)' if minutes_late else ''}")
    return ArrivalResult(updated, at_time, expected_departure, minutes_late)


async def defer_arrival(ctx, record: AttendanceCheckIn, expected_at: datetime) -> AttendanceCheckIn:
    updated = await ctx.store.update_checkin(
        record.id,
        only_if_status=DEFER_ARRIVAL_FROM,
        status=CheckInStatus.WAITING_ARRIVAL_REMINDER,
        expected_arrival_at=expected_at,
    )
    if updated is None:
        raise InvalidTransitionError(f"Cannot defer arrival from {record.status.value}")
    return updated


async def follow_up_arrival(ctx, record: AttendanceCheckIn, employee: Employee) -> bool:
    """Re-asks a deferred employee whether they arrived.

    Flags the day as late as soon as the promised time is past the arrival
    window, even before the employee confirms. The re-prompt itself is
    throttled by ``arrival_reminder_interval``.
    """
    if record.status != CheckInStatus.WAITING_ARRIVAL_REMINDER or record.expected_arrival_at is None:
        return False
    expected_at = record.expected_arrival_at
    expected_time = expected_at.strftime("%H:%M")
    if expected_at.date() > record.date or is_late(expected_time, employee.arrival_window_end):
        await _record_flag(
            ctx, employee, record.date, EventSubtype.LATE_ARRIVAL,
            f"Late arrival: Expected {expected_time} (window: {_window(employee)})",
            f"⚠️ Late Arrival (Auto-detected)\n\n"
            f"👤 {employee.name}\n"
            f"⏰ Expected: {expected_time}\n"
            f"📅 Window: {_window(employee)}\n"
            f"📆 Date: {format_date(record.date)}\n\n"
            f"Employee has not confirmed arrival yet.",
        )

    now = ctx.clock.now()
    interval = timedelta(minutes=ctx.settings.arrival_reminder_interval)
    if not await ctx.store.claim_arrival_reminder(record.id, now, now - interval):
        return False
    await ctx.notifier.send_to_user(
        employee.telegram_id,
        f"Hi {employee.name}! 👋\n\nAre you in the office now?",
        reply_markup=arrival_keyboard(follow_up=True),
    )
    return True


async def initiate_departure(ctx, record: AttendanceCheckIn, employee: Employee) -> Optional[AttendanceCheckIn]:
    if record.status != CheckInStatus.ARRIVED or not record.actual_arrival_time:
        return None
    hours = work_hours_for_today(employee, ctx.clock)
    expected_departure = calculate_departure_time(record.actual_arrival_time, hours)
    updated = await ctx.store.update_checkin(
        record.id,
        only_if_status=INITIATE_DEPARTURE_FROM,
        status=CheckInStatus.WAITING_DEPARTURE,
        asked_departure_at=ctx.clock.now(),
        expected_departure_at=combine(record.date, record.actual_arrival_time) + timedelta(hours=hours),
    )
    if updated is None:
        return None
    await ctx.notifier.send_to_user(
        employee.telegram_id,
        f"Hi {employee.name}! 👋\n\n"
        f"Your expected departure time is {expected_departure}.\n"
        f"Are you still in the office?",
        reply_markup=departure_keyboard(),
    )
    return updated


async def confirm_departure(ctx, record: AttendanceCheckIn, employee: Employee, at_time: str, notify_admins: bool = True) -> DepartureResult:
    expected_at = _expected_departure_at(record, employee, ctx.clock)
    if expected_at is None:
        raise InvalidTransitionError("Cannot confirm departure without an arrival time")
    updated = await ctx.store.update_checkin(
        record.id,
        only_if_status=CONFIRM_DEPARTURE_FROM,
        status=CheckInStatus.LEFT,
        actual_departure_time=at_time,
        confirmed_departure_at=ctx.clock.now(),
        expected_departure_at=expected_at,
    )
    if updated is None:
        raise InvalidTransitionError(f"Cannot confirm departure from {record.status.value}")

    expected_departure = expected_at.strftime("%H:%M")
    minutes_early = int((expected_at - combine(record.date, at_time)).total_seconds() // 60)
    result = DepartureResult(updated, at_time, expected_departure, max(minutes_early, 0))
    if result.left_early:
        early_text = format_duration(result.minutes_early)
        admin_text = None
        if notify_admins:
            admin_text = (
                f"⚠️ Early Departure\n\n"
                f"👤 {employee.name}\n"
                f"⏰ Left: {at_time}\n"
                f"📅 Expected: {expected_departure}\n"
                f"⏱ Early by: {result.minutes_early} minutes\n"
                f"📆 Date: {format_date(record.date)}"
            )
        await _record_flag(
            ctx, employee, record.date, EventSubtype.LEFT_EARLY,
            f"Left early: {at_time} (expected: {expected_departure}, {early_text} early)", admin_text,
        )
    logger.info(f"{employee.name} left at {at_time}{' (early)' if result.left_early else ''}")
    return result


async def defer_departure(ctx, record: AttendanceCheckIn) -> AttendanceCheckIn:
    updated = await ctx.store.update_checkin(
        record.id, only_if_status=DEFER_DEPARTURE_FROM, status=CheckInStatus.WAITING_DEPARTURE_REMINDER
    )
    if updated is not None:
        return updated
    current = await ctx.store.get_checkin(record.employee_id, record.date)
    if current and current.status == CheckInStatus.WAITING_DEPARTURE_REMINDER:
        return current
    raise InvalidTransitionError(f"Cannot defer departure from {record.status.value}")


async def mark_missed(ctx, record: AttendanceCheckIn) -> Optional[AttendanceCheckIn]:
    return await ctx.store.update_checkin(record.id, only_if_status=MARK_MISSED_FROM, status=CheckInStatus.MISSED)


async def auto_checkout(ctx, record: AttendanceCheckIn, employee: Employee, buffer_minutes: int) -> Optional[AttendanceCheckIn]:
    """Closes a forgotten day at the planned departure time once the buffer has elapsed."""
    expected_at = _expected_departure_at(record, employee, ctx.clock)
    if expected_at is None or ctx.clock.now() < expected_at + timedelta(minutes=buffer_minutes):
        return None
    departure_time = expected_at.strftime("%H:%M")
    updated = await ctx.store.update_checkin(
        record.id,
        only_if_status=AUTO_CHECKOUT_FROM,
        status=CheckInStatus.LEFT,
        actual_departure_time=departure_time,
        expected_departure_at=expected_at,
        auto_checked_out=True,
    )
    if updated is None:
        return None
    logger.info(f"{employee.name} auto-checked out at {departure_time}")
    if employee.telegram_id:
        await ctx.notifier.send_to_user(
            employee.telegram_id,
            f"🏁 You were automatically checked out at {departure_time}.\n\n"
            f"Use /checkout yourself next time you leave.",
        )
    return updated


async def _ensure_today_record(ctx, employee: Employee) -> AttendanceCheckIn:
    today = ctx.clock.today()
    record = await ctx.store.get_checkin(employee.id, today)
    if record is None:
        record = await ctx.store.create_checkin(
            employee.id, today, CheckInStatus.WAITING_ARRIVAL, asked_arrival_at=ctx.clock.now()
        )
        if record is None:
            record = await ctx.store.get_checkin(employee.id, today)
    return record


async def check_in(ctx, employee: Employee, at_time: Optional[str] = None) -> ArrivalResult:
    """Manual check-in; opens the day's record when the scheduler has not."""
    today = ctx.clock.today()
    if is_recurring_home_office_day(employee, today):
        raise ValidationError("Today is your recurring home office day. You don't need to check in.")
    if await has_event_for_date(ctx.store, employee.id, today, ABSENCE_EVENT_TYPES):
        raise ValidationError("You have an event scheduled for today (vacation, sick, or home office). No check-in needed.")
    record = await _ensure_today_record(ctx, employee)
    return await confirm_arrival(ctx, record, employee, at_time or ctx.clock.time_of_day())


async def check_out(ctx, employee: Employee, at_time: Optional[str] = None) -> DepartureResult:
    record = await ctx.store.get_checkin(employee.id, ctx.clock.today())
    if record is not None and record.status == CheckInStatus.LEFT:
        raise ValidationError(f"You already checked out at {record.actual_departure_time}.")
    if record is None or record.status not in IN_OFFICE_STATUSES:
        raise ValidationError("You need to check in first before checking out.\n\nUse /checkin to check in.")
    return await confirm_departure(ctx, record, employee, at_time or ctx.clock.time_of_day())


def resolve_manual_time(ctx, minutes_ago: Optional[int] = None, at_time: Optional[str] = None) -> str:
    if (minutes_ago is None) == (at_time is None):
        raise ValueError("Pass exactly one of minutes_ago or at_time")
    if at_time is not None:
        hhmm = parse_hhmm(at_time)
        if hhmm is None:
            raise ValidationError("Invalid time format. Use HH:MM (e.g., 09:30).")
        minutes_ago = to_minutes(ctx.clock.time_of_day()) - to_minutes(hhmm)
        if minutes_ago < 0:
            raise ValidationError("The time cannot be in the future.")
    if not 0 <= minutes_ago <= config.MAX_MANUAL_MINUTES_AGO:
        raise ValidationError(f"Minutes ago must be between 0 and {config.MAX_MANUAL_MINUTES_AGO}.")
    moment = ctx.clock.now() - timedelta(minutes=minutes_ago)
    if moment.date() != ctx.clock.today():
        raise ValidationError("The resulting time falls on the previous day.")
    return moment.strftime("%H:%M")


def ensure_departure_after_arrival(record: AttendanceCheckIn, departure_time: str):
    if record.actual_arrival_time and to_minutes(departure_time) < to_minutes(record.actual_arrival_time):
        raise ValidationError(
            f"Departure time {departure_time} is before the arrival time {record.actual_arrival_time}."
        )


async def process_manual_attendance(
    ctx,
    employee_id: int,
    kind: AttendanceKind,
    minutes_ago: Optional[int] = None,
    at_time: Optional[str] = None,
) -> ManualAttendanceResult:
    """Admin check-in/out shared by the quick-pick buttons and the typed HH:MM reply."""
    employee = await ctx.store.get_employee(employee_id)
    if employee is None or employee.archived:
        raise NotFoundError(f"Employee {employee_id} not found")
    hhmm = resolve_manual_time(ctx, minutes_ago=minutes_ago, at_time=at_time)

    if kind == AttendanceKind.ARRIVAL:
        record = await _ensure_today_record(ctx, employee)
        if record.status in PRESENT_STATUSES:
            raise ValidationError(f"{employee.name} is already checked in at {record.actual_arrival_time}.")
        arrival = await confirm_arrival(ctx, record, employee, hhmm, notify_admins=False)
        return ManualAttendanceResult(kind, employee, hhmm, arrival=arrival)

    record = await ctx.store.get_checkin(employee.id, ctx.clock.today())
    if record is None or not record.actual_arrival_time:
        raise ValidationError("Cannot check out: No check-in record found for today.")
    if record.status not in IN_OFFICE_STATUSES:
        raise ValidationError(f"{employee.name} is not in the office ({record.status.value}).")
    ensure_departure_after_arrival(record, hhmm)
    departure = await confirm_departure(ctx, record, employee, hhmm, notify_admins=False)
    return ManualAttendanceResult(kind, employee, hhmm, departure=departure)
