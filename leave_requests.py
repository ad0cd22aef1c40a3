import calendar
import logging
from datetime import date, timedelta
from typing import NamedTuple, Optional

import config
from errors import NotFoundError, ValidationError
from event_gate import has_event_for_date
from keyboards import moderation_keyboard
from leave_balance import inclusive_day_count, vacation_balance
from models import Employee, Event, EventType
from timeutils import format_date, format_period, parse_iso_date

logger = logging.getLogger(__name__)


class VacationQuote(NamedTuple):
    start: date
    end: date
    days: int
    remaining_after: int
    conflicts: int


def parse_date_arg(text: str) -> date:
    try:
        return parse_iso_date(text.strip())
    except ValueError:
        raise ValidationError("Invalid date format. Please use YYYY-MM-DD format.")


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year, month = day.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


async def _submit(ctx, employee: Employee, event_type: EventType, start: date, end: date, notes: str, admin_text: str) -> Event:
    event = await ctx.store.create_event(employee.id, event_type, start, end_date=end, notes=notes, moderated=False)
    logger.info(f"{event_type.value} request #{event.id} from {employee.name}: {format_period(start, end)}")
    await ctx.notifier.send_to_admins(admin_text, reply_markup=moderation_keyboard(event))
    return event


async def quote_vacation(ctx, employee: Employee, start: date, end: Optional[date] = None) -> VacationQuote:
    """Validates a vacation request and returns what it would cost; nothing is stored."""
    end = end or start
    if start > end:
        raise ValidationError("Start date must be before or equal to end date.")
    tomorrow = ctx.clock.today() + timedelta(days=1)
    if start <= tomorrow:
        raise ValidationError(
            "❌ Vacation must be requested at least 1 day in advance. "
            "Earliest date you can request is the day after tomorrow."
        )
    days = inclusive_day_count(start, end)
    events = await ctx.store.list_events_for_employee(employee.id, types=[EventType.VACATION])
    remaining = vacation_balance(employee, events, ctx.clock.today()).days_left
    if days > remaining:
        raise ValidationError(
            f"❌ Insufficient balance!\n\n"
            f"Requested: {days} days\n"
            f"Available: {remaining} days\n\n"
            f"Use /balance to check your full balance."
        )
    conflicts = await ctx.store.list_events_overlapping(start, end, employee_id=employee.id, moderated=None)
    return VacationQuote(start, end, days, remaining - days, len(conflicts))


async def request_vacation(ctx, employee: Employee, start: date, end: date) -> Event:
    quote = await quote_vacation(ctx, employee, start, end)
    return await _submit(
        ctx, employee, EventType.VACATION, quote.start, quote.end, "Requested via Telegram bot",
        f"📝 New Vacation Request\n\n"
        f"👤 {employee.name}\n"
        f"📅 {format_date(quote.start)} - {format_date(quote.end)}\n"
        f"Days: {quote.days}",
    )


async def validate_home_office(ctx, employee: Employee, day: Optional[date] = None) -> date:
    today = ctx.clock.today()
    day = day or today + timedelta(days=1)
    if day <= today:
        raise ValidationError("❌ Cannot request home office for past dates or today. Please request at least 1 day in advance.")
    if await has_event_for_date(ctx.store, employee.id, day):
        raise ValidationError(
            f"You already have an event scheduled for {format_date(day)}.\n"
            f"Please contact an admin if you need to make changes."
        )
    return day


async def request_home_office(ctx, employee: Employee, day: date) -> Event:
    day = await validate_home_office(ctx, employee, day)
    return await _submit(
        ctx, employee, EventType.HOME_OFFICE, day, day, "Requested via Telegram bot",
        f"📝 New home office request:\n\n"
        f"👤 {employee.name}\n"
        f"📅 {format_date(day)}\n\n"
        f"Use /pending to review.",
    )


async def validate_sick_day(ctx, employee: Employee) -> date:
    tomorrow = ctx.clock.today() + timedelta(days=1)
    if await has_event_for_date(ctx.store, employee.id, tomorrow):
        raise ValidationError(
            f"You already have an event scheduled for tomorrow ({format_date(tomorrow)}).\n"
            f"Please contact an admin if you need to make changes."
        )
    return tomorrow


async def request_sick_day(ctx, employee: Employee, day: date) -> Event:
    if day != ctx.clock.today() + timedelta(days=1):
        raise ValidationError("Sick days can only be reported for tomorrow.")
    day = await validate_sick_day(ctx, employee)
    return await _submit(
        ctx, employee, EventType.SICK_DAY, day, day, "Reported via Telegram bot",
        f"📝 New sick day report:\n\n"
        f"👤 {employee.name}\n"
        f"📅 {format_date(day)}\n\n"
        f"Use /pending to review.",
    )


async def validate_day_off(ctx, employee: Employee, day: date) -> date:
    today = ctx.clock.today()
    if day <= today:
        raise ValidationError("Cannot request day off for past dates.")
    if day > today + timedelta(days=config.DAY_OFF_WINDOW_DAYS):
        raise ValidationError(f"Day off can be requested at most {config.DAY_OFF_WINDOW_DAYS} days ahead.")
    if await has_event_for_date(ctx.store, employee.id, day):
        raise ValidationError(
            f"⚠️ You already have an approved event on {format_date(day)}.\n\n"
            f"Please choose a different date or cancel existing event first."
        )
    if await ctx.store.find_pending_day_off(employee.id, day):
        raise ValidationError(
            f"⚠️ You already have a pending day off request for {format_date(day)}.\n\n"
            f"Please wait for admin approval."
        )
    return day


async def request_day_off(ctx, employee: Employee, day: date, reason: Optional[str] = None) -> Event:
    """Files a day off as DAY_OFF_PAID; the approving admin decides paid or unpaid."""
    day = await validate_day_off(ctx, employee, day)
    reason = (reason or "").strip() or "Day off request"
    return await _submit(
        ctx, employee, EventType.DAY_OFF_PAID, day, day, reason,
        f"📅 New Day Off Request\n\n"
        f"👤 {employee.name}\n"
        f"📅 Date: {format_date(day)}\n"
        f"📝 Reason: {reason}\n\n"
        f"Approve as paid or unpaid.",
    )


async def create_global_holiday(ctx, start: date, end: Optional[date], name: str, created_by_id: Optional[int] = None) -> Event:
    end = end or start
    if start > end:
        raise ValidationError("Start date must be before or equal to end date.")
    if not name.strip():
        raise ValidationError("Holiday name is required.")
    event = await ctx.store.create_event(
        None, EventType.HOLIDAY, start, end_date=end, notes=name.strip(),
        moderated=True, is_global=True, created_by_id=created_by_id,
    )
    logger.info(f"Global holiday '{name.strip()}' created: {format_period(start, end)}")
    return event


async def create_employee(ctx, created_by_id: Optional[int] = None, **fields) -> Employee:
    """Creates an employee together with the START_WORKING and PROBATION_FINISHED milestones."""
    if await ctx.store.get_employee_by_email(fields["email"]):
        raise ValidationError(f"An employee with email {fields['email']} already exists.")
    employee = await ctx.store.create_employee(**fields)
    await ctx.store.create_event(
        employee.id, EventType.START_WORKING, employee.start_date,
        notes="Employee started working", moderated=True, created_by_id=created_by_id,
    )
    await ctx.store.create_event(
        employee.id, EventType.PROBATION_FINISHED, add_months(employee.start_date, config.PROBATION_MONTHS),
        notes="Probation period ends (can be extended)", moderated=True, created_by_id=created_by_id,
    )
    logger.info(f"Employee {employee.name} ({employee.email}) created.")
    return employee


async def record_last_day(ctx, employee_id: int, day: date, notes: Optional[str] = None, created_by_id: Optional[int] = None) -> Event:
    """Records an employee's last day; a date today or earlier archives them right away."""
    employee = await ctx.store.get_employee(employee_id)
    if employee is None:
        raise NotFoundError(f"Employee {employee_id} not found")
    event = await ctx.store.create_event(
        employee.id, EventType.LAST_DAY, day, notes=notes, moderated=True, created_by_id=created_by_id,
    )
    if day <= ctx.clock.today() and not employee.archived:
        await ctx.store.archive_employee(employee.id, ctx.clock.now())
        logger.info(f"Employee {employee.name} archived after last day {day.isoformat()}.")
    return event
