# handlers_user.py
import logging
from datetime import date, timedelta

from telegram import Update
from telegram.ext import ContextTypes, ConversationHandler

import attendance
import config
import handlers_admin
import leave_requests
from app_context import get_app_context
from decorators import require_linked_employee, user_level_cooldown
from errors import AttendanceBotError, InvalidTransitionError, ValidationError
from keyboards import (
    arrival_eta_keyboard,
    confirm_keyboard,
    day_off_dates_keyboard,
    departure_ago_keyboard,
)
from models import AWAITING_ARRIVAL_STATUSES, CheckInStatus, Employee
from reports import build_balance_text, build_my_status_text
from timeutils import format_date, format_duration, is_late, parse_expected_arrival

logger = logging.getLogger(__name__)

AWAITING_ARRIVAL_ETA = "arrival_eta"
AWAITING_DEPARTURE_TIME = "departure_time"
AWAITING_DAYOFF_REASON = "dayoff_reason"

ETA_FORMATS_TEXT = (
    "⚠️ I didn't understand that time format.\n\n"
    "Please use one of these formats:\n"
    "• \"in 15 mins\" or \"in 15 minutes\"\n"
    "• \"in 1 hour\" or \"in 2 hours\"\n"
    "• \"in 1 hour 30 mins\"\n"
    "• \"14:30\" (time in HH:MM)\n"
    "• \"45\" (just minutes)"
)

QUICK_START_TEXT = (
    "🎯 Quick Start:\n"
    "/checkin - Check in when you arrive\n"
    "/checkout - Check out when you leave\n"
    "/balance - View your vacation balance\n\n"
    "📅 Request Time Off:\n"
    "/homeoffice - Request home office\n"
    "/vacation - Request vacation days\n"
    "/sick - Report sick day\n"
    "/dayoff - Request a single day off\n\n"
    "Type /help to see all available commands."
)


def _error_text(error: AttendanceBotError) -> str:
    if isinstance(error, InvalidTransitionError):
        return "This action is no longer available."
    return str(error)


def _arrival_text(result: attendance.ArrivalResult, employee: Employee) -> str:
    if result.already_confirmed:
        return (
            f"✅ You already checked in today at {result.arrival_time}.\n\n"
            f"Expected departure: {result.expected_departure}"
        )
    message = f"✅ Great! You arrived at {result.arrival_time}.\n\nExpected departure: {result.expected_departure}\n"
    if result.late:
        message += (
            f"\n⚠️ Note: You arrived {result.minutes_late} minutes after your window "
            f"({employee.arrival_window_start}-{employee.arrival_window_end}).\n"
            f"This has been recorded as a late arrival.\n\n"
        )
    message += f"I'll check with you at {result.expected_departure}. Have a productive day! 💪"
    return message


def _departure_text(result: attendance.DepartureResult) -> str:
    message = f"✅ Thanks! Departure recorded: {result.departure_time}\n\n"
    if result.left_early:
        return message + (
            f"Note: You left {format_duration(result.minutes_early)} before your expected time "
            f"({result.expected_departure})."
        )
    return message + "Have a great evening! 👋"


# --- Account linking ---

async def link_by_email(update: Update, text: str) -> bool:
    ctx = get_app_context()
    email = text.strip().lower()
    employee = await ctx.store.get_employee_by_email(email)
    if employee is None:
        await update.message.reply_text(
            f"❌ No employee found with email: {email}\n\nPlease check your email or contact an admin."
        )
        return False
    if employee.telegram_id and employee.telegram_id != update.effective_user.id:
        await update.message.reply_text("This email is already linked to another Telegram account.")
        return False
    employee = await ctx.store.link_telegram_account(employee.id, update.effective_user.id)
    await update.message.reply_text(
        f"✅ Account linked successfully!\n\nWelcome, {employee.name}! 👋\n\n{QUICK_START_TEXT}"
    )
    return True


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    ctx = get_app_context()
    employee = await ctx.store.get_employee_by_telegram_id(update.effective_user.id)
    if employee:
        await update.message.reply_text(f"Welcome back, {employee.name}! 👋\n\n{QUICK_START_TEXT}")
        return ConversationHandler.END
    await update.message.reply_text(
        "Welcome to the attendance bot! 👋\n\nPlease reply with your work email to link your account."
    )
    return config.AWAITING_EMAIL


async def receive_email(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    text = update.message.text
    if "@" not in text:
        await update.message.reply_text("That doesn't look like an email address. Please try again or /cancel.")
        return config.AWAITING_EMAIL
    if await link_by_email(update, text):
        return ConversationHandler.END
    return config.AWAITING_EMAIL


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data.pop("awaiting", None)
    await update.message.reply_text("Cancelled.")
    return ConversationHandler.END


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    ctx = get_app_context()
    message = (
        "📖 Available commands\n\n"
        "/start - Link your account\n"
        "/checkin - Check in now\n"
        "/checkout - Check out now\n"
        "/balance - Vacation and holiday balance\n"
        "/mystatus - Your schedule and today's status\n"
        "/vacation YYYY-MM-DD [YYYY-MM-DD] - Request vacation\n"
        "/homeoffice [YYYY-MM-DD] - Request home office (tomorrow by default)\n"
        "/sick - Report a sick day for tomorrow\n"
        "/dayoff - Request a single day off\n"
        "/cancel - Cancel the current action"
    )
    employee = await ctx.store.get_employee_by_telegram_id(update.effective_user.id)
    if employee and employee.email.lower() in await ctx.store.get_admin_emails():
        message += (
            "\n\n👑 Admin commands\n\n"
            "/teamstatus - Who is in today\n"
            "/pending - Requests awaiting approval\n"
            "/weekreport - Last week's report\n"
            "/broadcast <text> - Message all employees\n"
            "/admins - List admins\n"
            "/globalholiday YYYY-MM-DD [YYYY-MM-DD] <name> - Add a company holiday\n"
            "/admincheckin - Check an employee in\n"
            "/admincheckout - Check an employee out\n"
            "/reloadsettings - Reload bot settings"
        )
    await update.message.reply_text(message)


# --- Attendance ---

@require_linked_employee
@user_level_cooldown(5)
async def checkin_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    ctx = get_app_context()
    try:
        result = await attendance.check_in(ctx, employee)
    except AttendanceBotError as e:
        await update.message.reply_text(f"⚠️ {_error_text(e)}")
        return
    context.user_data.pop("awaiting", None)
    await update.message.reply_text(_arrival_text(result, employee))


@require_linked_employee
@user_level_cooldown(5)
async def checkout_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    ctx = get_app_context()
    try:
        result = await attendance.check_out(ctx, employee)
    except AttendanceBotError as e:
        await update.message.reply_text(f"⚠️ {_error_text(e)}")
        return
    await update.message.reply_text(_departure_text(result))


@require_linked_employee
async def arrival_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    query = update.callback_query
    ctx = get_app_context()
    record = await ctx.store.get_checkin(employee.id, ctx.clock.today())
    if record is None:
        await query.answer("Check-in not found")
        return
    data = query.data
    try:
        if data == config.CB_ARRIVAL_YES:
            result = await attendance.confirm_arrival(ctx, record, employee, ctx.clock.time_of_day())
            context.user_data.pop("awaiting", None)
            await query.answer()
            await query.edit_message_text(_arrival_text(result, employee))
        elif data == config.CB_ARRIVAL_NOT_YET:
            if record.status not in AWAITING_ARRIVAL_STATUSES:
                await query.answer("You are already checked in for today.", show_alert=True)
                return
            context.user_data["awaiting"] = AWAITING_ARRIVAL_ETA
            await query.answer()
            await query.edit_message_text("When will you arrive?", reply_markup=arrival_eta_keyboard())
        elif data == config.CB_ARRIVAL_OTHER:
            context.user_data["awaiting"] = AWAITING_ARRIVAL_ETA
            await query.answer()
            await query.edit_message_text(
                "Please reply with the time you expect to arrive (e.g., \"10:30\" or \"in 45 minutes\")"
            )
        elif data.startswith(config.CB_ARRIVAL_IN):
            minutes = int(data[len(config.CB_ARRIVAL_IN):])
            expected_at = ctx.clock.now() + timedelta(minutes=minutes)
            await attendance.defer_arrival(ctx, record, expected_at)
            context.user_data.pop("awaiting", None)
            await query.answer()
            await query.edit_message_text(f"Got it! I'll check with you in {minutes} minutes. 👍")
    except AttendanceBotError as e:
        await query.answer(_error_text(e), show_alert=True)


@require_linked_employee
async def departure_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    query = update.callback_query
    ctx = get_app_context()
    record = await ctx.store.get_checkin(employee.id, ctx.clock.today())
    if record is None:
        await query.answer("Check-in not found")
        return
    data = query.data
    try:
        if data == config.CB_DEPARTURE_STILL_HERE:
            await attendance.defer_departure(ctx, record)
            await query.answer("Got it! 👍")
            await query.edit_message_text(
                "Great! Thanks for confirming. ✅\n\n"
                "You'll be automatically checked out if you don't respond. Use /checkout when leaving."
            )
        elif data == config.CB_DEPARTURE_LEFT:
            await query.answer()
            await query.edit_message_text("What time did you leave?", reply_markup=departure_ago_keyboard())
        elif data == config.CB_DEPARTURE_LEFT_OTHER:
            context.user_data["awaiting"] = AWAITING_DEPARTURE_TIME
            await query.answer()
            await query.edit_message_text("Please reply with the time you left (e.g., \"18:30\")")
        elif data.startswith(config.CB_DEPARTURE_LEFT_AGO):
            minutes = int(data[len(config.CB_DEPARTURE_LEFT_AGO):])
            departure_time = attendance.resolve_manual_time(ctx, minutes_ago=minutes)
            attendance.ensure_departure_after_arrival(record, departure_time)
            result = await attendance.confirm_departure(ctx, record, employee, departure_time)
            await query.answer()
            await query.edit_message_text(_departure_text(result))
    except AttendanceBotError as e:
        await query.answer(_error_text(e), show_alert=True)


async def _handle_arrival_eta(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee, record) -> None:
    ctx = get_app_context()
    now = ctx.clock.now()
    try:
        expected_at = parse_expected_arrival(update.message.text, now)
    except ValidationError:
        await update.message.reply_text(ETA_FORMATS_TEXT)
        return
    try:
        await attendance.defer_arrival(ctx, record, expected_at)
    except AttendanceBotError as e:
        context.user_data.pop("awaiting", None)
        await update.message.reply_text(f"⚠️ {_error_text(e)}")
        return
    context.user_data.pop("awaiting", None)

    expected_time = expected_at.strftime("%H:%M")
    minutes = int((expected_at - now).total_seconds() // 60)
    response = "Got it! I'll check with you "
    response += f"in {minutes} minutes (at {expected_time}). 👍" if minutes < 120 else f"at {expected_time}. 👍"
    if expected_at.date() > record.date or is_late(expected_time, employee.arrival_window_end):
        response += (
            f"\n\n⚠️ Note: Your arrival window is {employee.arrival_window_start}-{employee.arrival_window_end}. "
            f"Arriving at {expected_time} will be marked as a late arrival."
        )
    await update.message.reply_text(response)


async def _handle_departure_time(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee, record) -> None:
    ctx = get_app_context()
    if record is None:
        context.user_data.pop("awaiting", None)
        await update.message.reply_text("Check-in not found.")
        return
    try:
        departure_time = attendance.resolve_manual_time(ctx, at_time=update.message.text)
        attendance.ensure_departure_after_arrival(record, departure_time)
    except ValidationError as e:
        await update.message.reply_text(str(e))
        return
    try:
        result = await attendance.confirm_departure(ctx, record, employee, departure_time)
    except AttendanceBotError as e:
        await update.message.reply_text(f"⚠️ {_error_text(e)}")
        return
    finally:
        context.user_data.pop("awaiting", None)
    await update.message.reply_text(_departure_text(result))


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Routes free text to whatever the user was last asked for."""
    awaiting = context.user_data.get("awaiting")
    if awaiting in handlers_admin.ADMIN_AWAITING_STATES:
        await handlers_admin.admin_custom_time_text(update, context)
        return
    ctx = get_app_context()
    text = update.message.text
    employee = await ctx.store.get_employee_by_telegram_id(update.effective_user.id)
    if employee is None:
        if "@" in text:
            await link_by_email(update, text)
        return

    if awaiting == AWAITING_DAYOFF_REASON:
        await _submit_day_off(update, context, employee, context.user_data.get("dayoff_date"), text)
        return
    record = await ctx.store.get_checkin(employee.id, ctx.clock.today())
    if awaiting == AWAITING_DEPARTURE_TIME:
        await _handle_departure_time(update, context, employee, record)
        return
    if record and (awaiting == AWAITING_ARRIVAL_ETA or record.status == CheckInStatus.WAITING_ARRIVAL_REMINDER):
        if record.status in AWAITING_ARRIVAL_STATUSES:
            await _handle_arrival_eta(update, context, employee, record)
            return
    context.user_data.pop("awaiting", None)


# --- Balance & status ---

@require_linked_employee
async def balance_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    await update.message.reply_text(await build_balance_text(get_app_context(), employee))


@require_linked_employee
async def mystatus_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    await update.message.reply_text(await build_my_status_text(get_app_context(), employee))


# --- Leave requests ---

@require_linked_employee
async def vacation_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    ctx = get_app_context()
    if not context.args:
        await update.message.reply_text(
            "📅 Request Vacation\n\n"
            "Usage: /vacation YYYY-MM-DD [YYYY-MM-DD]\n\n"
            "Examples:\n"
            "/vacation 2025-08-15 - single day\n"
            "/vacation 2025-08-15 2025-08-22 - date range"
        )
        return
    try:
        start = leave_requests.parse_date_arg(context.args[0])
        end = leave_requests.parse_date_arg(context.args[1]) if len(context.args) > 1 else start
        quote = await leave_requests.quote_vacation(ctx, employee, start, end)
    except AttendanceBotError as e:
        await update.message.reply_text(str(e))
        return

    message = (
        f"📅 Vacation Request\n\n"
        f"From: {format_date(quote.start)}\n"
        f"To: {format_date(quote.end)}\n"
        f"Days: {quote.days}\n"
        f"Remaining after: {quote.remaining_after} days\n"
    )
    if quote.conflicts:
        message += f"\n⚠️ You already have {quote.conflicts} event(s) during this period.\n"
    message += "\nConfirm request?"
    await update.message.reply_text(
        message,
        reply_markup=confirm_keyboard(
            config.CB_VACATION_CONFIRM, f"{quote.start.isoformat()}_{quote.end.isoformat()}", config.CB_VACATION_CANCEL
        ),
    )


@require_linked_employee
async def vacation_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    query = update.callback_query
    if query.data == config.CB_VACATION_CANCEL:
        await query.answer()
        await query.edit_message_text("Request cancelled.")
        return
    ctx = get_app_context()
    start_text, end_text = query.data[len(config.CB_VACATION_CONFIRM):].split("_")
    try:
        event = await leave_requests.request_vacation(
            ctx, employee, date.fromisoformat(start_text), date.fromisoformat(end_text)
        )
    except AttendanceBotError as e:
        await query.answer()
        await query.edit_message_text(str(e))
        return
    await query.answer()
    await query.edit_message_text(
        f"✅ Vacation request submitted!\n\n"
        f"📅 {format_date(event.start_date)} - {format_date(event.last_day)}\n\n"
        f"Waiting for admin approval."
    )


@require_linked_employee
async def homeoffice_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    ctx = get_app_context()
    try:
        day = leave_requests.parse_date_arg(context.args[0]) if context.args else None
        day = await leave_requests.validate_home_office(ctx, employee, day)
    except AttendanceBotError as e:
        await update.message.reply_text(str(e))
        return
    await update.message.reply_text(
        f"🏠 Request home office for {format_date(day)}?",
        reply_markup=confirm_keyboard(config.CB_HOMEOFFICE_CONFIRM, day.isoformat(), config.CB_HOMEOFFICE_CANCEL),
    )


@require_linked_employee
async def homeoffice_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    query = update.callback_query
    await query.answer()
    if query.data == config.CB_HOMEOFFICE_CANCEL:
        await query.edit_message_text("Request cancelled.")
        return
    day = date.fromisoformat(query.data[len(config.CB_HOMEOFFICE_CONFIRM):])
    try:
        await leave_requests.request_home_office(get_app_context(), employee, day)
    except AttendanceBotError as e:
        await query.edit_message_text(str(e))
        return
    await query.edit_message_text(
        f"✅ Home office request submitted for {format_date(day)}.\n\nWaiting for admin approval."
    )


@require_linked_employee
async def sick_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    try:
        day = await leave_requests.validate_sick_day(get_app_context(), employee)
    except AttendanceBotError as e:
        await update.message.reply_text(str(e))
        return
    await update.message.reply_text(
        f"🤒 Report sick day for tomorrow ({format_date(day)})?",
        reply_markup=confirm_keyboard(
            config.CB_SICK_CONFIRM, day.isoformat(), config.CB_SICK_CANCEL, confirm_text=config.BUTTON_CONFIRM_REPORT
        ),
    )


@require_linked_employee
async def sick_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    query = update.callback_query
    await query.answer()
    if query.data == config.CB_SICK_CANCEL:
        await query.edit_message_text("Request cancelled.")
        return
    day = date.fromisoformat(query.data[len(config.CB_SICK_CONFIRM):])
    try:
        await leave_requests.request_sick_day(get_app_context(), employee, day)
    except AttendanceBotError as e:
        await query.edit_message_text(str(e))
        return
    await query.edit_message_text(f"✅ Sick day reported for {format_date(day)}.\n\nGet well soon! 🙏")


@require_linked_employee
async def dayoff_command(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    ctx = get_app_context()
    await update.message.reply_text(
        "📅 Request Day Off\n\nSelect the date:",
        reply_markup=day_off_dates_keyboard(ctx.clock.today()),
    )


async def _submit_day_off(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee, day_text, reason=None):
    context.user_data.pop("awaiting", None)
    context.user_data.pop("dayoff_date", None)
    message = update.effective_message
    if not day_text:
        await message.reply_text("Day off request expired. Please use /dayoff again.")
        return
    try:
        event = await leave_requests.request_day_off(get_app_context(), employee, date.fromisoformat(day_text), reason)
    except AttendanceBotError as e:
        await message.reply_text(str(e))
        return
    await message.reply_text(
        f"✅ Day off request submitted!\n\n"
        f"📅 Date: {format_date(event.start_date)}\n"
        f"📝 Reason: {event.notes}\n\n"
        f"Waiting for admin approval."
    )


@require_linked_employee
async def dayoff_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, employee: Employee):
    query = update.callback_query
    await query.answer()
    data = query.data
    if data == config.CB_DAYOFF_CANCEL:
        context.user_data.pop("awaiting", None)
        context.user_data.pop("dayoff_date", None)
        await query.edit_message_text("Day off request cancelled.")
        return
    if data.startswith(config.CB_DAYOFF_DATE):
        day = date.fromisoformat(data[len(config.CB_DAYOFF_DATE):])
        try:
            await leave_requests.validate_day_off(get_app_context(), employee, day)
        except AttendanceBotError as e:
            await query.edit_message_text(str(e))
            return
        context.user_data["awaiting"] = AWAITING_DAYOFF_REASON
        context.user_data["dayoff_date"] = day.isoformat()
        await query.edit_message_text(
            f"📅 Day off on {format_date(day)}\n\n"
            f"You can provide a reason (optional) by replying to this message, or confirm without reason.",
            reply_markup=confirm_keyboard(
                config.CB_DAYOFF_CONFIRM, day.isoformat(), config.CB_DAYOFF_CANCEL,
                confirm_text=config.BUTTON_CONFIRM_NO_REASON,
            ),
        )
        return
    if data.startswith(config.CB_DAYOFF_CONFIRM):
        await query.edit_message_reply_markup(reply_markup=None)
        await _submit_day_off(update, context, employee, data[len(config.CB_DAYOFF_CONFIRM):])
