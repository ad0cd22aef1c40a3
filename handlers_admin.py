# handlers_admin.py
import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update, WebAppInfo
from telegram.ext import ContextTypes

import attendance
import config
import jobs
import leave_requests
import moderation
from app_context import get_app_context
from decorators import admin_only, user_level_cooldown
from errors import AttendanceBotError, InvalidTransitionError
from event_gate import is_tracking_suppressed
from keyboards import employees_keyboard, minutes_ago_keyboard, moderation_keyboard
from models import AWAITING_ARRIVAL_STATUSES, IN_OFFICE_STATUSES, AttendanceKind, Employee, PaymentType
from reports import build_team_status, build_weekly_report

logger = logging.getLogger(__name__)

AWAITING_ADMIN_CHECKIN_TIME = "admin_checkin_time"
AWAITING_ADMIN_CHECKOUT_TIME = "admin_checkout_time"
ADMIN_AWAITING_STATES = (AWAITING_ADMIN_CHECKIN_TIME, AWAITING_ADMIN_CHECKOUT_TIME)


def _clear_admin_state(context: ContextTypes.DEFAULT_TYPE):
    context.user_data.pop("awaiting", None)
    context.user_data.pop("admin_employee_id", None)


def _manual_result_text(result: attendance.ManualAttendanceResult) -> str:
    if result.kind == AttendanceKind.ARRIVAL:
        message = f"✅ {result.employee.name} checked in at {result.at_time}."
        if result.arrival and result.arrival.late:
            message += f"\n⚠️ Recorded as a late arrival ({result.arrival.minutes_late} minutes)."
        return message
    message = f"✅ {result.employee.name} checked out at {result.at_time}."
    if result.departure and result.departure.left_early:
        message += f"\n⚠️ Recorded as an early departure ({result.departure.minutes_early} minutes)."
    return message


# --- Reports & overview ---

@admin_only
async def teamstatus_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    await update.message.reply_text(await build_team_status(get_app_context()))


@admin_only
async def weekreport_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    await update.message.reply_text(await build_weekly_report(get_app_context()))


@admin_only
async def admins_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    ctx = get_app_context()
    admins = await ctx.store.list_admin_users()
    if not admins:
        await update.message.reply_text("No admins configured.")
        return
    lines = ["👑 Admins\n"]
    for user in admins:
        employee = await ctx.store.get_employee_by_email(user["email"])
        connected = "✅ Telegram connected" if employee and employee.telegram_id else "❌ Telegram not connected"
        lines.append(f"• {user['name'] or user['email']} ({user['email']}) - {connected}")
    await update.message.reply_text("\n".join(lines))


# --- Moderation ---

@admin_only
async def pending_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    items = await moderation.list_pending(get_app_context())
    if not items:
        await update.message.reply_text("No pending events to review. ✅")
        return
    await update.message.reply_text(f"📋 Pending requests: {len(items)}")
    for item in items:
        await update.message.reply_text(moderation.format_pending_item(item), reply_markup=moderation_keyboard(item.event))


@admin_only
async def moderation_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    query = update.callback_query
    data = query.data
    ctx = get_app_context()
    try:
        if data.startswith(config.CB_MODERATE_APPROVE):
            await moderation.approve(ctx, int(data[len(config.CB_MODERATE_APPROVE):]))
            verdict = f"✅ Approved by {admin.name}"
        elif data.startswith(config.CB_MODERATE_PAID):
            await moderation.approve_day_off(ctx, int(data[len(config.CB_MODERATE_PAID):]), PaymentType.PAID)
            verdict = f"✅ Approved as paid by {admin.name}"
        elif data.startswith(config.CB_MODERATE_UNPAID):
            await moderation.approve_day_off(ctx, int(data[len(config.CB_MODERATE_UNPAID):]), PaymentType.UNPAID)
            verdict = f"✅ Approved as unpaid by {admin.name}"
        elif data.startswith(config.CB_MODERATE_REJECT):
            await moderation.reject(ctx, int(data[len(config.CB_MODERATE_REJECT):]))
            verdict = f"❌ Rejected by {admin.name}"
        else:
            await query.answer()
            return
    except AttendanceBotError as e:
        await query.answer(str(e), show_alert=True)
        await query.edit_message_reply_markup(reply_markup=None)
        return
    await query.answer()
    await query.edit_message_text(f"{query.message.text}\n\n{verdict}")


# --- Announcements & holidays ---

@admin_only
@user_level_cooldown(30)
async def broadcast_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    if not context.args:
        await update.message.reply_text("Usage: /broadcast <message>")
        return
    text = " ".join(context.args)
    report = await get_app_context().notifier.send_to_all_employees(f"📢 Announcement:\n\n{text}")
    logger.info(f"Broadcast by {admin.name}: {report.sent} sent, {report.failed} failed.")
    message = f"✅ Broadcast sent to {report.sent} employees."
    if report.failed:
        message += f"\n⚠️ Failed to deliver to {report.failed}."
    await update.message.reply_text(message)


@admin_only
async def globalholiday_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    usage = (
        "Usage: /globalholiday YYYY-MM-DD [YYYY-MM-DD] <name>\n\n"
        "Examples:\n"
        "/globalholiday 2025-12-31 New Year's Eve\n"
        "/globalholiday 2025-01-01 2025-01-02 New Year"
    )
    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text(usage)
        return
    try:
        start = leave_requests.parse_date_arg(args[0])
        end = None
        name_args = args[1:]
        if len(args) > 2:
            try:
                end = leave_requests.parse_date_arg(args[1])
                name_args = args[2:]
            except AttendanceBotError:
                end = None
        event = await leave_requests.create_global_holiday(
            get_app_context(), start, end, " ".join(name_args), created_by_id=admin.id
        )
    except AttendanceBotError as e:
        await update.message.reply_text(str(e))
        return
    await update.message.reply_text(
        f"🎉 Global holiday added: {event.notes}\n"
        f"📅 {event.start_date.isoformat()} - {event.last_day.isoformat()}"
    )


@admin_only
async def reloadsettings_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    settings = await jobs.reload_settings(get_app_context())
    await update.message.reply_text(
        "✅ Settings reloaded.\n\n"
        f"Bot enabled: {'yes' if settings.bot_enabled else 'no'}\n"
        f"Timezone: UTC{settings.timezone_offset:+g}\n"
        f"Morning report: {settings.morning_report_time}\n"
        f"End of day report: {settings.end_of_day_report_time}\n"
        f"Missed check-in sweep: {settings.missed_check_in_time}\n"
        f"Auto-checkout buffer: {settings.auto_checkout_buffer_minutes} min"
    )


@admin_only
async def web_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    """Sends a button that opens the admin panel as a Telegram Web App."""
    if not config.WEBAPP_URL:
        await update.message.reply_text("The admin panel URL is not configured (WEBAPP_URL).")
        return
    keyboard = [[InlineKeyboardButton("Open admin panel", web_app=WebAppInfo(url=config.WEBAPP_URL))]]
    await update.message.reply_text(
        "Press the button below to open the admin panel:",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


# --- Manual attendance ---

async def _checkin_candidates(ctx):
    today = ctx.clock.today()
    records = {c.employee_id: c for c in await ctx.store.list_checkins(today)}
    candidates = []
    for employee in await ctx.store.list_active_employees():
        if employee.exempt_from_tracking or await is_tracking_suppressed(ctx, employee, today):
            continue
        record = records.get(employee.id)
        if record is None or record.status in AWAITING_ARRIVAL_STATUSES:
            candidates.append(employee)
    return candidates


async def _checkout_candidates(ctx):
    employees = {e.id: e for e in await ctx.store.list_active_employees()}
    records = await ctx.store.list_checkins(ctx.clock.today(), statuses=IN_OFFICE_STATUSES)
    return [employees[r.employee_id] for r in records if r.employee_id in employees]


@admin_only
async def admincheckin_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    candidates = await _checkin_candidates(get_app_context())
    if not candidates:
        await update.message.reply_text("✅ All employees have checked in today!")
        return
    await update.message.reply_text(
        "👤 Select an employee to check in:",
        reply_markup=employees_keyboard(candidates, config.CB_ADMIN_CHECKIN_EMP),
    )


@admin_only
async def admincheckout_command(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    candidates = await _checkout_candidates(get_app_context())
    if not candidates:
        await update.message.reply_text("✅ No employees currently checked in.")
        return
    await update.message.reply_text(
        "👤 Select an employee to check out:",
        reply_markup=employees_keyboard(candidates, config.CB_ADMIN_CHECKOUT_EMP),
    )


async def _apply_manual_attendance(ctx, employee_id: int, kind: AttendanceKind, **when) -> str:
    try:
        result = await attendance.process_manual_attendance(ctx, employee_id, kind, **when)
    except InvalidTransitionError:
        return "⚠️ This employee's status changed in the meantime. Please try again."
    except AttendanceBotError as e:
        return f"❌ {e}"
    logger.info(f"Manual {kind.value.lower()} recorded for {result.employee.name} at {result.at_time}")
    return _manual_result_text(result)


@admin_only
async def admin_attendance_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    query = update.callback_query
    data = query.data
    ctx = get_app_context()
    await query.answer()

    if data == config.CB_ADMIN_CANCEL:
        _clear_admin_state(context)
        await query.edit_message_text("Cancelled.")
        return

    if data.startswith(config.CB_ADMIN_CHECKIN_EMP) or data.startswith(config.CB_ADMIN_CHECKOUT_EMP):
        is_checkin = data.startswith(config.CB_ADMIN_CHECKIN_EMP)
        prefix = config.CB_ADMIN_CHECKIN_EMP if is_checkin else config.CB_ADMIN_CHECKOUT_EMP
        employee = await ctx.store.get_employee(int(data[len(prefix):]))
        if employee is None:
            await query.edit_message_text("❌ Employee not found.")
            return
        action = "arrived" if is_checkin else "left"
        time_prefix = config.CB_ADMIN_CHECKIN_TIME if is_checkin else config.CB_ADMIN_CHECKOUT_TIME
        await query.edit_message_text(
            f"🕐 When did {employee.name} {'arrive' if is_checkin else 'leave'}?\n\nPick how long ago they {action}:",
            reply_markup=minutes_ago_keyboard(time_prefix, employee.id),
        )
        return

    for time_prefix, kind, awaiting in (
        (config.CB_ADMIN_CHECKIN_TIME, AttendanceKind.ARRIVAL, AWAITING_ADMIN_CHECKIN_TIME),
        (config.CB_ADMIN_CHECKOUT_TIME, AttendanceKind.DEPARTURE, AWAITING_ADMIN_CHECKOUT_TIME),
    ):
        if not data.startswith(time_prefix):
            continue
        employee_id_text, choice = data[len(time_prefix):].split("_")
        if choice == "custom":
            context.user_data["awaiting"] = awaiting
            context.user_data["admin_employee_id"] = int(employee_id_text)
            label = "arrival" if kind == AttendanceKind.ARRIVAL else "departure"
            await query.edit_message_text(f"Please reply with the {label} time in HH:MM format (e.g., 09:30).")
            return
        _clear_admin_state(context)
        await query.edit_message_text(
            await _apply_manual_attendance(ctx, int(employee_id_text), kind, minutes_ago=int(choice))
        )
        return


@admin_only
async def admin_custom_time_text(update: Update, context: ContextTypes.DEFAULT_TYPE, admin: Employee):
    """Handles the typed HH:MM reply after an admin picked "Custom time"."""
    awaiting = context.user_data.get("awaiting")
    employee_id = context.user_data.get("admin_employee_id")
    if employee_id is None:
        _clear_admin_state(context)
        await update.message.reply_text("This action has expired. Please start again.")
        return
    kind = AttendanceKind.ARRIVAL if awaiting == AWAITING_ADMIN_CHECKIN_TIME else AttendanceKind.DEPARTURE
    message = await _apply_manual_attendance(get_app_context(), employee_id, kind, at_time=update.message.text)
    # A malformed time keeps the prompt open so the admin can retry.
    if not message.startswith("❌ Invalid time format"):
        _clear_admin_state(context)
    await update.message.reply_text(message)
