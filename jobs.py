import logging
from datetime import timedelta

import attendance
from event_gate import is_tracking_suppressed
from models import AWAITING_ARRIVAL_STATUSES, CheckInStatus
from reports import (
    anniversary_messages,
    build_end_of_day_report,
    build_missed_alert,
    build_morning_report,
    build_weekly_report,
)
from timeutils import combine, to_minutes, work_hours_for_today

logger = logging.getLogger(__name__)

DAILY_JOB_IDS = ("missed_checkin", "morning_report", "anniversary_check", "end_of_day_report", "weekly_report")


def _bot_enabled(ctx, job_name: str) -> bool:
    if not ctx.settings.bot_enabled:
        logger.debug(f"Bot disabled, skipping {job_name}.")
        return False
    return True


async def _active_employees_by_id(ctx) -> dict:
    return {e.id: e for e in await ctx.store.list_active_employees()}


async def arrival_check_job(ctx):
    """Opens the day for every tracked employee once their arrival window has started."""
    if not _bot_enabled(ctx, "arrival check") or ctx.clock.is_weekend():
        return
    now_minutes = to_minutes(ctx.clock.time_of_day())
    employees = await ctx.store.list_active_employees(linked_only=True)
    for employee in employees:
        try:
            # Whole window, not just its start, so a tick missed during downtime still opens the day.
            if not to_minutes(employee.arrival_window_start) <= now_minutes <= to_minutes(employee.arrival_window_end):
                continue
            if await ctx.store.get_checkin(employee.id, ctx.clock.today()):
                continue
            if await attendance.initiate_arrival(ctx, employee):
                logger.info(f"Arrival prompt sent to {employee.name}")
        except Exception as e:
            logger.error(f"Arrival check failed for {employee.name} (ID: {employee.id}): {e}", exc_info=True)


async def departure_check_job(ctx):
    if not _bot_enabled(ctx, "departure check"):
        return
    now = ctx.clock.now()
    buffer = timedelta(minutes=ctx.settings.auto_checkout_buffer_minutes)
    employees = await _active_employees_by_id(ctx)
    records = await ctx.store.list_checkins(ctx.clock.today(), statuses=[CheckInStatus.ARRIVED])
    for record in records:
        employee = employees.get(record.employee_id)
        if employee is None or employee.exempt_from_tracking or not record.actual_arrival_time:
            continue
        try:
            expected_at = record.expected_departure_at or (
                combine(record.date, record.actual_arrival_time)
                + timedelta(hours=work_hours_for_today(employee, ctx.clock))
            )
            # Past the buffer the auto-checkout sweep closes the day instead.
            if not expected_at <= now < expected_at + buffer:
                continue
            if await attendance.initiate_departure(ctx, record, employee):
                logger.info(f"Departure prompt sent to {employee.name}")
        except Exception as e:
            logger.error(f"Departure check failed for {employee.name} (ID: {employee.id}): {e}", exc_info=True)


async def arrival_follow_up_job(ctx):
    if not _bot_enabled(ctx, "arrival follow-up"):
        return
    now = ctx.clock.now()
    employees = await _active_employees_by_id(ctx)
    records = await ctx.store.list_checkins(ctx.clock.today(), statuses=[CheckInStatus.WAITING_ARRIVAL_REMINDER])
    for record in records:
        employee = employees.get(record.employee_id)
        if employee is None or employee.exempt_from_tracking or employee.telegram_id is None:
            continue
        if record.expected_arrival_at is None or record.expected_arrival_at > now:
            continue
        try:
            await attendance.follow_up_arrival(ctx, record, employee)
        except Exception as e:
            logger.error(f"Arrival follow-up failed for {employee.name} (ID: {employee.id}): {e}", exc_info=True)


async def auto_checkout_job(ctx):
    if not _bot_enabled(ctx, "auto-checkout"):
        return
    today = ctx.clock.today()
    employees = await _active_employees_by_id(ctx)
    # Yesterday is included for days whose planned departure falls after midnight.
    records = await ctx.store.list_checkins(
        today - timedelta(days=1), today, statuses=attendance.AUTO_CHECKOUT_FROM
    )
    for record in records:
        employee = employees.get(record.employee_id)
        if employee is None:
            continue
        try:
            await attendance.auto_checkout(ctx, record, employee, ctx.settings.auto_checkout_buffer_minutes)
        except Exception as e:
            logger.error(f"Auto-checkout failed for {employee.name} (ID: {employee.id}): {e}", exc_info=True)


async def missed_checkin_job(ctx):
    """Marks everyone still unconfirmed at the deadline as MISSED and alerts admins once."""
    if not _bot_enabled(ctx, "missed check-in sweep") or ctx.clock.is_weekend():
        return
    today = ctx.clock.today()
    missed = []
    employees = await ctx.store.list_active_employees(linked_only=True)
    for employee in employees:
        try:
            if await is_tracking_suppressed(ctx, employee, today):
                continue
            record = await ctx.store.get_checkin(employee.id, today)
            if record is None:
                if await ctx.store.create_checkin(employee.id, today, CheckInStatus.MISSED):
                    missed.append(employee.name)
            elif record.status in AWAITING_ARRIVAL_STATUSES:
                if await attendance.mark_missed(ctx, record):
                    missed.append(employee.name)
        except Exception as e:
            logger.error(f"Missed check-in sweep failed for {employee.name} (ID: {employee.id}): {e}", exc_info=True)
    if missed:
        logger.info(f"Missed check-ins: {', '.join(missed)}")
        await ctx.notifier.send_to_admins(build_missed_alert(missed, ctx.clock.time_of_day()))


async def morning_report_job(ctx):
    if not _bot_enabled(ctx, "morning report"):
        return
    logger.info("Sending morning report...")
    await ctx.notifier.send_to_admins(await build_morning_report(ctx))


async def end_of_day_report_job(ctx):
    if not _bot_enabled(ctx, "end of day report"):
        return
    logger.info("Sending end of day report...")
    await ctx.notifier.send_to_admins(await build_end_of_day_report(ctx))


async def weekly_report_job(ctx):
    if not _bot_enabled(ctx, "weekly report"):
        return
    logger.info("Sending weekly report...")
    await ctx.notifier.send_to_admins(await build_weekly_report(ctx))


async def anniversary_job(ctx):
    if not _bot_enabled(ctx, "anniversary check"):
        return
    today = ctx.clock.today()
    employees = await ctx.store.list_active_employees()
    for employee in employees:
        try:
            messages = anniversary_messages(employee, today)
            if messages is None:
                continue
            employee_text, admin_text = messages
            if employee.telegram_id:
                await ctx.notifier.send_to_user(employee.telegram_id, employee_text)
            await ctx.notifier.send_to_admins(admin_text)
            logger.info(f"Work anniversary notification sent for {employee.name}")
        except Exception as e:
            logger.error(f"Anniversary check failed for {employee.name} (ID: {employee.id}): {e}", exc_info=True)


def _hour_minute(hhmm: str):
    hours, minutes = hhmm.split(":")
    return int(hours), int(minutes)


def schedule_daily_jobs(scheduler, ctx):
    """(Re)registers the cron jobs at the times and UTC offset from the cached settings."""
    settings = ctx.settings
    tz = ctx.clock.tzinfo
    morning_hour, morning_minute = _hour_minute(settings.morning_report_time)
    eod_hour, eod_minute = _hour_minute(settings.end_of_day_report_time)
    missed_hour, missed_minute = _hour_minute(settings.missed_check_in_time)
    daily = [
        ("missed_checkin", missed_checkin_job, {"hour": missed_hour, "minute": missed_minute}),
        ("morning_report", morning_report_job, {"hour": morning_hour, "minute": morning_minute}),
        ("anniversary_check", anniversary_job, {"hour": morning_hour, "minute": morning_minute}),
        ("end_of_day_report", end_of_day_report_job, {"hour": eod_hour, "minute": eod_minute}),
        ("weekly_report", weekly_report_job, {"day_of_week": "mon", "hour": morning_hour, "minute": morning_minute}),
    ]
    for job_id, func, when in daily:
        scheduler.add_job(func, "cron", timezone=tz, args=[ctx], id=job_id, replace_existing=True, **when)
    logger.info(
        f"Daily jobs scheduled: morning {settings.morning_report_time}, end of day {settings.end_of_day_report_time}, "
        f"missed check-ins {settings.missed_check_in_time} (UTC{ctx.clock.offset_hours:+g})"
    )


async def refresh_settings_job(ctx):
    """Picks up settings saved from the admin panel; ``updated_at`` is the change signal."""
    try:
        if await ctx.refresh_settings() and ctx.scheduler is not None:
            schedule_daily_jobs(ctx.scheduler, ctx)
    except Exception as e:
        logger.error(f"Settings refresh failed: {e}", exc_info=True)


async def reload_settings(ctx):
    settings = await ctx.load_settings()
    if ctx.scheduler is not None:
        schedule_daily_jobs(ctx.scheduler, ctx)
    return settings


def schedule_jobs(scheduler, ctx):
    ctx.scheduler = scheduler
    for func in (arrival_check_job, departure_check_job, arrival_follow_up_job, auto_checkout_job, refresh_settings_job):
        scheduler.add_job(func, "interval", minutes=1, args=[ctx], id=func.__name__, replace_existing=True)
    schedule_daily_jobs(scheduler, ctx)
