from datetime import date, datetime

import attendance
import jobs
from conftest import TODAY, FakeScheduler
from models import BotSettings, CheckInStatus, EventType


async def test_arrival_check_opens_days_inside_the_window(ctx, store, notifier, time_machine, alice):
    exempt = store.add_employee("Exempt", exempt_from_tracking=True)
    unlinked = store.add_employee("Unlinked", telegram_id=None)

    time_machine.set("08:59")
    await jobs.arrival_check_job(ctx)
    assert store.checkins == {}

    time_machine.set("09:00")
    await jobs.arrival_check_job(ctx)
    time_machine.set("09:01")
    await jobs.arrival_check_job(ctx)

    assert await store.get_checkin(alice.id, TODAY) is not None
    assert await store.get_checkin(exempt.id, TODAY) is None
    assert await store.get_checkin(unlinked.id, TODAY) is None
    assert len(store.checkins) == 1
    assert len(notifier.texts_to(alice.telegram_id)) == 1


async def test_arrival_check_catches_up_later_in_the_window(ctx, store, time_machine, alice):
    time_machine.set("09:45")
    await jobs.arrival_check_job(ctx)
    assert (await store.get_checkin(alice.id, TODAY)).status == CheckInStatus.WAITING_ARRIVAL


async def test_arrival_check_skips_weekends(ctx, store, time_machine, alice):
    time_machine.set("09:30", day=date(2025, 3, 15))
    await jobs.arrival_check_job(ctx)
    assert store.checkins == {}


async def test_jobs_do_nothing_while_bot_is_disabled(ctx, store, notifier, alice):
    ctx.settings = BotSettings(timezone_offset=0, bot_enabled=False)
    await jobs.arrival_check_job(ctx)
    await jobs.morning_report_job(ctx)
    assert store.checkins == {}
    assert notifier.admin_messages == []


async def test_departure_check_prompts_at_expected_time_only(ctx, store, notifier, time_machine, alice):
    record = await attendance.initiate_arrival(ctx, alice)
    await attendance.confirm_arrival(ctx, record, alice, "09:00")

    time_machine.set("16:59")
    await jobs.departure_check_job(ctx)
    assert store.checkins[record.id].status == CheckInStatus.ARRIVED

    time_machine.set("17:00")
    await jobs.departure_check_job(ctx)
    assert store.checkins[record.id].status == CheckInStatus.WAITING_DEPARTURE


async def test_departure_check_leaves_overdue_days_to_auto_checkout(ctx, store, time_machine, alice):
    record = await attendance.initiate_arrival(ctx, alice)
    await attendance.confirm_arrival(ctx, record, alice, "09:00")

    time_machine.set("17:30")
    await jobs.departure_check_job(ctx)
    assert store.checkins[record.id].status == CheckInStatus.ARRIVED

    await jobs.auto_checkout_job(ctx)
    closed = store.checkins[record.id]
    assert closed.status == CheckInStatus.LEFT
    assert closed.actual_departure_time == "17:00"


async def test_auto_checkout_covers_yesterday(ctx, store, time_machine, alice):
    yesterday = date(2025, 3, 11)
    await store.create_checkin(
        alice.id, yesterday, CheckInStatus.WAITING_DEPARTURE_REMINDER,
        actual_arrival_time="16:00", expected_departure_at=datetime(2025, 3, 12, 0, 0),
    )
    time_machine.set("00:45")
    await jobs.auto_checkout_job(ctx)
    record = await store.get_checkin(alice.id, yesterday)
    assert record.status == CheckInStatus.LEFT
    assert record.actual_departure_time == "00:00"


async def test_follow_up_job_reminds_deferred_employees(ctx, store, notifier, time_machine, alice):
    record = await attendance.initiate_arrival(ctx, alice)
    await attendance.defer_arrival(ctx, record, datetime(2025, 3, 12, 9, 40))

    time_machine.set("09:39")
    await jobs.arrival_follow_up_job(ctx)
    time_machine.set("09:40")
    await jobs.arrival_follow_up_job(ctx)
    await jobs.arrival_follow_up_job(ctx)

    reminders = [t for t in notifier.texts_to(alice.telegram_id) if "Are you in the office now?" in t]
    assert len(reminders) == 1


async def test_missed_sweep_marks_and_alerts_once(ctx, store, notifier, time_machine, alice):
    bob = store.add_employee("Bob")
    carol = store.add_employee("Carol")
    dave = store.add_employee("Dave")
    exempt = store.add_employee("Exempt", exempt_from_tracking=True)
    await store.create_event(dave.id, EventType.VACATION, TODAY, end_date=TODAY, moderated=True)
    await attendance.initiate_arrival(ctx, bob)
    carol_record = await attendance.initiate_arrival(ctx, carol)
    await attendance.confirm_arrival(ctx, carol_record, carol, "09:10")

    time_machine.set("12:00")
    await jobs.missed_checkin_job(ctx)
    await jobs.missed_checkin_job(ctx)

    assert (await store.get_checkin(alice.id, TODAY)).status == CheckInStatus.MISSED
    assert (await store.get_checkin(bob.id, TODAY)).status == CheckInStatus.MISSED
    assert (await store.get_checkin(carol.id, TODAY)).status == CheckInStatus.ARRIVED
    assert await store.get_checkin(dave.id, TODAY) is None
    assert await store.get_checkin(exempt.id, TODAY) is None
    assert len(notifier.admin_messages) == 1
    alert = notifier.admin_messages[0][0]
    assert "Alice" in alert and "Bob" in alert and "Carol" not in alert
    assert "Exempt" not in alert


async def test_arrival_check_survives_a_broken_employee(ctx, store, time_machine, alice):
    broken = store.add_employee("Broken", arrival_window_start="9am")
    time_machine.set("09:30")

    await jobs.arrival_check_job(ctx)

    assert await store.get_checkin(broken.id, TODAY) is None
    assert (await store.get_checkin(alice.id, TODAY)).status == CheckInStatus.WAITING_ARRIVAL


async def test_auto_checkout_survives_a_broken_record(ctx, store, time_machine, alice):
    broken = store.add_employee("Broken")
    await store.create_checkin(broken.id, TODAY, CheckInStatus.ARRIVED, actual_arrival_time="9am")
    await store.create_checkin(alice.id, TODAY, CheckInStatus.ARRIVED, actual_arrival_time="09:00")
    time_machine.set("17:30")

    await jobs.auto_checkout_job(ctx)

    assert (await store.get_checkin(broken.id, TODAY)).status == CheckInStatus.ARRIVED
    record = await store.get_checkin(alice.id, TODAY)
    assert record.status == CheckInStatus.LEFT
    assert record.actual_departure_time == "17:00"


async def test_anniversary_job_notifies_employee_and_admins(ctx, store, notifier, alice):
    veteran = store.add_employee("Veteran", start_date=date(2023, 3, 12))
    await jobs.anniversary_job(ctx)

    texts = notifier.texts_to(veteran.telegram_id)
    assert len(texts) == 1 and "2 years" in texts[0]
    assert notifier.texts_to(alice.telegram_id) == []
    assert len(notifier.admin_messages) == 1


async def test_morning_report_job_sends_to_admins(ctx, notifier, alice):
    await jobs.morning_report_job(ctx)
    assert "Daily Report" in notifier.admin_messages[0][0]


def test_schedule_jobs_registers_interval_and_daily_jobs(ctx):
    scheduler = FakeScheduler()
    jobs.schedule_jobs(scheduler, ctx)

    assert ctx.scheduler is scheduler
    for name in ("arrival_check_job", "departure_check_job", "arrival_follow_up_job",
                 "auto_checkout_job", "refresh_settings_job"):
        assert scheduler.jobs[name][1] == "interval"
    for job_id in jobs.DAILY_JOB_IDS:
        assert scheduler.jobs[job_id][1] == "cron"
    assert scheduler.jobs["weekly_report"][2]["day_of_week"] == "mon"
    assert scheduler.jobs["missed_checkin"][2]["hour"] == 12


async def test_settings_change_reschedules_daily_jobs(ctx, store):
    scheduler = FakeScheduler()
    jobs.schedule_jobs(scheduler, ctx)

    await jobs.refresh_settings_job(ctx)
    assert scheduler.jobs["morning_report"][2]["hour"] == 9

    await store.update_settings(morning_report_time="08:15")
    await jobs.refresh_settings_job(ctx)
    assert ctx.settings.morning_report_time == "08:15"
    assert scheduler.jobs["morning_report"][2]["hour"] == 8
    assert scheduler.jobs["morning_report"][2]["minute"] == 15
