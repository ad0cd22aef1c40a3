from datetime import date

import pytest

import leave_requests
from conftest import TODAY
from errors import NotFoundError, ValidationError
from models import EventType


def test_parse_date_arg():
    assert leave_requests.parse_date_arg("2025-03-20") == date(2025, 3, 20)
    with pytest.raises(ValidationError, match="YYYY-MM-DD"):
        leave_requests.parse_date_arg("20.03.2025")


def test_add_months_clamps_to_month_end():
    assert leave_requests.add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
    assert leave_requests.add_months(date(2024, 10, 15), 3) == date(2025, 1, 15)


async def test_vacation_quote(ctx, store, alice):
    quote = await leave_requests.quote_vacation(ctx, alice, date(2025, 3, 14), date(2025, 3, 18))
    assert quote.days == 5
    assert quote.remaining_after == alice.vacation_days_per_year - 5
    assert quote.conflicts == 0

    await store.create_event(alice.id, EventType.HOME_OFFICE, date(2025, 3, 17))
    quote = await leave_requests.quote_vacation(ctx, alice, date(2025, 3, 14), date(2025, 3, 18))
    assert quote.conflicts == 1


@pytest.mark.parametrize("start, end", [
    (date(2025, 3, 13), date(2025, 3, 13)),
    (date(2025, 3, 20), date(2025, 3, 18)),
])
async def test_vacation_date_rules(ctx, alice, start, end):
    with pytest.raises(ValidationError):
        await leave_requests.quote_vacation(ctx, alice, start, end)


async def test_vacation_over_balance(ctx, store):
    short = store.add_employee("Short", vacation_days_per_year=3)
    with pytest.raises(ValidationError, match="Insufficient balance"):
        await leave_requests.quote_vacation(ctx, short, date(2025, 3, 14), date(2025, 3, 17))


async def test_vacation_request_goes_to_moderation(ctx, store, notifier, alice):
    event = await leave_requests.request_vacation(ctx, alice, date(2025, 3, 14), date(2025, 3, 18))

    assert not event.moderated
    assert event.type == EventType.VACATION
    assert event.end_date == date(2025, 3, 18)
    text, markup = notifier.admin_messages[0]
    assert "New Vacation Request" in text
    callbacks = [button.callback_data for row in markup.inline_keyboard for button in row]
    assert f"moderate_approve_{event.id}" in callbacks


async def test_home_office_defaults_to_tomorrow(ctx, store, alice):
    assert await leave_requests.validate_home_office(ctx, alice) == date(2025, 3, 13)
    with pytest.raises(ValidationError):
        await leave_requests.validate_home_office(ctx, alice, TODAY)

    await store.create_event(alice.id, EventType.VACATION, date(2025, 3, 13), moderated=True)
    with pytest.raises(ValidationError, match="already have an event"):
        await leave_requests.request_home_office(ctx, alice, date(2025, 3, 13))


async def test_sick_day_only_for_tomorrow(ctx, alice):
    event = await leave_requests.request_sick_day(ctx, alice, date(2025, 3, 13))
    assert event.type == EventType.SICK_DAY
    assert event.notes == "Reported via Telegram bot"
    with pytest.raises(ValidationError):
        await leave_requests.request_sick_day(ctx, alice, date(2025, 3, 14))


async def test_day_off_rules(ctx, alice):
    with pytest.raises(ValidationError):
        await leave_requests.validate_day_off(ctx, alice, TODAY)
    with pytest.raises(ValidationError):
        await leave_requests.validate_day_off(ctx, alice, date(2025, 4, 12))

    event = await leave_requests.request_day_off(ctx, alice, date(2025, 3, 17))
    assert event.type == EventType.DAY_OFF_PAID
    assert event.notes == "Day off request"
    with pytest.raises(ValidationError, match="pending day off"):
        await leave_requests.request_day_off(ctx, alice, date(2025, 3, 17), "Dentist")


async def test_day_off_keeps_reason(ctx, alice):
    event = await leave_requests.request_day_off(ctx, alice, date(2025, 3, 18), "  Moving house ")
    assert event.notes == "Moving house"


async def test_global_holiday(ctx, store, alice):
    event = await leave_requests.create_global_holiday(ctx, date(2025, 5, 1), None, "Labour Day")
    assert event.is_global and event.moderated and event.employee_id is None
    assert event.end_date == date(2025, 5, 1)
    assert await store.list_global_holidays() == [event]
    with pytest.raises(ValidationError):
        await leave_requests.create_global_holiday(ctx, date(2025, 5, 1), None, "  ")


async def test_create_employee_adds_milestones(ctx, store):
    employee = await leave_requests.create_employee(
        ctx, name="Newbie", email="newbie@example.com", start_date=date(2024, 11, 30)
    )
    events = await store.list_events_for_employee(employee.id)
    milestones = {e.type: e.start_date for e in events}
    assert milestones == {
        EventType.START_WORKING: date(2024, 11, 30),
        EventType.PROBATION_FINISHED: date(2025, 2, 28),
    }
    with pytest.raises(ValidationError, match="already exists"):
        await leave_requests.create_employee(ctx, name="Again", email="NEWBIE@example.com", start_date=TODAY)


async def test_last_day_archives_when_reached(ctx, store, alice):
    bob = store.add_employee("Bob")
    await leave_requests.record_last_day(ctx, alice.id, date(2025, 4, 30))
    await leave_requests.record_last_day(ctx, bob.id, TODAY, notes="Relocated")

    assert not (await store.get_employee(alice.id)).archived
    assert (await store.get_employee(bob.id)).archived
    assert [e.id for e in await store.list_active_employees()] == [alice.id]
    with pytest.raises(NotFoundError):
        await leave_requests.record_last_day(ctx, 999, TODAY)
