from datetime import date

import pytest

import moderation
from errors import AlreadyModeratedError, NotFoundError, ValidationError
from models import EventType, PaymentType


async def _pending(store, employee, event_type=EventType.VACATION, start=date(2025, 3, 20), end=date(2025, 3, 21)):
    return await store.create_event(employee.id, event_type, start, end_date=end, notes="Requested via Telegram bot")


async def test_approve_marks_moderated_and_notifies(ctx, store, notifier, alice):
    event = await _pending(store, alice)

    approved = await moderation.approve(ctx, event.id)

    assert approved.moderated
    assert (await store.get_event(event.id)).moderated
    text = notifier.texts_to(alice.telegram_id)[-1]
    assert "vacation request" in text and "approved" in text


async def test_second_approval_is_rejected(ctx, store, alice):
    event = await _pending(store, alice)
    await moderation.approve(ctx, event.id)
    with pytest.raises(AlreadyModeratedError):
        await moderation.approve(ctx, event.id)
    with pytest.raises(AlreadyModeratedError):
        await moderation.reject(ctx, event.id)


async def test_reject_deletes_permanently(ctx, store, notifier, alice):
    event = await _pending(store, alice, EventType.HOME_OFFICE, date(2025, 3, 13), date(2025, 3, 13))

    await moderation.reject(ctx, event.id)

    assert await store.get_event(event.id) is None
    assert "rejected" in notifier.texts_to(alice.telegram_id)[-1]
    with pytest.raises(NotFoundError):
        await moderation.approve(ctx, event.id)


async def test_day_off_approval_sets_payment_type(ctx, store, notifier, alice):
    event = await _pending(store, alice, EventType.DAY_OFF_PAID, date(2025, 3, 17), date(2025, 3, 17))

    approved = await moderation.approve_day_off(ctx, event.id, PaymentType.UNPAID)

    assert approved.type == EventType.DAY_OFF_UNPAID
    assert approved.moderated
    assert "approved as unpaid" in notifier.texts_to(alice.telegram_id)[-1]


async def test_payment_choice_only_for_day_off(ctx, store, alice):
    event = await _pending(store, alice)
    with pytest.raises(ValidationError):
        await moderation.approve_day_off(ctx, event.id, PaymentType.PAID)
    assert not (await store.get_event(event.id)).moderated


async def test_unlinked_employee_is_not_messaged(ctx, store, notifier):
    offline = store.add_employee("Offline", telegram_id=None)
    event = await _pending(store, offline)
    await moderation.approve(ctx, event.id)
    assert notifier.user_messages == []


async def test_list_and_format_pending(ctx, store, alice):
    event = await _pending(store, alice, EventType.SICK_DAY, date(2025, 3, 13), date(2025, 3, 13))
    await store.create_event(alice.id, EventType.VACATION, date(2025, 4, 1), moderated=True)

    items = await moderation.list_pending(ctx)

    assert [item.event.id for item in items] == [event.id]
    text = moderation.format_pending_item(items[0])
    assert "🤒 Sick day" in text
    assert "👤 Alice" in text
    assert "Mar 13, 2025" in text
