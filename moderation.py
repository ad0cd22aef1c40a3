import logging
from typing import List, NamedTuple, Optional

import config
from errors import AlreadyModeratedError, NotFoundError, ValidationError
from models import DAY_OFF_TYPES, Employee, Event, EventType, PaymentType
from timeutils import format_period

logger = logging.getLogger(__name__)


class PendingItem(NamedTuple):
    event: Event
    employee: Optional[Employee]


def event_emoji(event_type: EventType) -> str:
    return config.EVENT_TYPE_EMOJI.get(event_type.value, config.DEFAULT_EVENT_EMOJI)


async def _pending_event_or_raise(ctx, event_id: int) -> Event:
    event = await ctx.store.get_event(event_id)
    if event is None:
        raise NotFoundError("This request no longer exists. It may have been rejected already.")
    if event.moderated:
        raise AlreadyModeratedError("This request has already been approved.")
    return event


async def _raise_lost_race(ctx, event_id: int):
    # The conditional update found nothing: either deleted or approved in the meantime.
    if await ctx.store.get_event(event_id) is None:
        raise NotFoundError("This request no longer exists. It may have been rejected already.")
    raise AlreadyModeratedError("This request has already been approved.")


async def _notify_employee(ctx, event: Event, text: str):
    if event.employee_id is None:
        return
    employee = await ctx.store.get_employee(event.employee_id)
    if employee is None or employee.telegram_id is None:
        return
    await ctx.notifier.send_to_user(employee.telegram_id, text)


async def approve(ctx, event_id: int) -> Event:
    await _pending_event_or_raise(ctx, event_id)
    event = await ctx.store.moderate_event(event_id)
    if event is None:
        await _raise_lost_race(ctx, event_id)
    logger.info(f"Event #{event.id} ({event.type.value}) approved.")
    await _notify_employee(
        ctx, event,
        f"{event_emoji(event.type)} Your {event.type.label} request for "
        f"{format_period(event.start_date, event.end_date)} has been approved! ✅",
    )
    return event


async def approve_day_off(ctx, event_id: int, payment_type: PaymentType) -> Event:
    """Approves a day-off request, fixing its type to paid or unpaid in the same update."""
    pending = await _pending_event_or_raise(ctx, event_id)
    if pending.type not in DAY_OFF_TYPES:
        raise ValidationError("Only day off requests can be approved as paid or unpaid.")
    new_type = EventType.DAY_OFF_PAID if payment_type == PaymentType.PAID else EventType.DAY_OFF_UNPAID
    event = await ctx.store.moderate_event(event_id, new_type=new_type)
    if event is None:
        await _raise_lost_race(ctx, event_id)
    logger.info(f"Day off #{event.id} approved as {payment_type.value}.")
    await _notify_employee(
        ctx, event,
        f"{event_emoji(event.type)} Your day off on {format_period(event.start_date, event.end_date)} "
        f"has been approved as {payment_type.value.lower()}! ✅",
    )
    return event


async def reject(ctx, event_id: int) -> Event:
    """Rejection deletes the request for good."""
    await _pending_event_or_raise(ctx, event_id)
    event = await ctx.store.delete_pending_event(event_id)
    if event is None:
        await _raise_lost_race(ctx, event_id)
    logger.info(f"Event #{event.id} ({event.type.value}) rejected and deleted.")
    await _notify_employee(
        ctx, event,
        f"❌ Your {event.type.label} request for "
        f"{format_period(event.start_date, event.end_date)} has been rejected.",
    )
    return event


async def list_pending(ctx) -> List[PendingItem]:
    events = await ctx.store.list_pending_events()
    items = []
    for event in events:
        employee = await ctx.store.get_employee(event.employee_id) if event.employee_id else None
        items.append(PendingItem(event, employee))
    return items


def format_pending_item(item: PendingItem) -> str:
    event = item.event
    name = item.employee.name if item.employee else "Global"
    lines = [
        f"{event_emoji(event.type)} {event.type.label.capitalize()} #{event.id}",
        f"👤 {name}",
        f"📅 {format_period(event.start_date, event.end_date)}",
    ]
    if event.notes:
        lines.append(f"📝 {event.notes}")
    return "\n".join(lines)
