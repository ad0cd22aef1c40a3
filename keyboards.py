# keyboards.py
from datetime import date, timedelta
from typing import Iterable, List

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

import config
from models import DAY_OFF_TYPES, Employee, Event


def _minutes_label(minutes: int) -> str:
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"


def _pairs(buttons: List[InlineKeyboardButton]) -> List[List[InlineKeyboardButton]]:
    return [buttons[i:i + 2] for i in range(0, len(buttons), 2)]


def arrival_keyboard(follow_up: bool = False):
    yes_text = config.BUTTON_ARRIVAL_FOLLOW_UP_YES if follow_up else config.BUTTON_ARRIVAL_YES
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(yes_text, callback_data=config.CB_ARRIVAL_YES),
        InlineKeyboardButton(config.BUTTON_ARRIVAL_NOT_YET, callback_data=config.CB_ARRIVAL_NOT_YET),
    ]])


def arrival_eta_keyboard():
    buttons = [
        InlineKeyboardButton(_minutes_label(m), callback_data=f"{config.CB_ARRIVAL_IN}{m}")
        for m in config.ARRIVAL_ETA_OPTIONS
    ]
    buttons.append(InlineKeyboardButton(config.BUTTON_OTHER, callback_data=config.CB_ARRIVAL_OTHER))
    return InlineKeyboardMarkup(_pairs(buttons))


def departure_keyboard():
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(config.BUTTON_STILL_HERE, callback_data=config.CB_DEPARTURE_STILL_HERE),
        InlineKeyboardButton(config.BUTTON_ALREADY_LEFT, callback_data=config.CB_DEPARTURE_LEFT),
    ]])


def departure_ago_keyboard():
    buttons = [
        InlineKeyboardButton(f"{_minutes_label(m)} ago", callback_data=f"{config.CB_DEPARTURE_LEFT_AGO}{m}")
        for m in config.DEPARTURE_AGO_OPTIONS
    ]
    buttons.append(InlineKeyboardButton(config.BUTTON_OTHER, callback_data=config.CB_DEPARTURE_LEFT_OTHER))
    return InlineKeyboardMarkup(_pairs(buttons))


def moderation_keyboard(event: Event):
    """Approve/reject buttons; day-off requests get a paid/unpaid choice instead of a plain approve."""
    if event.type in DAY_OFF_TYPES:
        return InlineKeyboardMarkup([
            [
                InlineKeyboardButton(config.BUTTON_APPROVE_PAID, callback_data=f"{config.CB_MODERATE_PAID}{event.id}"),
                InlineKeyboardButton(config.BUTTON_APPROVE_UNPAID, callback_data=f"{config.CB_MODERATE_UNPAID}{event.id}"),
            ],
            [InlineKeyboardButton(config.BUTTON_REJECT, callback_data=f"{config.CB_MODERATE_REJECT}{event.id}")],
        ])
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(config.BUTTON_APPROVE, callback_data=f"{config.CB_MODERATE_APPROVE}{event.id}"),
        InlineKeyboardButton(config.BUTTON_REJECT, callback_data=f"{config.CB_MODERATE_REJECT}{event.id}"),
    ]])


def confirm_keyboard(confirm_prefix: str, payload: str, cancel_data: str, confirm_text: str = config.BUTTON_CONFIRM_REQUEST):
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(confirm_text, callback_data=f"{confirm_prefix}{payload}"),
        InlineKeyboardButton(config.BUTTON_CANCEL, callback_data=cancel_data),
    ]])


def day_off_dates_keyboard(today: date):
    buttons = []
    for offset in range(1, config.DAY_OFF_WINDOW_DAYS + 1):
        day = today + timedelta(days=offset)
        label = f"{config.DAYS_OF_WEEK[(day.weekday() + 1) % 7][:3]} {day.strftime('%d.%m')}"
        buttons.append(InlineKeyboardButton(label, callback_data=f"{config.CB_DAYOFF_DATE}{day.isoformat()}"))
    rows = [buttons[i:i + 3] for i in range(0, len(buttons), 3)]
    rows.append([InlineKeyboardButton(config.BUTTON_CANCEL, callback_data=config.CB_DAYOFF_CANCEL)])
    return InlineKeyboardMarkup(rows)


def employees_keyboard(employees: Iterable[Employee], prefix: str):
    buttons = [InlineKeyboardButton(e.name, callback_data=f"{prefix}{e.id}") for e in employees]
    rows = _pairs(buttons)
    rows.append([InlineKeyboardButton(config.BUTTON_CANCEL, callback_data=config.CB_ADMIN_CANCEL)])
    return InlineKeyboardMarkup(rows)


def minutes_ago_keyboard(prefix: str, employee_id: int):
    buttons = [
        InlineKeyboardButton("Now" if m == 0 else f"{m} min ago", callback_data=f"{prefix}{employee_id}_{m}")
        for m in config.ADMIN_MINUTES_AGO_OPTIONS
    ]
    buttons.append(InlineKeyboardButton(config.BUTTON_CUSTOM_TIME, callback_data=f"{prefix}{employee_id}_custom"))
    rows = _pairs(buttons)
    rows.append([InlineKeyboardButton(config.BUTTON_CANCEL, callback_data=config.CB_ADMIN_CANCEL)])
    return InlineKeyboardMarkup(rows)
