from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

import config


class CheckInStatus(str, Enum):
    WAITING_ARRIVAL = "WAITING_ARRIVAL"
    WAITING_ARRIVAL_REMINDER = "WAITING_ARRIVAL_REMINDER"
    ARRIVED = "ARRIVED"
    WAITING_DEPARTURE = "WAITING_DEPARTURE"
    WAITING_DEPARTURE_REMINDER = "WAITING_DEPARTURE_REMINDER"
    LEFT = "LEFT"
    MISSED = "MISSED"


class EventType(str, Enum):
    VACATION = "VACATION"
    SICK_DAY = "SICK_DAY"
    HOME_OFFICE = "HOME_OFFICE"
    HOLIDAY = "HOLIDAY"
    LATE_LEFT_EARLY = "LATE_LEFT_EARLY"
    DAY_OFF_PAID = "DAY_OFF_PAID"
    DAY_OFF_UNPAID = "DAY_OFF_UNPAID"
    START_WORKING = "START_WORKING"
    PROBATION_FINISHED = "PROBATION_FINISHED"
    LAST_DAY = "LAST_DAY"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").lower()


class EventSubtype(str, Enum):
    LATE_ARRIVAL = "LATE_ARRIVAL"
    LEFT_EARLY = "LEFT_EARLY"


class PaymentType(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"


class AttendanceKind(str, Enum):
    ARRIVAL = "ARRIVAL"
    DEPARTURE = "DEPARTURE"


# Approved events of these types mean the employee is not expected in the office.
ABSENCE_EVENT_TYPES = (
    EventType.VACATION,
    EventType.SICK_DAY,
    EventType.HOLIDAY,
    EventType.HOME_OFFICE,
)
DAY_OFF_TYPES = (EventType.DAY_OFF_PAID, EventType.DAY_OFF_UNPAID)

# Statuses that mean the employee was physically in the office.
PRESENT_STATUSES = (
    CheckInStatus.ARRIVED,
    CheckInStatus.WAITING_DEPARTURE,
    CheckInStatus.WAITING_DEPARTURE_REMINDER,
    CheckInStatus.LEFT,
)
AWAITING_ARRIVAL_STATUSES = (
    CheckInStatus.WAITING_ARRIVAL,
    CheckInStatus.WAITING_ARRIVAL_REMINDER,
)
IN_OFFICE_STATUSES = (
    CheckInStatus.ARRIVED,
    CheckInStatus.WAITING_DEPARTURE,
    CheckInStatus.WAITING_DEPARTURE_REMINDER,
)


class Employee(BaseModel):
    id: int
    name: str
    email: str
    telegram_id: Optional[int] = None
    arrival_window_start: str = config.DEFAULT_ARRIVAL_WINDOW_START
    arrival_window_end: str = config.DEFAULT_ARRIVAL_WINDOW_END
    work_hours_per_day: int = config.DEFAULT_WORK_HOURS_PER_DAY
    half_day_on_fridays: bool = False
    work_hours_on_friday: int = config.DEFAULT_WORK_HOURS_ON_FRIDAY
    recurring_home_office_days: List[int] = Field(default_factory=list)
    exempt_from_tracking: bool = False
    vacation_days_per_year: int = config.DEFAULT_VACATION_DAYS_PER_YEAR
    holiday_days_per_year: int = config.DEFAULT_HOLIDAY_DAYS_PER_YEAR
    start_date: dt.date
    archived: bool = False
    archived_at: Optional[dt.datetime] = None


class AttendanceCheckIn(BaseModel):
    id: int
    employee_id: int
    date: dt.date
    status: CheckInStatus
    asked_arrival_at: Optional[dt.datetime] = None
    confirmed_arrival_at: Optional[dt.datetime] = None
    actual_arrival_time: Optional[str] = None
    expected_arrival_at: Optional[dt.datetime] = None
    last_arrival_reminder_at: Optional[dt.datetime] = None
    asked_departure_at: Optional[dt.datetime] = None
    expected_departure_at: Optional[dt.datetime] = None
    confirmed_departure_at: Optional[dt.datetime] = None
    actual_departure_time: Optional[str] = None
    auto_checked_out: bool = False


class Event(BaseModel):
    id: int
    employee_id: Optional[int] = None
    type: EventType
    subtype: Optional[EventSubtype] = None
    start_date: dt.date
    end_date: Optional[dt.date] = None
    notes: Optional[str] = None
    moderated: bool = False
    is_global: bool = False
    created_by_id: Optional[int] = None
    created_at: Optional[dt.datetime] = None

    @property
    def last_day(self) -> dt.date:
        return self.end_date or self.start_date

    def covers(self, day: dt.date) -> bool:
        return self.start_date <= day <= self.last_day


class BotSettings(BaseModel):
    timezone_offset: float = config.DEFAULT_TIMEZONE_OFFSET
    morning_report_time: str = config.DEFAULT_MORNING_REPORT_TIME
    end_of_day_report_time: str = config.DEFAULT_END_OF_DAY_REPORT_TIME
    missed_check_in_time: str = config.DEFAULT_MISSED_CHECK_IN_TIME
    arrival_reminder_interval: int = config.DEFAULT_ARRIVAL_REMINDER_INTERVAL
    auto_checkout_buffer_minutes: int = config.DEFAULT_AUTO_CHECKOUT_BUFFER_MINUTES
    bot_enabled: bool = True
    updated_at: Optional[dt.datetime] = None
