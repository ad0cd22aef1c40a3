import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

_HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
_IN_MINUTES_PATTERN = re.compile(r"^in\s+(\d+)\s*(?:min|mins|minute|minutes)?$", re.IGNORECASE)
_IN_HOURS_PATTERN = re.compile(r"^in\s+(\d+)\s*(?:hour|hours)$", re.IGNORECASE)
_IN_HOURS_MINUTES_PATTERN = re.compile(
    r"^in\s+(\d+)\s*(?:hour|hours)\s+(?:and\s+)?(\d+)\s*(?:min|mins|minute|minutes)?$", re.IGNORECASE
)
_JUST_NUMBER_PATTERN = re.compile(r"^(\d+)$")
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def weekday_number(day: date) -> int:
    # 0 = Sunday ... 6 = Saturday, the numbering stored in recurring_home_office_days
    return (day.weekday() + 1) % 7


class Clock:
    """Local wall clock under a single fixed UTC offset.

    The offset is cached; call :meth:`reload` after the settings change.
    """

    def __init__(self, offset_hours: float = config.DEFAULT_TIMEZONE_OFFSET, utcnow: Optional[Callable[[], datetime]] = None):
        self._offset = timedelta(hours=offset_hours)
        self._utcnow = utcnow or _utcnow

    @property
    def offset_hours(self) -> float:
        return self._offset.total_seconds() / 3600

    @property
    def tzinfo(self) -> timezone:
        return timezone(self._offset)

    def reload(self, settings) -> None:
        new_offset = timedelta(hours=settings.timezone_offset)
        if new_offset != self._offset:
            logger.info(f"Timezone offset changed: {self.offset_hours:+g}h -> {settings.timezone_offset:+g}h")
        self._offset = new_offset

    def now(self) -> datetime:
        return self._utcnow() + self._offset

    def today(self) -> date:
        return self.now().date()

    def time_of_day(self) -> str:
        return self.now().strftime("%H:%M")

    def weekday(self) -> int:
        return weekday_number(self.today())

    def is_friday(self) -> bool:
        return self.weekday() == 5

    def is_weekend(self) -> bool:
        return self.weekday() in (0, 6)


def parse_hhmm(text: str) -> Optional[str]:
    """Normalizes "9:05" / "09:05" to "09:05"; returns None when the text is not a valid time."""
    match = _HHMM_PATTERN.match(text.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_hhmm(total_minutes: int) -> str:
    total_minutes %= 24 * 60
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def add_minutes_to_time(hhmm: str, minutes: int) -> str:
    return minutes_to_hhmm(to_minutes(hhmm) + minutes)


def is_late(arrival_time: str, window_end: str) -> bool:
    return to_minutes(arrival_time) > to_minutes(window_end)


def calculate_departure_time(arrival_time: str, work_hours: int) -> str:
    return add_minutes_to_time(arrival_time, work_hours * 60)


def work_hours_for_today(employee, clock: Clock) -> int:
    if clock.is_friday() and employee.half_day_on_fridays:
        return employee.work_hours_on_friday
    return employee.work_hours_per_day


def combine(day: date, hhmm: str) -> datetime:
    """Datetime for an HH:MM on the given day; minutes past midnight roll into the next day."""
    return datetime.combine(day, datetime.min.time()) + timedelta(minutes=to_minutes(hhmm))


def format_duration(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if mins or not hours:
        parts.append(f"{mins}m")
    return " ".join(parts)


def format_date(value: date) -> str:
    return f"{_MONTHS[value.month - 1]} {value.day}, {value.year}"


def format_period(start: date, end: Optional[date]) -> str:
    if end and end != start:
        return f"{format_date(start)} - {format_date(end)}"
    return format_date(start)


def parse_iso_date(text: str) -> date:
    if not re.match(r"^\d{4}-\d{2}-\d{2}$", text):
        raise ValueError(f"Invalid date format: {text!r}")
    return date.fromisoformat(text)


def parse_expected_arrival(text: str, now: datetime) -> datetime:
    """Turns a free-text ETA ("in 15 mins", "in 1 hour 30 mins", "14:30", "45") into a datetime.

    Raises ValidationError when the text matches none of the supported forms.
    """
    clean = text.strip()
    match = _IN_MINUTES_PATTERN.match(clean)
    if match:
        return now + timedelta(minutes=int(match.group(1)))
    match = _IN_HOURS_PATTERN.match(clean)
    if match:
        return now + timedelta(hours=int(match.group(1)))
    match = _IN_HOURS_MINUTES_PATTERN.match(clean)
    if match:
        return now + timedelta(hours=int(match.group(1)), minutes=int(match.group(2)))
    hhmm = parse_hhmm(clean)
    if hhmm:
        expected = combine(now.date(), hhmm)
        if expected <= now:
            expected += timedelta(days=1)
        return expected
    match = _JUST_NUMBER_PATTERN.match(clean)
    if match:
        minutes = int(match.group(1))
        if 1 <= minutes <= config.MAX_ETA_MINUTES:
            return now + timedelta(minutes=minutes)
    raise ValidationError(f"Unrecognized arrival time: {text!r}")
