from datetime import date, datetime

import pytest

from errors import ValidationError
from models import BotSettings, Employee
from timeutils import (
    Clock,
    calculate_departure_time,
    combine,
    format_duration,
    format_period,
    is_late,
    parse_expected_arrival,
    parse_hhmm,
    weekday_number,
    work_hours_for_today,
)

NOW = datetime(2025, 3, 12, 9, 0)


def test_parse_hhmm_normalizes_and_rejects():
    assert parse_hhmm("9:05") == "09:05"
    assert parse_hhmm(" 18:30 ") == "18:30"
    assert parse_hhmm("24:00") is None
    assert parse_hhmm("12:60") is None
    assert parse_hhmm("noon") is None


def test_lateness_is_strictly_after_window_end():
    assert not is_late("10:00", "10:00")
    assert is_late("10:01", "10:00")


def test_departure_time_wraps_past_midnight():
    assert calculate_departure_time("09:00", 8) == "17:00"
    assert calculate_departure_time("20:00", 8) == "04:00"
    assert combine(date(2025, 3, 12), "25:30") == datetime(2025, 3, 13, 1, 30)


@pytest.mark.parametrize("text, expected", [
    ("in 15 mins", datetime(2025, 3, 12, 9, 15)),
    ("in 2 hours", datetime(2025, 3, 12, 11, 0)),
    ("in 1 hour 30 mins", datetime(2025, 3, 12, 10, 30)),
    ("14:30", datetime(2025, 3, 12, 14, 30)),
    ("08:30", datetime(2025, 3, 13, 8, 30)),
    ("45", datetime(2025, 3, 12, 9, 45)),
])
def test_parse_expected_arrival(text, expected):
    assert parse_expected_arrival(text, NOW) == expected


@pytest.mark.parametrize("text", ["soon", "301", "0", "tomorrow morning"])
def test_parse_expected_arrival_rejects_unknown_forms(text):
    with pytest.raises(ValidationError):
        parse_expected_arrival(text, NOW)


def test_format_helpers():
    assert format_duration(30) == "30m"
    assert format_duration(60) == "1h"
    assert format_duration(90) == "1h 30m"
    assert format_period(date(2025, 3, 12), None) == "Mar 12, 2025"
    assert format_period(date(2025, 3, 12), date(2025, 3, 14)) == "Mar 12, 2025 - Mar 14, 2025"


def test_weekday_numbering_starts_on_sunday():
    assert weekday_number(date(2025, 3, 16)) == 0
    assert weekday_number(date(2025, 3, 12)) == 3
    assert weekday_number(date(2025, 3, 15)) == 6


def test_clock_applies_offset_across_midnight():
    clock = Clock(offset_hours=3, utcnow=lambda: datetime(2025, 3, 14, 22, 30))
    assert clock.now() == datetime(2025, 3, 15, 1, 30)
    assert clock.today() == date(2025, 3, 15)
    assert clock.time_of_day() == "01:30"
    assert clock.is_weekend()


def test_clock_reload_picks_up_new_offset():
    clock = Clock(offset_hours=3, utcnow=lambda: datetime(2025, 3, 12, 6, 0))
    clock.reload(BotSettings(timezone_offset=5.5))
    assert clock.time_of_day() == "11:30"
    assert clock.offset_hours == 5.5


def test_friday_half_day_hours():
    friday = Clock(offset_hours=0, utcnow=lambda: datetime(2025, 3, 14, 9, 0))
    wednesday = Clock(offset_hours=0, utcnow=lambda: NOW)
    employee = Employee(id=1, name="A", email="a@example.com", start_date=date(2024, 1, 1),
                        half_day_on_fridays=True, work_hours_on_friday=4)
    assert work_hours_for_today(employee, friday) == 4
    assert work_hours_for_today(employee, wednesday) == 8
