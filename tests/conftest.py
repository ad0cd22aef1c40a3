"""Shared fixtures: an in-memory record store, a controllable clock and a recording notifier."""
import itertools
import os
from datetime import date, datetime, timedelta

import pytest

# config.py refuses to import without these.
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "attendance_test")
os.environ.setdefault("DB_HOST", "localhost")

from app_context import AppContext, set_app_context
from models import AttendanceCheckIn, BotSettings, CheckInStatus, Employee, Event, EventType
from notifier import DeliveryReport
from timeutils import Clock

# Wednesday
TODAY = date(2025, 3, 12)


class FakeStore:
    """Dictionary-backed stand-in for database.Database with the same conditional-update semantics."""

    def __init__(self):
        self.employees = {}
        self.checkins = {}
        self.events = {}
        self.admins = []
        self.settings = BotSettings(timezone_offset=0)
        self._ids = itertools.count(1)
        self.closed = False

    async def close(self):
        self.closed = True

    # --- Employees ---

    def add_employee(self, name="Alice", **fields) -> Employee:
        employee_id = next(self._ids)
        fields.setdefault("email", f"{name.lower()}@example.com")
        fields.setdefault("telegram_id", 1000 + employee_id)
        fields.setdefault("start_date", date(2024, 8, 1))
        employee = Employee(id=employee_id, name=name, **fields)
        self.employees[employee_id] = employee
        return employee

    def add_admin(self, employee: Employee):
        self.admins.append({"name": employee.name, "email": employee.email})

    async def get_employee(self, employee_id):
        return self.employees.get(employee_id)

    async def get_employee_by_telegram_id(self, telegram_id):
        for employee in self.employees.values():
            if employee.telegram_id == telegram_id and not employee.archived:
                return employee
        return None

    async def get_employee_by_email(self, email):
        for employee in self.employees.values():
            if employee.email.lower() == email.strip().lower() and not employee.archived:
                return employee
        return None

    async def link_telegram_account(self, employee_id, telegram_id):
        for other in list(self.employees.values()):
            if other.telegram_id == telegram_id and other.id != employee_id:
                self.employees[other.id] = other.model_copy(update={"telegram_id": None})
        employee = self.employees[employee_id].model_copy(update={"telegram_id": telegram_id})
        self.employees[employee_id] = employee
        return employee

    async def list_active_employees(self, linked_only=False):
        employees = [e for e in self.employees.values() if not e.archived]
        if linked_only:
            employees = [e for e in employees if e.telegram_id is not None]
        return sorted(employees, key=lambda e: e.name)

    async def create_employee(self, **fields):
        employee_id = next(self._ids)
        employee = Employee(id=employee_id, **fields)
        self.employees[employee_id] = employee
        return employee

    async def archive_employee(self, employee_id, archived_at):
        employee = self.employees.get(employee_id)
        if employee is None:
            return None
        employee = employee.model_copy(update={"archived": True, "archived_at": archived_at})
        self.employees[employee_id] = employee
        return employee

    async def get_admin_emails(self):
        return {admin["email"].lower() for admin in self.admins}

    async def list_admin_users(self):
        return sorted(self.admins, key=lambda admin: admin["name"])

    async def list_admin_chat_ids(self):
        emails = await self.get_admin_emails()
        return [
            e.telegram_id for e in self.employees.values()
            if e.email.lower() in emails and e.telegram_id is not None and not e.archived
        ]

    # --- Check-ins ---

    async def get_checkin(self, employee_id, day):
        for record in self.checkins.values():
            if record.employee_id == employee_id and record.date == day:
                return record
        return None

    async def create_checkin(self, employee_id, day, status, **fields):
        if await self.get_checkin(employee_id, day) is not None:
            return None
        record = AttendanceCheckIn(id=next(self._ids), employee_id=employee_id, date=day, status=status, **fields)
        self.checkins[record.id] = record
        return record

    async def update_checkin(self, checkin_id, only_if_status=None, **fields):
        record = self.checkins.get(checkin_id)
        if record is None:
            return None
        if only_if_status is not None and record.status not in tuple(only_if_status):
            return None
        record = record.model_copy(update=fields)
        self.checkins[checkin_id] = record
        return record

    async def claim_arrival_reminder(self, checkin_id, now, not_after):
        record = self.checkins.get(checkin_id)
        if record is None or record.status != CheckInStatus.WAITING_ARRIVAL_REMINDER:
            return False
        if record.last_arrival_reminder_at is not None and record.last_arrival_reminder_at > not_after:
            return False
        self.checkins[checkin_id] = record.model_copy(update={"last_arrival_reminder_at": now})
        return True

    async def list_checkins(self, start, end=None, statuses=None):
        end = end or start
        records = [r for r in self.checkins.values() if start <= r.date <= end]
        if statuses is not None:
            statuses = tuple(statuses)
            records = [r for r in records if r.status in statuses]
        return sorted(records, key=lambda r: (r.date, r.id))

    # --- Events ---

    def add_event(self, employee_id, event_type, start_date, **fields) -> Event:
        event = Event(id=next(self._ids), employee_id=employee_id, type=event_type, start_date=start_date, **fields)
        self.events[event.id] = event
        return event

    async def get_event(self, event_id):
        return self.events.get(event_id)

    async def create_event(self, employee_id, type, start_date, end_date=None, notes=None, moderated=False,
                           is_global=False, subtype=None, created_by_id=None):
        if subtype is not None:
            for event in self.events.values():
                if event.employee_id == employee_id and event.start_date == start_date and event.subtype == subtype:
                    return None
        event = Event(
            id=next(self._ids), employee_id=employee_id, type=type, subtype=subtype, start_date=start_date,
            end_date=end_date, notes=notes, moderated=moderated, is_global=is_global,
            created_by_id=created_by_id, created_at=datetime(2025, 1, 1),
        )
        self.events[event.id] = event
        return event

    def _filter(self, events, types=None, moderated=True):
        if moderated is not None:
            events = [e for e in events if e.moderated == moderated]
        if types is not None:
            types = tuple(types)
            events = [e for e in events if e.type in types]
        return sorted(events, key=lambda e: (e.start_date, e.id))

    async def find_events_covering(self, employee_id, day, types=None, include_global=False, moderated=True):
        events = [
            e for e in self.events.values()
            if (e.employee_id == employee_id or (include_global and e.is_global)) and e.covers(day)
        ]
        return self._filter(events, types, moderated)

    async def find_flag_event(self, employee_id, day, subtype):
        for event in self.events.values():
            if (event.employee_id == employee_id and event.type == EventType.LATE_LEFT_EARLY
                    and event.start_date == day and event.subtype == subtype):
                return event
        return None

    async def list_events_for_employee(self, employee_id, types=None, moderated=True):
        return self._filter([e for e in self.events.values() if e.employee_id == employee_id], types, moderated)

    async def list_events_overlapping(self, start, end, employee_id=None, types=None, moderated=True):
        events = [e for e in self.events.values() if e.start_date <= end and e.last_day >= start]
        if employee_id is not None:
            events = [e for e in events if e.employee_id == employee_id]
        return self._filter(events, types, moderated)

    async def list_flag_events(self, start, end=None):
        end = end or start
        events = [
            e for e in self.events.values()
            if e.type == EventType.LATE_LEFT_EARLY and start <= e.start_date <= end
        ]
        return sorted(events, key=lambda e: (e.start_date, e.id))

    async def list_pending_events(self):
        return sorted((e for e in self.events.values() if not e.moderated), key=lambda e: e.id)

    async def find_pending_day_off(self, employee_id, day):
        for event in self.events.values():
            if (event.employee_id == employee_id and event.start_date == day and not event.moderated
                    and event.type in (EventType.DAY_OFF_PAID, EventType.DAY_OFF_UNPAID)):
                return event
        return None

    async def moderate_event(self, event_id, new_type=None):
        event = self.events.get(event_id)
        if event is None or event.moderated:
            return None
        event = event.model_copy(update={"moderated": True, "type": new_type or event.type})
        self.events[event_id] = event
        return event

    async def delete_pending_event(self, event_id):
        event = self.events.get(event_id)
        if event is None or event.moderated:
            return None
        return self.events.pop(event_id)

    async def list_global_holidays(self, since=None):
        events = [e for e in self.events.values() if e.is_global and e.type == EventType.HOLIDAY]
        if since is not None:
            events = [e for e in events if e.last_day >= since]
        return sorted(events, key=lambda e: e.start_date)

    # --- Settings ---

    async def get_settings(self):
        return self.settings

    async def update_settings(self, **fields):
        stamp = (self.settings.updated_at or datetime(2025, 1, 1)) + timedelta(seconds=1)
        self.settings = self.settings.model_copy(update={**fields, "updated_at": stamp})
        return self.settings


class RecordingNotifier:
    def __init__(self):
        self.user_messages = []
        self.admin_messages = []
        self.broadcasts = []

    async def send_to_user(self, chat_id, text, reply_markup=None):
        self.user_messages.append((chat_id, text, reply_markup))
        return True

    async def send_to_admins(self, text, reply_markup=None):
        self.admin_messages.append((text, reply_markup))
        return DeliveryReport(1, 0)

    async def send_to_all_employees(self, text):
        self.broadcasts.append(text)
        return DeliveryReport(3, 0)

    def texts_to(self, chat_id):
        return [text for target, text, _ in self.user_messages if target == chat_id]


class TimeMachine:
    """Callable UTC source for Clock; with a zero offset it is also the local time."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def set(self, hhmm: str, day: date = None):
        hours, minutes = hhmm.split(":")
        self.current = datetime.combine(day or self.current.date(), datetime.min.time()).replace(
            hour=int(hours), minute=int(minutes)
        )

    def advance(self, **delta):
        self.current += timedelta(**delta)


class FakeScheduler:
    def __init__(self):
        self.jobs = {}

    def add_job(self, func, trigger, **kwargs):
        self.jobs[kwargs["id"]] = (func, trigger, kwargs)


@pytest.fixture
def time_machine():
    return TimeMachine(datetime.combine(TODAY, datetime.min.time()).replace(hour=9, minute=30))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ctx(store, notifier, time_machine):
    context = AppContext(store, Clock(offset_hours=0, utcnow=time_machine), notifier, settings=BotSettings(timezone_offset=0))
    set_app_context(context)
    return context


@pytest.fixture
def alice(store):
    return store.add_employee("Alice")


@pytest.fixture
def admin(store):
    boss = store.add_employee("Boss", exempt_from_tracking=True)
    store.add_admin(boss)
    return boss
