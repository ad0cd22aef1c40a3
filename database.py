import logging
from datetime import date, datetime
from enum import Enum
from typing import Iterable, List, Optional, Set

import asyncpg

import config
from models import AttendanceCheckIn, BotSettings, CheckInStatus, Employee, Event, EventSubtype, EventType

logger = logging.getLogger(__name__)

_EMPLOYEE_COLUMNS = {
    "name", "email", "telegram_id", "arrival_window_start", "arrival_window_end", "work_hours_per_day",
    "half_day_on_fridays", "work_hours_on_friday", "recurring_home_office_days", "exempt_from_tracking",
    "vacation_days_per_year", "holiday_days_per_year", "start_date", "archived", "archived_at",
}
_CHECKIN_COLUMNS = {
    "status", "asked_arrival_at", "confirmed_arrival_at", "actual_arrival_time", "expected_arrival_at",
    "last_arrival_reminder_at", "asked_departure_at", "expected_departure_at", "confirmed_departure_at",
    "actual_departure_time", "auto_checked_out",
}
_SETTINGS_COLUMNS = {
    "timezone_offset", "morning_report_time", "end_of_day_report_time", "missed_check_in_time",
    "arrival_reminder_interval", "auto_checkout_buffer_minutes", "bot_enabled",
}


def _db_value(value):
    if isinstance(value, Enum):
        return value.value
    return value


def _db_values(values: Iterable) -> list:
    return [_db_value(v) for v in values]


def _set_clause(fields: dict, allowed: Set[str], first_param: int = 1):
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
    names = list(fields)
    clause = ", ".join(f"{name} = ${i}" for i, name in enumerate(names, start=first_param))
    return clause, [_db_value(fields[name]) for name in names]


class Database:
    """PostgreSQL record store for employees, check-ins, events and bot settings."""

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    async def connect(self):
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                user=config.DB_USER,
                password=config.DB_PASSWORD,
                database=config.DB_NAME,
                host=config.DB_HOST,
                port=config.DB_PORT,
            )
            logger.info("PostgreSQL connection pool created.")
        return self

    async def close(self):
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection pool closed.")

    async def init_db(self):
        async with self._pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS employees (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    telegram_id BIGINT UNIQUE,
                    arrival_window_start TEXT NOT NULL DEFAULT '09:00',
                    arrival_window_end TEXT NOT NULL DEFAULT '10:00',
                    work_hours_per_day INTEGER NOT NULL DEFAULT 8,
                    half_day_on_fridays BOOLEAN NOT NULL DEFAULT FALSE,
                    work_hours_on_friday INTEGER NOT NULL DEFAULT 4,
                    recurring_home_office_days INTEGER[] NOT NULL DEFAULT '{}',
                    exempt_from_tracking BOOLEAN NOT NULL DEFAULT FALSE,
                    vacation_days_per_year INTEGER NOT NULL DEFAULT 28,
                    holiday_days_per_year INTEGER NOT NULL DEFAULT 14,
                    start_date DATE NOT NULL,
                    archived BOOLEAN NOT NULL DEFAULT FALSE,
                    archived_at TIMESTAMP
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    role TEXT NOT NULL DEFAULT 'USER'
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS attendance_check_ins (
                    id SERIAL PRIMARY KEY,
                    employee_id INTEGER NOT NULL,
                    date DATE NOT NULL,
                    status TEXT NOT NULL,
                    asked_arrival_at TIMESTAMP,
                    confirmed_arrival_at TIMESTAMP,
                    actual_arrival_time TEXT,
                    expected_arrival_at TIMESTAMP,
                    last_arrival_reminder_at TIMESTAMP,
                    asked_departure_at TIMESTAMP,
                    expected_departure_at TIMESTAMP,
                    confirmed_departure_at TIMESTAMP,
                    actual_departure_time TEXT,
                    auto_checked_out BOOLEAN NOT NULL DEFAULT FALSE,
                    FOREIGN KEY (employee_id) REFERENCES employees (id) ON DELETE CASCADE,
                    UNIQUE(employee_id, date)
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id SERIAL PRIMARY KEY,
                    employee_id INTEGER,
                    type TEXT NOT NULL,
                    subtype TEXT,
                    start_date DATE NOT NULL,
                    end_date DATE,
                    notes TEXT,
                    moderated BOOLEAN NOT NULL DEFAULT FALSE,
                    is_global BOOLEAN NOT NULL DEFAULT FALSE,
                    created_by_id INTEGER,
                    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
                    FOREIGN KEY (employee_id) REFERENCES employees (id) ON DELETE CASCADE
                );
            """)
            await conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS events_flag_per_day
                ON events (employee_id, start_date, subtype)
                WHERE subtype IS NOT NULL;
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS bot_settings (
                    id INTEGER PRIMARY KEY DEFAULT 1 CHECK (id = 1),
                    timezone_offset REAL NOT NULL DEFAULT 3,
                    morning_report_time TEXT NOT NULL DEFAULT '09:00',
                    end_of_day_report_time TEXT NOT NULL DEFAULT '19:00',
                    missed_check_in_time TEXT NOT NULL DEFAULT '12:00',
                    arrival_reminder_interval INTEGER NOT NULL DEFAULT 5,
                    auto_checkout_buffer_minutes INTEGER NOT NULL DEFAULT 30,
                    bot_enabled BOOLEAN NOT NULL DEFAULT TRUE,
                    updated_at TIMESTAMP NOT NULL DEFAULT NOW()
                );
            """)
        logger.info("PostgreSQL database initialized.")

    # --- Employees ---

    async def get_employee(self, employee_id: int) -> Optional[Employee]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM employees WHERE id = $1", employee_id)
        return Employee(**dict(row)) if row else None

    async def get_employee_by_telegram_id(self, telegram_id: int) -> Optional[Employee]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM employees WHERE telegram_id = $1 AND archived = FALSE", telegram_id
            )
        return Employee(**dict(row)) if row else None

    async def get_employee_by_email(self, email: str) -> Optional[Employee]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM employees WHERE LOWER(email) = LOWER($1) AND archived = FALSE", email.strip()
            )
        return Employee(**dict(row)) if row else None

    async def link_telegram_account(self, employee_id: int, telegram_id: int) -> Employee:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                # One employee per chat handle: release it from any previous owner first.
                await conn.execute(
                    "UPDATE employees SET telegram_id = NULL WHERE telegram_id = $1 AND id <> $2",
                    telegram_id, employee_id
                )
                row = await conn.fetchrow(
                    "UPDATE employees SET telegram_id = $1 WHERE id = $2 RETURNING *", telegram_id, employee_id
                )
        logger.info(f"Employee {employee_id} linked to Telegram account {telegram_id}.")
        return Employee(**dict(row))

    async def list_active_employees(self, linked_only: bool = False) -> List[Employee]:
        sql = "SELECT * FROM employees WHERE archived = FALSE"
        if linked_only:
            sql += " AND telegram_id IS NOT NULL"
        sql += " ORDER BY name"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql)
        return [Employee(**dict(row)) for row in rows]

    async def create_employee(self, **fields) -> Employee:
        clause_names = list(fields)
        unknown = set(clause_names) - _EMPLOYEE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
        placeholders = ", ".join(f"${i}" for i in range(1, len(clause_names) + 1))
        sql = f"INSERT INTO employees ({', '.join(clause_names)}) VALUES ({placeholders}) RETURNING *"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(sql, *_db_values(fields.values()))
        return Employee(**dict(row))

    async def archive_employee(self, employee_id: int, archived_at: datetime) -> Optional[Employee]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "UPDATE employees SET archived = TRUE, archived_at = $1 WHERE id = $2 RETURNING *",
                archived_at, employee_id
            )
        return Employee(**dict(row)) if row else None

    async def get_admin_emails(self) -> Set[str]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT LOWER(email) AS email FROM users WHERE role = 'ADMIN'")
        return {row["email"] for row in rows}

    async def list_admin_users(self) -> List[dict]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT name, email FROM users WHERE role = 'ADMIN' ORDER BY name")
        return [dict(row) for row in rows]

    async def list_admin_chat_ids(self) -> List[int]:
        query = """
            SELECT e.telegram_id
            FROM employees e
            JOIN users u ON LOWER(u.email) = LOWER(e.email)
            WHERE u.role = 'ADMIN' AND e.telegram_id IS NOT NULL AND e.archived = FALSE
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query)
        return [row["telegram_id"] for row in rows]

    # --- Attendance check-ins ---

    async def get_checkin(self, employee_id: int, day: date) -> Optional[AttendanceCheckIn]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM attendance_check_ins WHERE employee_id = $1 AND date = $2", employee_id, day
            )
        return AttendanceCheckIn(**dict(row)) if row else None

    async def create_checkin(self, employee_id: int, day: date, status: CheckInStatus, **fields) -> Optional[AttendanceCheckIn]:
        """Inserts the day's record; returns None when one already exists."""
        unknown = set(fields) - _CHECKIN_COLUMNS
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
        names = ["employee_id", "date", "status"] + list(fields)
        values = [employee_id, day, _db_value(status)] + _db_values(fields.values())
        placeholders = ", ".join(f"${i}" for i in range(1, len(names) + 1))
        sql = f"""
            INSERT INTO attendance_check_ins ({', '.join(names)}) VALUES ({placeholders})
            ON CONFLICT (employee_id, date) DO NOTHING
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(sql, *values)
        return AttendanceCheckIn(**dict(row)) if row else None

    async def update_checkin(self, checkin_id: int, only_if_status: Optional[Iterable[CheckInStatus]] = None, **fields) -> Optional[AttendanceCheckIn]:
        """Updates a record, optionally only while it is in one of ``only_if_status``.

        Returns None when the precondition no longer holds.
        """
        clause, values = _set_clause(fields, _CHECKIN_COLUMNS)
        values.append(checkin_id)
        sql = f"UPDATE attendance_check_ins SET {clause} WHERE id = ${len(values)}"
        if only_if_status is not None:
            values.append(_db_values(only_if_status))
            sql += f" AND status = ANY(${len(values)})"
        sql += " RETURNING *"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(sql, *values)
        return AttendanceCheckIn(**dict(row)) if row else None

    async def claim_arrival_reminder(self, checkin_id: int, now: datetime, not_after: datetime) -> bool:
        """Atomically stamps ``last_arrival_reminder_at`` unless a reminder went out after ``not_after``."""
        query = """
            UPDATE attendance_check_ins SET last_arrival_reminder_at = $1
            WHERE id = $2 AND status = $3
              AND (last_arrival_reminder_at IS NULL OR last_arrival_reminder_at <= $4)
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            claimed = await conn.fetchval(
                query, now, checkin_id, CheckInStatus.WAITING_ARRIVAL_REMINDER.value, not_after
            )
        return claimed is not None

    async def list_checkins(self, start: date, end: Optional[date] = None, statuses: Optional[Iterable[CheckInStatus]] = None) -> List[AttendanceCheckIn]:
        values = [start, end or start]
        sql = "SELECT * FROM attendance_check_ins WHERE date BETWEEN $1 AND $2"
        if statuses is not None:
            values.append(_db_values(statuses))
            sql += " AND status = ANY($3)"
        sql += " ORDER BY date, id"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *values)
        return [AttendanceCheckIn(**dict(row)) for row in rows]

    # --- Events ---

    async def get_event(self, event_id: int) -> Optional[Event]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM events WHERE id = $1", event_id)
        return Event(**dict(row)) if row else None

    async def create_event(
        self,
        employee_id: Optional[int],
        type: EventType,
        start_date: date,
        end_date: Optional[date] = None,
        notes: Optional[str] = None,
        moderated: bool = False,
        is_global: bool = False,
        subtype: Optional[EventSubtype] = None,
        created_by_id: Optional[int] = None,
    ) -> Optional[Event]:
        """Inserts an event; returns None when the day already has the same flag subtype."""
        query = """
            INSERT INTO events (employee_id, type, subtype, start_date, end_date, notes, moderated, is_global, created_by_id)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT DO NOTHING
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query, employee_id, _db_value(type), _db_value(subtype), start_date, end_date,
                notes, moderated, is_global, created_by_id
            )
        return Event(**dict(row)) if row else None

    async def find_events_covering(
        self,
        employee_id: Optional[int],
        day: date,
        types: Optional[Iterable[EventType]] = None,
        include_global: bool = False,
        moderated: Optional[bool] = True,
    ) -> List[Event]:
        values = [day, employee_id]
        owner = "employee_id = $2"
        if include_global:
            owner = f"({owner} OR is_global = TRUE)"
        sql = f"""
            SELECT * FROM events
            WHERE {owner}
              AND start_date <= $1 AND COALESCE(end_date, start_date) >= $1
        """
        if moderated is not None:
            values.append(moderated)
            sql += f" AND moderated = ${len(values)}"
        if types is not None:
            values.append(_db_values(types))
            sql += f" AND type = ANY(${len(values)})"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql + " ORDER BY start_date, id", *values)
        return [Event(**dict(row)) for row in rows]

    async def find_flag_event(self, employee_id: int, day: date, subtype: EventSubtype) -> Optional[Event]:
        query = """
            SELECT * FROM events
            WHERE employee_id = $1 AND type = $2 AND start_date = $3 AND subtype = $4
            LIMIT 1
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, employee_id, EventType.LATE_LEFT_EARLY.value, day, subtype.value)
        return Event(**dict(row)) if row else None

    async def list_events_for_employee(self, employee_id: int, types: Optional[Iterable[EventType]] = None, moderated: Optional[bool] = True) -> List[Event]:
        values = [employee_id]
        sql = "SELECT * FROM events WHERE employee_id = $1"
        if moderated is not None:
            values.append(moderated)
            sql += f" AND moderated = ${len(values)}"
        if types is not None:
            values.append(_db_values(types))
            sql += f" AND type = ANY(${len(values)})"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql + " ORDER BY start_date", *values)
        return [Event(**dict(row)) for row in rows]

    async def list_events_overlapping(
        self,
        start: date,
        end: date,
        employee_id: Optional[int] = None,
        types: Optional[Iterable[EventType]] = None,
        moderated: Optional[bool] = True,
    ) -> List[Event]:
        values = [start, end]
        sql = "SELECT * FROM events WHERE start_date <= $2 AND COALESCE(end_date, start_date) >= $1"
        if employee_id is not None:
            values.append(employee_id)
            sql += f" AND employee_id = ${len(values)}"
        if moderated is not None:
            values.append(moderated)
            sql += f" AND moderated = ${len(values)}"
        if types is not None:
            values.append(_db_values(types))
            sql += f" AND type = ANY(${len(values)})"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql + " ORDER BY start_date, id", *values)
        return [Event(**dict(row)) for row in rows]

    async def list_flag_events(self, start: date, end: Optional[date] = None) -> List[Event]:
        query = """
            SELECT * FROM events
            WHERE type = $1 AND start_date BETWEEN $2 AND $3
            ORDER BY start_date, id
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, EventType.LATE_LEFT_EARLY.value, start, end or start)
        return [Event(**dict(row)) for row in rows]

    async def list_pending_events(self) -> List[Event]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM events WHERE moderated = FALSE ORDER BY created_at, id")
        return [Event(**dict(row)) for row in rows]

    async def find_pending_day_off(self, employee_id: int, day: date) -> Optional[Event]:
        query = """
            SELECT * FROM events
            WHERE employee_id = $1 AND start_date = $2 AND moderated = FALSE AND type = ANY($3)
            LIMIT 1
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query, employee_id, day, [EventType.DAY_OFF_PAID.value, EventType.DAY_OFF_UNPAID.value]
            )
        return Event(**dict(row)) if row else None

    async def moderate_event(self, event_id: int, new_type: Optional[EventType] = None) -> Optional[Event]:
        """Approves a pending event; returns None when it is gone or was already approved."""
        query = """
            UPDATE events SET moderated = TRUE, type = COALESCE($2, type)
            WHERE id = $1 AND moderated = FALSE
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, event_id, _db_value(new_type))
        return Event(**dict(row)) if row else None

    async def delete_pending_event(self, event_id: int) -> Optional[Event]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "DELETE FROM events WHERE id = $1 AND moderated = FALSE RETURNING *", event_id
            )
        return Event(**dict(row)) if row else None

    async def list_global_holidays(self, since: Optional[date] = None) -> List[Event]:
        values = [EventType.HOLIDAY.value]
        sql = "SELECT * FROM events WHERE is_global = TRUE AND type = $1"
        if since is not None:
            values.append(since)
            sql += " AND COALESCE(end_date, start_date) >= $2"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql + " ORDER BY start_date", *values)
        return [Event(**dict(row)) for row in rows]

    # --- Settings ---

    async def get_settings(self) -> BotSettings:
        async with self._pool.acquire() as conn:
            await conn.execute("INSERT INTO bot_settings (id) VALUES (1) ON CONFLICT (id) DO NOTHING")
            row = await conn.fetchrow("SELECT * FROM bot_settings WHERE id = 1")
        data = dict(row)
        data.pop("id", None)
        return BotSettings(**data)

    async def update_settings(self, **fields) -> BotSettings:
        await self.get_settings()
        clause, values = _set_clause(fields, _SETTINGS_COLUMNS)
        sql = "UPDATE bot_settings SET updated_at = NOW()"
        if clause:
            sql += f", {clause}"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(sql + " WHERE id = 1 RETURNING *", *values)
        data = dict(row)
        data.pop("id", None)
        logger.info(f"Bot settings updated: {', '.join(fields) or 'touch only'}")
        return BotSettings(**data)
