import logging
import urllib.parse
import hmac
import hashlib
import json
import re
from contextlib import asynccontextmanager
from datetime import date
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from telegram import Bot

import config
import leave_requests
import moderation
from app_context import AppContext, get_app_context, set_app_context, shutdown_context
from database import Database
from errors import AlreadyModeratedError, AttendanceBotError, InvalidTransitionError, NotFoundError, ValidationError
from models import BotSettings, Employee, Event, PaymentType
from notifier import Notifier
from timeutils import Clock

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def _check_hhmm(value: Optional[str]) -> Optional[str]:
    if value is not None and not _HHMM.match(value):
        raise ValueError("Invalid time format. Use HH:MM.")
    return value


class EmployeeCreateRequest(BaseModel):
    name: str
    email: str
    start_date: date
    arrival_window_start: str = config.DEFAULT_ARRIVAL_WINDOW_START
    arrival_window_end: str = config.DEFAULT_ARRIVAL_WINDOW_END
    work_hours_per_day: int = Field(config.DEFAULT_WORK_HOURS_PER_DAY, ge=1, le=24)
    half_day_on_fridays: bool = False
    work_hours_on_friday: int = Field(config.DEFAULT_WORK_HOURS_ON_FRIDAY, ge=1, le=24)
    recurring_home_office_days: List[int] = Field(default_factory=list)
    exempt_from_tracking: bool = False
    vacation_days_per_year: int = Field(config.DEFAULT_VACATION_DAYS_PER_YEAR, ge=0)
    holiday_days_per_year: int = Field(config.DEFAULT_HOLIDAY_DAYS_PER_YEAR, ge=0)

    @field_validator("arrival_window_start", "arrival_window_end")
    def validate_window(cls, v):
        return _check_hhmm(v)

    @field_validator("recurring_home_office_days")
    def validate_weekdays(cls, v):
        if any(day not in range(7) for day in v):
            raise ValueError("Weekdays are numbered 0 (Sunday) to 6 (Saturday).")
        return sorted(set(v))

    @field_validator("email")
    def normalize_email(cls, v):
        if "@" not in v:
            raise ValueError("Invalid email address.")
        return v.strip().lower()


class LastDayRequest(BaseModel):
    last_day: date
    notes: Optional[str] = None


class DayOffApproval(BaseModel):
    payment_type: PaymentType


class SettingsUpdate(BaseModel):
    timezone_offset: Optional[float] = Field(None, ge=-12, le=14)
    morning_report_time: Optional[str] = None
    end_of_day_report_time: Optional[str] = None
    missed_check_in_time: Optional[str] = None
    arrival_reminder_interval: Optional[int] = Field(None, ge=1)
    auto_checkout_buffer_minutes: Optional[int] = Field(None, ge=0)
    bot_enabled: Optional[bool] = None

    @field_validator("morning_report_time", "end_of_day_report_time", "missed_check_in_time")
    def validate_times(cls, v):
        return _check_hhmm(v)


class GlobalHolidayRequest(BaseModel):
    name: str
    start_date: date
    end_date: Optional[date] = None


class PendingEvent(BaseModel):
    event: Event
    employee_name: Optional[str] = None


class AuthRequest(BaseModel):
    initData: str


def parse_init_data(init_data: str) -> dict:
    """Checks the Telegram Web App ``initData`` signature and returns the ``user`` object."""
    parsed_data = dict(urllib.parse.parse_qsl(init_data))
    hash_from_telegram = parsed_data.pop("hash", "")
    if not hash_from_telegram:
        raise ValueError("initData has no hash")
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(parsed_data.items()))
    secret_key = hmac.new("WebAppData".encode(), config.BOT_TOKEN.encode(), hashlib.sha256).digest()
    calculated_hash = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(calculated_hash, hash_from_telegram):
        logger.warning("initData check failed: hash mismatch.")
        raise HTTPException(status_code=403, detail="Data check failed.")
    return json.loads(parsed_data.get("user", "{}"))


def get_context() -> AppContext:
    return get_app_context()


async def get_validated_user(
    x_telegram_init_data: Annotated[str, Header()],
    ctx: Annotated[AppContext, Depends(get_context)],
) -> Employee:
    try:
        user_info = parse_init_data(x_telegram_init_data)
    except (ValueError, KeyError, json.JSONDecodeError) as e:
        logger.error(f"Invalid Web App auth data: {e}")
        raise HTTPException(status_code=400, detail="Invalid authorization data.")
    user_id = user_info.get("id")
    employee = await ctx.store.get_employee_by_telegram_id(user_id) if user_id else None
    if employee is None or employee.email.lower() not in await ctx.store.get_admin_emails():
        raise HTTPException(status_code=403, detail="Access denied.")
    return employee


Admin = Annotated[Employee, Depends(get_validated_user)]
Context = Annotated[AppContext, Depends(get_context)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = await Database().connect()
    await db.init_db()
    bot = Bot(config.BOT_TOKEN)
    await bot.initialize()
    ctx = set_app_context(AppContext(db, Clock(), Notifier(bot, db)))
    await ctx.load_settings()
    try:
        yield
    finally:
        await bot.shutdown()
        await shutdown_context()


app = FastAPI(title="Attendance Bot Admin Panel", lifespan=lifespan)


@app.exception_handler(AttendanceBotError)
async def attendance_error_handler(request: Request, exc: AttendanceBotError):
    status_code = 500
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (AlreadyModeratedError, InvalidTransitionError)):
        status_code = 409
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.post("/api/validate_user")
async def validate_user_initial(request: AuthRequest, ctx: Context):
    employee = await get_validated_user(request.initData, ctx)
    logger.info(f"Admin {employee.name} signed in to the web panel.")
    return {"status": "ok", "employee_id": employee.id, "name": employee.name}


@app.get("/api/employees", response_model=List[Employee])
async def get_employees(admin: Admin, ctx: Context):
    return await ctx.store.list_active_employees()


@app.get("/api/employees/{employee_id}", response_model=Employee)
async def get_employee_details(employee_id: int, admin: Admin, ctx: Context):
    employee = await ctx.store.get_employee(employee_id)
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found.")
    return employee


@app.post("/api/employees", response_model=Employee, status_code=201)
async def add_employee(request: EmployeeCreateRequest, admin: Admin, ctx: Context):
    employee = await leave_requests.create_employee(ctx, created_by_id=admin.id, **request.model_dump())
    logger.info(f"Admin {admin.name} added employee {employee.name}.")
    return employee


@app.post("/api/employees/{employee_id}/last-day", response_model=Event)
async def set_last_day(employee_id: int, request: LastDayRequest, admin: Admin, ctx: Context):
    return await leave_requests.record_last_day(
        ctx, employee_id, request.last_day, notes=request.notes, created_by_id=admin.id
    )


@app.get("/api/events/pending", response_model=List[PendingEvent])
async def get_pending_events(admin: Admin, ctx: Context):
    items = await moderation.list_pending(ctx)
    return [PendingEvent(event=item.event, employee_name=item.employee.name if item.employee else None) for item in items]


@app.post("/api/events/{event_id}/approve", response_model=Event)
async def approve_event(event_id: int, admin: Admin, ctx: Context):
    return await moderation.approve(ctx, event_id)


@app.post("/api/events/{event_id}/approve-day-off", response_model=Event)
async def approve_day_off(event_id: int, request: DayOffApproval, admin: Admin, ctx: Context):
    return await moderation.approve_day_off(ctx, event_id, request.payment_type)


@app.post("/api/events/{event_id}/reject", response_model=Event)
async def reject_event(event_id: int, admin: Admin, ctx: Context):
    return await moderation.reject(ctx, event_id)


@app.get("/api/settings", response_model=BotSettings)
async def get_settings(admin: Admin, ctx: Context):
    return await ctx.store.get_settings()


@app.put("/api/settings", response_model=BotSettings)
async def update_settings(request: SettingsUpdate, admin: Admin, ctx: Context):
    # The bot process picks the change up from updated_at within a minute.
    settings = await ctx.store.update_settings(**request.model_dump(exclude_none=True))
    logger.info(f"Admin {admin.name} updated bot settings.")
    return settings


@app.get("/api/holidays", response_model=List[Event])
async def get_holidays(admin: Admin, ctx: Context, since: Optional[date] = None):
    return await ctx.store.list_global_holidays(since)


@app.post("/api/holidays", response_model=Event, status_code=201)
async def add_new_holiday(request: GlobalHolidayRequest, admin: Admin, ctx: Context):
    return await leave_requests.create_global_holiday(
        ctx, request.start_date, request.end_date, request.name, created_by_id=admin.id
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO)
    uvicorn.run(app, host=config.WEBAPP_HOST, port=config.WEBAPP_PORT)
