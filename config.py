# config.py
import os
from dotenv import load_dotenv

load_dotenv()
BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")

if not BOT_TOKEN:
    raise ValueError("TELEGRAM_BOT_TOKEN not found in .env file.")

DB_USER = os.getenv("DB_USER")
if not DB_USER:
    raise ValueError("DB_USER not found in .env file.")
DB_PASSWORD = os.getenv("DB_PASSWORD")
if not DB_PASSWORD:
    raise ValueError("DB_PASSWORD not found in .env file.")
DB_NAME = os.getenv("DB_NAME")
if not DB_NAME:
    raise ValueError("DB_NAME not found in .env file.")
DB_HOST = os.getenv("DB_HOST")
if not DB_HOST:
    raise ValueError("DB_HOST not found in .env file.")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
PERSISTENCE_FILE = os.getenv("PERSISTENCE_FILE", "bot_persistence.pickle")
WEBAPP_URL = os.getenv("WEBAPP_URL")
WEBAPP_HOST = os.getenv("WEBAPP_HOST", "0.0.0.0")
WEBAPP_PORT = int(os.getenv("WEBAPP_PORT", "8000"))

# --- Defaults for the BotSettings singleton ---
DEFAULT_TIMEZONE_OFFSET = 3
DEFAULT_MORNING_REPORT_TIME = "09:00"
DEFAULT_END_OF_DAY_REPORT_TIME = "19:00"
DEFAULT_MISSED_CHECK_IN_TIME = "12:00"
DEFAULT_ARRIVAL_REMINDER_INTERVAL = 5
DEFAULT_AUTO_CHECKOUT_BUFFER_MINUTES = 30

# --- Employee defaults ---
DEFAULT_VACATION_DAYS_PER_YEAR = 28
DEFAULT_HOLIDAY_DAYS_PER_YEAR = 14
DEFAULT_ARRIVAL_WINDOW_START = "09:00"
DEFAULT_ARRIVAL_WINDOW_END = "10:00"
DEFAULT_WORK_HOURS_PER_DAY = 8
DEFAULT_WORK_HOURS_ON_FRIDAY = 4

# --- Policy ---
EARLY_LEAVE_THRESHOLD_MINUTES = 15
MAX_ETA_MINUTES = 300
MAX_MANUAL_MINUTES_AGO = 720
DAY_OFF_WINDOW_DAYS = 30
PROBATION_MONTHS = 3

# --- Conversation states ---
AWAITING_EMAIL = 0

# --- Callback data ---
CB_ARRIVAL_YES = "arrival_yes"
CB_ARRIVAL_NOT_YET = "arrival_not_yet"
CB_ARRIVAL_IN = "arrival_in_"
CB_ARRIVAL_OTHER = "arrival_other"
CB_DEPARTURE_STILL_HERE = "departure_still_here"
CB_DEPARTURE_LEFT = "departure_left"
CB_DEPARTURE_LEFT_AGO = "departure_left_"
CB_DEPARTURE_LEFT_OTHER = "departure_left_other"
CB_MODERATE_APPROVE = "moderate_approve_"
CB_MODERATE_REJECT = "moderate_reject_"
CB_MODERATE_PAID = "moderate_paid_"
CB_MODERATE_UNPAID = "moderate_unpaid_"
CB_VACATION_CONFIRM = "vacation_confirm_"
CB_VACATION_CANCEL = "vacation_cancel"
CB_HOMEOFFICE_CONFIRM = "homeoffice_confirm_"
CB_HOMEOFFICE_CANCEL = "homeoffice_cancel"
CB_SICK_CONFIRM = "sick_confirm_"
CB_SICK_CANCEL = "sick_cancel"
CB_DAYOFF_DATE = "dayoff_date_"
CB_DAYOFF_CONFIRM = "dayoff_confirm_"
CB_DAYOFF_CANCEL = "dayoff_cancel"
CB_ADMIN_CHECKIN_EMP = "admin_checkin_emp_"
CB_ADMIN_CHECKIN_TIME = "admin_checkin_time_"
CB_ADMIN_CHECKOUT_EMP = "admin_checkout_emp_"
CB_ADMIN_CHECKOUT_TIME = "admin_checkout_time_"
CB_ADMIN_CANCEL = "admin_attendance_cancel"

ARRIVAL_ETA_OPTIONS = [15, 30, 60]
DEPARTURE_AGO_OPTIONS = [15, 30, 60]
ADMIN_MINUTES_AGO_OPTIONS = [0, 15, 30, 60, 120]

# --- Button texts ---
BUTTON_ARRIVAL_YES = "✅ Yes, I'm here"
BUTTON_ARRIVAL_FOLLOW_UP_YES = "✅ Yes"
BUTTON_ARRIVAL_NOT_YET = "⏳ Not yet"
BUTTON_OTHER = "Other"
BUTTON_STILL_HERE = "✅ Still here"
BUTTON_ALREADY_LEFT = "👋 Already left"
BUTTON_APPROVE = "✅ Approve"
BUTTON_REJECT = "❌ Reject"
BUTTON_APPROVE_PAID = "💰 Approve paid"
BUTTON_APPROVE_UNPAID = "📄 Approve unpaid"
BUTTON_CONFIRM_REQUEST = "✅ Yes, request"
BUTTON_CONFIRM_REPORT = "✅ Yes, report"
BUTTON_CONFIRM_NO_REASON = "✅ Confirm (no reason)"
BUTTON_CANCEL = "❌ Cancel"
BUTTON_CUSTOM_TIME = "Custom time"

# --- Other constants ---
EVENT_TYPE_EMOJI = {
    "HOME_OFFICE": "🏠",
    "VACATION": "🏖",
    "SICK_DAY": "🤒",
    "HOLIDAY": "🎉",
    "DAY_OFF_PAID": "💰",
    "DAY_OFF_UNPAID": "📄",
}
DEFAULT_EVENT_EMOJI = "📅"
DAYS_OF_WEEK = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
