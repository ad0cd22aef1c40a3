from functools import wraps
from datetime import datetime, timedelta
from telegram import Update
from telegram.ext import ContextTypes, ConversationHandler

from app_context import get_app_context

NOT_LINKED_TEXT = "Please use /start to link your account first."
ADMIN_ONLY_TEXT = "This command is only available to admins."


async def _reply(update: Update, text: str):
    if update.callback_query:
        await update.callback_query.answer(text, show_alert=True)
    elif update.effective_message:
        await update.effective_message.reply_text(text)


def require_linked_employee(func):
    """Resolves the caller's employee record and passes it as the third argument."""
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        user = update.effective_user
        if not user:
            return
        employee = await get_app_context().store.get_employee_by_telegram_id(user.id)
        if employee is None:
            await _reply(update, NOT_LINKED_TEXT)
            return ConversationHandler.END
        return await func(update, context, employee, *args, **kwargs)
    return wrapper


def admin_only(func):
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        user = update.effective_user
        if not user:
            return
        store = get_app_context().store
        employee = await store.get_employee_by_telegram_id(user.id)
        if employee is None or employee.email.lower() not in await store.get_admin_emails():
            await _reply(update, ADMIN_ONLY_TEXT)
            return ConversationHandler.END
        return await func(update, context, employee, *args, **kwargs)
    return wrapper


def user_level_cooldown(seconds: int):
    def decorator(func):
        @wraps(func)
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
            user_id = update.effective_user.id
            now = datetime.now()
            cooldown_key = f"cooldown_{func.__name__}_{user_id}"
            last_called = context.bot_data.get(cooldown_key, datetime.min)
            if now < last_called + timedelta(seconds=seconds):
                remaining = (last_called + timedelta(seconds=seconds) - now).seconds
                await update.effective_message.reply_text(
                    f"This command can be used once every {seconds} seconds. "
                    f"Please wait {remaining} more seconds."
                )
                return
            context.bot_data[cooldown_key] = now
            return await func(update, context, *args, **kwargs)
        return wrapper
    return decorator
