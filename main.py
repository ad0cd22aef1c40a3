# main.py
import logging
import asyncio
import config
import jobs
from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    filters,
    ConversationHandler,
    PicklePersistence,
    CallbackQueryHandler,
    AIORateLimiter,
    ContextTypes,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from app_context import AppContext, set_app_context, shutdown_context
from database import Database
from notifier import Notifier
from timeutils import Clock
from handlers_user import (
    start_command, receive_email, cancel_command, help_command, checkin_command, checkout_command,
    arrival_callback, departure_callback, handle_text, balance_command, mystatus_command,
    vacation_command, vacation_callback, homeoffice_command, homeoffice_callback,
    sick_command, sick_callback, dayoff_command, dayoff_callback
)
from handlers_admin import (
    teamstatus_command, pending_command, weekreport_command, broadcast_command, admins_command,
    globalholiday_command, admincheckin_command, admincheckout_command, reloadsettings_command,
    web_command, moderation_callback, admin_attendance_callback
)

logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing an update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text("⚠️ Something went wrong. Please try again later.")


def build_application() -> Application:
    persistence = PicklePersistence(filepath=config.PERSISTENCE_FILE)
    rate_limiter = AIORateLimiter(max_retries=5)
    application = (
        Application.builder()
        .token(config.BOT_TOKEN)
        .persistence(persistence)
        .rate_limiter(rate_limiter)
        .build()
    )
    link_conv_handler = ConversationHandler(
        entry_points=[CommandHandler("start", start_command)],
        states={
            config.AWAITING_EMAIL: [MessageHandler(filters.TEXT & ~filters.COMMAND, receive_email)],
        },
        fallbacks=[CommandHandler("cancel", cancel_command)],
        allow_reentry=True, name="link_conversation", persistent=True,
    )
    application.add_handler(link_conv_handler)

    commands = {
        "help": help_command,
        "cancel": cancel_command,
        "checkin": checkin_command,
        "checkout": checkout_command,
        "balance": balance_command,
        "mystatus": mystatus_command,
        "vacation": vacation_command,
        "homeoffice": homeoffice_command,
        "sick": sick_command,
        "dayoff": dayoff_command,
        "teamstatus": teamstatus_command,
        "pending": pending_command,
        "weekreport": weekreport_command,
        "broadcast": broadcast_command,
        "admins": admins_command,
        "globalholiday": globalholiday_command,
        "admincheckin": admincheckin_command,
        "admincheckout": admincheckout_command,
        "reloadsettings": reloadsettings_command,
        "web": web_command,
    }
    for name, callback in commands.items():
        application.add_handler(CommandHandler(name, callback))

    application.add_handler(CallbackQueryHandler(arrival_callback, pattern="^arrival_"))
    application.add_handler(CallbackQueryHandler(departure_callback, pattern="^departure_"))
    application.add_handler(CallbackQueryHandler(vacation_callback, pattern="^vacation_"))
    application.add_handler(CallbackQueryHandler(homeoffice_callback, pattern="^homeoffice_"))
    application.add_handler(CallbackQueryHandler(sick_callback, pattern="^sick_"))
    application.add_handler(CallbackQueryHandler(dayoff_callback, pattern="^dayoff_"))
    application.add_handler(CallbackQueryHandler(moderation_callback, pattern="^moderate_"))
    application.add_handler(CallbackQueryHandler(admin_attendance_callback, pattern="^admin_"))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    application.add_error_handler(error_handler)
    return application


async def main() -> None:
    try:
        application = build_application()
        db = await Database().connect()
        await db.init_db()
        ctx = set_app_context(AppContext(db, Clock(), Notifier(application.bot, db)))
        await ctx.load_settings()
        scheduler = AsyncIOScheduler(timezone=ctx.clock.tzinfo)
        jobs.schedule_jobs(scheduler, ctx)
        async with application:
            await application.updater.start_polling()
            await application.start()
            scheduler.start()
            logger.info("Bot and scheduler started. Press Ctrl+C to stop.")
            await asyncio.Event().wait()
    finally:
        logger.info("Shutting down...")
        await shutdown_context()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Bot stopped.")
    except Exception as e:
        logger.critical(f"Fatal error on startup: {e}", exc_info=True)
