import logging
from typing import NamedTuple, Optional

from telegram import Bot, InlineKeyboardMarkup
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class DeliveryReport(NamedTuple):
    sent: int
    failed: int


class Notifier:
    """Sends chat messages; delivery failures are logged and counted, never raised."""

    def __init__(self, bot: Bot, store):
        self.bot = bot
        self.store = store

    async def send_to_user(self, chat_id: int, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> bool:
        try:
            await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
            return True
        except TelegramError as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return False

    async def _broadcast(self, chat_ids, text: str, reply_markup=None) -> DeliveryReport:
        sent = failed = 0
        for chat_id in chat_ids:
            if await self.send_to_user(chat_id, text, reply_markup):
                sent += 1
            else:
                failed += 1
        return DeliveryReport(sent, failed)

    async def send_to_admins(self, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> DeliveryReport:
        admin_ids = await self.store.list_admin_chat_ids()
        if not admin_ids:
            logger.warning("No admins with a linked Telegram account to notify.")
            return DeliveryReport(0, 0)
        report = await self._broadcast(admin_ids, text, reply_markup)
        logger.info(f"Admin notification: {report.sent} sent, {report.failed} failed.")
        return report

    async def send_to_all_employees(self, text: str) -> DeliveryReport:
        employees = await self.store.list_active_employees(linked_only=True)
        report = await self._broadcast([e.telegram_id for e in employees], text)
        logger.info(f"Broadcast: {report.sent} sent, {report.failed} failed.")
        return report
