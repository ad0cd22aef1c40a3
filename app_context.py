import logging
from typing import Optional

from models import BotSettings
from timeutils import Clock

logger = logging.getLogger(__name__)


class AppContext:
    """Collaborators shared by handlers, jobs and the web API: store, clock, notifier and cached settings."""

    def __init__(self, store, clock: Clock, notifier, settings: Optional[BotSettings] = None):
        self.store = store
        self.clock = clock
        self.notifier = notifier
        self.settings = settings or BotSettings()
        # Set by main once the AsyncIOScheduler exists; daily jobs are rescheduled through it.
        self.scheduler = None
        self.clock.reload(self.settings)

    async def load_settings(self) -> BotSettings:
        self.settings = await self.store.get_settings()
        self.clock.reload(self.settings)
        return self.settings

    async def refresh_settings(self) -> bool:
        """Re-reads settings and returns True when they changed since the last load."""
        fresh = await self.store.get_settings()
        if fresh.updated_at == self.settings.updated_at:
            return False
        logger.info("Bot settings changed, reloading.")
        self.settings = fresh
        self.clock.reload(fresh)
        return True


_app_context: Optional[AppContext] = None


def set_app_context(ctx: AppContext) -> AppContext:
    global _app_context
    _app_context = ctx
    return ctx


def get_app_context() -> AppContext:
    if _app_context is None:
        raise RuntimeError("Application context is not initialized.")
    return _app_context


async def shutdown_context():
    global _app_context
    if _app_context is not None:
        logger.info("Closing the record store...")
        await _app_context.store.close()
        _app_context = None
