"""Process-wide service container.

Built once at startup and handed to every caller by reference, so tests can
spin up isolated instances instead of sharing module-level state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.errors import PersistenceError
from app.services.loop_manager import LoopManager
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.reminder_scheduler import ReminderScheduler
from app.services.webhook_dispatcher import WebhookDispatcher
from app.utils.messenger import Messenger, TelnyxMessenger
from db.db import JobStore

_LOGGER = logging.getLogger(__name__)


@dataclass
class Runtime:
    store: JobStore
    messenger: Messenger
    webhooks: WebhookDispatcher
    scheduler: ReminderScheduler
    loops: LoopManager

    @classmethod
    def build(
        cls,
        store: JobStore | None = None,
        messenger: Messenger | None = None,
        http_client: httpx.AsyncClient | None = None,
        loop_floor_ms: int | None = None,
    ) -> "Runtime":
        store = store or JobStore()
        messenger = messenger or TelnyxMessenger()
        webhooks = WebhookDispatcher(client=http_client)
        scheduler = ReminderScheduler(store, NotificationDispatcher(store, messenger))
        loops = LoopManager(webhooks, store=store, floor_ms=loop_floor_ms)
        return cls(store=store, messenger=messenger, webhooks=webhooks, scheduler=scheduler, loops=loops)

    async def start(self) -> None:
        """Rehydrate reminders and loops; store failures are logged, not fatal."""
        try:
            await self.scheduler.restore_all()
        except PersistenceError:
            _LOGGER.exception("[Startup] reminder restore failed")
        try:
            await self.loops.load_from_db()
        except PersistenceError:
            _LOGGER.exception("[Startup] loop restore failed")

    async def close(self) -> None:
        await self.loops.shutdown()
        await self.scheduler.shutdown()
        await self.webhooks.aclose()
        aclose = getattr(self.messenger, "aclose", None)
        if aclose is not None:
            await aclose()
