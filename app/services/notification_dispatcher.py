"""Delivery of fired reminders: direct message first, fallback channel second.

A reminder gets exactly one attempt sequence. Success deletes the stored row,
or marks it inactive when the delete fails; failing both attempts marks the
row inactive so it is kept for inspection but never re-armed.
"""

from __future__ import annotations

import enum
import logging

from app.errors import DeliveryError, MessengerError, PersistenceError
from app.types.contracts import ReminderJob
from app.utils.messenger import Messenger
from db.db import JobStore

_LOGGER = logging.getLogger(__name__)


class DeliveryOutcome(str, enum.Enum):
    DIRECT = "direct"
    FALLBACK = "fallback"
    FAILED = "failed"


def format_reminder(job: ReminderJob) -> str:
    return f"⏰ Time's up! Reminder: \"{job.message}\""


def format_fallback(job: ReminderJob) -> str:
    return f"{job.user_id}, I couldn't reach you directly.\n{format_reminder(job)}"


class NotificationDispatcher:
    def __init__(self, store: JobStore, messenger: Messenger) -> None:
        self._store = store
        self._messenger = messenger

    async def deliver(self, job: ReminderJob) -> DeliveryOutcome:
        try:
            await self._messenger.send_direct(job.user_id, format_reminder(job))
        except MessengerError as exc:
            _LOGGER.warning("[Reminder] direct delivery failed for %s: %s", job.id, exc)
            reason = f"direct: {exc}"
        else:
            await self._settle(job)
            _LOGGER.info("[Reminder] %s delivered directly", job.id)
            return DeliveryOutcome.DIRECT

        if job.channel_id:
            try:
                await self._messenger.send_to_channel(job.channel_id, format_fallback(job))
            except MessengerError as exc:
                reason = f"{reason}; fallback: {exc}"
            else:
                await self._settle(job)
                _LOGGER.info("[Reminder] %s delivered via channel fallback", job.id)
                return DeliveryOutcome.FALLBACK
        else:
            reason = f"{reason}; no fallback channel"

        _LOGGER.error("[Reminder] %s", DeliveryError(job.id, reason))
        await self._mark_failed(job)
        return DeliveryOutcome.FAILED

    async def _settle(self, job: ReminderJob) -> None:
        try:
            await self._store.delete_reminder(job.id)
        except PersistenceError:
            # Restore skips overdue rows, so an active leftover would never clear.
            _LOGGER.exception("[Reminder] %s delivered but row cleanup failed", job.id)
            await self._mark_failed(job)

    async def _mark_failed(self, job: ReminderJob) -> None:
        try:
            await self._store.deactivate_reminder(job.id)
        except PersistenceError:
            _LOGGER.exception("[Reminder] could not mark %s as failed", job.id)
