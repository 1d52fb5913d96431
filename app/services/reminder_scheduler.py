"""In-process timers for stored reminders.

Every reminder id owns at most one event-loop timer. Re-scheduling an id stops
the previous timer before installing the new one, so a job can only ever fire
once per schedule generation. The store stays the source of truth across
restarts: rows are always written before a timer is armed, and
``restore_all`` re-arms the future ones at startup.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable

from pydantic import ValidationError

from app.services.notification_dispatcher import NotificationDispatcher
from app.types.contracts import ReminderJob
from db.db import JobStore

_LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class _ScheduledEntry:
    job: ReminderJob
    handle: asyncio.TimerHandle | None = None


@dataclass
class RestoreReport:
    restored: int = 0
    invalid: int = 0
    overdue: list[int] = field(default_factory=list)


class ReminderScheduler:
    def __init__(
        self,
        store: JobStore,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock
        self._jobs: dict[int, _ScheduledEntry] = {}
        self._lock = Lock()
        self._inflight: set[asyncio.Task] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def is_scheduled(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._jobs

    def pending_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._jobs)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------
    def schedule(self, job: ReminderJob) -> None:
        """Arm a single-fire timer for an already persisted job."""
        loop = asyncio.get_running_loop()
        delay = max(0.0, job.due_at - self._clock())
        entry = _ScheduledEntry(job=job)
        with self._lock:
            existing = self._jobs.pop(job.id, None)
            if existing is not None and existing.handle is not None:
                existing.handle.cancel()
            entry.handle = loop.call_later(delay, self._fire, entry)
            self._jobs[job.id] = entry
        _LOGGER.info(
            "[Scheduler] %s reminder %s for %s",
            "rescheduled" if existing is not None else "scheduled",
            job.id,
            job.due_datetime.isoformat(),
        )

    def cancel(self, job_id: int) -> bool:
        """Stop the timer for *job_id*. The stored row is left to the caller."""
        with self._lock:
            entry = self._jobs.pop(job_id, None)
            if entry is None:
                return False
            if entry.handle is not None:
                entry.handle.cancel()
        _LOGGER.info("[Scheduler] cancelled reminder %s", job_id)
        return True

    def discard(self, job_id: int, entry: _ScheduledEntry) -> None:
        # Only the generation that fired is removed; a newer schedule survives.
        with self._lock:
            if self._jobs.get(job_id) is entry:
                del self._jobs[job_id]

    async def restore_all(self) -> RestoreReport:
        """Re-arm every active stored reminder that is still in the future.

        Overdue rows are skipped on purpose so a restart does not flood users
        with stale reminders. Store failures propagate as ``PersistenceError``.
        """
        rows = await self._store.fetch_active_reminders()
        report = RestoreReport()
        now = self._clock()
        for row in rows:
            try:
                job = ReminderJob.model_validate(row.as_dict())
            except ValidationError as exc:
                report.invalid += 1
                _LOGGER.warning("[Scheduler] skipping unreadable reminder row %s: %s", row.id, exc)
                continue
            if job.due_at <= now:
                report.overdue.append(job.id)
                continue
            self.schedule(job)
            report.restored += 1

        if report.overdue:
            _LOGGER.warning("[Scheduler] left %d overdue reminders unscheduled: %s",
                            len(report.overdue), report.overdue)
        _LOGGER.info("[Scheduler] restored %d pending reminders", report.restored)
        return report

    # ------------------------------------------------------------------
    # Store-backed helpers used by the HTTP surface
    # ------------------------------------------------------------------
    async def create(self, user_id: str, channel_id: str, message: str, due_at: int) -> ReminderJob:
        row = await self._store.insert_reminder(user_id, channel_id, message, due_at)
        job = ReminderJob.model_validate(row.as_dict())
        self.schedule(job)
        return job

    async def remove(self, job_id: int) -> bool:
        self.cancel(job_id)
        return await self._store.delete_reminder(job_id) > 0

    async def clear_user(self, user_id: str) -> list[int]:
        removed = await self._store.delete_user_reminders(user_id)
        for job_id in removed:
            self.cancel(job_id)
        return removed

    async def shutdown(self) -> None:
        with self._lock:
            entries = list(self._jobs.values())
            self._jobs.clear()
        for entry in entries:
            if entry.handle is not None:
                entry.handle.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------
    def _fire(self, entry: _ScheduledEntry) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(entry))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _deliver(self, entry: _ScheduledEntry) -> None:
        try:
            await self._dispatcher.deliver(entry.job)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("[Scheduler] delivery of reminder %s crashed", entry.job.id)
        finally:
            self.discard(entry.job.id, entry)
