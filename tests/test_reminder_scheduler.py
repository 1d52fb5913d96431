import asyncio
import time

import pytest

from app.errors import PersistenceError
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.reminder_scheduler import ReminderScheduler
from app.types.contracts import ReminderJob
from db.db import JobStore
from conftest import FakeMessenger, insert_row

# Fixed clock: a job due at SOON fires after ~0.2s.
NOW = 1_000.8
SOON = 1_001


def _scheduler(store, messenger, clock=lambda: NOW):
    return ReminderScheduler(store, NotificationDispatcher(store, messenger), clock=clock)


async def _persisted_job(store, user_id="u1", channel_id="", message="stretch", due_at=SOON):
    row = await store.insert_reminder(user_id, channel_id, message, due_at)
    return ReminderJob.model_validate(row.as_dict())


@pytest.mark.asyncio
async def test_past_due_job_fires_immediately(store, messenger):
    scheduler = _scheduler(store, messenger, clock=time.time)
    job = await _persisted_job(store, due_at=int(time.time()) - 3600)

    scheduler.schedule(job)
    await asyncio.sleep(0.1)

    assert messenger.direct == [("u1", "⏰ Time's up! Reminder: \"stretch\"")]
    assert await store.get_reminder(job.id) is None
    assert not scheduler.is_scheduled(job.id)


@pytest.mark.asyncio
async def test_rescheduling_same_id_delivers_once(store, messenger):
    scheduler = _scheduler(store, messenger)
    job = await _persisted_job(store, message="first")

    scheduler.schedule(job)
    scheduler.schedule(job.model_copy(update={"message": "second"}))
    assert len(scheduler) == 1

    await asyncio.sleep(0.5)

    assert len(messenger.direct) == 1
    assert "second" in messenger.direct[0][1]


@pytest.mark.asyncio
async def test_cancel_before_due_prevents_delivery(store, messenger):
    scheduler = _scheduler(store, messenger)
    job = await _persisted_job(store)

    scheduler.schedule(job)
    assert scheduler.cancel(job.id) is True
    await asyncio.sleep(0.4)

    assert messenger.direct == []
    assert not scheduler.is_scheduled(job.id)
    # The row is the caller's business.
    assert await store.get_reminder(job.id) is not None


@pytest.mark.asyncio
async def test_cancel_unknown_id_is_noop(store, messenger):
    scheduler = _scheduler(store, messenger)
    assert scheduler.cancel(404) is False


@pytest.mark.asyncio
async def test_restore_rearms_only_future_active_rows(store, messenger, session_maker):
    now = int(time.time())
    future = await insert_row(session_maker, user_id="u1", channel_id="", message="later", time=now + 3600)
    overdue = await insert_row(session_maker, user_id="u2", channel_id="", message="stale", time=now - 60)
    await insert_row(session_maker, user_id="u3", channel_id="", message="off", time=now + 3600, active=False)
    scheduler = _scheduler(store, messenger, clock=time.time)

    report = await scheduler.restore_all()

    assert report.restored == 1
    assert report.overdue == [overdue.id]
    assert scheduler.pending_ids() == [future.id]
    # Overdue rows are neither delivered nor cleaned up.
    await asyncio.sleep(0.05)
    assert messenger.direct == []
    assert await store.get_reminder(overdue.id) is not None
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_restore_skips_unreadable_rows(store, messenger, session_maker):
    await insert_row(session_maker, user_id="  ", channel_id="", message="broken", time=int(time.time()) + 60)
    good = await insert_row(session_maker, user_id="u1", channel_id="", message="ok", time=int(time.time()) + 60)
    scheduler = _scheduler(store, messenger, clock=time.time)

    report = await scheduler.restore_all()

    assert report.invalid == 1
    assert report.restored == 1
    assert scheduler.pending_ids() == [good.id]
    await scheduler.shutdown()


class _BrokenStore(JobStore):
    async def fetch_active_reminders(self):
        raise PersistenceError("database is locked")


@pytest.mark.asyncio
async def test_restore_surfaces_store_failure(messenger):
    scheduler = _scheduler(_BrokenStore(), messenger)
    with pytest.raises(PersistenceError):
        await scheduler.restore_all()


@pytest.mark.asyncio
async def test_fallback_delivery_removes_row_and_timer(store, session_maker):
    await insert_row(session_maker, id=7, user_id="u7", channel_id="+15550007", message="call mom",
                     time=int(time.time()))
    messenger = FakeMessenger(fail_direct={"u7"})
    scheduler = _scheduler(store, messenger, clock=time.time)
    job = ReminderJob(id=7, user_id="u7", channel_id="+15550007", message="call mom", due_at=int(time.time()))

    scheduler.schedule(job)
    await asyncio.sleep(0.1)

    assert messenger.direct == []
    assert len(messenger.channel) == 1
    assert messenger.channel[0][0] == "+15550007"
    assert await store.get_reminder(7) is None
    assert not scheduler.is_scheduled(7)


@pytest.mark.asyncio
async def test_undeliverable_job_is_marked_inactive_and_not_retried(store):
    messenger = FakeMessenger(fail_direct={"u1"})
    scheduler = _scheduler(store, messenger, clock=time.time)
    job = await _persisted_job(store, due_at=int(time.time()))

    scheduler.schedule(job)
    await asyncio.sleep(0.1)

    row = await store.get_reminder(job.id)
    assert row is not None and row.active is False
    assert not scheduler.is_scheduled(job.id)
    report = await scheduler.restore_all()
    assert report.restored == 0


@pytest.mark.asyncio
async def test_delivered_job_with_failed_cleanup_is_not_left_active(store, messenger, monkeypatch):
    scheduler = _scheduler(store, messenger, clock=time.time)
    job = await _persisted_job(store, due_at=int(time.time()))

    async def broken_delete(rid):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "delete_reminder", broken_delete)
    scheduler.schedule(job)
    await asyncio.sleep(0.1)

    assert len(messenger.direct) == 1
    assert (await store.get_reminder(job.id)).active is False
    report = await _scheduler(store, messenger, clock=time.time).restore_all()
    assert (report.restored, report.overdue) == (0, [])


@pytest.mark.asyncio
async def test_create_persists_then_schedules(store, messenger):
    scheduler = _scheduler(store, messenger, clock=time.time)

    job = await scheduler.create("u1", "", "water plants", int(time.time()) + 3600)

    assert scheduler.is_scheduled(job.id)
    assert (await store.get_reminder(job.id)).message == "water plants"
    await scheduler.shutdown()
    assert len(scheduler) == 0


@pytest.mark.asyncio
async def test_remove_and_clear_user(store, messenger):
    scheduler = _scheduler(store, messenger, clock=time.time)
    due = int(time.time()) + 3600
    a = await scheduler.create("u1", "", "a", due)
    b = await scheduler.create("u1", "", "b", due)
    c = await scheduler.create("u2", "", "c", due)

    assert await scheduler.remove(a.id) is True
    assert await scheduler.remove(a.id) is False
    assert await scheduler.clear_user("u1") == [b.id]

    assert scheduler.pending_ids() == [c.id]
    assert await store.count_reminders() == 1
    await scheduler.shutdown()
