import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.errors import MessengerError
from db.db import JobStore, Reminder, create_all


class FakeMessenger:
    """Records every send; recipients listed in the fail sets raise."""

    def __init__(self, fail_direct=(), fail_channels=()):
        self.fail_direct = set(fail_direct)
        self.fail_channels = set(fail_channels)
        self.direct: list[tuple[str, str]] = []
        self.channel: list[tuple[str, str]] = []

    async def send_direct(self, user_id, text):
        if user_id in self.fail_direct:
            raise MessengerError(f"cannot open DM with {user_id}")
        self.direct.append((user_id, text))

    async def send_to_channel(self, channel_id, text):
        if channel_id in self.fail_channels:
            raise MessengerError(f"channel {channel_id} rejected message")
        self.channel.append((channel_id, text))


def _engine_for(tmp_path):
    return create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'minder.db'}", poolclass=NullPool)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = _engine_for(tmp_path)
    await create_all(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_maker):
    return JobStore(session_maker)


@pytest.fixture
def sync_store(tmp_path):
    # For TestClient-driven tests that run their own event loop.
    engine = _engine_for(tmp_path)
    asyncio.run(create_all(engine))
    yield JobStore(async_sessionmaker(engine, expire_on_commit=False))
    asyncio.run(engine.dispose())


@pytest.fixture
def messenger():
    return FakeMessenger()


async def insert_row(session_maker, **values) -> Reminder:
    row = Reminder(**values)
    async with session_maker() as s:
        s.add(row)
        await s.commit()
    return row
