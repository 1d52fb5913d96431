"""
Async DB helpers for reminders and webhook loops.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.
"""

from __future__ import annotations

import json
import os
from typing import Any, AsyncGenerator

from sqlalchemy import BigInteger, delete, func, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Text

from app.errors import PersistenceError
from app.types.contracts import LoopConfig

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("sqlite"):
        if "+aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker

def get_session() -> AsyncGenerator[AsyncSession, None]:
    session_maker = get_session_maker()
    async def _session_scope():
        async with session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class Reminder(Base):
    __tablename__ = "reminders"

    id:         Mapped[int]  = mapped_column(primary_key=True, autoincrement=True)
    user_id:    Mapped[str]  = mapped_column("userId", Text)
    channel_id: Mapped[str | None] = mapped_column("channelId", Text, nullable=True)
    message:    Mapped[str]  = mapped_column(Text)
    time:       Mapped[int]  = mapped_column(BigInteger)
    active:     Mapped[bool] = mapped_column(default=True, server_default=true())

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "channel_id": self.channel_id or "",
            "message": self.message,
            "due_at": self.time,
            "active": self.active,
        }


class WebhookLoop(Base):
    __tablename__ = "webhook_loops"

    channel_id: Mapped[str]        = mapped_column("channelId", Text, primary_key=True)
    config:     Mapped[str]        = mapped_column(Text)
    threads:    Mapped[str | None] = mapped_column(Text, nullable=True)


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all(engine: AsyncEngine | None = None):
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Job store
# ──────────────────────────────────────────────────────────────────────

class JobStore:
    """Durable rows for pending reminders and loop configurations.

    Every SQLAlchemy failure surfaces as ``PersistenceError`` so callers never
    need to know about the storage engine.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_maker = session_maker

    def _session(self) -> AsyncSession:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker()

    # 5.1 Reminders ----------------------------------------------------
    async def insert_reminder(self, user_id: str, channel_id: str, message: str, due_at: int) -> Reminder:
        row = Reminder(user_id=user_id, channel_id=channel_id, message=message, time=due_at, active=True)
        try:
            async with self._session() as s:
                s.add(row)
                await s.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"insert reminder failed: {exc}") from exc
        return row

    async def fetch_active_reminders(self) -> list[Reminder]:
        try:
            async with self._session() as s:
                res = await s.execute(select(Reminder).where(Reminder.active.is_(True)).order_by(Reminder.time))
                return list(res.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"fetch active reminders failed: {exc}") from exc

    async def get_reminder(self, rid: int) -> Reminder | None:
        try:
            async with self._session() as s:
                return await s.get(Reminder, rid)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"get reminder {rid} failed: {exc}") from exc

    async def list_reminders(self, user_id: str) -> list[Reminder]:
        try:
            async with self._session() as s:
                res = await s.execute(
                    select(Reminder).where(Reminder.user_id == user_id).order_by(Reminder.time)
                )
                return list(res.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"list reminders failed: {exc}") from exc

    async def count_reminders(self, user_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(Reminder)
        if user_id is not None:
            stmt = stmt.where(Reminder.user_id == user_id)
        try:
            async with self._session() as s:
                return int((await s.execute(stmt)).scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"count reminders failed: {exc}") from exc

    async def delete_reminder(self, rid: int) -> int:
        try:
            async with self._session() as s:
                res = await s.execute(delete(Reminder).where(Reminder.id == rid))
                await s.commit()
                return res.rowcount or 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"delete reminder {rid} failed: {exc}") from exc

    async def delete_user_reminders(self, user_id: str) -> list[int]:
        """Delete every reminder owned by *user_id*; return the removed ids."""
        try:
            async with self._session() as s:
                res = await s.execute(select(Reminder.id).where(Reminder.user_id == user_id))
                ids = [r for (r,) in res.all()]
                if ids:
                    await s.execute(delete(Reminder).where(Reminder.id.in_(ids)))
                    await s.commit()
                return ids
        except SQLAlchemyError as exc:
            raise PersistenceError(f"delete reminders for {user_id} failed: {exc}") from exc

    async def deactivate_reminder(self, rid: int) -> None:
        try:
            async with self._session() as s:
                await s.execute(update(Reminder).where(Reminder.id == rid).values(active=False))
                await s.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"deactivate reminder {rid} failed: {exc}") from exc

    # 5.2 Webhook loops ------------------------------------------------
    async def save_loop(self, config: LoopConfig, threads: dict[str, str] | None = None) -> None:
        raw_config = config.model_dump_json(by_alias=True)
        raw_threads = json.dumps(threads or {})
        try:
            async with self._session() as s:
                existing = await s.get(WebhookLoop, config.channel_id)
                if existing is None:
                    s.add(WebhookLoop(channel_id=config.channel_id, config=raw_config, threads=raw_threads))
                else:
                    existing.config = raw_config
                    existing.threads = raw_threads
                await s.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"save loop {config.channel_id} failed: {exc}") from exc

    async def fetch_loops(self) -> list[WebhookLoop]:
        try:
            async with self._session() as s:
                res = await s.execute(select(WebhookLoop))
                return list(res.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"fetch loops failed: {exc}") from exc

    async def delete_loop(self, channel_id: str) -> int:
        try:
            async with self._session() as s:
                res = await s.execute(delete(WebhookLoop).where(WebhookLoop.channel_id == channel_id))
                await s.commit()
                return res.rowcount or 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"delete loop {channel_id} failed: {exc}") from exc


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
