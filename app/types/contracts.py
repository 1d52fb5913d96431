"""Pydantic models shared by the scheduler, the loop manager, the store and
the HTTP surface.

These classes are intentionally framework-agnostic so they can be reused by
services, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import settings


# ──────────────────────────────
# Reminders
# ──────────────────────────────


class ReminderJob(BaseModel):
    """One scheduled one-shot notification.

    ``due_at`` is an absolute Unix timestamp in seconds. ``channel_id`` is the
    fallback destination used when direct delivery fails; it may be empty.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    channel_id: str = ""
    message: str
    due_at: int
    active: bool = True

    @field_validator("user_id")
    def validate_user_id(cls, v):  # noqa: N805
        if not isinstance(v, str) or not v.strip():
            raise ValueError("user_id must be a non-empty string")
        return v

    @field_validator("channel_id", mode="before")
    def _none_channel(cls, v):  # noqa: N805
        return v or ""

    @property
    def due_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.due_at, tz=timezone.utc)


class ReminderCreate(BaseModel):
    """Request body for scheduling a reminder.

    ``due_at`` accepts either Unix seconds or an ISO-8601 timestamp; naive
    datetimes are rejected.
    """

    user_id: str
    channel_id: str = ""
    message: str
    due_at: Union[int, datetime]

    @field_validator("user_id")
    def validate_user_id(cls, v):  # noqa: N805
        if not v.strip():
            raise ValueError("user_id must be a non-empty string")
        return v

    @field_validator("message")
    def validate_message(cls, v):  # noqa: N805
        if not v.strip():
            raise ValueError("message must not be empty")
        if len(v) > settings.REMINDER_MAX_CHARS:
            raise ValueError(f"message must be at most {settings.REMINDER_MAX_CHARS} characters")
        return v

    @field_validator("due_at")
    def validate_due_at(cls, v):  # noqa: N805
        if isinstance(v, datetime) and v.tzinfo is None:
            raise ValueError("due_at must be timezone-aware")
        return v

    def due_timestamp(self) -> int:
        if isinstance(self.due_at, datetime):
            return int(self.due_at.timestamp())
        return int(self.due_at)


# ──────────────────────────────
# Webhook loops
# ──────────────────────────────


class WebhookEndpoint(BaseModel):
    """Opaque id/secret pair addressing one webhook."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    token: str
    channel_name: Optional[str] = Field(default=None, alias="channelName")

    def url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/{self.id}/{self.token}"


class LoopConfig(BaseModel):
    """Configuration of one periodic fan-out loop, keyed by ``channel_id``.

    Field aliases match the JSON stored in ``webhook_loops.config``.
    """

    model_config = ConfigDict(populate_by_name=True)

    channel_id: str = Field(alias="channelId")
    channel_name: str = Field(default="", alias="channelName")
    interval_ms: int = Field(default=1000, alias="interval", ge=0)
    message: str
    webhook_author: str = ""
    webhook_avatar: str = ""
    hooks: List[WebhookEndpoint] = Field(default_factory=list)

    @field_validator("channel_id")
    def validate_channel_id(cls, v):  # noqa: N805
        if not v.strip():
            raise ValueError("channel_id must be a non-empty string")
        return v


class WebhookPayload(BaseModel):
    """JSON body POSTed to every endpoint of a loop."""

    content: str
    username: str
    avatar_url: str

    @classmethod
    def from_config(cls, config: LoopConfig) -> "WebhookPayload":
        return cls(
            content=config.message,
            username=config.webhook_author,
            avatar_url=config.webhook_avatar,
        )
