"""Messaging-session collaborator used for reminder delivery.

``Messenger`` is the seam the dispatcher talks to; ``TelnyxMessenger`` is the
SMS implementation. Direct delivery texts the recipient's own number, channel
delivery texts a shared fallback number.
"""

from __future__ import annotations

import logging
from typing import Protocol

import telnyx

from app.errors import MessengerError
from config import settings

_LOGGER = logging.getLogger(__name__)


class Messenger(Protocol):
    async def send_direct(self, user_id: str, text: str) -> None: ...

    async def send_to_channel(self, channel_id: str, text: str) -> None: ...


class TelnyxMessenger:
    def __init__(self, api_key: str | None = None, from_number: str | None = None) -> None:
        self._api_key = api_key if api_key is not None else settings.TELNYX_API_KEY
        self._from_number = from_number if from_number is not None else settings.TELNYX_FROM_NUMBER
        self._client = telnyx.AsyncTelnyx(api_key=self._api_key) if self.live else None

    @property
    def live(self) -> bool:
        return bool(self._api_key and self._from_number)

    async def _send_sms(self, to: str, body: str) -> None:
        if not to:
            raise MessengerError("no destination number")
        if self._client is None:
            _LOGGER.info("[SMS] DEV mode: would send to %s: %s", to, body)
            return
        try:
            await self._client.messages.send(from_=self._from_number, to=to, text=body)
        except telnyx.APIError as exc:
            raise MessengerError(f"SMS to {to} failed: {exc}") from exc

    async def send_direct(self, user_id: str, text: str) -> None:
        await self._send_sms(user_id, text)

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        await self._send_sms(channel_id, text)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
