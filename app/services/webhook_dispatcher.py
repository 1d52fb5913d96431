"""Concurrent webhook fan-out for loop dispatch rounds.

One round POSTs the same JSON payload to every endpoint of a loop at once and
waits for all of them. A failing endpoint is logged and counted; it never
aborts its siblings or the round.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

import httpx

from app.errors import DispatchError
from app.types.contracts import LoopConfig, WebhookEndpoint, WebhookPayload
from config import settings

_LOGGER = logging.getLogger(__name__)

_RATE_LIMITED = 429


@dataclass
class RoundResult:
    delivered: int = 0
    rate_limited: int = 0
    failed: int = 0
    errors: list[DispatchError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.delivered + self.rate_limited + self.failed


def build_client(
    timeout: float | None = None,
    max_connections: int | None = None,
    keepalive_expiry: float | None = None,
) -> httpx.AsyncClient:
    """Pooled client shared by every round of every loop."""
    max_conn = max_connections or settings.WEBHOOK_MAX_CONNECTIONS
    limits = httpx.Limits(
        max_connections=max_conn,
        max_keepalive_connections=max_conn,
        keepalive_expiry=keepalive_expiry or settings.WEBHOOK_KEEPALIVE_EXPIRY,
    )
    return httpx.AsyncClient(timeout=timeout or settings.WEBHOOK_TIMEOUT, limits=limits)


class WebhookDispatcher:
    def __init__(self, client: httpx.AsyncClient | None = None, base_url: str | None = None) -> None:
        self._owns_client = client is None
        self._client = client or build_client()
        self._base_url = base_url or settings.WEBHOOK_BASE_URL

    async def dispatch_round(
        self, config: LoopConfig, endpoints: Sequence[WebhookEndpoint] | None = None
    ) -> RoundResult:
        hooks = list(config.hooks if endpoints is None else endpoints)
        result = RoundResult()
        if not hooks:
            return result

        body = WebhookPayload.from_config(config).model_dump()
        outcomes = await asyncio.gather(
            *(self._post(hook, body) for hook in hooks), return_exceptions=True
        )
        for hook, outcome in zip(hooks, outcomes):
            if isinstance(outcome, DispatchError):
                result.failed += 1
                result.errors.append(outcome)
                _LOGGER.warning("[Looper] %s: %s", config.channel_id, outcome)
            elif isinstance(outcome, BaseException):
                # Unexpected failure inside one request; the round still completes.
                result.failed += 1
                result.errors.append(DispatchError(hook.id, repr(outcome)))
                _LOGGER.error(
                    "[Looper] %s: endpoint %s raised", config.channel_id, hook.id, exc_info=outcome
                )
            elif outcome == _RATE_LIMITED:
                result.rate_limited += 1
            else:
                result.delivered += 1
        return result

    async def _post(self, hook: WebhookEndpoint, body: dict) -> int:
        try:
            response = await self._client.post(hook.url(self._base_url), json=body)
        except httpx.HTTPError as exc:
            raise DispatchError(hook.id, f"{type(exc).__name__}: {exc}") from exc
        status = response.status_code
        if status == _RATE_LIMITED:
            # Noted only; the next tick is the retry.
            _LOGGER.info("[Looper] endpoint %s rate limited (retry-after=%s)", hook.id,
                         response.headers.get("retry-after"))
            return status
        if not response.is_success:
            raise DispatchError(hook.id, f"http_{status}")
        return status

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
