"""Named periodic webhook loops.

``LoopManager`` owns the index of live loops keyed by channel id; each live
loop is driven by a ``LoopRunner`` task that fires one dispatch round right
away and then one per tick until its stop event is set. Rounds of the same
loop never overlap: a round that overruns the interval swallows the ticks it
missed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

from pydantic import ValidationError

from app.services.webhook_dispatcher import WebhookDispatcher
from app.types.contracts import LoopConfig, WebhookEndpoint
from config import settings
from db.db import JobStore

_LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class LoopInstance:
    config: LoopConfig
    endpoints: list[WebhookEndpoint]
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    rounds: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return self.config.channel_id


@dataclass
class LoadReport:
    loaded: int = 0
    started: int = 0
    invalid: int = 0


def effective_interval(interval_ms: int, floor_ms: int | None = None) -> float:
    """Tick interval in seconds, clamped to the configured floor."""
    floor = settings.LOOP_MIN_INTERVAL_MS if floor_ms is None else floor_ms
    return max(interval_ms, floor, 1) / 1000.0


class LoopRunner:
    def __init__(self, instance: LoopInstance, dispatcher: WebhookDispatcher, floor_ms: int | None = None) -> None:
        self._instance = instance
        self._dispatcher = dispatcher
        self._interval = effective_interval(instance.config.interval_ms, floor_ms)

    @property
    def interval(self) -> float:
        return self._interval

    async def run(self) -> None:
        instance = self._instance
        stop = instance.stop_event
        loop = asyncio.get_running_loop()
        _LOGGER.info("[Looper] starting %s (%s) every %.3fs to %d endpoints",
                     instance.key, instance.config.channel_name, self._interval, len(instance.endpoints))

        next_tick = loop.time()
        while not stop.is_set():
            await self._round()
            next_tick += self._interval
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // self._interval) + 1
                next_tick += missed * self._interval
            try:
                await asyncio.wait_for(stop.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                continue

        _LOGGER.info("[Looper] %s stopped after %d rounds", instance.key, instance.rounds)

    async def _round(self) -> None:
        instance = self._instance
        try:
            result = await self._dispatcher.dispatch_round(instance.config, instance.endpoints)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("[Looper] round for %s crashed", instance.key)
            return
        finally:
            instance.rounds += 1
        _LOGGER.debug("[Looper] %s round %d: %d ok, %d rate limited, %d failed",
                      instance.key, instance.rounds, result.delivered, result.rate_limited, result.failed)


class LoopManager:
    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        store: JobStore | None = None,
        floor_ms: int | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._store = store
        self._floor_ms = floor_ms
        self._loops: dict[str, LoopInstance] = {}
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._loops)

    def is_running(self, key: str) -> bool:
        return key in self._loops

    def get(self, key: str) -> LoopInstance | None:
        return self._loops.get(key)

    def running(self) -> list[LoopInstance]:
        return list(self._loops.values())

    def start_loop(self, config: LoopConfig, endpoints: Sequence[WebhookEndpoint] | None = None) -> bool:
        """Start a loop for ``config.channel_id``; no-op if one is already live."""
        key = config.channel_id
        if key in self._loops:
            return False

        instance = LoopInstance(
            config=config,
            endpoints=list(config.hooks if endpoints is None else endpoints),
        )
        self._loops[key] = instance
        runner = LoopRunner(instance, self._dispatcher, self._floor_ms)
        instance.task = asyncio.get_running_loop().create_task(runner.run(), name=f"looper:{key}")
        self._tasks.add(instance.task)
        instance.task.add_done_callback(self._tasks.discard)
        return True

    def stop_loop(self, key: str) -> bool:
        """Signal the loop to stop; in-flight requests of the current round finish."""
        instance = self._loops.pop(key, None)
        if instance is None:
            return False
        instance.stop_event.set()
        _LOGGER.info("[Looper] stopping %s", instance.config.channel_name or key)
        return True

    async def load_from_db(self, autostart: bool | None = None) -> LoadReport:
        """Rehydrate stored loop configurations, starting them when *autostart*."""
        if self._store is None:
            raise RuntimeError("LoopManager has no store")
        if autostart is None:
            autostart = settings.LOOP_RESTORE_ON_START

        report = LoadReport()
        for row in await self._store.fetch_loops():
            try:
                config = LoopConfig.model_validate_json(row.config or "")
            except ValidationError as exc:
                report.invalid += 1
                _LOGGER.warning("[Looper] skipping unreadable loop row %s: %s", row.channel_id, exc)
                continue
            if config.channel_id != row.channel_id:
                report.invalid += 1
                _LOGGER.warning("[Looper] skipping loop row %s: config names channel %s",
                                row.channel_id, config.channel_id)
                continue
            report.loaded += 1
            if autostart and self.start_loop(config):
                report.started += 1

        _LOGGER.info("[Looper] loaded %d loop configurations, started %d", report.loaded, report.started)
        return report

    async def launch(self, config: LoopConfig) -> bool:
        """Persist and start a loop; a live key is left untouched, stored row included."""
        if self.is_running(config.channel_id):
            return False
        if self._store is not None:
            await self._store.save_loop(config)
        return self.start_loop(config)

    async def retire(self, key: str) -> bool:
        stopped = self.stop_loop(key)
        deleted = await self._store.delete_loop(key) if self._store is not None else 0
        return stopped or deleted > 0

    async def shutdown(self) -> None:
        for key in list(self._loops):
            self.stop_loop(key)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
