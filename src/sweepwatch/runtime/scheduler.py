# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Adaptive single-flight poll scheduling.

Each data channel (status, logs) is a `PollChannel`. Its loop runs one fetch,
waits for it to settle, then sleeps `interval_ms()` before the next, so slow
responses throttle the cadence. Any other trigger (manual refresh, action
confirmation) arriving while a fetch is outstanding is skipped, never
queued. The interval is re-read on every tick so a phase change takes effect
on the next one.

    idle --trigger--> in_flight --fetch settles--> idle
    in_flight --trigger--> in_flight   (skipped)
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

from ..core.config import EngineConfig
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..core.types import Millis
from ..observability.metrics import EngineMetrics

STATUS = "status"
LOGS = "logs"

FetchFn = Callable[[], Awaitable[bool]]


class ChannelState(str, Enum):
    idle = "idle"
    in_flight = "in_flight"


def poll_interval_ms(cfg: EngineConfig, channel: str, phase: str) -> Millis:
    """Fast cadence while the job is in one of `cfg.fast_phases`, slow otherwise."""
    fast = phase in cfg.fast_phases
    if channel == STATUS:
        return cfg.status_fast_ms if fast else cfg.status_slow_ms
    if channel == LOGS:
        return cfg.log_fast_ms if fast else cfg.log_slow_ms
    raise ValueError(f"unknown channel: {channel!r}")


class PollChannel:
    """One data channel with at most one request outstanding."""

    def __init__(
        self,
        name: str,
        fetch: FetchFn,
        *,
        interval_ms: Callable[[], Millis],
        enabled: Callable[[], bool] | None = None,
        clock: Clock | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self.name = name
        self.fetch = fetch
        self.interval_ms = interval_ms
        self.enabled = enabled or (lambda: True)
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics
        self.state = ChannelState.idle
        self._task: asyncio.Task | None = None
        self.log = get_logger("runtime.poll")

    @property
    def in_flight(self) -> bool:
        return self.state is ChannelState.in_flight

    def trigger(self) -> asyncio.Task | None:
        """Start a fetch now, or return None when one is already outstanding."""
        if self.state is ChannelState.in_flight:
            if self.metrics is not None:
                self.metrics.poll_skipped_total.labels(channel=self.name).inc()
            self.log.debug("poll.skipped", event="poll.skipped", channel=self.name)
            return None
        self.state = ChannelState.in_flight
        self._task = asyncio.create_task(self._run_fetch(), name=f"poll-{self.name}")
        return self._task

    async def tick(self) -> bool:
        """Trigger and wait for the fetch; False when the tick was skipped."""
        t = self.trigger()
        if t is None:
            return False
        await t
        return True

    async def _run_fetch(self) -> None:
        ok = False
        try:
            ok = await self.fetch()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.log.error("poll.fetch.crashed", event="poll.fetch.crashed", channel=self.name, exc_info=True)
        finally:
            self.state = ChannelState.idle
        if self.metrics is not None:
            self.metrics.polls_total.labels(channel=self.name, result="ok" if ok else "failed").inc()

    async def run(self) -> None:
        try:
            while True:
                if self.enabled():
                    await self.tick()
                await self.clock.sleep_ms(self.interval_ms())
        except asyncio.CancelledError:
            return

    async def drain(self) -> None:
        """Wait for the outstanding fetch, if any."""
        t = self._task
        if t is not None and not t.done():
            await asyncio.gather(t, return_exceptions=True)

    def cancel(self) -> None:
        t = self._task
        if t is not None and not t.done():
            t.cancel()
        self.state = ChannelState.idle


class PollScheduler:
    """Runs the timer loop of every registered channel as a background task."""

    def __init__(self) -> None:
        self.channels: dict[str, PollChannel] = {}
        self._tasks: set[asyncio.Task] = set()
        self.log = get_logger("runtime.scheduler")

    def add(self, channel: PollChannel) -> PollChannel:
        if channel.name in self.channels:
            raise ValueError(f"channel already registered: {channel.name}")
        self.channels[channel.name] = channel
        return channel

    def __getitem__(self, name: str) -> PollChannel:
        return self.channels[name]

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        for ch in self.channels.values():
            self._spawn(ch.run(), name=f"loop-{ch.name}")
        self.log.debug("scheduler.started", event="scheduler.started", channels=list(self.channels))

    async def stop(self) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        for ch in self.channels.values():
            ch.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.log.debug("scheduler.stopped", event="scheduler.stopped")

    def _spawn(self, coro, *, name: str | None = None) -> None:
        t = asyncio.create_task(coro, name=name or getattr(coro, "__name__", "task"))
        self._tasks.add(t)

        def _done(task: asyncio.Task) -> None:
            self._tasks.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                self.log.error(
                    "scheduler.task.crashed", event="scheduler.task.crashed", task=task.get_name(), exc_info=exc
                )

        t.add_done_callback(_done)
