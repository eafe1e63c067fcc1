from __future__ import annotations

"""
sweepwatch.core.time
====================

Clock abstractions:
- Clock Protocol for dependency injection.
- SystemClock: production default.
- ManualClock: deterministic time for tests; `sleep_ms` advances time and
  yields to the event loop once so polling loops can interleave.
"""

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol

from .types import Millis, TimestampMs


class Clock(Protocol):
    """Minimal clock protocol used across the engine."""

    def now_dt(self) -> datetime: ...
    def now_ms(self) -> TimestampMs: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Clock backed by system time."""

    def now_dt(self) -> datetime:
        return datetime.now(UTC)

    def now_ms(self) -> TimestampMs:
        """Epoch milliseconds (comparable with server log timestamps)."""
        return time.time_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    Wall time starts at `start_ms` and moves only via `advance()`, `set()` or `sleep_ms()`.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        self._wall: Millis = start_ms

    def now_dt(self) -> datetime:
        return datetime.fromtimestamp(self._wall / 1000.0, tz=UTC)

    def now_ms(self) -> TimestampMs:
        return self._wall

    def advance(self, ms: Millis) -> None:
        self._wall += max(0, int(ms))

    def set(self, ms: Millis) -> None:
        self._wall = int(ms)

    async def sleep_ms(self, ms: Millis) -> None:
        self.advance(ms)
        await asyncio.sleep(0)
