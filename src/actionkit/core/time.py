from __future__ import annotations

"""
actionkit.core.time
===================

Clock abstractions:
- Clock Protocol for dependency-injection and testing.
- SystemClock: production default implementation.
- ManualClock: deterministic time control for tests.
"""

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol

from .types import Millis, MonotonicMs, TimestampMs


def ms_to_dt(ms: TimestampMs) -> datetime:
    """Epoch milliseconds -> aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=UTC)


def dt_to_ms(dt: datetime) -> TimestampMs:
    """Aware datetime -> epoch milliseconds. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


class Clock(Protocol):
    """Minimal clock protocol used across the project."""

    def now_dt(self) -> datetime: ...
    def now_ms(self) -> TimestampMs: ...
    def mono_ms(self) -> MonotonicMs: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Default production clock backed by system time."""

    def now_dt(self) -> datetime:
        """UTC datetime for wall-clock timestamps (persistable)."""
        return datetime.now(UTC)

    def now_ms(self) -> TimestampMs:
        """Epoch milliseconds from system clock (persistable)."""
        return time.time_ns() // 1_000_000

    def mono_ms(self) -> MonotonicMs:
        """Process-local monotonic milliseconds (not related to wall clock)."""
        return time.monotonic_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        """Async sleep for the given number of milliseconds."""
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    - Wall time (`now_ms`) starts at `start_ms` and advances only via `advance_ms`/`sleep_ms`.
    - `sleep_ms` fast-forwards and yields once to the event loop so polling
      loops driven by this clock never spin without giving other tasks a turn.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        self._wall: Millis = start_ms
        self._mono: Millis = start_ms

    def now_dt(self) -> datetime:
        return ms_to_dt(self._wall)

    def now_ms(self) -> TimestampMs:
        return self._wall

    def mono_ms(self) -> MonotonicMs:
        return self._mono

    def advance_ms(self, ms: Millis) -> None:
        inc = max(0, int(ms))
        self._wall += inc
        self._mono += inc

    async def sleep_ms(self, ms: Millis) -> None:
        self.advance_ms(ms)
        await asyncio.sleep(0)
