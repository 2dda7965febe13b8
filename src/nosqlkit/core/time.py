from __future__ import annotations

"""
nosqlkit.core.time
==================

Clock abstractions:
- Clock Protocol injected into the executor, poller and rate limiters.
- SystemClock: production default implementation.
- ManualClock: deterministic time control for tests; sleeping advances time.
"""

import asyncio
import time
from typing import Protocol

from .types import Millis, MonotonicMs, TimestampMs


class Clock(Protocol):
    """Minimal clock protocol used across the project."""

    def now_ms(self) -> TimestampMs: ...
    def mono_ms(self) -> MonotonicMs: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Default production clock backed by system time."""

    def now_ms(self) -> TimestampMs:
        """Epoch milliseconds from system clock."""
        return time.time_ns() // 1_000_000

    def mono_ms(self) -> MonotonicMs:
        """Process-local monotonic milliseconds; all deadlines are computed on this scale."""
        return time.monotonic_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    - Time starts at `start_ms` and advances only through `sleep_ms` or `advance`.
    - Every requested sleep is recorded in `sleeps` so tests can assert on backoff.
    - `sleep_ms` still yields to the event loop once, so concurrent tasks interleave.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        self._now: Millis = start_ms
        self.sleeps: list[Millis] = []

    def now_ms(self) -> TimestampMs:
        return self._now

    def mono_ms(self) -> MonotonicMs:
        return self._now

    def advance(self, ms: Millis) -> None:
        self._now += max(0, int(ms))

    async def sleep_ms(self, ms: Millis) -> None:
        inc = max(0, int(ms))
        self.sleeps.append(inc)
        self._now += inc
        await asyncio.sleep(0)
