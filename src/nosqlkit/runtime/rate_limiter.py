# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Adaptive client-side rate limiting.

Each table gets one limiter for reads and one for writes. A limiter is a
token bucket whose balance may go negative: an operation proceeds as soon
as the balance is non-negative and is charged its actual consumed units
afterwards, so the next caller waits until the debt is repaid. This keeps
throughput at the table limit without knowing costs up front.

Limiter state is the only state shared between concurrent operations; every
read-modify-write of it happens under the limiter's `asyncio.Lock`. Sleeping
happens outside the lock.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..api.errors import NoSQLTimeoutError
from ..core.config import RateLimiterConfig
from ..core.logging import get_logger, swallow
from ..core.time import Clock, SystemClock
from ..protocol.operation import Operation
from ..protocol.results import ConsumedCapacity, TableResult, TableState
from .classifier import ClassifiedError

__all__ = [
    "RateLimitTicket",
    "RateLimiterRegistry",
    "TableLimiters",
    "TokenBucketLimiter",
]

_log = get_logger("rate_limiter")


class TokenBucketLimiter:
    """
    Token bucket with debt.

    - rate: units per second; capacity: `rate * max_burst_secs` (at least one unit).
    - Starts with no stored burst (tokens = 0).
    - A limit <= 0 disables the limiter (every call returns immediately).
    """

    def __init__(self, units_per_sec: float = 0, *, max_burst_secs: int = 30, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self.max_burst_secs = max_burst_secs
        self.rate: float = 0.0
        self.capacity: float = 0.0
        self.tokens: float = 0.0
        self._last_refill_ms = self.clock.mono_ms()
        self._lock = asyncio.Lock()
        self.set_limit(units_per_sec)

    @property
    def enabled(self) -> bool:
        return self.rate > 0

    def _refill(self, now_ms: int) -> None:
        elapsed = now_ms - self._last_refill_ms
        if elapsed > 0 and self.rate > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate / 1000.0)
        self._last_refill_ms = now_ms

    def set_limit(self, units_per_sec: float) -> None:
        """Change the rate; stored burst is kept (capped), outstanding debt keeps its duration."""
        if units_per_sec <= 0:
            self.rate = 0.0
            self.tokens = 0.0
            return
        now = self.clock.mono_ms()
        old_rate = self.rate
        if old_rate > 0:
            self._refill(now)
            if self.tokens < 0:
                self.tokens *= units_per_sec / old_rate
        else:
            self._last_refill_ms = now
        self.rate = float(units_per_sec)
        self.capacity = max(self.rate * self.max_burst_secs, 1.0)
        self.tokens = min(self.tokens, self.capacity)

    def on_throttle(self) -> None:
        """The service throttled us: forget any stored burst."""
        if self.rate > 0:
            self._refill(self.clock.mono_ms())
        self.tokens = min(self.tokens, 0.0)

    def _reserve(self, units: float, timeout_ms: int | None) -> int:
        now = self.clock.mono_ms()
        self._refill(now)
        if self.tokens >= 0 or units < 0:
            self.tokens -= units
            return 0
        wait_ms = max(1, int(-self.tokens * 1000.0 / self.rate + 0.999))
        if timeout_ms is None or wait_ms < timeout_ms:
            self.tokens -= units
        return wait_ms

    async def consume_units(self, units: float, timeout_ms: int | None, *, consume_on_timeout: bool = False) -> int:
        """
        Charge `units`, waiting while the bucket is in debt. Returns the time
        slept in ms.

        If the wait would reach `timeout_ms`, sleeps `timeout_ms` and then
        either returns (consume_on_timeout, units charged) or raises
        `NoSQLTimeoutError` (units not charged).
        """
        if not self.enabled:
            return 0
        async with self._lock:
            wait_ms = self._reserve(units, None if consume_on_timeout else timeout_ms)
        if wait_ms == 0:
            return 0
        if timeout_ms is not None and wait_ms >= timeout_ms:
            await self.clock.sleep_ms(timeout_ms)
            if consume_on_timeout:
                return timeout_ms
            raise NoSQLTimeoutError(f"Rate limiter timed out waiting {timeout_ms} ms for {units} units")
        await self.clock.sleep_ms(wait_ms)
        return wait_ms


@dataclass
class TableLimiters:
    table_name: str
    read: TokenBucketLimiter
    write: TokenBucketLimiter
    read_units: int = 0
    write_units: int = 0

    @property
    def no_limits(self) -> bool:
        return self.read_units <= 0 and self.write_units <= 0


@dataclass
class RateLimitTicket:
    """Limiter bookkeeping for one executing call."""

    limiters: TableLimiters
    reads: bool
    writes: bool
    read_delay_ms: int = 0
    write_delay_ms: int = 0


TableFetch = Callable[[str], Awaitable[TableResult]]


class RateLimiterRegistry:
    """
    Per-table limiters keyed by lower-cased table name.

    Limits come from `TableResult.table_limits`: every table result seen by
    the executor updates them, DROPPED removes them. The first operation on
    an unknown table triggers one background fetch of its limits (the
    operation itself is not delayed). When `limiter_percent` is configured,
    known tables are refreshed periodically.
    """

    def __init__(self, cfg: RateLimiterConfig, *, clock: Clock | None = None, fetch_table: TableFetch | None = None):
        self.cfg = cfg
        self.clock: Clock = clock or SystemClock()
        self.fetch_table = fetch_table
        self._tables: dict[str, TableLimiters] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._refresh_task: asyncio.Task | None = None
        self._closed = False

    # ---- lookup / update

    def get(self, table_name: str) -> TableLimiters | None:
        return self._tables.get(table_name.lower())

    def _scaled(self, units: int) -> float:
        if self.cfg.limiter_percent is None:
            return float(units)
        return units * float(self.cfg.limiter_percent) / 100.0

    def update(self, res: TableResult) -> None:
        key = res.table_name.lower()
        if res.state in (TableState.DROPPED, TableState.DROPPING):
            if self._tables.pop(key, None) is not None:
                _log.debug("rate limiters removed", table=res.table_name)
            return
        limits = res.table_limits
        read_units = limits.read_units if limits else 0
        write_units = limits.write_units if limits else 0
        entry = self._tables.get(key)
        if entry is None:
            burst = self.cfg.max_burst_secs
            entry = TableLimiters(
                table_name=res.table_name,
                read=TokenBucketLimiter(0, max_burst_secs=burst, clock=self.clock),
                write=TokenBucketLimiter(0, max_burst_secs=burst, clock=self.clock),
            )
            self._tables[key] = entry
        elif entry.read_units == read_units and entry.write_units == write_units:
            return
        entry.read_units = read_units
        entry.write_units = write_units
        entry.read.set_limit(self._scaled(read_units))
        entry.write.set_limit(self._scaled(write_units))
        _log.debug("rate limits set", table=res.table_name, read_units=read_units, write_units=write_units)

    # ---- background fetch

    def ensure(self, table_name: str) -> None:
        """Schedule a limits fetch for a table we know nothing about."""
        key = table_name.lower()
        if self._closed or self.fetch_table is None or key in self._tables or key in self._pending:
            return
        self._pending[key] = asyncio.create_task(self._fetch(key, table_name))
        if self.cfg.limiter_percent is not None and self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def _fetch(self, key: str, table_name: str) -> None:
        try:
            with swallow(logger=_log, code="rate_limiter.fetch", msg="Failed to fetch table limits"):
                # The executor feeds the table result back through update().
                await self.fetch_table(table_name)
        finally:
            self._pending.pop(key, None)

    async def _refresh_loop(self) -> None:
        interval = self.cfg.refresh_interval_ms / 1000.0
        while not self._closed:
            await asyncio.sleep(interval)
            for entry in list(self._tables.values()):
                with swallow(logger=_log, code="rate_limiter.refresh", msg="Failed to refresh table limits"):
                    await self.fetch_table(entry.table_name)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._pending.values())
        if self._refresh_task is not None:
            tasks.append(self._refresh_task)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        self._refresh_task = None

    # ---- executor hooks

    def _ticket(self, op: Operation) -> RateLimitTicket | None:
        if not op.supports_rate_limiting or not op.table_name:
            return None
        entry = self.get(op.table_name)
        if entry is None:
            self.ensure(op.table_name)
            return None
        if entry.no_limits:
            return None
        return RateLimitTicket(limiters=entry, reads=op.does_reads(), writes=op.does_writes())

    async def before_request(
        self, op: Operation, timeout_ms: int, ticket: RateLimitTicket | None = None
    ) -> RateLimitTicket | None:
        """
        Wait until the table's limiters are out of debt. Returns None when the
        call is not limited. Retries pass the call's ticket back in so that
        its delays keep adding up.
        """
        if ticket is None:
            ticket = self._ticket(op)
            if ticket is None:
                return None
        if ticket.reads:
            ticket.read_delay_ms += await ticket.limiters.read.consume_units(0, timeout_ms)
        if ticket.writes:
            ticket.write_delay_ms += await ticket.limiters.write.consume_units(0, timeout_ms)
        return ticket

    async def after_request(self, ticket: RateLimitTicket, cc: ConsumedCapacity | None, timeout_ms: int) -> None:
        """Charge the units actually consumed and report limiter delays on the result."""
        if cc is None:
            return
        if ticket.reads and cc.read_units:
            ticket.read_delay_ms += await ticket.limiters.read.consume_units(
                cc.read_units, timeout_ms, consume_on_timeout=True
            )
        if ticket.writes and cc.write_units:
            ticket.write_delay_ms += await ticket.limiters.write.consume_units(
                cc.write_units, timeout_ms, consume_on_timeout=True
            )
        cc.read_rate_limit_delay_ms = ticket.read_delay_ms
        cc.write_rate_limit_delay_ms = ticket.write_delay_ms

    def on_error(self, ticket: RateLimitTicket | None, err: ClassifiedError) -> None:
        if ticket is None or not err.is_throttle:
            return
        if ticket.reads:
            ticket.limiters.read.on_throttle()
        if ticket.writes:
            ticket.limiters.write.on_throttle()
        _log.debug("service throttled; stored burst dropped", table=ticket.limiters.table_name, code=err.code.name)
