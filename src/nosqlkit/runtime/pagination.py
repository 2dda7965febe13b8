# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Continuation-based paging for queries, range deletes and table usage.

Two modes share the same contract:
- manual: the caller passes the previous page's `continuation_key` back;
- iterable: `PageIterable` drives the loop lazily and stops exactly when the
  service returns no continuation key. Pages with zero rows but a key are
  normal (the service hit a per-request limit) and iteration continues.

Iterables are single-use: construct a new one per logical execution.
Abandoning an iteration midway needs no cleanup.

`RowCollector` buffers rows client-side under a memory ceiling for callers
that want a whole result in memory (optionally de-duplicated).
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Generic, Protocol, TypeVar

from ..api.errors import ErrorCode, NoSQLError, NoSQLMemoryLimitError
from ..core.logging import get_logger
from ..core.types import TABLE_USAGE_PAGE_LIMIT, Row
from ..core.utils import estimate_size, stable_hash
from ..protocol.results import ConsumedCapacity, ContinuationKey, MultiDeleteResult, TableUsageResult

__all__ = [
    "PageIterable",
    "RowCollector",
    "drain_delete_range",
    "table_usage_pages",
]

_log = get_logger("pagination")


class _Page(Protocol):
    continuation_key: ContinuationKey | None


_P = TypeVar("_P", bound=_Page)

PageFetch = Callable[[ContinuationKey | None], Awaitable[_P]]


class PageIterable(Generic[_P]):
    """
    Lazy async iterable over result pages.

        async for page in client.query_iterable("SELECT * FROM users"):
            for row in page.rows:
                ...

    Nothing is fetched until iteration starts. Each step is a full executor
    call with its own timeout and retries.
    """

    def __init__(self, fetch: PageFetch, *, start_key: ContinuationKey | None = None) -> None:
        self._fetch = fetch
        self._start_key = start_key
        self._started = False
        self.pages_fetched = 0

    def __aiter__(self) -> AsyncIterator[_P]:
        if self._started:
            raise NoSQLError("Page iterable cannot be restarted; create a new one", code=ErrorCode.ILLEGAL_STATE)
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[_P]:
        key = self._start_key
        while True:
            page = await self._fetch(key)
            self.pages_fetched += 1
            yield page
            key = page.continuation_key
            if key is None:
                return


async def drain_delete_range(fetch: PageFetch[MultiDeleteResult]) -> MultiDeleteResult:
    """Run a range delete until exhausted, summing deleted rows and consumed capacity."""
    total = MultiDeleteResult(deleted_count=0, consumed_capacity=ConsumedCapacity())
    pages = 0
    async for page in PageIterable(fetch):
        pages += 1
        total.deleted_count += page.deleted_count
        total.consumed_capacity.add(page.consumed_capacity)
    _log.debug("range delete drained", deleted=total.deleted_count, pages=pages)
    return total


async def table_usage_pages(
    fetch: Callable[[int, int], Awaitable[TableUsageResult]],
    *,
    start_index: int = 0,
    limit: int | None = None,
) -> AsyncIterator[TableUsageResult]:
    """
    Page through table usage records by index. `fetch(start_index, limit)`
    returns one page; an empty page is not yielded and paging stops after a
    short page.
    """
    limit = limit or TABLE_USAGE_PAGE_LIMIT
    index = start_index
    while True:
        page = await fetch(index, limit)
        if not page.usage_records:
            return
        yield page
        if len(page.usage_records) < limit:
            return
        index = page.next_index


class RowCollector:
    """
    Client-side row buffer with a memory ceiling.

    Row sizes are estimates; crossing `max_memory_bytes` raises
    `NoSQLMemoryLimitError` immediately, without waiting for more pages.
    With `distinct=True`, rows already seen (by stable hash) are dropped and
    the hash set counts against the same ceiling.
    """

    _HASH_COST = 64

    def __init__(self, max_memory_bytes: int, *, distinct: bool = False) -> None:
        self.max_memory_bytes = max_memory_bytes
        self.distinct = distinct
        self.rows: list[Row] = []
        self.memory_bytes = 0
        self._seen: set[str] = set()

    def _charge(self, n: int) -> None:
        self.memory_bytes += n
        if self.memory_bytes > self.max_memory_bytes:
            raise NoSQLMemoryLimitError(
                f"Memory consumed by buffered rows ({self.memory_bytes} bytes) "
                f"exceeds the limit of {self.max_memory_bytes} bytes"
            )

    def add(self, row: Row) -> bool:
        """Buffer one row; returns False when it was dropped as a duplicate."""
        if self.distinct:
            h = stable_hash(row)
            if h in self._seen:
                return False
            self._charge(self._HASH_COST)
            self._seen.add(h)
        self._charge(estimate_size(row))
        self.rows.append(row)
        return True

    def extend(self, rows: list[Any]) -> None:
        for row in rows:
            self.add(row)
