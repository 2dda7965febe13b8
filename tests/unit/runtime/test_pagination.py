"""
Unit tests: continuation-key paging, range-delete draining, table usage
paging and the client-side row buffer.
"""

from __future__ import annotations

import pytest

from nosqlkit.api.errors import ErrorCode, NoSQLError, NoSQLMemoryLimitError
from nosqlkit.protocol.results import (
    ConsumedCapacity,
    ContinuationKey,
    MultiDeleteResult,
    QueryResult,
    TableUsageRecord,
    TableUsageResult,
)
from nosqlkit.runtime.pagination import PageIterable, RowCollector, drain_delete_range, table_usage_pages

pytestmark = [pytest.mark.unit]


def _ck(s: str) -> ContinuationKey:
    return ContinuationKey(raw=s.encode())


class PageScript:
    def __init__(self, pages):
        self.pages = list(pages)
        self.keys_seen: list[ContinuationKey | None] = []

    async def __call__(self, key):
        self.keys_seen.append(key)
        return self.pages.pop(0)


@pytest.mark.asyncio
async def test_empty_pages_with_key_do_not_stop_iteration():
    fetch = PageScript(
        [
            QueryResult(rows=[{"id": 1}, {"id": 2}, {"id": 3}], continuation_key=_ck("tok1")),
            QueryResult(rows=[], continuation_key=_ck("tok2")),
            QueryResult(rows=[], continuation_key=None),
        ]
    )
    it = PageIterable(fetch)
    rows = []
    async for page in it:
        rows.extend(page.rows)

    assert rows == [{"id": 1}, {"id": 2}, {"id": 3}]
    assert it.pages_fetched == 3
    assert fetch.keys_seen == [None, _ck("tok1"), _ck("tok2")]


@pytest.mark.asyncio
async def test_iterable_is_lazy_and_single_use():
    fetch = PageScript([QueryResult(rows=[{"id": 1}])])
    it = PageIterable(fetch)
    assert fetch.keys_seen == []

    async for _ in it:
        pass
    with pytest.raises(NoSQLError) as ei:
        async for _ in it:
            pass
    assert ei.value.code is ErrorCode.ILLEGAL_STATE


@pytest.mark.asyncio
async def test_iterable_can_resume_from_key():
    fetch = PageScript([QueryResult(rows=[{"id": 9}])])
    pages = [p async for p in PageIterable(fetch, start_key=_ck("resume"))]
    assert len(pages) == 1
    assert fetch.keys_seen == [_ck("resume")]


@pytest.mark.asyncio
async def test_drain_delete_range_sums_pages():
    fetch = PageScript(
        [
            MultiDeleteResult(deleted_count=10, continuation_key=_ck("a"), consumed_capacity=ConsumedCapacity(write_units=10)),
            MultiDeleteResult(deleted_count=0, continuation_key=_ck("b"), consumed_capacity=ConsumedCapacity()),
            MultiDeleteResult(deleted_count=4, consumed_capacity=ConsumedCapacity(write_units=4, read_units=1)),
        ]
    )
    total = await drain_delete_range(fetch)
    assert total.deleted_count == 14
    assert total.continuation_key is None
    assert total.consumed_capacity.write_units == 14
    assert total.consumed_capacity.read_units == 1


@pytest.mark.asyncio
async def test_table_usage_pages_stop_after_short_page():
    calls = []

    async def fetch(index, limit):
        calls.append((index, limit))
        n = 2 if index < 4 else 1
        records = [TableUsageRecord(start_time_ms=(index + i) * 60_000) for i in range(n)]
        return TableUsageResult(table_name="users", usage_records=records, next_index=index + n)

    pages = [p async for p in table_usage_pages(fetch, limit=2)]
    assert [len(p.usage_records) for p in pages] == [2, 2, 1]
    assert calls == [(0, 2), (2, 2), (4, 2)]


@pytest.mark.asyncio
async def test_table_usage_pages_skip_trailing_empty_page():
    calls = []

    async def fetch(index, limit):
        calls.append(index)
        n = 2 if index < 4 else 0
        records = [TableUsageRecord(start_time_ms=(index + i) * 60_000) for i in range(n)]
        return TableUsageResult(table_name="users", usage_records=records, next_index=index + n)

    pages = [p async for p in table_usage_pages(fetch, limit=2)]
    assert [len(p.usage_records) for p in pages] == [2, 2]
    assert calls == [0, 2, 4]


def test_row_collector_distinct_and_memory_limit():
    c = RowCollector(10_000, distinct=True)
    assert c.add({"id": 1}) is True
    assert c.add({"id": 1}) is False
    c.extend([{"id": 2}, {"id": 1}, {"id": 3}])
    assert c.rows == [{"id": 1}, {"id": 2}, {"id": 3}]

    small = RowCollector(40)
    small.add({"id": 1})
    with pytest.raises(NoSQLMemoryLimitError) as ei:
        small.extend([{"name": "x" * 50}])
    assert ei.value.code is ErrorCode.MEMORY_LIMIT_EXCEEDED
