"""
Integration: query paging, prepared statements, client-side buffering and
range deletes through NoSQLClient.
"""

from __future__ import annotations

import pytest

from nosqlkit.api.errors import ErrorCode, NoSQLError, NoSQLMemoryLimitError
from nosqlkit.protocol.operation import OpKind
from nosqlkit.protocol.results import ContinuationKey, FieldRange, QueryResult

pytestmark = [pytest.mark.integration]


async def _seed_users(client, n: int) -> None:
    for start in range(0, n, 50):
        await client.put_many("users", [{"id": i, "name": f"user-{i % 3}"} for i in range(start, min(n, start + 50))])


async def _seed_events(client, shard: int, n: int) -> None:
    await client.put_many("events", [{"shard": shard, "seq": i} for i in range(n)])


@pytest.mark.asyncio
async def test_query_iterable_walks_all_pages(client, service):
    await _seed_users(client, 25)
    it = client.query_iterable("SELECT * FROM users")
    ids = [row["id"] async for page in it for row in page.rows]
    assert ids == list(range(25))
    assert it.pages_fetched == 3
    assert len(service.calls_of(OpKind.QUERY)) == 3


@pytest.mark.asyncio
async def test_manual_paging_with_continuation_key(client):
    await _seed_users(client, 12)
    first = await client.query("SELECT * FROM users", limit=5)
    assert len(first.rows) == 5 and first.continuation_key is not None
    second = await client.query("SELECT * FROM users", limit=5, continuation_key=first.continuation_key)
    assert second.rows[0]["id"] == 5


@pytest.mark.asyncio
async def test_empty_pages_with_key_continue(client, service):
    service.script_query_pages(
        [
            QueryResult(rows=[{"id": 1}, {"id": 2}, {"id": 3}], continuation_key=ContinuationKey(raw=b"tok1")),
            QueryResult(rows=[], continuation_key=ContinuationKey(raw=b"tok2")),
            QueryResult(rows=[]),
        ]
    )
    rows = await client.query_all("SELECT * FROM users")
    assert rows == [{"id": 1}, {"id": 2}, {"id": 3}]
    keys = [op.options.get("continuation_key") for op in service.calls_of(OpKind.QUERY)]
    assert keys == [None, ContinuationKey(raw=b"tok1"), ContinuationKey(raw=b"tok2")]


@pytest.mark.asyncio
async def test_query_iterable_is_single_use(client):
    it = client.query_iterable("SELECT * FROM users")
    async for _ in it:
        pass
    with pytest.raises(NoSQLError) as ei:
        async for _ in it:
            pass
    assert ei.value.code is ErrorCode.ILLEGAL_STATE


@pytest.mark.asyncio
async def test_prepared_statement_query(client, service):
    await _seed_users(client, 3)
    ps = await client.prepare("SELECT * FROM users")
    assert ps.table_name == "users" and not ps.is_update
    res = await client.query(ps)
    assert len(res.rows) == 3
    assert service.calls_of(OpKind.QUERY)[0].table_name == "users"


@pytest.mark.asyncio
async def test_query_all_distinct_and_memory_ceiling(client, service):
    service.script_query_pages(
        [
            QueryResult(rows=[{"name": "a"}, {"name": "b"}], continuation_key=ContinuationKey(raw=b"1")),
            QueryResult(rows=[{"name": "a"}, {"name": "c"}]),
        ]
    )
    assert await client.query_all("SELECT DISTINCT name FROM users", distinct=True) == [
        {"name": "a"},
        {"name": "b"},
        {"name": "c"},
    ]

    big = {"blob": "x" * (600 * 1024)}
    service.script_query_pages([QueryResult(rows=[big, big])])
    with pytest.raises(NoSQLMemoryLimitError):
        await client.query_all("SELECT * FROM users", max_memory_mb=1)


@pytest.mark.asyncio
async def test_delete_range_all_drains_shard(client, service):
    await _seed_events(client, 1, 25)
    await _seed_events(client, 2, 3)

    total = await client.delete_range_all("events", {"shard": 1})

    assert total.deleted_count == 25
    assert len(service.calls_of(OpKind.MULTI_DELETE)) == 3
    remaining = await client.query_all("SELECT * FROM events")
    assert {r["shard"] for r in remaining} == {2}


@pytest.mark.asyncio
async def test_delete_range_with_field_range(client):
    await _seed_events(client, 1, 20)
    res = await client.delete_range("events", {"shard": 1}, field_range={"field_name": "seq", "start_with": 5, "end_before": 10})
    assert res.deleted_count == 5
    assert res.continuation_key is None

    res = await client.delete_range(
        "events", {"shard": 1}, field_range=FieldRange(field_name="seq", start_after=15)
    )
    assert res.deleted_count == 4


@pytest.mark.asyncio
async def test_delete_range_iterable_pages(client):
    await _seed_events(client, 7, 15)
    pages = [p async for p in client.delete_range_iterable("events", {"shard": 7})]
    assert [p.deleted_count for p in pages] == [10, 5]
