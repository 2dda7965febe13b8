"""
Integration: table DDL, completion polling, metadata calls and admin
statements through NoSQLClient over the in-memory service.
"""

from __future__ import annotations

import pytest

from nosqlkit.api.errors import ErrorCode, NoSQLError, NoSQLProtocolError, NoSQLTimeoutError
from nosqlkit.protocol.operation import OpKind
from nosqlkit.protocol.results import AdminState, TableLimits, TableState, TableUsageRecord, UserInfo

pytestmark = [pytest.mark.integration]

CREATE_ITEMS = "CREATE TABLE items(id INTEGER, name STRING, PRIMARY KEY(id))"


@pytest.mark.asyncio
async def test_create_table_and_wait_for_active(client, service, clock):
    states = []
    client.on("table_state", lambda name, state: states.append(state))

    res = await client.table_ddl(
        CREATE_ITEMS, table_limits=TableLimits(read_units=10, write_units=10, storage_gb=1), complete=True
    )

    assert res.state is TableState.ACTIVE
    assert res.table_name == "items"
    assert res.statement == CREATE_ITEMS
    assert states == [TableState.CREATING, TableState.CREATING, TableState.ACTIVE]
    assert clock.sleeps == [1000]


@pytest.mark.asyncio
async def test_ddl_without_complete_returns_transitional_state(client, service):
    res = await client.table_ddl(CREATE_ITEMS)
    assert res.state is TableState.CREATING

    await client.for_completion(res, delay_ms=100)
    assert res.state is TableState.ACTIVE
    # polling again is a no-op
    calls = len(service.calls)
    await client.for_completion(res)
    assert len(service.calls) == calls


@pytest.mark.asyncio
async def test_drop_table_completes_as_dropped(client, service, metrics):
    res = await client.table_ddl("DROP TABLE users", complete=True, delay_ms=100)
    assert res.state is TableState.DROPPED

    with pytest.raises(NoSQLError) as ei:
        await client.get_table("users")
    assert ei.value.code is ErrorCode.TABLE_NOT_FOUND
    not_found = {"op": "get_table", "outcome": "resource_not_found"}
    assert metrics.sample("nosqlkit_operations_total", not_found) == 1

    # the table is already gone: waiting for DROPPED succeeds immediately and quietly
    errors = []
    client.on("error", lambda err, op: errors.append(err))
    gone = await client.for_table_state("users", TableState.DROPPED, delay_ms=100)
    assert gone.state is TableState.DROPPED
    assert errors == []
    assert metrics.sample("nosqlkit_operations_total", not_found) == 1


@pytest.mark.asyncio
async def test_complete_respects_overall_timeout(client, service):
    service.ddl_polls = 5
    with pytest.raises(NoSQLTimeoutError) as ei:
        await client.table_ddl(CREATE_ITEMS, timeout_ms=1500, complete=True)
    assert ei.value.timeout_ms == 1500
    assert ei.value.operation.kind is OpKind.TABLE_DDL
    assert ei.value.operation.params["statement"] == CREATE_ITEMS


@pytest.mark.asyncio
async def test_create_existing_table_is_not_retried(client, service):
    with pytest.raises(NoSQLError) as ei:
        await client.table_ddl("CREATE TABLE users(id INTEGER, PRIMARY KEY(id))")
    assert ei.value.code is ErrorCode.TABLE_EXISTS
    assert len(service.calls_of(OpKind.TABLE_DDL)) == 1


@pytest.mark.asyncio
async def test_set_table_limits_and_get_table(client):
    res = await client.set_table_limits("users", TableLimits(read_units=5, write_units=5, storage_gb=2), complete=True)
    assert res.state is TableState.ACTIVE
    assert res.table_limits.read_units == 5

    fresh = await client.get_table(res)
    assert fresh.table_limits.storage_gb == 2


@pytest.mark.asyncio
async def test_indexes(client):
    await client.table_ddl("CREATE INDEX idx_name ON users(name)", complete=True, delay_ms=100)
    idx = await client.get_index("users", "idx_name")
    assert idx.fields == ["name"]
    assert [i.index_name for i in await client.get_indexes("users")] == ["idx_name"]

    with pytest.raises(NoSQLError) as ei:
        await client.get_index("users", "missing")
    assert ei.value.code is ErrorCode.INDEX_NOT_FOUND


@pytest.mark.asyncio
async def test_list_tables_paging(client):
    first = await client.list_tables(limit=1)
    rest = await client.list_tables(start_index=first.last_index)
    assert first.tables + rest.tables == ["events", "users"]


@pytest.mark.asyncio
async def test_table_usage_iterable(client, service):
    service.tables["users"].usage = [TableUsageRecord(start_time_ms=i * 60_000, read_units=i) for i in range(5)]
    pages = [p async for p in client.table_usage_iterable("users", limit=2)]
    assert [len(p.usage_records) for p in pages] == [2, 2, 1]

    window = await client.get_table_usage("users", start_time_ms=60_000, end_time_ms=120_000)
    assert [r.read_units for r in window.usage_records] == [1, 2]


@pytest.mark.asyncio
async def test_local_replica_init(client, service):
    service.tables["users"].local_replica_polls = 2
    res = await client.for_local_replica_init("users", delay_ms=100)
    assert res.is_local_replica_initialized is True


@pytest.mark.asyncio
async def test_admin_ddl_complete(client, service):
    res = await client.admin_ddl("CREATE NAMESPACE ns1", complete=True, delay_ms=100)
    assert res.state is AdminState.COMPLETE
    assert res.statement == "CREATE NAMESPACE ns1"

    status = await client.admin_status(res)
    assert status.state is AdminState.COMPLETE


@pytest.mark.asyncio
async def test_admin_failure_is_illegal_state(client):
    with pytest.raises(NoSQLError) as ei:
        await client.admin_ddl("CREATE USER FAIL IDENTIFIED BY 'x'", complete=True, delay_ms=100)
    assert ei.value.code is ErrorCode.ILLEGAL_STATE


@pytest.mark.asyncio
async def test_show_listings(client, service):
    service.set_show_output("NAMESPACES", {"namespaces": ["sysdefault", "ns1"]})
    service.set_show_output("USERS", {"users": [{"id": "u1", "name": "alice"}]})
    service.set_show_output("ROLES", {"roles": [{"name": "readonly"}, "dba"]})

    assert await client.list_namespaces() == ["sysdefault", "ns1"]
    assert await client.list_users() == [UserInfo(id="u1", name="alice")]
    assert await client.list_roles() == ["readonly", "dba"]


@pytest.mark.asyncio
async def test_show_listing_empty_and_malformed(client, service):
    assert await client.list_namespaces() == []

    service.set_show_output("USERS", "not json at all")
    with pytest.raises(NoSQLProtocolError):
        await client.list_users()
