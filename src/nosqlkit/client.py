# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
NoSQLClient: the single entry point applications use.

Every public method builds an immutable `Operation`, validates it (invalid
arguments raise `NoSQLArgumentError` before anything is sent), runs it
through the executor (retries, timeouts, rate limiting, events) and returns
the typed result.

DDL and admin calls return as soon as the service accepts them; pass
`complete=True` (or call `for_completion`) to wait for the terminal state.

Usage:
    async with NoSQLClient(ClientConfig.load(), transport=my_transport) as client:
        await client.table_ddl("CREATE TABLE users(id INTEGER, name STRING, PRIMARY KEY(id))",
                               table_limits=TableLimits(read_units=50, write_units=50, storage_gb=1),
                               complete=True)
        await client.put("users", {"id": 1, "name": "Ada"})
        async for page in client.query_iterable("SELECT * FROM users"):
            ...
"""

import json
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from typing import Any

from .api.errors import ErrorCode, NoSQLArgumentError, NoSQLError, NoSQLProtocolError, NoSQLTimeoutError
from .core.config import ClientConfig
from .core.logging import get_logger
from .core.time import Clock, SystemClock
from .core.types import Key, Row
from .observability.metrics import ClientMetrics
from .observability.tracing import trace
from .protocol.operation import Operation, OpKind
from .protocol.results import (
    AdminResult,
    Consistency,
    ContinuationKey,
    DeleteResult,
    FieldRange,
    GetResult,
    IndexInfo,
    ListTablesResult,
    MultiDeleteResult,
    PreparedStatement,
    PutResult,
    QueryResult,
    TableLimits,
    TableResult,
    TableState,
    TableUsageResult,
    UserInfo,
    WriteMultipleResult,
    WriteOperation,
)
from .protocol.validation import validate_operation
from .runtime.batch import decode_write_multiple, ops_from_keys, ops_from_rows, prepare_write_multiple
from .runtime.events import EventChannel
from .runtime.executor import OperationExecutor
from .runtime.pagination import PageIterable, RowCollector, drain_delete_range, table_usage_pages
from .runtime.poller import CompletionPoller
from .runtime.rate_limiter import RateLimiterRegistry
from .runtime.retry import RetryEngine
from .transport.base import AuthorizationProvider, Transport

__all__ = ["NoSQLClient"]

_log = get_logger("client")

# Listing users/roles/namespaces waits for the admin statement to complete.
_ADMIN_LIST_TIMEOUT_MS = 30_000

_DDL_KINDS = frozenset({OpKind.TABLE_DDL, OpKind.SET_TABLE_LIMITS, OpKind.ADMIN_DDL})


class NoSQLClient:
    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport,
        auth: AuthorizationProvider | None = None,
        clock: Clock | None = None,
        metrics: ClientMetrics | None = None,
        retry_policy: Any = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.clock: Clock = clock or SystemClock()
        self.transport = transport
        self.events = EventChannel()
        self.metrics = metrics if metrics is not None else ClientMetrics()
        self.rate_limiters: RateLimiterRegistry | None = None
        if self.config.rate_limiter.enabled:
            self.rate_limiters = RateLimiterRegistry(
                self.config.rate_limiter, clock=self.clock, fetch_table=self.get_table
            )
        self._executor = OperationExecutor(
            transport,
            self.config,
            clock=self.clock,
            events=self.events,
            metrics=self.metrics,
            auth=auth,
            rate_limiters=self.rate_limiters,
            retry=RetryEngine(self.config.retry, policy=retry_policy),
        )
        self._poller = CompletionPoller(self, self.config, clock=self.clock)
        self._closed = False

    # ---- lifecycle / events

    async def __aenter__(self) -> NoSQLClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.rate_limiters is not None:
            await self.rate_limiters.close()
        await self.transport.close()
        _log.debug("client closed")

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        self.events.off(event, listener)

    # ---- plumbing

    def _op(
        self,
        kind: OpKind,
        table_name: str | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
        **options: Any,
    ) -> Operation:
        if timeout_ms is None:
            timeout_ms = self.config.ddl_timeout_ms if kind in _DDL_KINDS else self.config.timeout_ms
        op = Operation.create(kind, table_name, params=params, options={"timeout_ms": timeout_ms, **options})
        return validate_operation(op)

    async def _execute(self, op: Operation, *, expected: Iterable[ErrorCode] = ()) -> Any:
        if self._closed:
            raise NoSQLError("Client is closed", code=ErrorCode.ILLEGAL_STATE, operation=op)
        return await self._executor.execute(op, expected=frozenset(expected))

    async def _complete(
        self,
        res: TableResult | AdminResult,
        op: Operation,
        *,
        started_ms: int,
        timeout_ms: int | None,
        delay_ms: int | None,
    ) -> Any:
        """Chain polling after a DDL dispatch; an explicit timeout covers dispatch and polling together."""
        poll_timeout = None
        if timeout_ms is not None:
            poll_timeout = timeout_ms - (self.clock.mono_ms() - started_ms)
            if poll_timeout <= 0:
                raise NoSQLTimeoutError(timeout_ms=timeout_ms, operation=op)
            if delay_ms is not None:
                delay_ms = min(delay_ms, poll_timeout)
            else:
                default_delay = (
                    self.config.admin_poll_delay_ms
                    if isinstance(res, AdminResult)
                    else self.config.table_poll_delay_ms
                )
                delay_ms = min(default_delay, poll_timeout)
        return await self._poller.for_completion(res, timeout_ms=poll_timeout, delay_ms=delay_ms, operation=op)

    # ---- StatusLookup (used by the poller)

    async def get_table_status(
        self,
        table_name: str,
        *,
        operation_id: str | None = None,
        timeout_ms: int | None = None,
        missing_ok: bool = False,
    ) -> TableResult | None:
        op = self._op(OpKind.GET_TABLE, table_name, timeout_ms=timeout_ms, operation_id=operation_id)
        if not missing_ok:
            return await self._execute(op)
        try:
            return await self._execute(op, expected=(ErrorCode.TABLE_NOT_FOUND,))
        except NoSQLError as e:
            if e.code is ErrorCode.TABLE_NOT_FOUND:
                return None
            raise

    async def get_admin_status(self, admin_result: AdminResult, *, timeout_ms: int | None = None) -> AdminResult:
        op = self._op(OpKind.ADMIN_STATUS, params={"admin_result": admin_result}, timeout_ms=timeout_ms)
        return await self._execute(op)

    # ---- tables

    @trace("nosql.table_ddl")
    async def table_ddl(
        self,
        statement: str,
        *,
        table_limits: TableLimits | None = None,
        timeout_ms: int | None = None,
        complete: bool = False,
        delay_ms: int | None = None,
    ) -> TableResult:
        """
        Run CREATE/ALTER/DROP TABLE or CREATE/DROP INDEX. With `complete=True`
        waits until the table is ACTIVE (or DROPPED for DROP TABLE).
        """
        started = self.clock.mono_ms()
        op = self._op(OpKind.TABLE_DDL, params={"statement": statement}, timeout_ms=timeout_ms, table_limits=table_limits)
        res: TableResult = await self._execute(op)
        if res.statement is None:
            res.statement = statement
        if complete:
            await self._complete(res, op, started_ms=started, timeout_ms=timeout_ms, delay_ms=delay_ms)
        return res

    @trace("nosql.set_table_limits")
    async def set_table_limits(
        self,
        table_name: str,
        table_limits: TableLimits,
        *,
        timeout_ms: int | None = None,
        complete: bool = False,
        delay_ms: int | None = None,
    ) -> TableResult:
        started = self.clock.mono_ms()
        op = self._op(
            OpKind.SET_TABLE_LIMITS, table_name, params={"table_limits": table_limits}, timeout_ms=timeout_ms
        )
        res: TableResult = await self._execute(op)
        if complete:
            await self._complete(res, op, started_ms=started, timeout_ms=timeout_ms, delay_ms=delay_ms)
        return res

    @trace("nosql.get_table")
    async def get_table(self, table: str | TableResult, *, timeout_ms: int | None = None) -> TableResult:
        """Current table status. Passing a previous TableResult also reports the status of its operation."""
        if isinstance(table, TableResult):
            return await self.get_table_status(table.table_name, operation_id=table.operation_id, timeout_ms=timeout_ms)
        return await self.get_table_status(table, timeout_ms=timeout_ms)

    async def for_table_state(
        self,
        table_name: str,
        state: TableState,
        *,
        timeout_ms: int | None = None,
        delay_ms: int | None = None,
    ) -> TableResult:
        return await self._poller.for_table_state(table_name, state, timeout_ms=timeout_ms, delay_ms=delay_ms)

    async def for_completion(
        self,
        result: TableResult | AdminResult,
        *,
        timeout_ms: int | None = None,
        delay_ms: int | None = None,
    ) -> TableResult | AdminResult:
        """Wait for the operation behind `result`; `result` itself is updated and returned."""
        return await self._poller.for_completion(result, timeout_ms=timeout_ms, delay_ms=delay_ms)

    async def for_local_replica_init(
        self, table_name: str, *, timeout_ms: int | None = None, delay_ms: int | None = None
    ) -> TableResult:
        return await self._poller.for_local_replica_init(table_name, timeout_ms=timeout_ms, delay_ms=delay_ms)

    @trace("nosql.get_table_usage")
    async def get_table_usage(
        self,
        table_name: str,
        *,
        start_time_ms: int | None = None,
        end_time_ms: int | None = None,
        limit: int | None = None,
        start_index: int | None = None,
        timeout_ms: int | None = None,
    ) -> TableUsageResult:
        op = self._op(
            OpKind.GET_TABLE_USAGE,
            table_name,
            timeout_ms=timeout_ms,
            start_time_ms=start_time_ms,
            end_time_ms=end_time_ms,
            limit=limit,
            start_index=start_index,
        )
        return await self._execute(op)

    def table_usage_iterable(
        self,
        table_name: str,
        *,
        start_time_ms: int | None = None,
        end_time_ms: int | None = None,
        limit: int | None = None,
        start_index: int = 0,
        timeout_ms: int | None = None,
    ) -> AsyncIterator[TableUsageResult]:
        async def fetch(index: int, page_limit: int) -> TableUsageResult:
            return await self.get_table_usage(
                table_name,
                start_time_ms=start_time_ms,
                end_time_ms=end_time_ms,
                limit=page_limit,
                start_index=index,
                timeout_ms=timeout_ms,
            )

        return table_usage_pages(fetch, start_index=start_index, limit=limit)

    @trace("nosql.get_indexes")
    async def get_indexes(
        self, table_name: str, *, index_name: str | None = None, timeout_ms: int | None = None
    ) -> list[IndexInfo]:
        op = self._op(OpKind.GET_INDEXES, table_name, timeout_ms=timeout_ms, index_name=index_name)
        return list(await self._execute(op))

    async def get_index(self, table_name: str, index_name: str, *, timeout_ms: int | None = None) -> IndexInfo:
        if not isinstance(index_name, str) or not index_name:
            raise NoSQLArgumentError("Invalid index name")
        indexes = await self.get_indexes(table_name, index_name=index_name, timeout_ms=timeout_ms)
        if not indexes:
            raise NoSQLError(f"Index {index_name} not found on {table_name}", code=ErrorCode.INDEX_NOT_FOUND)
        return indexes[0]

    @trace("nosql.list_tables")
    async def list_tables(
        self,
        *,
        start_index: int | None = None,
        limit: int | None = None,
        namespace: str | None = None,
        timeout_ms: int | None = None,
    ) -> ListTablesResult:
        op = self._op(
            OpKind.LIST_TABLES, timeout_ms=timeout_ms, start_index=start_index, limit=limit, namespace=namespace
        )
        return await self._execute(op)

    # ---- admin

    @trace("nosql.admin_ddl")
    async def admin_ddl(
        self,
        statement: str,
        *,
        timeout_ms: int | None = None,
        complete: bool = False,
        delay_ms: int | None = None,
    ) -> AdminResult:
        started = self.clock.mono_ms()
        op = self._op(OpKind.ADMIN_DDL, params={"statement": statement}, timeout_ms=timeout_ms)
        res: AdminResult = await self._execute(op)
        if res.statement is None:
            res.statement = statement
        if complete:
            await self._complete(res, op, started_ms=started, timeout_ms=timeout_ms, delay_ms=delay_ms)
        return res

    @trace("nosql.admin_status")
    async def admin_status(self, admin_result: AdminResult, *, timeout_ms: int | None = None) -> AdminResult:
        return await self.get_admin_status(admin_result, timeout_ms=timeout_ms)

    async def _show_as_json(self, what: str, field: str, timeout_ms: int | None) -> list[Any]:
        res = await self.admin_ddl(
            f"SHOW AS JSON {what}",
            timeout_ms=timeout_ms or _ADMIN_LIST_TIMEOUT_MS,
            complete=True,
        )
        if not res.output:
            return []
        try:
            parsed = json.loads(res.output)
        except ValueError as e:
            raise NoSQLProtocolError(f"Cannot parse SHOW {what} output", cause=e) from e
        items = parsed.get(field) if isinstance(parsed, dict) else None
        if items is None:
            return []
        if not isinstance(items, list):
            raise NoSQLProtocolError(f"Unexpected SHOW {what} output: {field!r} is not a list")
        return items

    async def list_namespaces(self, *, timeout_ms: int | None = None) -> list[str]:
        return [str(n) for n in await self._show_as_json("NAMESPACES", "namespaces", timeout_ms)]

    async def list_users(self, *, timeout_ms: int | None = None) -> list[UserInfo]:
        items = await self._show_as_json("USERS", "users", timeout_ms)
        try:
            return [UserInfo(id=u["id"], name=u["name"]) for u in items]
        except (KeyError, TypeError) as e:
            raise NoSQLProtocolError("Unexpected SHOW USERS output", cause=e) from e

    async def list_roles(self, *, timeout_ms: int | None = None) -> list[str]:
        items = await self._show_as_json("ROLES", "roles", timeout_ms)
        try:
            return [r["name"] if isinstance(r, dict) else str(r) for r in items]
        except KeyError as e:
            raise NoSQLProtocolError("Unexpected SHOW ROLES output", cause=e) from e

    # ---- single-row data

    @trace("nosql.get")
    async def get(
        self,
        table_name: str,
        key: Key,
        *,
        consistency: Consistency | None = None,
        timeout_ms: int | None = None,
    ) -> GetResult:
        op = self._op(OpKind.GET, table_name, params={"key": key}, timeout_ms=timeout_ms, consistency=consistency)
        return await self._execute(op)

    @trace("nosql.put")
    async def put(
        self,
        table_name: str,
        row: Row,
        *,
        if_absent: bool = False,
        if_present: bool = False,
        match_version: bytes | None = None,
        return_existing: bool = False,
        ttl_days: int | None = None,
        update_ttl_to_default: bool = False,
        exact_match: bool = False,
        timeout_ms: int | None = None,
    ) -> PutResult:
        """
        Write a row. Conditional writes that do not apply return
        `success=False`; they are not errors.
        """
        op = self._op(
            OpKind.PUT,
            table_name,
            params={"row": row},
            timeout_ms=timeout_ms,
            if_absent=if_absent or None,
            if_present=if_present or None,
            match_version=match_version,
            return_existing=return_existing or None,
            ttl_days=ttl_days,
            update_ttl_to_default=update_ttl_to_default or None,
            exact_match=exact_match or None,
        )
        return await self._execute(op)

    async def put_if_absent(self, table_name: str, row: Row, **kwargs: Any) -> PutResult:
        return await self.put(table_name, row, if_absent=True, **kwargs)

    async def put_if_present(self, table_name: str, row: Row, **kwargs: Any) -> PutResult:
        return await self.put(table_name, row, if_present=True, **kwargs)

    async def put_if_version(self, table_name: str, row: Row, match_version: bytes, **kwargs: Any) -> PutResult:
        if match_version is None:
            raise NoSQLArgumentError("match_version is required")
        return await self.put(table_name, row, match_version=match_version, **kwargs)

    @trace("nosql.delete")
    async def delete(
        self,
        table_name: str,
        key: Key,
        *,
        match_version: bytes | None = None,
        return_existing: bool = False,
        timeout_ms: int | None = None,
    ) -> DeleteResult:
        op = self._op(
            OpKind.DELETE,
            table_name,
            params={"key": key},
            timeout_ms=timeout_ms,
            match_version=match_version,
            return_existing=return_existing or None,
        )
        return await self._execute(op)

    async def delete_if_version(self, table_name: str, key: Key, match_version: bytes, **kwargs: Any) -> DeleteResult:
        if match_version is None:
            raise NoSQLArgumentError("match_version is required")
        return await self.delete(table_name, key, match_version=match_version, **kwargs)

    # ---- range delete

    @staticmethod
    def _field_range(field_range: FieldRange | Mapping[str, Any] | None) -> FieldRange | None:
        if field_range is None or isinstance(field_range, FieldRange):
            return field_range
        if isinstance(field_range, Mapping):
            try:
                return FieldRange(**field_range)
            except (TypeError, ValueError) as e:
                raise NoSQLArgumentError(f"Invalid field range: {e}", cause=e) from e
        raise NoSQLArgumentError("Invalid field range")

    @trace("nosql.delete_range")
    async def delete_range(
        self,
        table_name: str,
        key: Key,
        *,
        field_range: FieldRange | Mapping[str, Any] | None = None,
        max_write_kb: int | None = None,
        continuation_key: ContinuationKey | None = None,
        timeout_ms: int | None = None,
    ) -> MultiDeleteResult:
        """
        Delete rows sharing a shard key, one page per call. Continue with the
        returned `continuation_key` until it is None.
        """
        op = self._op(
            OpKind.MULTI_DELETE,
            table_name,
            params={"key": key},
            timeout_ms=timeout_ms,
            field_range=self._field_range(field_range),
            max_write_kb=max_write_kb,
            continuation_key=continuation_key,
        )
        return await self._execute(op)

    def delete_range_iterable(
        self, table_name: str, key: Key, **options: Any
    ) -> PageIterable[MultiDeleteResult]:
        options.pop("continuation_key", None)

        async def fetch(ck: ContinuationKey | None) -> MultiDeleteResult:
            return await self.delete_range(table_name, key, continuation_key=ck, **options)

        return PageIterable(fetch)

    async def delete_range_all(self, table_name: str, key: Key, **options: Any) -> MultiDeleteResult:
        """Run a range delete to exhaustion; counts and consumed capacity are summed."""
        options.pop("continuation_key", None)

        async def fetch(ck: ContinuationKey | None) -> MultiDeleteResult:
            return await self.delete_range(table_name, key, continuation_key=ck, **options)

        return await drain_delete_range(fetch)

    # ---- batch writes

    @trace("nosql.write_many")
    async def write_many(
        self,
        table_name: str | None,
        operations: Sequence[WriteOperation | Mapping[str, Any]],
        *,
        abort_on_fail: bool = False,
        timeout_ms: int | None = None,
    ) -> WriteMultipleResult:
        """
        Atomically apply up to 50 puts/deletes on rows sharing a shard key.
        `table_name` may be None when every sub-operation names its table.
        """
        options = {"timeout_ms": timeout_ms or self.config.timeout_ms, "abort_on_fail": abort_on_fail}
        op = validate_operation(prepare_write_multiple(table_name, operations, options=options))
        res = await self._execute(op)
        return decode_write_multiple(op, res)

    async def put_many(
        self,
        table_name: str,
        rows: Iterable[Row],
        *,
        abort_on_fail: bool = False,
        timeout_ms: int | None = None,
        **sub_options: Any,
    ) -> WriteMultipleResult:
        try:
            ops = ops_from_rows(rows, **sub_options)
        except (TypeError, ValueError) as e:
            raise NoSQLArgumentError(f"Invalid rows for put_many: {e}", cause=e) from e
        return await self.write_many(table_name, ops, abort_on_fail=abort_on_fail, timeout_ms=timeout_ms)

    async def delete_many(
        self,
        table_name: str,
        keys: Iterable[Key],
        *,
        abort_on_fail: bool = False,
        timeout_ms: int | None = None,
        **sub_options: Any,
    ) -> WriteMultipleResult:
        try:
            ops = ops_from_keys(keys, **sub_options)
        except (TypeError, ValueError) as e:
            raise NoSQLArgumentError(f"Invalid keys for delete_many: {e}", cause=e) from e
        return await self.write_many(table_name, ops, abort_on_fail=abort_on_fail, timeout_ms=timeout_ms)

    # ---- queries

    @trace("nosql.prepare")
    async def prepare(self, statement: str, *, timeout_ms: int | None = None) -> PreparedStatement:
        op = self._op(OpKind.PREPARE, params={"statement": statement}, timeout_ms=timeout_ms)
        return await self._execute(op)

    @trace("nosql.query")
    async def query(
        self,
        statement: str | PreparedStatement,
        *,
        limit: int | None = None,
        max_read_kb: int | None = None,
        max_write_kb: int | None = None,
        max_memory_mb: int | None = None,
        consistency: Consistency | None = None,
        continuation_key: ContinuationKey | None = None,
        trace_level: int | None = None,
        timeout_ms: int | None = None,
    ) -> QueryResult:
        """
        Fetch one page of query results. Pass the returned
        `continuation_key` back with the *same* statement to get the next
        page; iteration is complete when it is None. A page may be empty and
        still have a key.
        """
        if isinstance(statement, PreparedStatement):
            params: dict[str, Any] = {"prepared": statement, "statement": statement.statement}
            table_name = statement.table_name
        else:
            params = {"statement": statement}
            table_name = None
        op = self._op(
            OpKind.QUERY,
            table_name,
            params=params,
            timeout_ms=timeout_ms,
            limit=limit,
            max_read_kb=max_read_kb,
            max_write_kb=max_write_kb,
            max_memory_mb=max_memory_mb,
            consistency=consistency,
            continuation_key=continuation_key,
            trace_level=trace_level,
        )
        return await self._execute(op)

    def query_iterable(self, statement: str | PreparedStatement, **options: Any) -> PageIterable[QueryResult]:
        """Lazy, single-use async iterable over query result pages."""
        options.pop("continuation_key", None)

        async def fetch(ck: ContinuationKey | None) -> QueryResult:
            return await self.query(statement, continuation_key=ck, **options)

        return PageIterable(fetch)

    async def query_all(
        self,
        statement: str | PreparedStatement,
        *,
        distinct: bool = False,
        max_memory_mb: int | None = None,
        **options: Any,
    ) -> list[Row]:
        """
        Collect every row of a query in memory. Raises `NoSQLMemoryLimitError`
        as soon as the buffered rows exceed `max_memory_mb` (default from config).
        """
        limit_mb = max_memory_mb or self.config.max_memory_mb
        collector = RowCollector(limit_mb * 1024 * 1024, distinct=distinct)
        async for page in self.query_iterable(statement, max_memory_mb=max_memory_mb, **options):
            collector.extend(page.rows)
        return collector.rows
