# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Completion polling for asynchronous DDL and admin operations.

DDL and admin statements return as soon as the service accepts them. The
poller repeatedly asks for their status until a terminal state is reached
or the poll timeout elapses. Results are *pollable*: each observed status is
adopted into the caller's own result object, which is also what the poller
returns.

Poll timeout and operation failure are different errors: running out of
time raises `NoSQLTimeoutError`; a failed status check surfaces the lookup
error (or an ILLEGAL_STATE error for a FAILED admin operation). Errors
raised here carry the operation being waited on: the DDL/admin operation
when the caller passes it, otherwise the status lookup itself.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..api.errors import ErrorCode, NoSQLArgumentError, NoSQLError, NoSQLTimeoutError
from ..core.config import ClientConfig
from ..core.logging import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..protocol.operation import Operation, OpKind
from ..protocol.results import AdminResult, AdminState, TableResult, TableState
from ..transport.base import StatusLookup

__all__ = ["CompletionPoller"]

_log = get_logger("poller")

_R = TypeVar("_R", TableResult, AdminResult)


def _check_poll_args(timeout_ms: int, delay_ms: int) -> None:
    if not isinstance(delay_ms, int) or isinstance(delay_ms, bool) or delay_ms <= 0:
        raise NoSQLArgumentError(f"Invalid poll delay: {delay_ms!r}, must be a positive integer")
    if not isinstance(timeout_ms, int) or isinstance(timeout_ms, bool) or timeout_ms < delay_ms:
        raise NoSQLArgumentError(f"Invalid poll timeout: {timeout_ms!r}, must be an integer >= delay ({delay_ms})")


def _table_lookup_op(table_name: str, timeout_ms: int, operation_id: str | None = None) -> Operation:
    return Operation.create(
        OpKind.GET_TABLE, table_name, options={"timeout_ms": timeout_ms, "operation_id": operation_id}
    )


def _admin_lookup_op(result: AdminResult, timeout_ms: int) -> Operation:
    return Operation.create(OpKind.ADMIN_STATUS, params={"admin_result": result}, options={"timeout_ms": timeout_ms})


class CompletionPoller:
    def __init__(self, lookup: StatusLookup, cfg: ClientConfig, *, clock: Clock | None = None) -> None:
        self.lookup = lookup
        self.cfg = cfg
        self.clock: Clock = clock or SystemClock()

    # ---- shared skeleton

    async def _poll(
        self,
        check: Callable[[int], Awaitable[_R]],
        done: Callable[[_R], bool],
        *,
        timeout_ms: int,
        delay_ms: int,
        what: str,
        operation: Operation,
    ) -> _R:
        """
        Call `check(request_timeout_ms)` until `done(result)`.

        The first check runs immediately; later ones are `delay_ms` apart.
        Raises `NoSQLTimeoutError` when the next delay would cross the deadline.
        """
        start = self.clock.mono_ms()
        polls = 0
        while True:
            remaining = start + timeout_ms - self.clock.mono_ms()
            res = await check(max(1, min(self.cfg.timeout_ms, remaining)))
            polls += 1
            if done(res):
                _log.debug("poll complete", what=what, polls=polls)
                return res
            if start + timeout_ms - (self.clock.mono_ms() + delay_ms) <= 0:
                _log.warning("poll timed out", what=what, timeout_ms=timeout_ms, polls=polls, state=res.state.value)
                raise NoSQLTimeoutError(
                    f"{what} did not complete within {timeout_ms} ms, last state {res.state.value}",
                    timeout_ms=timeout_ms,
                    operation=operation,
                )
            await self.clock.sleep_ms(delay_ms)

    # ---- tables

    async def for_table_state(
        self,
        table_name: str,
        state: TableState,
        *,
        timeout_ms: int | None = None,
        delay_ms: int | None = None,
        operation_id: str | None = None,
        operation: Operation | None = None,
    ) -> TableResult:
        """
        Wait until `table_name` reaches `state`.

        A missing table counts as DROPPED: waiting for DROPPED succeeds with a
        synthesized result, waiting for anything else raises TABLE_NOT_FOUND.
        """
        timeout_ms = self.cfg.table_poll_timeout_ms if timeout_ms is None else timeout_ms
        delay_ms = self.cfg.table_poll_delay_ms if delay_ms is None else delay_ms
        _check_poll_args(timeout_ms, delay_ms)
        missing_ok = state is TableState.DROPPED

        async def check(req_timeout: int) -> TableResult:
            res = await self.lookup.get_table_status(
                table_name, operation_id=operation_id, timeout_ms=req_timeout, missing_ok=missing_ok
            )
            if res is None:
                return TableResult(table_name=table_name, state=TableState.DROPPED)
            return res

        with log_context(table=table_name):
            return await self._poll(
                check,
                lambda r: r.state is state,
                timeout_ms=timeout_ms,
                delay_ms=delay_ms,
                what=f"table {table_name} -> {state.value}",
                operation=operation or _table_lookup_op(table_name, timeout_ms, operation_id),
            )

    async def for_table_completion(
        self,
        result: TableResult,
        *,
        timeout_ms: int | None = None,
        delay_ms: int | None = None,
        operation: Operation | None = None,
    ) -> TableResult:
        target = result.target_state
        if result.state is target:
            return result
        latest = await self.for_table_state(
            result.table_name,
            target,
            timeout_ms=timeout_ms,
            delay_ms=delay_ms,
            operation_id=result.operation_id,
            operation=operation,
        )
        statement = result.statement
        result.adopt(latest)
        # Status lookups do not echo the statement; keep it for later target checks.
        result.statement = result.statement or statement
        return result

    async def for_local_replica_init(
        self, table_name: str, *, timeout_ms: int | None = None, delay_ms: int | None = None
    ) -> TableResult:
        timeout_ms = self.cfg.table_poll_timeout_ms if timeout_ms is None else timeout_ms
        delay_ms = self.cfg.table_poll_delay_ms if delay_ms is None else delay_ms
        _check_poll_args(timeout_ms, delay_ms)

        async def check(req_timeout: int) -> TableResult:
            return await self.lookup.get_table_status(table_name, timeout_ms=req_timeout)

        with log_context(table=table_name):
            return await self._poll(
                check,
                lambda r: bool(r.is_local_replica_initialized),
                timeout_ms=timeout_ms,
                delay_ms=delay_ms,
                what=f"local replica of {table_name}",
                operation=_table_lookup_op(table_name, timeout_ms),
            )

    # ---- admin

    async def for_admin_completion(
        self,
        result: AdminResult,
        *,
        timeout_ms: int | None = None,
        delay_ms: int | None = None,
        operation: Operation | None = None,
    ) -> AdminResult:
        timeout_ms = self.cfg.admin_poll_timeout_ms if timeout_ms is None else timeout_ms
        delay_ms = self.cfg.admin_poll_delay_ms if delay_ms is None else delay_ms
        op = operation or _admin_lookup_op(result, timeout_ms)
        if result.state is AdminState.COMPLETE:
            return result
        if result.state is AdminState.FAILED:
            raise self._admin_failed(result, op)
        if not result.operation_id:
            raise NoSQLError(
                "Admin operation is in progress but has no operation id",
                code=ErrorCode.BAD_PROTOCOL_MESSAGE,
                operation=op,
            )
        _check_poll_args(timeout_ms, delay_ms)

        async def check(req_timeout: int) -> AdminResult:
            res = await self.lookup.get_admin_status(result, timeout_ms=req_timeout)
            if res.state is AdminState.FAILED:
                raise self._admin_failed(res, op)
            return res

        latest = await self._poll(
            check,
            lambda r: r.state is AdminState.COMPLETE,
            timeout_ms=timeout_ms,
            delay_ms=delay_ms,
            what=f"admin operation {result.operation_id}",
            operation=op,
        )
        statement = result.statement
        result.adopt(latest)
        result.statement = result.statement or statement
        return result

    @staticmethod
    def _admin_failed(res: AdminResult, operation: Operation) -> NoSQLError:
        detail = f": {res.output}" if res.output else ""
        return NoSQLError(
            f"Admin operation {res.operation_id} failed{detail}", code=ErrorCode.ILLEGAL_STATE, operation=operation
        )

    # ---- dispatch

    async def for_completion(
        self,
        result: TableResult | AdminResult,
        *,
        timeout_ms: int | None = None,
        delay_ms: int | None = None,
        operation: Operation | None = None,
    ) -> TableResult | AdminResult:
        """
        Wait for the DDL or admin operation behind `result`; returns the same
        (updated) object. `operation` is the call that produced `result` and
        is attached to poll errors.
        """
        if isinstance(result, AdminResult):
            return await self.for_admin_completion(
                result, timeout_ms=timeout_ms, delay_ms=delay_ms, operation=operation
            )
        if isinstance(result, TableResult):
            return await self.for_table_completion(
                result, timeout_ms=timeout_ms, delay_ms=delay_ms, operation=operation
            )
        raise NoSQLArgumentError(f"Expected TableResult or AdminResult, got {type(result).__name__}")
