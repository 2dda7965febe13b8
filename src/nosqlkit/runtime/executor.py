# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
The governing execution loop.

For one `Operation`:

  1. wait on the table's rate limiters (if enabled),
  2. run one attempt through the transport,
  3. on failure: classify, notify the limiter, ask the retry engine, and
     either surface the error, give up with a timeout, or sleep and retry,
  4. on success: charge limiter units, publish consumed capacity and table
     state, and return the transport's result unchanged.

The operation timeout bounds the whole call: elapsed time plus the next
backoff delay may not exceed it, and each attempt is sent with
`request_timeout_ms` set to what is left of it (capped at
`MAX_REQUEST_TIMEOUT_MS`). Security-info errors extend the bound to
`security_info_timeout_ms` because the service needs time to propagate
authorization data. Every error leaving this module carries the operation.
"""

from collections.abc import Collection
from typing import Any

from ..api.errors import ErrorCode, ErrorKind, NoSQLError, NoSQLTimeoutError
from ..core.config import ClientConfig
from ..core.logging import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..core.types import MAX_REQUEST_TIMEOUT_MS
from ..observability.metrics import ClientMetrics
from ..protocol.operation import Operation
from ..protocol.results import TableResult
from ..transport.base import AuthorizationProvider, Transport
from .classifier import ClassifiedError, classify
from .events import EventChannel
from .rate_limiter import RateLimiterRegistry, RateLimitTicket
from .retry import RetryEngine, RetryState

__all__ = ["OperationExecutor"]

_log = get_logger("executor")


class OperationExecutor:
    def __init__(
        self,
        transport: Transport,
        cfg: ClientConfig,
        *,
        clock: Clock | None = None,
        events: EventChannel | None = None,
        metrics: ClientMetrics | None = None,
        auth: AuthorizationProvider | None = None,
        rate_limiters: RateLimiterRegistry | None = None,
        retry: RetryEngine | None = None,
    ) -> None:
        self.transport = transport
        self.cfg = cfg
        self.clock: Clock = clock or SystemClock()
        self.events = events or EventChannel()
        self.metrics = metrics
        self.auth = auth
        self.rate_limiters = rate_limiters
        self.retry = retry or RetryEngine(cfg.retry)

    def _timeout_for(self, op: Operation, err: ClassifiedError | None) -> int:
        if err is not None and err.kind is ErrorKind.SECURITY_INFO_UNAVAILABLE:
            return max(self.cfg.security_info_timeout_ms, op.timeout_ms)
        return op.timeout_ms

    async def execute(self, op: Operation, *, expected: Collection[ErrorCode] = ()) -> Any:
        """
        Run `op` to completion. Errors whose code is in `expected` are raised
        to the caller without the `error` event, the warning or the failure
        metric; the caller treats them as an answer.
        """
        with log_context(op=op.kind.value, table=op.table_name, op_id=op.op_id):
            start = self.clock.mono_ms()
            try:
                res = await self._run(op, start, expected)
            except NoSQLError as e:
                if self.metrics is not None and e.code not in expected:
                    self.metrics.observe(op.kind.value, e.kind.value, self.clock.mono_ms() - start)
                raise
            if self.metrics is not None:
                self.metrics.observe(op.kind.value, "ok", self.clock.mono_ms() - start)
            return res

    async def _run(self, op: Operation, start: int, expected: Collection[ErrorCode]) -> Any:
        state = RetryState(first_attempt_ms=start)
        # One ticket per call, so limiter waits of failed attempts are still reported.
        ticket: RateLimitTicket | None = None
        while True:
            deadline = start + self._timeout_for(op, state.last_error)
            if self.rate_limiters is not None:
                try:
                    ticket = await self.rate_limiters.before_request(
                        op, max(1, deadline - self.clock.mono_ms()), ticket
                    )
                except NoSQLError as e:
                    e.operation = e.operation or op
                    raise

            attempt = op.with_options(
                request_timeout_ms=min(max(1, deadline - self.clock.mono_ms()), MAX_REQUEST_TIMEOUT_MS)
            )
            try:
                authorization = await self.auth.get_authorization(op) if self.auth is not None else None
                res = await self.transport.execute(attempt, authorization=authorization)
            except Exception as exc:
                err = classify(exc, operation=op, previous=state.last_error)
                if self.rate_limiters is not None:
                    self.rate_limiters.on_error(ticket, err)
                delay = self._next_delay(op, state, err, start, expected)
                if self.auth is not None and err.kind is ErrorKind.AUTHORIZATION_FAILURE:
                    self.auth.invalidate()
                state.record(err, delay)
                await self.clock.sleep_ms(delay)
                continue

            await self._on_result(op, res, ticket, start)
            return res

    def _next_delay(
        self, op: Operation, state: RetryState, err: ClassifiedError, start: int, expected: Collection[ErrorCode] = ()
    ) -> int:
        """Return the delay before the next attempt, or raise the error that ends the call."""
        decision = self.retry.decide(op, state, err)
        if not decision.retry:
            if err.code in expected:
                _log.debug("operation returned expected error", code=err.code.name, attempt=state.attempt)
                raise err.error
            _log.warning(
                "operation failed",
                code=err.code.name,
                kind=err.kind.value,
                attempt=state.attempt,
                error=err.error.message,
            )
            self.events.emit("error", err.error, op)
            raise err.error

        timeout = self._timeout_for(op, err)
        remaining = start + timeout - self.clock.mono_ms()
        if remaining - decision.delay_ms <= 0:
            _log.warning("operation timed out", timeout_ms=timeout, attempt=state.attempt, code=err.code.name)
            raise NoSQLTimeoutError(
                timeout_ms=timeout,
                num_retries=state.num_retries,
                operation=op,
                cause=err.error,
            )

        _log.debug(
            "retrying operation",
            code=err.code.name,
            attempt=state.attempt,
            delay_ms=decision.delay_ms,
            remaining_ms=remaining,
        )
        self.events.emit("retryable", err.error, op, state.attempt)
        if self.metrics is not None:
            self.metrics.retry(op.kind.value, err.kind.value)
        return decision.delay_ms

    async def _on_result(self, op: Operation, res: Any, ticket: RateLimitTicket | None, start: int) -> None:
        cc = getattr(res, "consumed_capacity", None)
        if ticket is not None and self.rate_limiters is not None:
            remaining = max(1, start + op.timeout_ms - self.clock.mono_ms())
            await self.rate_limiters.after_request(ticket, cc, remaining)
            if self.metrics is not None:
                self.metrics.limiter_delay(ticket.read_delay_ms, ticket.write_delay_ms)
        if cc is not None:
            self.events.emit("consumed_capacity", cc, op)
        if isinstance(res, TableResult):
            self.events.emit("table_state", res.table_name, res.state)
            if self.rate_limiters is not None:
                self.rate_limiters.update(res)
