"""
Unit tests for the governing execution loop, driven by a ManualClock so that
backoff sleeps are instantaneous and observable.
"""

from __future__ import annotations

import random

import pytest

from nosqlkit.api.errors import ErrorCode, NoSQLError, NoSQLTimeoutError
from nosqlkit.core.config import ClientConfig
from nosqlkit.core.types import MAX_REQUEST_TIMEOUT_MS
from nosqlkit.observability.metrics import ClientMetrics
from nosqlkit.protocol.operation import Operation, OpKind
from nosqlkit.runtime.events import EventChannel
from nosqlkit.runtime.executor import OperationExecutor
from nosqlkit.runtime.retry import RetryEngine
from tests.helpers import FakeNoSQLService

pytestmark = [pytest.mark.unit]


def _get(timeout_ms: int = 5000) -> Operation:
    return Operation.create(OpKind.GET, "users", params={"key": {"id": 1}}, options={"timeout_ms": timeout_ms})


def _executor(service, clock, *, auth=None, **cfg) -> tuple[OperationExecutor, EventChannel, ClientMetrics]:
    config = ClientConfig(**cfg)
    events = EventChannel()
    metrics = ClientMetrics()
    ex = OperationExecutor(
        service,
        config,
        clock=clock,
        events=events,
        metrics=metrics,
        auth=auth,
        retry=RetryEngine(config.retry, rng=random.Random(42)),
    )
    return ex, events, metrics


@pytest.mark.asyncio
async def test_success_after_transient_failures(service, clock):
    ex, events, metrics = _executor(service, clock, retry={"base_delay_ms": 100})
    seen = []
    events.on("retryable", lambda err, op, attempt: seen.append((err.code, attempt)))
    service.fail_next(NoSQLError("busy", code=ErrorCode.TABLE_BUSY), kind=OpKind.GET, times=2)

    res = await ex.execute(_get())

    assert res.row is None
    assert len(service.calls_of(OpKind.GET)) == 3
    assert seen == [(ErrorCode.TABLE_BUSY, 1), (ErrorCode.TABLE_BUSY, 2)]
    assert len(clock.sleeps) == 2
    assert metrics.sample("nosqlkit_retries_total", {"op": "get", "kind": "throttled"}) == 2
    assert metrics.sample("nosqlkit_operations_total", {"op": "get", "outcome": "ok"}) == 1


@pytest.mark.asyncio
async def test_retry_ceiling_exact_attempts(service, clock):
    ex, events, _ = _executor(service, clock, timeout_ms=30_000, retry={"max_retries": 4, "base_delay_ms": 10})
    errors = []
    events.on("error", lambda err, op: errors.append(err))
    service.fail_next(NoSQLError("busy", code=ErrorCode.TABLE_BUSY), kind=OpKind.GET, times=100)

    with pytest.raises(NoSQLError) as ei:
        await ex.execute(_get(timeout_ms=30_000))

    assert ei.value.code is ErrorCode.TABLE_BUSY
    assert len(service.calls_of(OpKind.GET)) == 4
    assert errors == [ei.value]


@pytest.mark.asyncio
async def test_timeout_takes_precedence_over_retry(service, clock):
    ex, _, metrics = _executor(service, clock, retry={"max_retries": 100, "base_delay_ms": 100})
    service.fail_next(NoSQLError("busy", code=ErrorCode.TABLE_BUSY), kind=OpKind.GET, times=100)

    with pytest.raises(NoSQLTimeoutError) as ei:
        await ex.execute(_get(timeout_ms=1000))

    err = ei.value
    assert err.timeout_ms == 1000
    assert err.num_retries == len(clock.sleeps)
    assert isinstance(err.cause, NoSQLError) and err.cause.code is ErrorCode.TABLE_BUSY
    assert err.operation is not None and err.operation.kind is OpKind.GET
    # never slept past the deadline
    assert sum(clock.sleeps) < 1000
    assert metrics.sample("nosqlkit_operations_total", {"op": "get", "outcome": "timeout"}) == 1


@pytest.mark.asyncio
async def test_each_attempt_gets_only_the_time_left(service, clock):
    ex, _, _ = _executor(service, clock, retry={"base_delay_ms": 100})
    service.slow_next(3000, kind=OpKind.GET, times=10)
    service.fail_next(NoSQLError("busy", code=ErrorCode.TABLE_BUSY), kind=OpKind.GET, times=1)
    start = clock.mono_ms()

    with pytest.raises(NoSQLTimeoutError) as ei:
        await ex.execute(_get(timeout_ms=5000))

    budgets = [op.request_timeout_ms for op in service.calls_of(OpKind.GET)]
    assert budgets[0] == 5000
    # second attempt: 5000 - 3000 (first attempt) - backoff
    assert len(budgets) == 2 and budgets[1] < 2000
    assert clock.mono_ms() - start <= 5000
    assert ei.value.timeout_ms == 5000


@pytest.mark.asyncio
async def test_request_timeout_is_capped(service, clock):
    ex, _, _ = _executor(service, clock)
    await ex.execute(_get(timeout_ms=120_000))
    (sent,) = service.calls_of(OpKind.GET)
    assert sent.request_timeout_ms == MAX_REQUEST_TIMEOUT_MS
    assert sent.timeout_ms == 120_000


@pytest.mark.asyncio
async def test_network_errors_bounded_by_timeout_not_count(service, clock):
    ex, _, _ = _executor(service, clock, retry={"max_retries": 1, "base_delay_ms": 10})
    service.fail_next(ConnectionResetError("reset"), kind=OpKind.GET, times=3)

    res = await ex.execute(_get(timeout_ms=5000))

    assert res is not None
    assert len(service.calls_of(OpKind.GET)) == 4


@pytest.mark.asyncio
async def test_security_info_uses_extended_timeout(service, clock):
    ex, _, _ = _executor(
        service,
        clock,
        security_info_timeout_ms=3000,
        retry={"sec_info_base_delay_ms": 100, "sec_info_num_backoff": 100},
    )
    service.fail_next(NoSQLError("not yet", code=ErrorCode.SECURITY_INFO_UNAVAILABLE), kind=OpKind.GET, times=1000)

    with pytest.raises(NoSQLTimeoutError) as ei:
        await ex.execute(_get(timeout_ms=500))

    assert ei.value.timeout_ms == 3000
    # constant 100 ms delays until the 3 s window closes
    assert set(clock.sleeps) == {100}
    assert sum(clock.sleeps) < 3000


@pytest.mark.asyncio
async def test_non_retryable_error_surfaces_immediately(service, clock):
    ex, _, _ = _executor(service, clock)
    with pytest.raises(NoSQLError) as ei:
        await ex.execute(
            Operation.create(OpKind.GET, "missing", params={"key": {"id": 1}}, options={"timeout_ms": 1000})
        )
    assert ei.value.code is ErrorCode.TABLE_NOT_FOUND
    assert ei.value.operation is not None
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_authorization_is_refreshed_and_retried_once(service, clock):
    class Auth:
        def __init__(self):
            self.token = 0
            self.invalidations = 0

        async def get_authorization(self, op):
            self.token += 1
            return f"Bearer t{self.token}"

        def invalidate(self):
            self.invalidations += 1

    auth = Auth()
    ex, _, _ = _executor(service, clock, auth=auth, retry={"base_delay_ms": 10})
    service.fail_next(NoSQLError("expired", code=ErrorCode.INVALID_AUTHORIZATION), kind=OpKind.GET, times=1)

    await ex.execute(_get())
    assert [a for _, a in service.calls] == ["Bearer t1", "Bearer t2"]
    assert auth.invalidations == 1

    service.calls.clear()
    service.fail_next(NoSQLError("expired", code=ErrorCode.INVALID_AUTHORIZATION), kind=OpKind.GET, times=5)
    with pytest.raises(NoSQLError) as ei:
        await ex.execute(_get())
    assert ei.value.code is ErrorCode.INVALID_AUTHORIZATION
    assert len(service.calls) == 2


@pytest.mark.asyncio
async def test_consumed_capacity_and_table_state_events(clock):
    service = FakeNoSQLService(clock=clock)
    service.add_table("users")
    ex, events, _ = _executor(service, clock)
    capacity, states = [], []
    events.on("consumed_capacity", lambda cc, op: capacity.append((cc.read_units, op.kind)))
    events.on("table_state", lambda name, state: states.append((name, state.value)))

    await ex.execute(_get())
    await ex.execute(Operation.create(OpKind.GET_TABLE, "users", options={"timeout_ms": 1000}))

    assert capacity == [(1, OpKind.GET)]
    assert states == [("users", "ACTIVE")]


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_operation(service, clock):
    ex, events, _ = _executor(service, clock)

    def bad_listener(*_):
        raise RuntimeError("listener bug")

    events.on("consumed_capacity", bad_listener)
    res = await ex.execute(_get())
    assert res is not None
