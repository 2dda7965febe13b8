# conftest.py
from __future__ import annotations

import os
import random
import uuid

import pytest
import pytest_asyncio

from nosqlkit.client import NoSQLClient
from nosqlkit.core.config import ClientConfig
from nosqlkit.core.logging import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from nosqlkit.core.time import ManualClock
from nosqlkit.observability.metrics import ClientMetrics
from nosqlkit.protocol.results import TableLimits
from tests.helpers import FakeNoSQLService


def pytest_configure(config):
    config.addinivalue_line("markers", "cfg(**overrides): per-test ClientConfig overrides")


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit nosqlkit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_nosqlkit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    # Unless enabled explicitly through env, turn stdout logging on (human-readable by default)
    if os.getenv("NOSQLKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    if rep.when == "call":
        log = get_logger("test")
        with log_context(pytest_nodeid=item.nodeid, test=item.name):
            log.debug(
                "pytest.test.finish",
                event="pytest.test.finish",
                outcome=rep.outcome,
                duration=getattr(rep, "duration", None),
            )


def _cfg_overrides_from_marker(request) -> dict:
    m = request.node.get_closest_marker("cfg")
    return dict(m.kwargs) if m else {}


@pytest.fixture
def tlog():
    return get_logger("test")


@pytest.fixture
def clock():
    return ManualClock(start_ms=1_000_000)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def client_cfg(request, monkeypatch):
    for name in ("NOSQL_ENDPOINT", "NOSQL_TIMEOUT_MS", "NOSQL_RATE_LIMITER"):
        monkeypatch.delenv(name, raising=False)
    overrides = {"retry": {"base_delay_ms": 100}, **_cfg_overrides_from_marker(request)}
    return ClientConfig.load(overrides=overrides)


@pytest.fixture
def service(clock):
    svc = FakeNoSQLService(clock=clock)
    svc.add_table("users", primary_key=["id"], limits=TableLimits(read_units=100, write_units=100, storage_gb=1))
    svc.add_table("events", primary_key=["shard", "seq"])
    return svc


@pytest.fixture
def metrics():
    return ClientMetrics()


@pytest_asyncio.fixture
async def client(service, client_cfg, clock, metrics):
    c = NoSQLClient(client_cfg, transport=service, clock=clock, metrics=metrics)
    try:
        yield c
    finally:
        await c.close()
