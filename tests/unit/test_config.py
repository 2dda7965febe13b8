from __future__ import annotations

import json

import pytest

from nosqlkit.api.errors import NoSQLArgumentError
from nosqlkit.core.config import ClientConfig, RateLimiterConfig, RetryConfig

pytestmark = [pytest.mark.unit]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("NOSQL_ENDPOINT", "NOSQL_TIMEOUT_MS", "NOSQL_RATE_LIMITER"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = ClientConfig.load()
    assert cfg.timeout_ms == 5000
    assert cfg.ddl_timeout_ms == 10_000
    assert cfg.retry.max_retries == 10
    assert cfg.retry.base_delay_ms == 1000
    assert cfg.retry.control_op_base_delay_ms == 60_000
    assert cfg.rate_limiter.enabled is False
    assert cfg.max_memory_bytes == 1024 * 1024 * 1024


def test_file_env_and_overrides_layering(tmp_path, monkeypatch):
    path = tmp_path / "nosql.json"
    path.write_text(json.dumps({"timeout_ms": 2000, "retry": {"max_retries": 3, "base_delay_ms": 50}}))
    monkeypatch.setenv("NOSQL_TIMEOUT_MS", "2500")
    monkeypatch.setenv("NOSQL_ENDPOINT", "https://nosql.example.com")
    monkeypatch.setenv("NOSQL_RATE_LIMITER", "true")

    cfg = ClientConfig.load(path, overrides={"retry": {"max_retries": 7}})

    assert cfg.endpoint == "https://nosql.example.com"
    assert cfg.timeout_ms == 2500
    assert cfg.retry.max_retries == 7
    assert cfg.retry.base_delay_ms == 50
    assert cfg.rate_limiter.enabled is True


def test_missing_file_uses_defaults(tmp_path):
    assert ClientConfig.load(tmp_path / "absent.json").timeout_ms == 5000


def test_malformed_file_rejected(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(NoSQLArgumentError):
        ClientConfig.load(path)


@pytest.mark.parametrize(
    "overrides",
    [
        {"timeout_ms": 0},
        {"timeout_ms": -5},
        {"table_poll_timeout_ms": 100, "table_poll_delay_ms": 500},
        {"retry": {"base_delay_ms": 0}},
        {"rate_limiter": {"limiter_percent": 150}},
        {"rate_limiter": {"limiter_percent": 0}},
        {"no_such_option": 1},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(NoSQLArgumentError):
        ClientConfig.load(overrides=overrides)


def test_env_timeout_must_be_integer(monkeypatch):
    monkeypatch.setenv("NOSQL_TIMEOUT_MS", "soon")
    with pytest.raises(NoSQLArgumentError):
        ClientConfig.load()


def test_nested_configs_accept_instances():
    cfg = ClientConfig(retry=RetryConfig(max_retries=2), rate_limiter=RateLimiterConfig(enabled=True, limiter_percent=25))
    assert cfg.retry.max_retries == 2
    assert cfg.rate_limiter.limiter_percent == 25
