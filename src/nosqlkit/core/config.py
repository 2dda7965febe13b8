from __future__ import annotations

"""
nosqlkit.core.config
====================

Strongly-typed client configuration.
- No external deps; optional JSON file loading.
- All durations are milliseconds, matching the service protocol.
- Provides small env overrides for convenience.

If a config file path is not provided or not found, defaults are used.
Invalid values raise `NoSQLArgumentError` when the config is constructed,
so a client never starts with a configuration it cannot honour.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from ..api.errors import NoSQLArgumentError


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path or not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise NoSQLArgumentError(f"Cannot read config file {path}", cause=e) from e
    if not isinstance(data, dict):
        raise NoSQLArgumentError(f"Config file {path} must contain a JSON object")
    return data


def _env_int(name: str) -> int | None:
    val = os.getenv(name)
    if val is None or val == "":
        return None
    try:
        return int(val)
    except ValueError as e:
        raise NoSQLArgumentError(f"{name} must be an integer, got {val!r}") from e


def _require_positive(name: str, value: Any, *, allow_zero: bool = False) -> None:
    ok = isinstance(value, int) and not isinstance(value, bool) and (value >= 0 if allow_zero else value > 0)
    if not ok:
        raise NoSQLArgumentError(f"{name} must be a {'non-negative' if allow_zero else 'positive'} integer, got {value!r}")


# ---------------------------------------------------------------------------


@dataclass
class RetryConfig:
    """
    Retry settings.

    `policy` may be any object implementing `should_retry(op, state, err)`
    and/or `delay_ms(op, state, err)`; whatever it does not implement (or
    answers with None) falls back to the defaults below.
    """

    max_retries: int = 10
    base_delay_ms: int = 1000
    # None disables retries of OPERATION_LIMIT_EXCEEDED.
    control_op_base_delay_ms: int | None = 60_000
    sec_info_base_delay_ms: int = 100
    sec_info_num_backoff: int = 10
    policy: Any = None

    def __post_init__(self) -> None:
        _require_positive("retry.max_retries", self.max_retries, allow_zero=True)
        _require_positive("retry.base_delay_ms", self.base_delay_ms)
        if self.control_op_base_delay_ms is not None:
            _require_positive("retry.control_op_base_delay_ms", self.control_op_base_delay_ms)
        _require_positive("retry.sec_info_base_delay_ms", self.sec_info_base_delay_ms)
        _require_positive("retry.sec_info_num_backoff", self.sec_info_num_backoff, allow_zero=True)


@dataclass
class RateLimiterConfig:
    """Client-side per-table rate limiting (off by default)."""

    enabled: bool = False
    # Share of the table limits this client may use, in (0, 100].
    limiter_percent: float | None = None
    max_burst_secs: int = 30
    # How often limits are refreshed from the service when limiter_percent is set.
    refresh_interval_ms: int = 600_000

    def __post_init__(self) -> None:
        if self.limiter_percent is not None and not (0 < float(self.limiter_percent) <= 100):
            raise NoSQLArgumentError(f"rate_limiter.limiter_percent must be in (0, 100], got {self.limiter_percent!r}")
        _require_positive("rate_limiter.max_burst_secs", self.max_burst_secs)
        _require_positive("rate_limiter.refresh_interval_ms", self.refresh_interval_ms)


# ---------------------------------------------------------------------------


@dataclass
class ClientConfig:
    """Client configuration loaded from JSON/env/overrides."""

    endpoint: str | None = None

    # ---- Timeouts (ms)
    timeout_ms: int = 5000
    ddl_timeout_ms: int = 10_000
    security_info_timeout_ms: int = 10_000
    table_poll_timeout_ms: int = 60_000
    table_poll_delay_ms: int = 1000
    admin_poll_timeout_ms: int = 60_000
    admin_poll_delay_ms: int = 1000

    # ---- Local buffering
    max_memory_mb: int = 1024

    # ---- Nested
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limiter: RateLimiterConfig = field(default_factory=RateLimiterConfig)

    # ---- Methods ------------------------------------------------------------

    def __post_init__(self) -> None:
        if isinstance(self.retry, dict):
            self.retry = RetryConfig(**self.retry)
        if isinstance(self.rate_limiter, dict):
            self.rate_limiter = RateLimiterConfig(**self.rate_limiter)
        for name in (
            "timeout_ms",
            "ddl_timeout_ms",
            "security_info_timeout_ms",
            "table_poll_timeout_ms",
            "table_poll_delay_ms",
            "admin_poll_timeout_ms",
            "admin_poll_delay_ms",
            "max_memory_mb",
        ):
            _require_positive(name, getattr(self, name))
        if self.table_poll_timeout_ms < self.table_poll_delay_ms:
            raise NoSQLArgumentError("table_poll_timeout_ms cannot be less than table_poll_delay_ms")
        if self.admin_poll_timeout_ms < self.admin_poll_delay_ms:
            raise NoSQLArgumentError("admin_poll_timeout_ms cannot be less than admin_poll_delay_ms")

    @property
    def max_memory_bytes(self) -> int:
        return self.max_memory_mb * 1024 * 1024

    # Loader
    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> ClientConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - NOSQL_ENDPOINT
          - NOSQL_TIMEOUT_MS
          - NOSQL_RATE_LIMITER (1/true enables client-side rate limiting)
        """
        data: dict[str, Any] = {}

        # File
        data.update(_try_load_json(Path(path) if path else None))

        # Env
        if os.getenv("NOSQL_ENDPOINT"):
            data["endpoint"] = os.environ["NOSQL_ENDPOINT"]
        timeout = _env_int("NOSQL_TIMEOUT_MS")
        if timeout is not None:
            data["timeout_ms"] = timeout
        if os.getenv("NOSQL_RATE_LIMITER"):
            rl = dict(data.get("rate_limiter") or {})
            rl["enabled"] = os.environ["NOSQL_RATE_LIMITER"].lower() in ("1", "true", "yes", "on")
            data["rate_limiter"] = rl

        # Overrides
        if overrides:
            for k, v in overrides.items():
                if k in ("retry", "rate_limiter") and isinstance(v, dict):
                    data[k] = {**dict(data.get(k) or {}), **v}
                else:
                    data[k] = v

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise NoSQLArgumentError(f"Unknown config option(s): {unknown}")
        return cls(**data)
