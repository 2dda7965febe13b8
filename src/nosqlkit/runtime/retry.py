# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Retry policy engine.

Given a classified failure and the per-call retry state, decide whether to
retry and how long to wait first. Two aspects, each pluggable:

  should_retry(op, state, err) -> bool | None
  delay_ms(op, state, err)     -> int | None

A custom policy may implement either or both; a missing method or a `None`
answer falls back to `DefaultRetryPolicy` for that aspect. Errors classified
as non-retryable are never retried, whatever the policy says.

The cumulative timeout is enforced by the executor, not here.
"""

import random
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..api.errors import ErrorKind
from ..core.config import RetryConfig
from ..core.logging import get_logger, warn_once
from ..core.utils import backoff_ms
from ..protocol.operation import Operation
from .classifier import ClassifiedError

__all__ = [
    "DefaultRetryPolicy",
    "NoRetryPolicy",
    "RetryDecision",
    "RetryEngine",
    "RetryPolicy",
    "RetryState",
]

_log = get_logger("retry")


@dataclass
class RetryState:
    """
    Per-call retry bookkeeping, owned by one executing call.

    `attempt` counts invocations including the first, so it is the number of
    the attempt that just failed when a decision is made.
    """

    first_attempt_ms: int
    attempt: int = 1
    cumulative_delay_ms: int = 0
    last_error: ClassifiedError | None = None

    @property
    def num_retries(self) -> int:
        return self.attempt - 1

    def record(self, err: ClassifiedError, delay_ms: int) -> None:
        self.last_error = err
        self.cumulative_delay_ms += delay_ms
        self.attempt += 1


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_ms: int = 0


@runtime_checkable
class RetryPolicy(Protocol):
    def should_retry(self, op: Operation, state: RetryState, err: ClassifiedError) -> bool | None: ...
    def delay_ms(self, op: Operation, state: RetryState, err: ClassifiedError) -> int | None: ...


class DefaultRetryPolicy:
    """Exponential backoff with jitter, with dedicated paths for control-plane and security-info errors."""

    def __init__(self, cfg: RetryConfig | None = None, *, rng: random.Random | None = None) -> None:
        self.cfg = cfg or RetryConfig()
        self._rng = rng

    def should_retry(self, op: Operation, state: RetryState, err: ClassifiedError) -> bool:
        kind = err.kind
        if kind is ErrorKind.OPERATION_LIMIT_EXCEEDED:
            base = self.cfg.control_op_base_delay_ms
            if base is None:
                warn_once(
                    _log,
                    "retry.control_op_disabled",
                    "Operation limit exceeded; control-plane retries are disabled (control_op_base_delay_ms is None)",
                )
                return False
            return op.timeout_ms > base
        if kind in (ErrorKind.NETWORK_FAULT, ErrorKind.SECURITY_INFO_UNAVAILABLE):
            return True
        if kind is ErrorKind.AUTHORIZATION_FAILURE:
            return True
        if not op.retry_allowed:
            return False
        return state.attempt < self.cfg.max_retries

    def delay_ms(self, op: Operation, state: RetryState, err: ClassifiedError) -> int:
        n = state.attempt
        if err.kind is ErrorKind.OPERATION_LIMIT_EXCEEDED and self.cfg.control_op_base_delay_ms:
            return backoff_ms(n, self.cfg.control_op_base_delay_ms, rng=self._rng)
        if err.kind is ErrorKind.SECURITY_INFO_UNAVAILABLE:
            num_backoff = self.cfg.sec_info_num_backoff
            if n > num_backoff:
                return backoff_ms(n - num_backoff, self.cfg.sec_info_base_delay_ms, rng=self._rng)
            return self.cfg.sec_info_base_delay_ms
        return backoff_ms(n, self.cfg.base_delay_ms, rng=self._rng)


class NoRetryPolicy:
    """Surface every failure immediately."""

    def should_retry(self, op: Operation, state: RetryState, err: ClassifiedError) -> bool:
        return False


class RetryEngine:
    """Combines an optional custom policy with the default one, aspect by aspect."""

    def __init__(self, cfg: RetryConfig | None = None, *, policy: Any = None, rng: random.Random | None = None) -> None:
        cfg = cfg or RetryConfig()
        self.default = DefaultRetryPolicy(cfg, rng=rng)
        self.custom = policy if policy is not None else cfg.policy

    def _ask(self, aspect: str, op: Operation, state: RetryState, err: ClassifiedError) -> Any:
        fn = getattr(self.custom, aspect, None) if self.custom is not None else None
        if fn is not None:
            answer = fn(op, state, err)
            if answer is not None:
                return answer
        return getattr(self.default, aspect)(op, state, err)

    def decide(self, op: Operation, state: RetryState, err: ClassifiedError) -> RetryDecision:
        if not err.retryable:
            return RetryDecision(retry=False)
        if not self._ask("should_retry", op, state, err):
            return RetryDecision(retry=False)
        delay = max(0, int(self._ask("delay_ms", op, state, err)))
        _log.debug(
            "retry decided",
            code=err.code.name,
            kind=err.kind.value,
            attempt=state.attempt,
            delay_ms=delay,
        )
        return RetryDecision(retry=True, delay_ms=delay)
