# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error classification.

Maps every raw failure observed while executing an operation to exactly one
`ClassifiedError`. The retryable/non-retryable partition of service codes
lives on `ErrorCode`; this module adds the parts that depend on context:
wrapping networking exceptions, attaching the operation, and the
"authorization failures are retried once" rule, which needs the previous
failure of the same call.
"""

import asyncio
from dataclasses import dataclass

from ..api.errors import ErrorCode, ErrorKind, NoSQLError, NoSQLNetworkError
from ..protocol.operation import Operation

__all__ = ["ClassifiedError", "classify"]


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    retryable: bool
    error: NoSQLError
    cause: ClassifiedError | None = None

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @property
    def is_throttle(self) -> bool:
        return self.code in (ErrorCode.READ_LIMIT_EXCEEDED, ErrorCode.WRITE_LIMIT_EXCEEDED)


# ConnectionError and TimeoutError are OSError subclasses.
_NETWORK_EXC = (OSError, asyncio.TimeoutError)


def _as_nosql_error(exc: BaseException, operation: Operation) -> NoSQLError:
    if isinstance(exc, NoSQLError):
        err = exc
    elif isinstance(exc, _NETWORK_EXC):
        err = NoSQLNetworkError(f"Network error: {exc}", cause=exc)
    else:
        # Unknown failure from the transport: not retried, but still tied to the operation.
        err = NoSQLError(f"Unexpected error: {exc!r}", code=ErrorCode.UNKNOWN_ERROR, cause=exc)
    if err.operation is None:
        err.operation = operation
    return err


def classify(
    exc: BaseException,
    *,
    operation: Operation,
    previous: ClassifiedError | None = None,
) -> ClassifiedError:
    """
    Classify `exc` raised while executing `operation`.

    Args:
        exc: The raw failure.
        operation: Descriptor of the executing call; attached to the error.
        previous: Classified failure of the preceding attempt of the same call.
    """
    err = _as_nosql_error(exc, operation)
    kind = err.kind
    retryable = err.retryable

    if kind is ErrorKind.AUTHORIZATION_FAILURE and retryable:
        # Retry once: a fresh authorization may succeed, a second rejection will not.
        if previous is not None and previous.kind is ErrorKind.AUTHORIZATION_FAILURE:
            retryable = False

    return ClassifiedError(kind=kind, retryable=retryable, error=err, cause=previous)
