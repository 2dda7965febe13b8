# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for the nosqlkit driver.

Every failure that leaves the driver is a `NoSQLError` carrying:
  - `code`: the service / driver error code (`ErrorCode`),
  - `kind`: the coarse category used by retry logic (`ErrorKind`),
  - `operation`: the descriptor of the call that failed (when known),
  - `cause`: the underlying error, also chained through `__cause__`.

Which codes are transient is decided here, once, at import time; the
classifier and the retry engine only consult `ErrorCode.retryable`.
"""

from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..protocol.operation import Operation

__all__ = [
    "ErrorCode",
    "ErrorKind",
    "NoSQLArgumentError",
    "NoSQLAuthorizationError",
    "NoSQLError",
    "NoSQLMemoryLimitError",
    "NoSQLNetworkError",
    "NoSQLOperationAbortedError",
    "NoSQLProtocolError",
    "NoSQLServiceError",
    "NoSQLTimeoutError",
]


class ErrorKind(str, Enum):
    NETWORK_FAULT = "network_fault"
    SECURITY_INFO_UNAVAILABLE = "security_info_unavailable"
    THROTTLED = "throttled"
    OPERATION_LIMIT_EXCEEDED = "operation_limit_exceeded"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_EXISTS = "resource_exists"
    AUTHORIZATION_FAILURE = "authorization_failure"
    INVALID_ARGUMENT = "invalid_argument"
    TIMEOUT = "timeout"
    OPERATION_ABORTED = "operation_aborted"
    SERVICE_INTERNAL = "service_internal"
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"


class ErrorCode(IntEnum):
    """Numeric codes shared with the service; 1000+ are raised by the driver itself."""

    UNKNOWN_OPERATION = 1
    TABLE_NOT_FOUND = 2
    INDEX_NOT_FOUND = 3
    ILLEGAL_ARGUMENT = 4
    ROW_SIZE_LIMIT_EXCEEDED = 5
    KEY_SIZE_LIMIT_EXCEEDED = 6
    BATCH_OP_NUMBER_LIMIT_EXCEEDED = 7
    REQUEST_SIZE_LIMIT_EXCEEDED = 8
    TABLE_EXISTS = 9
    INDEX_EXISTS = 10
    INVALID_AUTHORIZATION = 11
    INSUFFICIENT_PERMISSION = 12
    RESOURCE_EXISTS = 13
    RESOURCE_NOT_FOUND = 14
    TABLE_LIMIT_EXCEEDED = 15
    INDEX_LIMIT_EXCEEDED = 16
    BAD_PROTOCOL_MESSAGE = 17
    EVOLUTION_LIMIT_EXCEEDED = 18
    TABLE_DEPLOYMENT_LIMIT_EXCEEDED = 19
    TENANT_DEPLOYMENT_LIMIT_EXCEEDED = 20
    OPERATION_NOT_SUPPORTED = 21

    READ_LIMIT_EXCEEDED = 50
    WRITE_LIMIT_EXCEEDED = 51
    SIZE_LIMIT_EXCEEDED = 52
    OPERATION_LIMIT_EXCEEDED = 53

    REQUEST_TIMEOUT = 100
    SERVER_ERROR = 101
    SERVICE_UNAVAILABLE = 102
    TABLE_BUSY = 103
    SECURITY_INFO_UNAVAILABLE = 104
    RETRY_AUTHENTICATION = 105
    UNKNOWN_ERROR = 125
    ILLEGAL_STATE = 126

    NETWORK_ERROR = 1000
    SERVICE_ERROR = 1001
    CREDENTIALS_ERROR = 1002
    UNAUTHORIZED = 1003
    MEMORY_LIMIT_EXCEEDED = 1004

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_CODE.get(self, ErrorKind.SERVICE_INTERNAL)

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_KIND_BY_CODE: dict[ErrorCode, ErrorKind] = {
    ErrorCode.NETWORK_ERROR: ErrorKind.NETWORK_FAULT,
    ErrorCode.SECURITY_INFO_UNAVAILABLE: ErrorKind.SECURITY_INFO_UNAVAILABLE,
    ErrorCode.READ_LIMIT_EXCEEDED: ErrorKind.THROTTLED,
    ErrorCode.WRITE_LIMIT_EXCEEDED: ErrorKind.THROTTLED,
    ErrorCode.TABLE_BUSY: ErrorKind.THROTTLED,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorKind.THROTTLED,
    ErrorCode.OPERATION_LIMIT_EXCEEDED: ErrorKind.OPERATION_LIMIT_EXCEEDED,
    ErrorCode.TABLE_NOT_FOUND: ErrorKind.RESOURCE_NOT_FOUND,
    ErrorCode.INDEX_NOT_FOUND: ErrorKind.RESOURCE_NOT_FOUND,
    ErrorCode.RESOURCE_NOT_FOUND: ErrorKind.RESOURCE_NOT_FOUND,
    ErrorCode.TABLE_EXISTS: ErrorKind.RESOURCE_EXISTS,
    ErrorCode.INDEX_EXISTS: ErrorKind.RESOURCE_EXISTS,
    ErrorCode.RESOURCE_EXISTS: ErrorKind.RESOURCE_EXISTS,
    ErrorCode.INVALID_AUTHORIZATION: ErrorKind.AUTHORIZATION_FAILURE,
    ErrorCode.RETRY_AUTHENTICATION: ErrorKind.AUTHORIZATION_FAILURE,
    ErrorCode.INSUFFICIENT_PERMISSION: ErrorKind.AUTHORIZATION_FAILURE,
    ErrorCode.CREDENTIALS_ERROR: ErrorKind.AUTHORIZATION_FAILURE,
    ErrorCode.UNAUTHORIZED: ErrorKind.AUTHORIZATION_FAILURE,
    ErrorCode.UNKNOWN_OPERATION: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.ILLEGAL_ARGUMENT: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.ROW_SIZE_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.KEY_SIZE_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.BATCH_OP_NUMBER_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.REQUEST_SIZE_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.TABLE_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.INDEX_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.EVOLUTION_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.TABLE_DEPLOYMENT_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.TENANT_DEPLOYMENT_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.OPERATION_NOT_SUPPORTED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.SIZE_LIMIT_EXCEEDED: ErrorKind.INVALID_ARGUMENT,
    ErrorCode.REQUEST_TIMEOUT: ErrorKind.TIMEOUT,
    ErrorCode.MEMORY_LIMIT_EXCEEDED: ErrorKind.MEMORY_LIMIT_EXCEEDED,
}

# Transient conditions reported by the service or the network.
_RETRYABLE: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.SECURITY_INFO_UNAVAILABLE,
        ErrorCode.READ_LIMIT_EXCEEDED,
        ErrorCode.WRITE_LIMIT_EXCEEDED,
        ErrorCode.TABLE_BUSY,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.SERVER_ERROR,
        ErrorCode.REQUEST_TIMEOUT,
        ErrorCode.OPERATION_LIMIT_EXCEEDED,
        ErrorCode.INVALID_AUTHORIZATION,
        ErrorCode.RETRY_AUTHENTICATION,
    }
)


class NoSQLError(Exception):
    """Base class for all driver errors."""

    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str = "",
        *,
        code: ErrorCode | None = None,
        operation: Operation | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code: ErrorCode = code if code is not None else self.default_code
        self.operation = operation
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    def __str__(self) -> str:
        s = f"[{self.code.name}] {self.message}" if self.message else f"[{self.code.name}]"
        if self.operation is not None:
            s += f" (operation={self.operation.kind.value}"
            if self.operation.table_name:
                s += f", table={self.operation.table_name}"
            s += ")"
        if self.cause is not None:
            s += f"; caused by: {self.cause}"
        return s

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.name}, message={self.message!r})"


class NoSQLArgumentError(NoSQLError, ValueError):
    """Invalid argument or configuration; raised before anything is sent."""

    default_code = ErrorCode.ILLEGAL_ARGUMENT


class NoSQLNetworkError(NoSQLError):
    """The service could not be reached or the connection failed mid-request."""

    default_code = ErrorCode.NETWORK_ERROR


class NoSQLServiceError(NoSQLError):
    """Unsuccessful HTTP response that did not carry a service error code."""

    default_code = ErrorCode.SERVICE_ERROR

    def __init__(self, message: str = "", *, status_code: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.THROTTLED if self.status_code == 503 else ErrorKind.SERVICE_INTERNAL

    @property
    def retryable(self) -> bool:
        return self.status_code == 503


class NoSQLProtocolError(NoSQLError):
    """The service response violated the expected result contract."""

    default_code = ErrorCode.BAD_PROTOCOL_MESSAGE


class NoSQLAuthorizationError(NoSQLError):
    default_code = ErrorCode.INVALID_AUTHORIZATION


class NoSQLMemoryLimitError(NoSQLError):
    """Client-side buffering exceeded the configured memory ceiling."""

    default_code = ErrorCode.MEMORY_LIMIT_EXCEEDED


class NoSQLOperationAbortedError(NoSQLError):
    """A batch was aborted because a sub-operation with abort-on-fail did not succeed."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str = "", *, failed_op_index: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.failed_op_index = failed_op_index

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.OPERATION_ABORTED

    @property
    def retryable(self) -> bool:
        return False


class NoSQLTimeoutError(NoSQLError):
    """
    The operation (or poll, or rate-limiter wait) did not finish within its
    timeout. `cause` holds the last error observed before giving up, if any.
    """

    default_code = ErrorCode.REQUEST_TIMEOUT

    def __init__(
        self,
        message: str = "",
        *,
        timeout_ms: int | None = None,
        num_retries: int | None = None,
        **kwargs: Any,
    ) -> None:
        if not message and timeout_ms is not None:
            message = f"Operation timed out after {timeout_ms} ms"
            if num_retries is not None:
                message += f" and {num_retries} {'retry' if num_retries == 1 else 'retries'}"
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms
        self.num_retries = num_retries
