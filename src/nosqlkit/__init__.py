from __future__ import annotations

# Runtime package version, read from the installed distribution metadata.
try:
    from importlib.metadata import PackageNotFoundError, version as _pkg_version

    __version__ = _pkg_version("nosqlkit")
except PackageNotFoundError:  # pragma: no cover
    # source checkout without an install
    __version__ = "0.0.0"

from .api.errors import (
    ErrorCode,
    ErrorKind,
    NoSQLArgumentError,
    NoSQLAuthorizationError,
    NoSQLError,
    NoSQLMemoryLimitError,
    NoSQLNetworkError,
    NoSQLOperationAbortedError,
    NoSQLProtocolError,
    NoSQLServiceError,
    NoSQLTimeoutError,
)
from .client import NoSQLClient
from .core.config import ClientConfig, RateLimiterConfig, RetryConfig
from .protocol.operation import Operation, OpKind
from .protocol.results import (
    AdminResult,
    AdminState,
    CapacityMode,
    Consistency,
    ConsumedCapacity,
    ContinuationKey,
    FieldRange,
    TableLimits,
    TableResult,
    TableState,
    WriteOperation,
)
from .runtime.retry import DefaultRetryPolicy, NoRetryPolicy, RetryPolicy

__all__ = [
    "AdminResult",
    "AdminState",
    "CapacityMode",
    "ClientConfig",
    "Consistency",
    "ConsumedCapacity",
    "ContinuationKey",
    "DefaultRetryPolicy",
    "ErrorCode",
    "ErrorKind",
    "FieldRange",
    "NoRetryPolicy",
    "NoSQLArgumentError",
    "NoSQLAuthorizationError",
    "NoSQLClient",
    "NoSQLError",
    "NoSQLMemoryLimitError",
    "NoSQLNetworkError",
    "NoSQLOperationAbortedError",
    "NoSQLProtocolError",
    "NoSQLServiceError",
    "NoSQLTimeoutError",
    "OpKind",
    "Operation",
    "RateLimiterConfig",
    "RetryConfig",
    "RetryPolicy",
    "TableLimits",
    "TableResult",
    "TableState",
    "WriteOperation",
    "__version__",
]
