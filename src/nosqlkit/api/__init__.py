# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Stable error contract of the driver: `ErrorCode`, `ErrorKind` and the
`NoSQLError` hierarchy.
"""

from .errors import (
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
