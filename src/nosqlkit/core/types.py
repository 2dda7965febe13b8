from __future__ import annotations

"""
nosqlkit.core.types
===================

Shared aliases and service limits. No imports from the rest of the package.
"""

from collections.abc import Mapping
from typing import Any, Final

# Rows and primary keys are plain mappings of field name -> value.
Row = dict[str, Any]
Key = Mapping[str, Any]

Millis = int
TimestampMs = int  # wall-clock epoch (ms)
MonotonicMs = int  # process-local monotonic time (ms)

# ---- service limits ----------------------------------------------------------

BATCH_REQUEST_SIZE_LIMIT: Final[int] = 25 * 1024 * 1024
BATCH_OP_NUMBER_LIMIT: Final[int] = 50
READ_KB_LIMIT: Final[int] = 2048
WRITE_KB_LIMIT: Final[int] = 2048

# Upper bound on a single request sent to the service, whatever the operation timeout.
MAX_REQUEST_TIMEOUT_MS: Final[int] = 30_000

# Usage records per page when iterating table usage.
TABLE_USAGE_PAGE_LIMIT: Final[int] = 1440

# ---- id / hash defaults ------------------------------------------------------

DEFAULT_BLAKE2_DIGEST_SIZE: Final[int] = 20
DEFAULT_NANOID_ALPHABET: Final[str] = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz-"
DEFAULT_NANOID_SIZE: Final[int] = 21


__all__ = [
    "Row",
    "Key",
    "Millis",
    "TimestampMs",
    "MonotonicMs",
    "BATCH_REQUEST_SIZE_LIMIT",
    "BATCH_OP_NUMBER_LIMIT",
    "READ_KB_LIMIT",
    "WRITE_KB_LIMIT",
    "MAX_REQUEST_TIMEOUT_MS",
    "TABLE_USAGE_PAGE_LIMIT",
    "DEFAULT_BLAKE2_DIGEST_SIZE",
    "DEFAULT_NANOID_ALPHABET",
    "DEFAULT_NANOID_SIZE",
]
