# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Collaborator protocols for the execution layer.

This module defines:
- `Transport`: sends one `Operation` to the service and returns its typed
  result, or raises a `NoSQLError` / networking exception. Encoding requests
  and decoding responses is entirely its concern.
- `AuthorizationProvider`: supplies the authorization string for a request
  and can be told that the service rejected it.
- `StatusLookup`: the two status queries the completion poller needs. With
  `missing_ok=True` a table lookup returns None for a table that does not
  exist instead of raising TABLE_NOT_FOUND.

Concrete implementations (HTTP transports, cloud signers, on-premise token
providers) live outside the core and must satisfy these protocols.
"""

from typing import Any, Protocol, runtime_checkable

from ..protocol.operation import Operation
from ..protocol.results import AdminResult, TableResult

__all__ = ["AuthorizationProvider", "StatusLookup", "Transport"]


@runtime_checkable
class Transport(Protocol):
    """
    Executes a single attempt of an operation.

    Implementations should:
      - honour `op.request_timeout_ms` as the timeout of this attempt (the
        executor sets it to what is left of `op.timeout_ms`),
      - raise `NoSQLError` subclasses for service-reported failures,
      - let `ConnectionError` / `OSError` / `TimeoutError` escape (or wrap them
        in `NoSQLNetworkError`) for failures to reach the service,
      - never retry on their own; the executor owns the retry loop.
    """

    async def execute(self, op: Operation, *, authorization: str | None = None) -> Any: ...
    async def close(self) -> None: ...


@runtime_checkable
class AuthorizationProvider(Protocol):
    async def get_authorization(self, op: Operation) -> str | None: ...

    def invalidate(self) -> None:
        """Drop any cached authorization; called after the service rejects it."""
        ...


@runtime_checkable
class StatusLookup(Protocol):
    async def get_table_status(
        self,
        table_name: str,
        *,
        operation_id: str | None = None,
        timeout_ms: int | None = None,
        missing_ok: bool = False,
    ) -> TableResult | None: ...

    async def get_admin_status(self, admin_result: AdminResult, *, timeout_ms: int | None = None) -> AdminResult: ...
