# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Operation descriptors.

An `Operation` is the immutable record of one requested API call: what kind
of call it is, which table it targets, its parameters and its effective
options (timeout already resolved). The executor, classifier, retry engine,
rate limiter and every error leaving the driver refer to the same object.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Final

from ..core.utils import nanoid

__all__ = ["OpCategory", "OpKind", "Operation"]


class OpCategory(str, Enum):
    DATA = "data"
    QUERY = "query"
    TABLE_DDL = "table_ddl"
    METADATA = "metadata"
    ADMIN = "admin"


class OpKind(str, Enum):
    TABLE_DDL = "table_ddl"
    SET_TABLE_LIMITS = "set_table_limits"
    GET_TABLE = "get_table"
    GET_TABLE_USAGE = "get_table_usage"
    GET_INDEXES = "get_indexes"
    LIST_TABLES = "list_tables"
    GET = "get"
    PUT = "put"
    DELETE = "delete"
    MULTI_DELETE = "multi_delete"
    WRITE_MULTIPLE = "write_multiple"
    PREPARE = "prepare"
    QUERY = "query"
    ADMIN_DDL = "admin_ddl"
    ADMIN_STATUS = "admin_status"

    @property
    def category(self) -> OpCategory:
        return _CATEGORY[self]

    @property
    def retry_allowed(self) -> bool:
        """False for metadata/DDL calls: only transient-by-nature errors are retried for them."""
        return self not in _NO_RETRY

    @property
    def supports_rate_limiting(self) -> bool:
        return self in _RATE_LIMITED


_CATEGORY: Final[dict[OpKind, OpCategory]] = {
    OpKind.TABLE_DDL: OpCategory.TABLE_DDL,
    OpKind.SET_TABLE_LIMITS: OpCategory.TABLE_DDL,
    OpKind.GET_TABLE: OpCategory.METADATA,
    OpKind.GET_TABLE_USAGE: OpCategory.METADATA,
    OpKind.GET_INDEXES: OpCategory.METADATA,
    OpKind.LIST_TABLES: OpCategory.METADATA,
    OpKind.GET: OpCategory.DATA,
    OpKind.PUT: OpCategory.DATA,
    OpKind.DELETE: OpCategory.DATA,
    OpKind.MULTI_DELETE: OpCategory.DATA,
    OpKind.WRITE_MULTIPLE: OpCategory.DATA,
    OpKind.PREPARE: OpCategory.QUERY,
    OpKind.QUERY: OpCategory.QUERY,
    OpKind.ADMIN_DDL: OpCategory.ADMIN,
    OpKind.ADMIN_STATUS: OpCategory.ADMIN,
}

_NO_RETRY: Final[frozenset[OpKind]] = frozenset(
    {
        OpKind.TABLE_DDL,
        OpKind.SET_TABLE_LIMITS,
        OpKind.GET_TABLE,
        OpKind.GET_TABLE_USAGE,
        OpKind.GET_INDEXES,
        OpKind.LIST_TABLES,
        OpKind.ADMIN_DDL,
    }
)

_RATE_LIMITED: Final[frozenset[OpKind]] = frozenset(
    {
        OpKind.GET,
        OpKind.PUT,
        OpKind.DELETE,
        OpKind.MULTI_DELETE,
        OpKind.WRITE_MULTIPLE,
        OpKind.PREPARE,
        OpKind.QUERY,
    }
)

_EMPTY: Final[Mapping[str, Any]] = MappingProxyType({})


def _freeze(m: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not m:
        return _EMPTY
    return MappingProxyType({k: v for k, v in m.items() if v is not None})


@dataclass(frozen=True)
class Operation:
    """
    Attributes:
        kind: What the call does.
        table_name: Target table (None for admin/list calls).
        params: Call arguments (row, key, statement, ...), read-only.
        options: Effective options after defaults were applied, read-only.
            Always contains `timeout_ms`.
        op_id: Client-side correlation id used in logs.
    """

    kind: OpKind
    table_name: str | None = None
    params: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    options: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    op_id: str = field(default_factory=lambda: nanoid(12))

    @classmethod
    def create(
        cls,
        kind: OpKind,
        table_name: str | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Operation:
        return cls(kind=kind, table_name=table_name, params=_freeze(params), options=_freeze(options))

    def with_options(self, **options: Any) -> Operation:
        """New descriptor (same op_id) with some options replaced."""
        merged = {**self.options, **options}
        return Operation(
            kind=self.kind,
            table_name=self.table_name,
            params=self.params,
            options=_freeze(merged),
            op_id=self.op_id,
        )

    @property
    def timeout_ms(self) -> int:
        return int(self.options["timeout_ms"])

    @property
    def request_timeout_ms(self) -> int:
        """Timeout for the attempt being sent: what is left of `timeout_ms`, set by the executor per attempt."""
        return int(self.options.get("request_timeout_ms", self.options["timeout_ms"]))

    @property
    def category(self) -> OpCategory:
        return self.kind.category

    @property
    def retry_allowed(self) -> bool:
        return self.kind.retry_allowed

    @property
    def supports_rate_limiting(self) -> bool:
        return self.kind.supports_rate_limiting

    def does_reads(self) -> bool:
        k = self.kind
        if k in (OpKind.GET, OpKind.DELETE, OpKind.MULTI_DELETE, OpKind.PREPARE, OpKind.QUERY):
            return True
        if k is OpKind.PUT:
            o = self.options
            return bool(o.get("if_absent") or o.get("if_present") or o.get("match_version") is not None)
        if k is OpKind.WRITE_MULTIPLE:
            return any(w.does_reads for w in self.params.get("operations", ()))
        return False

    def does_writes(self) -> bool:
        k = self.kind
        if k in (OpKind.PUT, OpKind.DELETE, OpKind.MULTI_DELETE, OpKind.WRITE_MULTIPLE):
            return True
        if k is OpKind.QUERY:
            stmt = self.params.get("prepared")
            return bool(stmt is not None and getattr(stmt, "is_update", False))
        return False

    def __repr__(self) -> str:
        return f"Operation({self.kind.value}, table={self.table_name!r}, op_id={self.op_id})"
