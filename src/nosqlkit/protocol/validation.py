# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Fail-fast argument validation.

`validate_operation(op)` runs before an operation is dispatched; anything
wrong raises `NoSQLArgumentError` carrying the operation, and nothing is
sent to the service. Limits the service enforces more precisely (row and
key sizes) are left to the service.
"""

from collections.abc import Callable, Mapping
from typing import Any, Final

from ..api.errors import NoSQLArgumentError
from ..core.types import READ_KB_LIMIT, WRITE_KB_LIMIT
from .operation import Operation, OpKind
from .results import AdminResult, Consistency, ContinuationKey, FieldRange, PreparedStatement, TableLimits

__all__ = ["validate_operation"]

_MAX_TRACE_LEVEL: Final[int] = 32


def _fail(op: Operation, msg: str) -> NoSQLArgumentError:
    return NoSQLArgumentError(msg, operation=op)


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _pos_int(op: Operation, name: str, *, allow_zero: bool = False) -> None:
    v = op.options.get(name)
    if v is None:
        return
    if not _is_int(v) or v < 0 or (v == 0 and not allow_zero):
        raise _fail(op, f'Invalid "{name}" value: {v!r}')


def _kb_limit(op: Operation, name: str, limit: int) -> None:
    _pos_int(op, name)
    v = op.options.get(name)
    if v is not None and v > limit:
        raise _fail(op, f"{name} value {v} exceeds limit of {limit}")


def _table_name(op: Operation) -> None:
    if not isinstance(op.table_name, str) or not op.table_name:
        raise _fail(op, "Invalid table name: must be a non-empty string")


def _mapping_param(op: Operation, name: str) -> None:
    v = op.params.get(name)
    if not isinstance(v, Mapping) or not v:
        raise _fail(op, f"Invalid {name}: must be a non-empty mapping")


def _statement(op: Operation) -> None:
    stmt = op.params.get("statement")
    if not isinstance(stmt, str) or not stmt.strip():
        raise _fail(op, "Invalid statement: must be a non-empty string")


def _continuation_key(op: Operation) -> None:
    ck = op.options.get("continuation_key")
    if ck is not None and not isinstance(ck, ContinuationKey):
        raise _fail(op, f"Invalid continuation key: {type(ck).__name__}")


def _consistency(op: Operation) -> None:
    c = op.options.get("consistency")
    if c is not None and not isinstance(c, Consistency):
        raise _fail(op, f"Invalid consistency: {c!r}")


def _match_version(op: Operation) -> None:
    v = op.options.get("match_version")
    if v is not None and not isinstance(v, (bytes, bytearray)):
        raise _fail(op, "match_version must be a row version (bytes)")


# ---- per-kind checks ---------------------------------------------------------


def _check_get(op: Operation) -> None:
    _table_name(op)
    _mapping_param(op, "key")
    _consistency(op)


def _check_put(op: Operation) -> None:
    _table_name(op)
    _mapping_param(op, "row")
    _match_version(op)
    o = op.options
    if o.get("if_absent") and o.get("if_present"):
        raise _fail(op, "if_absent and if_present options are mutually exclusive")
    if o.get("if_absent") and o.get("match_version") is not None:
        raise _fail(op, "if_absent cannot be used together with match_version")
    if o.get("ttl_days") is not None and o.get("update_ttl_to_default"):
        raise _fail(op, "ttl_days and update_ttl_to_default are mutually exclusive")
    _pos_int(op, "ttl_days", allow_zero=True)


def _check_delete(op: Operation) -> None:
    _table_name(op)
    _mapping_param(op, "key")
    _match_version(op)


def _check_multi_delete(op: Operation) -> None:
    _table_name(op)
    _mapping_param(op, "key")
    fr = op.options.get("field_range")
    if fr is not None:
        if not isinstance(fr, FieldRange):
            raise _fail(op, "Invalid field range")
        if not fr.field_name:
            raise _fail(op, "Invalid field name in field range")
        if fr.start_with is None and fr.start_after is None and fr.end_with is None and fr.end_before is None:
            raise _fail(op, "Missing bounds in field range")
        if (fr.start_with is not None and fr.start_after is not None) or (
            fr.end_with is not None and fr.end_before is not None
        ):
            raise _fail(op, "Both inclusive and exclusive bound specified for one end of field range")
    _kb_limit(op, "max_write_kb", WRITE_KB_LIMIT)
    _continuation_key(op)


def _check_write_multiple(op: Operation) -> None:
    # Sub-operations are validated when the batch is prepared.
    _table_name(op)


def _check_prepare(op: Operation) -> None:
    _statement(op)


def _check_query(op: Operation) -> None:
    prepared = op.params.get("prepared")
    if prepared is None:
        _statement(op)
    elif not isinstance(prepared, PreparedStatement):
        raise _fail(op, "Invalid prepared statement")
    _pos_int(op, "limit")
    _kb_limit(op, "max_read_kb", READ_KB_LIMIT)
    _kb_limit(op, "max_write_kb", WRITE_KB_LIMIT)
    _pos_int(op, "max_memory_mb")
    _pos_int(op, "trace_level", allow_zero=True)
    if (op.options.get("trace_level") or 0) > _MAX_TRACE_LEVEL:
        raise _fail(op, f"trace_level cannot exceed {_MAX_TRACE_LEVEL}")
    _consistency(op)
    _continuation_key(op)


def _check_table_ddl(op: Operation) -> None:
    _statement(op)
    limits = op.options.get("table_limits")
    if limits is not None and not isinstance(limits, TableLimits):
        raise _fail(op, "Invalid table limits")


def _check_set_table_limits(op: Operation) -> None:
    _table_name(op)
    if not isinstance(op.params.get("table_limits"), TableLimits):
        raise _fail(op, "Missing or invalid table limits")


def _check_get_table(op: Operation) -> None:
    _table_name(op)


def _check_table_usage(op: Operation) -> None:
    _table_name(op)
    _pos_int(op, "limit")
    _pos_int(op, "start_index", allow_zero=True)
    start, end = op.options.get("start_time_ms"), op.options.get("end_time_ms")
    for name, v in (("start_time_ms", start), ("end_time_ms", end)):
        if v is not None and not _is_int(v):
            raise _fail(op, f"Invalid {name}: {v!r}")
    if start is not None and end is not None and start > end:
        raise _fail(op, "start_time_ms cannot be greater than end_time_ms")


def _check_get_indexes(op: Operation) -> None:
    _table_name(op)
    name = op.options.get("index_name")
    if name is not None and (not isinstance(name, str) or not name):
        raise _fail(op, "Invalid index name")


def _check_list_tables(op: Operation) -> None:
    _pos_int(op, "start_index", allow_zero=True)
    _pos_int(op, "limit", allow_zero=True)


def _check_admin_ddl(op: Operation) -> None:
    _statement(op)


def _check_admin_status(op: Operation) -> None:
    res = op.params.get("admin_result")
    if not isinstance(res, AdminResult):
        raise _fail(op, "Invalid admin result")
    if not res.operation_id:
        raise _fail(op, "Admin result has no operation id")


_CHECKS: Final[dict[OpKind, Callable[[Operation], None]]] = {
    OpKind.GET: _check_get,
    OpKind.PUT: _check_put,
    OpKind.DELETE: _check_delete,
    OpKind.MULTI_DELETE: _check_multi_delete,
    OpKind.WRITE_MULTIPLE: _check_write_multiple,
    OpKind.PREPARE: _check_prepare,
    OpKind.QUERY: _check_query,
    OpKind.TABLE_DDL: _check_table_ddl,
    OpKind.SET_TABLE_LIMITS: _check_set_table_limits,
    OpKind.GET_TABLE: _check_get_table,
    OpKind.GET_TABLE_USAGE: _check_table_usage,
    OpKind.GET_INDEXES: _check_get_indexes,
    OpKind.LIST_TABLES: _check_list_tables,
    OpKind.ADMIN_DDL: _check_admin_ddl,
    OpKind.ADMIN_STATUS: _check_admin_status,
}


def validate_operation(op: Operation) -> Operation:
    timeout = op.options.get("timeout_ms")
    if not _is_int(timeout) or timeout <= 0:
        raise _fail(op, f'Invalid "timeout_ms" value: {timeout!r}')
    _CHECKS[op.kind](op)
    return op
