# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Atomic multi-row writes.

`prepare_write_multiple` validates a batch before anything is sent and builds
its `Operation`; `decode_write_multiple` checks the service's answer against
the batch contract. The service applies all sub-operations or none: if a
sub-operation with abort-on-fail does not succeed, the result names that
sub-operation and nothing was written. Conditional failures are reported in
the result, never raised.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..api.errors import ErrorCode, NoSQLArgumentError, NoSQLProtocolError
from ..core.types import BATCH_OP_NUMBER_LIMIT, BATCH_REQUEST_SIZE_LIMIT
from ..core.utils import estimate_size
from ..protocol.operation import Operation, OpKind
from ..protocol.results import WriteMultipleResult, WriteOperation

__all__ = [
    "decode_write_multiple",
    "ops_from_keys",
    "ops_from_rows",
    "prepare_write_multiple",
]


def _ancestor(table_name: str) -> str:
    return table_name.split(".", 1)[0].lower()


def _coerce(op: Any, index: int) -> WriteOperation:
    if isinstance(op, WriteOperation):
        return op
    if isinstance(op, Mapping):
        try:
            return WriteOperation(**op)
        except (TypeError, ValueError) as e:
            raise NoSQLArgumentError(f"Invalid sub-operation at index {index}: {e}", cause=e) from e
    raise NoSQLArgumentError(f"Invalid sub-operation at index {index}: expected a mapping, got {type(op).__name__}")


def _check_sub_op(w: WriteOperation, index: int) -> None:
    if (w.put is None) == (w.delete is None):
        raise NoSQLArgumentError(f"Sub-operation at index {index} must contain exactly one of put or delete")
    if w.put is not None:
        if w.if_absent and w.if_present:
            raise NoSQLArgumentError(f"Sub-operation at index {index}: if_absent and if_present are exclusive")
        if w.if_absent and w.match_version is not None:
            raise NoSQLArgumentError(f"Sub-operation at index {index}: if_absent cannot be used with match_version")
        if w.ttl_days is not None and w.update_ttl_to_default:
            raise NoSQLArgumentError(f"Sub-operation at index {index}: ttl_days and update_ttl_to_default are exclusive")
    elif w.if_absent or w.if_present:
        raise NoSQLArgumentError(f"Sub-operation at index {index}: if_absent/if_present only apply to put")


def prepare_write_multiple(
    table_name: str | None,
    operations: Sequence[WriteOperation | Mapping[str, Any]],
    *,
    options: Mapping[str, Any],
) -> Operation:
    """
    Validate a batch and build its descriptor.

    Sub-operations inherit `abort_on_fail` and `table_name` from the batch
    when they do not set them. All tables in one batch must share the same
    top-level ancestor table.
    """
    if not isinstance(operations, Sequence) or isinstance(operations, (str, bytes)):
        raise NoSQLArgumentError("operations must be a sequence of sub-operations")
    if not operations:
        raise NoSQLArgumentError("operations must not be empty")
    if len(operations) > BATCH_OP_NUMBER_LIMIT:
        raise NoSQLArgumentError(
            f"Number of operations {len(operations)} exceeds the limit of {BATCH_OP_NUMBER_LIMIT}",
            code=ErrorCode.BATCH_OP_NUMBER_LIMIT_EXCEEDED,
        )

    batch_abort = bool(options.get("abort_on_fail", False))
    prepared: list[WriteOperation] = []
    size = 0
    for i, raw in enumerate(operations):
        w = _coerce(raw, i)
        _check_sub_op(w, i)
        update: dict[str, Any] = {}
        if w.abort_on_fail is None:
            update["abort_on_fail"] = batch_abort
        if w.table_name is None:
            if not table_name:
                raise NoSQLArgumentError(f"Sub-operation at index {i} has no table name")
            update["table_name"] = table_name
        if update:
            w = w.model_copy(update=update)
        size += estimate_size(w.put if w.put is not None else w.delete)
        prepared.append(w)

    ancestors = {_ancestor(w.table_name) for w in prepared}
    if len(ancestors) > 1:
        raise NoSQLArgumentError(f"All sub-operations must share one ancestor table, got {sorted(ancestors)}")
    if size > BATCH_REQUEST_SIZE_LIMIT:
        raise NoSQLArgumentError(
            f"Batch size {size} bytes exceeds the limit of {BATCH_REQUEST_SIZE_LIMIT} bytes",
            code=ErrorCode.REQUEST_SIZE_LIMIT_EXCEEDED,
        )

    return Operation.create(
        OpKind.WRITE_MULTIPLE,
        table_name or prepared[0].table_name,
        params={"operations": tuple(prepared)},
        options=options,
    )


def decode_write_multiple(op: Operation, res: WriteMultipleResult) -> WriteMultipleResult:
    """Check the batch result against its descriptor; protocol violations raise `NoSQLProtocolError`."""
    count = len(op.params["operations"])
    has_results = res.results is not None
    has_failure = res.failed_op_index is not None
    if has_results == has_failure:
        raise NoSQLProtocolError(
            "Batch result must contain either per-operation results or a failed operation, not both or neither",
            operation=op,
        )
    if has_results and len(res.results) != count:
        raise NoSQLProtocolError(
            f"Batch result has {len(res.results)} results for {count} operations", operation=op
        )
    if has_failure and not (0 <= res.failed_op_index < count):
        raise NoSQLProtocolError(
            f"Failed operation index {res.failed_op_index} is out of range for {count} operations", operation=op
        )
    return res


def ops_from_rows(rows: Iterable[Mapping[str, Any]], **sub_options: Any) -> list[WriteOperation]:
    return [WriteOperation(put=dict(row), **sub_options) for row in rows]


def ops_from_keys(keys: Iterable[Mapping[str, Any]], **sub_options: Any) -> list[WriteOperation]:
    return [WriteOperation(delete=dict(key), **sub_options) for key in keys]
