"""
Unit tests for batch write preparation and result decoding.
"""

from __future__ import annotations

import pytest

from nosqlkit.api.errors import ErrorCode, NoSQLArgumentError, NoSQLOperationAbortedError, NoSQLProtocolError
from nosqlkit.protocol.operation import OpKind
from nosqlkit.protocol.results import WriteMultipleResult, WriteOperation, WriteOperationResult
from nosqlkit.runtime.batch import decode_write_multiple, ops_from_keys, ops_from_rows, prepare_write_multiple

pytestmark = [pytest.mark.unit]

_OPTS = {"timeout_ms": 1000}


def test_prepare_inherits_table_and_abort_flag():
    op = prepare_write_multiple(
        "users",
        [{"put": {"id": 1}}, WriteOperation(delete={"id": 2}, abort_on_fail=False)],
        options={**_OPTS, "abort_on_fail": True},
    )
    assert op.kind is OpKind.WRITE_MULTIPLE
    assert op.table_name == "users"
    subs = op.params["operations"]
    assert [w.table_name for w in subs] == ["users", "users"]
    assert [w.abort_on_fail for w in subs] == [True, False]
    assert op.does_reads() is True
    assert op.does_writes() is True


def test_parent_child_tables_share_ancestor():
    op = prepare_write_multiple(
        None,
        [{"put": {"id": 1}, "table_name": "users"}, {"put": {"id": 1, "aid": 1}, "table_name": "users.addresses"}],
        options=_OPTS,
    )
    assert op.table_name == "users"

    with pytest.raises(NoSQLArgumentError):
        prepare_write_multiple(
            None,
            [{"put": {"id": 1}, "table_name": "users"}, {"put": {"id": 1}, "table_name": "orders"}],
            options=_OPTS,
        )


@pytest.mark.parametrize(
    "ops",
    [
        [],
        [{}],
        [{"put": {"id": 1}, "delete": {"id": 1}}],
        [{"put": {"id": 1}, "if_absent": True, "if_present": True}],
        [{"put": {"id": 1}, "if_absent": True, "match_version": b"\x01"}],
        [{"put": {"id": 1}, "ttl_days": 3, "update_ttl_to_default": True}],
        [{"delete": {"id": 1}, "if_absent": True}],
        [{"put": {"id": 1}, "bogus": 1}],
        ["not a mapping"],
    ],
)
def test_invalid_batches_rejected_before_send(ops):
    with pytest.raises(NoSQLArgumentError):
        prepare_write_multiple("users", ops, options=_OPTS)


def test_batch_op_count_limit():
    with pytest.raises(NoSQLArgumentError) as ei:
        prepare_write_multiple("users", [{"put": {"id": i}} for i in range(51)], options=_OPTS)
    assert ei.value.code is ErrorCode.BATCH_OP_NUMBER_LIMIT_EXCEEDED
    op = prepare_write_multiple("users", [{"put": {"id": i}} for i in range(50)], options=_OPTS)
    assert len(op.params["operations"]) == 50


def test_batch_size_limit():
    big = "x" * (1024 * 1024)
    with pytest.raises(NoSQLArgumentError) as ei:
        prepare_write_multiple("users", [{"put": {"id": i, "blob": big}} for i in range(26)], options=_OPTS)
    assert ei.value.code is ErrorCode.REQUEST_SIZE_LIMIT_EXCEEDED


def test_decode_checks_contract():
    op = prepare_write_multiple("users", ops_from_rows([{"id": 1}, {"id": 2}]), options=_OPTS)
    ok = WriteMultipleResult(results=[WriteOperationResult(success=True)] * 2)
    assert decode_write_multiple(op, ok) is ok

    aborted = WriteMultipleResult(failed_op_index=1, failed_op_result=WriteOperationResult(success=False))
    assert decode_write_multiple(op, aborted).aborted
    with pytest.raises(NoSQLOperationAbortedError) as ei:
        aborted.raise_for_abort()
    assert ei.value.failed_op_index == 1

    for bad in (
        WriteMultipleResult(),
        WriteMultipleResult(results=[WriteOperationResult(success=True)]),
        WriteMultipleResult(results=[WriteOperationResult(success=True)] * 2, failed_op_index=0),
        WriteMultipleResult(failed_op_index=5),
    ):
        with pytest.raises(NoSQLProtocolError):
            decode_write_multiple(op, bad)


def test_ops_helpers():
    puts = ops_from_rows([{"id": 1}], if_absent=True)
    dels = ops_from_keys([{"id": 1}])
    assert puts[0].put == {"id": 1} and puts[0].if_absent
    assert dels[0].delete == {"id": 1}
