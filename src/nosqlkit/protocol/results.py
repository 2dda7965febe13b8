# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
nosqlkit result models
======================

Typed results returned by the transport and handed back to applications.

Design principles:
- Pydantic v2 models; data results are plain values, DDL/admin results are
  *pollable*: the completion poller adopts newer status snapshots into the
  same object so every holder of the reference observes completion.
- Row versions and continuation keys are opaque byte strings; the driver
  never parses them.
- All durations are milliseconds; KB/units follow the service's accounting.
"""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..api.errors import NoSQLOperationAbortedError
from ..core.types import Row

# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #


class TableState(str, Enum):
    ACTIVE = "ACTIVE"
    CREATING = "CREATING"
    DROPPED = "DROPPED"
    DROPPING = "DROPPING"
    UPDATING = "UPDATING"


class AdminState(str, Enum):
    COMPLETE = "COMPLETE"
    IN_PROGRESS = "IN_PROGRESS"
    FAILED = "FAILED"


class Consistency(str, Enum):
    ABSOLUTE = "ABSOLUTE"
    EVENTUAL = "EVENTUAL"


class CapacityMode(str, Enum):
    PROVISIONED = "PROVISIONED"
    ON_DEMAND = "ON_DEMAND"


# --------------------------------------------------------------------------- #
# Shared pieces
# --------------------------------------------------------------------------- #


class ConsumedCapacity(BaseModel):
    """Throughput consumed by one call, plus the time spent waiting on the client-side limiter."""

    read_kb: int = 0
    read_units: int = 0
    write_kb: int = 0
    write_units: int = 0
    read_rate_limit_delay_ms: int = 0
    write_rate_limit_delay_ms: int = 0

    def add(self, other: ConsumedCapacity | None) -> None:
        if other is None:
            return
        self.read_kb += other.read_kb
        self.read_units += other.read_units
        self.write_kb += other.write_kb
        self.write_units += other.write_units
        self.read_rate_limit_delay_ms += other.read_rate_limit_delay_ms
        self.write_rate_limit_delay_ms += other.write_rate_limit_delay_ms


class TableLimits(BaseModel):
    read_units: int = 0
    write_units: int = 0
    storage_gb: int = 0
    mode: CapacityMode = CapacityMode.PROVISIONED


class ContinuationKey(BaseModel):
    """
    Opaque resume token for paged reads and range deletes.

    Only equality is meaningful. A key belongs to the logical operation that
    produced it; passing it to a different query or range is not detected.
    """

    model_config = ConfigDict(frozen=True)

    raw: bytes

    def __repr__(self) -> str:
        return f"ContinuationKey(<{len(self.raw)} bytes>)"


# --------------------------------------------------------------------------- #
# Pollable results
# --------------------------------------------------------------------------- #

_DROP_TABLE_RE = re.compile(r"^\s*DROP\s+TABLE\s+", re.IGNORECASE)


class _Pollable(BaseModel):
    def adopt(self, snapshot: _Pollable) -> None:
        """Copy every field of a newer status snapshot into this object."""
        for name in type(self).model_fields:
            setattr(self, name, getattr(snapshot, name))


class TableResult(_Pollable):
    table_name: str
    state: TableState
    table_limits: TableLimits | None = None
    schema_text: str | None = None
    operation_id: str | None = None
    statement: str | None = None
    is_local_replica_initialized: bool | None = None
    consumed_capacity: ConsumedCapacity | None = None

    @property
    def is_drop(self) -> bool:
        return bool(self.statement and _DROP_TABLE_RE.match(self.statement))

    @property
    def target_state(self) -> TableState:
        """State that means "done" for the DDL that produced this result."""
        return TableState.DROPPED if self.is_drop else TableState.ACTIVE


class AdminResult(_Pollable):
    state: AdminState
    operation_id: str | None = None
    statement: str | None = None
    output: str | None = None


# --------------------------------------------------------------------------- #
# Data results
# --------------------------------------------------------------------------- #


class GetResult(BaseModel):
    row: Row | None = None
    version: bytes | None = None
    expiration_time_ms: int | None = None
    modification_time_ms: int | None = None
    consumed_capacity: ConsumedCapacity | None = None


class PutResult(BaseModel):
    success: bool
    version: bytes | None = None
    existing_row: Row | None = None
    existing_version: bytes | None = None
    generated_value: Any = None
    consumed_capacity: ConsumedCapacity | None = None


class DeleteResult(BaseModel):
    success: bool
    existing_row: Row | None = None
    existing_version: bytes | None = None
    consumed_capacity: ConsumedCapacity | None = None


class MultiDeleteResult(BaseModel):
    deleted_count: int = 0
    continuation_key: ContinuationKey | None = None
    consumed_capacity: ConsumedCapacity | None = None


class PreparedStatement(BaseModel):
    """
    Already-compiled statement handle. `compiled` is the service's opaque
    representation; the driver only carries it and the bound variables.
    """

    statement: str
    compiled: bytes | None = None
    table_name: str | None = None
    is_update: bool = False
    bindings: dict[str, Any] = Field(default_factory=dict)
    consumed_capacity: ConsumedCapacity | None = None

    def set(self, name: str, value: Any) -> PreparedStatement:
        self.bindings[name] = value
        return self

    def copy_statement(self) -> PreparedStatement:
        """Copy sharing the compiled form but with no bound variables."""
        return self.model_copy(update={"bindings": {}, "consumed_capacity": None})


class QueryResult(BaseModel):
    rows: list[Row] = Field(default_factory=list)
    continuation_key: ContinuationKey | None = None
    consumed_capacity: ConsumedCapacity | None = None


class TableUsageRecord(BaseModel):
    start_time_ms: int
    seconds_in_period: int = 60
    read_units: int = 0
    write_units: int = 0
    storage_gb: int = 0
    read_throttle_count: int = 0
    write_throttle_count: int = 0
    storage_throttle_count: int = 0
    max_shard_size_usage_percent: int = 0


class TableUsageResult(BaseModel):
    table_name: str
    usage_records: list[TableUsageRecord] = Field(default_factory=list)
    next_index: int = 0


class IndexInfo(BaseModel):
    index_name: str
    fields: list[str] = Field(default_factory=list)
    field_types: list[str | None] | None = None


class ListTablesResult(BaseModel):
    tables: list[str] = Field(default_factory=list)
    last_index: int = 0


class UserInfo(BaseModel):
    id: str
    name: str


# --------------------------------------------------------------------------- #
# Batch writes
# --------------------------------------------------------------------------- #


class WriteOperation(BaseModel):
    """
    One sub-operation of a batch write: exactly one of `put` (a row) or
    `delete` (a primary key). `table_name` is only needed when the batch spans
    parent/child tables.
    """

    model_config = ConfigDict(extra="forbid")

    put: Row | None = None
    delete: Row | None = None
    table_name: str | None = None
    abort_on_fail: bool | None = None
    if_absent: bool = False
    if_present: bool = False
    match_version: bytes | None = None
    return_existing: bool = False
    ttl_days: int | None = None
    update_ttl_to_default: bool = False
    exact_match: bool = False

    @property
    def does_reads(self) -> bool:
        if self.delete is not None:
            return True
        return self.if_absent or self.if_present or self.match_version is not None


class WriteOperationResult(BaseModel):
    success: bool
    version: bytes | None = None
    existing_row: Row | None = None
    existing_version: bytes | None = None
    generated_value: Any = None


class WriteMultipleResult(BaseModel):
    """
    Atomic batch outcome: either `results` (one per sub-operation, in order)
    or `failed_op_index` + `failed_op_result`, never both.
    """

    results: list[WriteOperationResult] | None = None
    failed_op_index: int | None = None
    failed_op_result: WriteOperationResult | None = None
    consumed_capacity: ConsumedCapacity | None = None

    @property
    def aborted(self) -> bool:
        return self.failed_op_index is not None

    def raise_for_abort(self) -> WriteMultipleResult:
        """Raise `NoSQLOperationAbortedError` if the batch was aborted, else return self."""
        if self.failed_op_index is not None:
            raise NoSQLOperationAbortedError(
                f"Batch aborted at sub-operation {self.failed_op_index}",
                failed_op_index=self.failed_op_index,
            )
        return self


# --------------------------------------------------------------------------- #
# Request inputs
# --------------------------------------------------------------------------- #


class FieldRange(BaseModel):
    """
    Range over one primary-key field for range deletes. Each end is either
    inclusive (`start_with` / `end_with`) or exclusive (`start_after` /
    `end_before`); at least one bound is required.
    """

    field_name: str
    start_with: Any = None
    start_after: Any = None
    end_with: Any = None
    end_before: Any = None
