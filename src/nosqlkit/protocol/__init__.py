# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Operation descriptors, typed results and fail-fast validation.
"""

from .operation import OpCategory, Operation, OpKind
from .validation import validate_operation

__all__ = ["OpCategory", "OpKind", "Operation", "validate_operation"]
