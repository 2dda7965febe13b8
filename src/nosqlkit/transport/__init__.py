# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from .base import AuthorizationProvider, StatusLookup, Transport

__all__ = ["AuthorizationProvider", "StatusLookup", "Transport"]
