# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Per-client observer channel.

Listeners are plain callables registered by event name. A listener that
raises is logged and skipped; it never affects the operation that emitted
the event.

Events:
  error(err, op)                    operation failed and will not be retried
  retryable(err, op, attempt)       operation failed and will be retried
  consumed_capacity(cc, op)         successful call reported consumed capacity
  table_state(table_name, state)    a table result was observed
"""

import logging
from collections.abc import Callable
from typing import Any, Final

from ..core.logging import get_logger, swallow

__all__ = ["EVENT_NAMES", "EventChannel"]

EVENT_NAMES: Final[frozenset[str]] = frozenset({"error", "retryable", "consumed_capacity", "table_state"})

_log = get_logger("events")

Listener = Callable[..., Any]


class EventChannel:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {name: [] for name in EVENT_NAMES}

    def _check(self, name: str) -> None:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown event {name!r}; expected one of {sorted(EVENT_NAMES)}")

    def on(self, name: str, listener: Listener) -> None:
        self._check(name)
        self._listeners[name].append(listener)

    def off(self, name: str, listener: Listener) -> None:
        self._check(name)
        try:
            self._listeners[name].remove(listener)
        except ValueError:
            pass

    def has_listeners(self, name: str) -> bool:
        return bool(self._listeners.get(name))

    def emit(self, name: str, *args: Any) -> None:
        for listener in list(self._listeners.get(name, ())):
            with swallow(logger=_log, level=logging.WARNING, code=f"events.{name}", msg="Event listener failed"):
                listener(*args)
