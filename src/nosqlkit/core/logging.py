from __future__ import annotations

"""
nosqlkit.core.logging
=====================

Structured logging for the driver, on top of the standard `logging` module.

The `nosqlkit` logger carries a NullHandler, so the driver prints nothing
until the application opts in (`enable_stdout_logging`, `configure_from_env`
or `observability.log_config.setup_logging`).

Every executing call runs inside `log_context(op=..., table=..., op_id=...)`;
records emitted by the executor, retry engine, rate limiter and poller carry
those fields without passing them around.

    log = get_logger("executor")
    log.debug("retrying operation", code="TABLE_BUSY", delay_ms=1200)
"""

import contextvars
import json
import logging
import os
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
    "warn_once",
]

LOGGER_NAME: Final[str] = "nosqlkit"

_ctx: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar("nosqlkit_log_ctx", default={})


def _merged(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {**_ctx.get(), **{k: v for k, v in fields.items() if v is not None}}


def bind_context(**fields: Any) -> None:
    """Add fields to the log context of the current task for good; None values are ignored."""
    _ctx.set(_merged(fields))


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Add fields to the log context for the duration of the block."""
    token = _ctx.set(_merged(fields))
    try:
        yield
    finally:
        _ctx.reset(token)


# ---- records -----------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

# Shown inline by the human formatter, in this order.
_INLINE_KEYS: Final[tuple[str, ...]] = ("op", "table", "op_id", "attempt")


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context and `extra=` fields are top-level keys."""

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")
        doc: dict[str, Any] = {
            "ts": ts.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for k, v in {**_ctx.get(), **_extra_fields(record)}.items():
            doc.setdefault(k, v)
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            doc["error"] = {"type": type(exc).__name__, "message": str(exc)}
            if self.include_stack:
                doc["error"]["stack"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """`time LEVEL logger: message  [op=..., table=...] key=value ...`"""

    default_time_format = "%H:%M:%S"
    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record)} {record.levelname:<7} {record.name}: {record.getMessage()}"
        ctx = {**_ctx.get(), **_extra_fields(record)}
        inline = [f"{k}={ctx.pop(k)}" for k in _INLINE_KEYS if ctx.get(k) is not None]
        if inline:
            line += f"  [{', '.join(inline)}]"
        if ctx:
            line += " " + " ".join(f"{k}={v!r}" for k, v in ctx.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _KwExtraAdapter(logging.LoggerAdapter):
    """Accepts arbitrary keyword fields and moves them into `extra`."""

    _RESERVED: Final[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(kwargs.get("extra") or {})
        for key in [k for k in kwargs if k not in self._RESERVED]:
            # Clashing with a LogRecord attribute would make logging raise.
            name = f"field_{key}" if key in _RECORD_ATTRS else key
            extra.setdefault(name, kwargs.pop(key))
        kwargs["extra"] = extra
        return msg, kwargs


def _adapter(logger: logging.Logger | logging.LoggerAdapter | None) -> logging.LoggerAdapter:
    if isinstance(logger, logging.LoggerAdapter):
        return logger
    return _KwExtraAdapter(logger or logging.getLogger(LOGGER_NAME), {})


# ---- setup -------------------------------------------------------------------

_root = logging.getLogger(LOGGER_NAME)
_root.setLevel(logging.DEBUG)
if not any(isinstance(h, logging.NullHandler) for h in _root.handlers):
    _root.addHandler(logging.NullHandler())

# Handlers installed by enable_stdout_logging, tagged so they can be removed again.
_OWN_HANDLER: Final[str] = "_nosqlkit_stream"


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """`nosqlkit.<name>` logger that accepts keyword fields."""
    return _KwExtraAdapter(_root.getChild(name) if name else _root, {})


def _level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid level name: {level!r}")
    return resolved


def set_level(level: int | str) -> None:
    _root.setLevel(_level(level))


def _stream(stream: Any, level: int, fmt: logging.Formatter, *, lo: int = 0, hi: int = logging.CRITICAL) -> logging.Handler:
    h = logging.StreamHandler(stream)
    h.set_name(_OWN_HANDLER)
    h.setLevel(max(level, lo))
    h.setFormatter(fmt)
    if hi < logging.CRITICAL:
        h.addFilter(lambda r: r.levelno <= hi)
    return h


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Print driver logs to stdout (JSON by default, `pretty=True` for humans).
    With `route_errors_to_stderr`, ERROR and above go to stderr instead.
    Calling it again replaces the previous handlers.
    """
    lvl = _level(level)
    disable_stdout_logging()
    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    if route_errors_to_stderr:
        _root.addHandler(_stream(sys.stdout, lvl, fmt, hi=logging.WARNING))
        _root.addHandler(_stream(sys.stderr, lvl, fmt, lo=logging.ERROR))
    else:
        _root.addHandler(_stream(sys.stdout, lvl, fmt))


def disable_stdout_logging() -> None:
    for h in list(_root.handlers):
        if h.get_name() == _OWN_HANDLER:
            _root.removeHandler(h)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def configure_from_env() -> None:
    """
    NOSQLKIT_LOG_STDOUT   print logs (off by default)
    NOSQLKIT_LOG_LEVEL    DEBUG | INFO | WARNING | ... (default DEBUG)
    NOSQLKIT_LOG_PRETTY   human-readable instead of JSON
    NOSQLKIT_LOG_STACK    include stack traces in JSON errors
    """
    level = os.getenv("NOSQLKIT_LOG_LEVEL", "DEBUG")
    set_level(level)
    if not _env_flag("NOSQLKIT_LOG_STDOUT"):
        disable_stdout_logging()
        return
    pretty = _env_flag("NOSQLKIT_LOG_PRETTY")
    enable_stdout_logging(
        level=level,
        json_output=not pretty,
        include_stack=_env_flag("NOSQLKIT_LOG_STACK"),
        pretty=pretty,
    )


# ---- helpers -----------------------------------------------------------------

_warned: set[str] = set()
_warned_lock = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter | None,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **fields: Any,
) -> None:
    """Log `msg` the first time `code` is seen in this process; later calls are no-ops."""
    with _warned_lock:
        if code in _warned:
            return
        _warned.add(code)
    _adapter(logger).log(level, msg, code=code, **fields)


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
) -> Iterator[None]:
    """
    Log and suppress any `Exception` raised in the block.

        with swallow(logger=log, code="events.error", msg="Event listener failed"):
            listener(err, op)
    """
    try:
        yield
    except Exception:
        _adapter(logger).log(level, msg or "Suppressed exception", exc_info=True, code=code, **dict(extra or {}))
        if reraise:
            raise
