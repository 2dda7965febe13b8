from __future__ import annotations

"""
nosqlkit.observability.tracing
==============================

OpenTelemetry instrumentation for client calls.

- `trace(name)` wraps a function or coroutine in a span. Without a configured
  tracer provider the OpenTelemetry API hands out no-op spans.
- `setup_tracing()` installs an SDK tracer provider, optionally with an exporter.
- Failed calls record the exception and the driver error code on the span.

Usage:
    setup_tracing(service_name="orders-api", exporter=ConsoleSpanExporter())
    @trace("nosql.get")
    async def get(...): ...
"""

import functools
import inspect
from collections.abc import Callable
from typing import Any, TypeVar, cast

from opentelemetry import trace as otel_trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace import Status, StatusCode

from ..core.logging import get_logger

__all__ = ["setup_tracing", "trace"]

_log = get_logger("observability.tracing")
_F = TypeVar("_F", bound=Callable[..., Any])


def setup_tracing(*, service_name: str, exporter: SpanExporter | None = None) -> TracerProvider:
    """
    Configure the global tracer provider.

    Args:
        service_name: logical service name for resources.
        exporter: optional span exporter; if None, spans are created but not exported.
    """
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    otel_trace.set_tracer_provider(provider)
    _log.info("otel tracing configured", service_name=service_name, exporter=type(exporter).__name__ if exporter else None)
    return provider


def _record_failure(span: Any, exc: BaseException) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))
    code = getattr(exc, "code", None)
    if code is not None:
        span.set_attribute("nosql.error_code", getattr(code, "name", str(code)))


def trace(name: str) -> Callable[[_F], _F]:
    """Decorator to trace function execution with a span named `name` (sync or async)."""

    def _decorator(func: _F) -> _F:
        tracer = otel_trace.get_tracer("nosqlkit")

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _aw(*args: Any, **kwargs: Any):
                with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _record_failure(span, e)
                        raise

            return cast(_F, _aw)

        @functools.wraps(func)
        def _sw(*args: Any, **kwargs: Any):
            with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise

        return cast(_F, _sw)

    return _decorator
