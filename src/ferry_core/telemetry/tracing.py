"""OpenTelemetry tracing utilities for ferry.

Provides the create_span() context manager used to instrument promotion
operations, and a cached, thread-safe tracer lookup.

The tracer is created lazily. If OpenTelemetry initialization fails the
module falls back to a NoOpTracer so promotions never fail because of
telemetry.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ferry_core.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

_TRACER_NAME = "ferry_core"

_tracer: Tracer | None = None
_tracer_init_failed = False
_lock = threading.Lock()


def get_tracer() -> Tracer:
    """Get the tracer instance for ferry telemetry.

    Returns:
        Cached tracer, or a NoOpTracer if initialization failed.
    """
    global _tracer, _tracer_init_failed

    if _tracer is not None:
        return _tracer
    if _tracer_init_failed:
        return trace.NoOpTracer()

    with _lock:
        if _tracer is not None:
            return _tracer
        try:
            _tracer = trace.get_tracer(_TRACER_NAME)
        except Exception:
            _tracer_init_failed = True
            return trace.NoOpTracer()
        return _tracer


def set_tracer(tracer: Tracer | None) -> None:
    """Set the module-level tracer (for testing).

    Args:
        tracer: Tracer instance to use, or None to reset.
    """
    global _tracer, _tracer_init_failed
    with _lock:
        _tracer = tracer
        _tracer_init_failed = False


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span as a context manager.

    Exceptions raised inside the block mark the span as failed with a
    sanitized message and are re-raised.

    Args:
        name: The name for the span.
        attributes: Optional attributes to set on the span. None values are
            skipped.

    Yields:
        The created span for additional attribute setting.

    Examples:
        >>> with create_span("ferry.promote", attributes={"ferry.app": "myapp"}) as span:
        ...     span.set_attribute("ferry.environment", "staging")
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            sanitized = sanitize_error_message(str(e))
            span.set_status(Status(StatusCode.ERROR, sanitized))
            span.set_attribute("exception.type", type(e).__name__)
            span.set_attribute("exception.message", sanitized)
            raise


__all__ = ["create_span", "get_tracer", "set_tracer"]
