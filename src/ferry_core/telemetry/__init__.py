"""Telemetry for ferry-core: OpenTelemetry spans and structured logging.

Example:
    >>> from ferry_core.telemetry import configure_logging, create_span
    >>> configure_logging(log_level="INFO")
    >>> with create_span("ferry.promote"):
    ...     pass
"""

from __future__ import annotations

from ferry_core.telemetry.logging import add_trace_context, configure_logging
from ferry_core.telemetry.sanitization import sanitize_error_message
from ferry_core.telemetry.tracing import create_span, get_tracer, set_tracer

__all__ = [
    "add_trace_context",
    "configure_logging",
    "create_span",
    "get_tracer",
    "sanitize_error_message",
    "set_tracer",
]
