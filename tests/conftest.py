"""Root-level test configuration for ferry.

Unit tests live under tests/unit/, cross-module contracts under
tests/contract/. Fakes for external collaborators are provided by
tests/unit/conftest.py.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_telemetry() -> Generator[None, None, None]:
    """Reset the cached tracer and structlog configuration around each test."""
    from ferry_core.telemetry.tracing import set_tracer

    set_tracer(None)
    yield
    set_tracer(None)
    structlog.reset_defaults()
