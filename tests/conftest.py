"""Shared pytest fixtures for promoter-core tests.

NOTE: Do NOT add __init__.py to test directories - pytest uses importlib mode
which can cause namespace collisions with __init__.py files.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import structlog

from promoter_core.telemetry.metrics import set_promotion_metrics
from promoter_core.telemetry.tracing import reset_tracer

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def reset_telemetry() -> Generator[None, None, None]:
    """Reset structlog configuration, cached tracers and the metrics singleton.

    CLI tests call configure_logging() against CliRunner's temporary stderr;
    resetting keeps later tests from logging into a closed stream.
    """
    yield
    structlog.reset_defaults()
    reset_tracer()
    set_promotion_metrics(None)


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio only."""
    return "asyncio"
