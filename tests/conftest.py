# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import scriptflow  # noqa: F401
except ImportError:
    raise ImportError("scriptflow is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from scriptflow.cache import InMemoryContentCache
from tests._scriptflow_helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock) -> InMemoryContentCache:
    return InMemoryContentCache(clock=clock)


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Document ids bound by one test must not leak into the next."""
    import structlog

    yield
    structlog.contextvars.clear_contextvars()
