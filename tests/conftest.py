"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A frozen clock
- A fully wired saga over in-memory repositories and fakes
"""

import pytest

from tests.fakes import FrozenClock, SagaHarness, make_harness


@pytest.fixture
def harness() -> SagaHarness:
    """Saga wired to in-memory repositories and stateful fakes."""
    return make_harness()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()
