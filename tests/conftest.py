"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fakes import FakeClock, FakeProviders

from insight_core.adapters.outbound.persistence import MemoryInsightStore
from insight_core.shared.providers.retry import RetryPolicy


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay_s=0.0, max_delay_s=0.0)


@pytest.fixture
def store() -> MemoryInsightStore:
    return MemoryInsightStore()
