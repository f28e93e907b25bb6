"""Shared pytest fixtures for intent-engine tests.

All stores run against an in-memory backend with a controllable clock so
that no test touches the user's state database.
"""

import copy
from typing import Any, Dict

import pytest

from intent_engine.config import DEFAULT_CONFIG
from intent_engine.engine import IntentEngine
from intent_engine.learning import LearningStore
from intent_engine.outcomes import OutcomeStore
from intent_engine.preferences import PreferenceStore
from intent_engine.storage import MemoryBackend

# 2024-01-01T00:00:00Z
START_TIME = 1_704_067_200.0


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now

    def advance_days(self, days: float) -> float:
        return self.advance(days * 24 * 60 * 60)


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Dict[str, Any]:
    """A private copy of the defaults, safe to mutate per test."""
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def outcome_store(memory_backend, config, clock) -> OutcomeStore:
    return OutcomeStore(memory_backend, config, clock=clock)


@pytest.fixture
def learning_store(memory_backend, config, clock) -> LearningStore:
    return LearningStore(memory_backend, config, clock=clock)


@pytest.fixture
def preference_store(memory_backend, config, clock) -> PreferenceStore:
    return PreferenceStore(memory_backend, config, clock=clock)


@pytest.fixture
def engine(memory_backend, config, clock) -> IntentEngine:
    return IntentEngine(memory_backend, config, clock=clock)
