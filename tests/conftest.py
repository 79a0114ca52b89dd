"""
Shared test fixtures.
"""

from typing import List

import pytest

from dealflow.deals import DealLockRegistry
from dealflow.events import InMemoryEventSink
from dealflow.models import Deal
from dealflow.service import DealLifecycleService

from factories import FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def saved() -> List[Deal]:
    """Deals handed to the persistence callback."""
    return []


@pytest.fixture
def service(sink, saved, clock) -> DealLifecycleService:
    return DealLifecycleService(
        save=saved.append,
        sink=sink,
        locks=DealLockRegistry(),
        clock=clock,
    )
