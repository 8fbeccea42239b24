"""Shared fixtures."""

import pytest

from remotestate.engine import LockManager, MemoryLockBackend, MemoryStateStore, StateCoordinator

from tests.helpers import FakeClock, FakeMonotonic


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def store(clock):
    return MemoryStateStore(clock=clock)


@pytest.fixture
def locks(clock):
    return LockManager(MemoryLockBackend(), default_ttl=60, clock=clock)


@pytest.fixture
def coordinator(store, locks, monotonic):
    return StateCoordinator(store, locks, monotonic=monotonic)
