from __future__ import annotations

import logging

import pytest

from services.rate_cache.store import RateCacheStore
from tests.fixtures.time import FakeTime
from tests.fixtures.timers import FakeTimerFactory


@pytest.fixture
def fake_time() -> FakeTime:
    """Provide a deterministic fake clock for time-sensitive tests."""

    return FakeTime()


@pytest.fixture
def timer_factory() -> FakeTimerFactory:
    """Timers that only fire when the test calls ``fire()``."""

    return FakeTimerFactory()


@pytest.fixture
def store(fake_time: FakeTime) -> RateCacheStore:
    return RateCacheStore(clock=fake_time)


@pytest.fixture
def restore_root_logger():
    """``configure_logging`` replaces root handlers; put the originals back."""

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
