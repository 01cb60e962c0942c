"""Shared fixtures for Backup Ticker tests."""

import logging

import pytest

from app_config import AppConfig
from app_core import FakeClock, Scheduler
from app_store import InMemoryStateStore
from app_trigger import CallableTrigger

TICKS = 20


class CountingTrigger(CallableTrigger):
    """Trigger that records calls and returns scripted results (True once exhausted)."""

    def __init__(self, results=None):
        self.calls = 0
        self.results = list(results or [])
        super().__init__(self._next, name="counting")

    def _next(self):
        self.calls += 1
        if self.results:
            return self.results.pop(0)
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def trigger():
    return CountingTrigger()


@pytest.fixture
def config():
    return AppConfig(auto_backup_times=4, ticks_per_second=TICKS)


@pytest.fixture
def make_scheduler(config, store, trigger, clock):
    """Factory so tests can build a second scheduler on the same store (a restart)."""

    def _make(**overrides):
        kwargs = dict(config=config, store=store, trigger=trigger, clock=clock)
        kwargs.update(overrides)
        return Scheduler(**kwargs)

    return _make


@pytest.fixture
def scheduler(make_scheduler):
    return make_scheduler()


@pytest.fixture
def restore_root_logging():
    """LoggingManager replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def tick(scheduler, count):
    """Deliver count ticks; return how many of them fired a backup."""
    return sum(1 for _ in range(count) if scheduler.on_tick())
