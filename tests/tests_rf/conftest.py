#!/usr/bin/env python3
"""Fixtures for testing."""

import time
from collections.abc import AsyncIterator, Callable, Iterator

import pytest

from datapoint_rf import Engine, MemoryStateStore
from datapoint_tx.retry import RetryPolicy
from tests_rf.helpers import NOW, FakeDevices

MAX_TIMEOUT = 0.1  # secs, the most a test waits for an unanswered query


@pytest.fixture(autouse=True)
def patches_for_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("datapoint_rf.engine._now", lambda: NOW)
    monkeypatch.setattr(RetryPolicy, "delay", lambda self, attempt, rand=None: 0.001)
    monkeypatch.setattr(
        RetryPolicy, "timeout", property(lambda self: min(self._timeout, MAX_TIMEOUT))
    )


@pytest.fixture()
def host_tz(monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[[str], None]]:
    """Set the host's local timezone (a POSIX TZ), for the duration of a test."""

    def set_tz(tz: str) -> None:
        monkeypatch.setenv("TZ", tz)
        time.tzset()

    yield set_tz

    monkeypatch.undo()
    time.tzset()


@pytest.fixture()
def devices() -> FakeDevices:
    return FakeDevices("temperature", "humidity")


@pytest.fixture()
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture()
async def engine(devices: FakeDevices, store: MemoryStateStore) -> AsyncIterator[Engine]:
    engine = Engine(
        devices.send_bytes,
        devices.write_attribute,
        devices.has_attribute,
        store=store,
        config={"time_double_send_delay": 0.05, "time_sync_push": False},
    )

    try:
        yield engine
    finally:
        engine.stop()
