#!/usr/bin/env python3
"""Fixtures for testing."""

import logging
import time
from collections.abc import Callable, Iterator

import pytest

from datapoint_tx.frame import FRAME_LOGGER


@pytest.fixture(autouse=True)
def restore_loggers() -> Iterator[None]:
    """Undo any logging config made by the CLI (which owns the root logger)."""

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level

    yield

    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)

    FRAME_LOGGER.propagate = True
    FRAME_LOGGER.setLevel(logging.NOTSET)
    for handler in FRAME_LOGGER.handlers[:]:
        FRAME_LOGGER.removeHandler(handler)
    for fltr in FRAME_LOGGER.filters[:]:
        FRAME_LOGGER.removeFilter(fltr)


@pytest.fixture()
def has_attrs() -> Callable[..., Callable[[str], bool]]:
    """Return a factory of has_attribute oracles, for a device with these attributes."""

    def factory(*attrs: str) -> Callable[[str], bool]:
        return lambda attr: attr in attrs

    return factory


@pytest.fixture(autouse=True)
def host_tz(monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[[str], None]]:
    """Pin the host's local timezone to UTC, unless a test sets another (POSIX TZ)."""

    def set_tz(tz: str) -> None:
        monkeypatch.setenv("TZ", tz)
        time.tzset()

    set_tz("UTC0")
    yield set_tz

    monkeypatch.undo()
    time.tzset()
