#!/usr/bin/env python3
"""DataPoint RF - Test the persisted state stores."""

from pathlib import Path

import pytest

from datapoint_rf import exceptions as exc
from datapoint_rf.store import MemoryStateStore, SqliteStateStore, StateStore

MAPPING = {"1": {"attribute": "temperature", "divide_by": 10.0}}


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest) -> StateStore:
    if request.param == "memory":
        return MemoryStateStore()
    return SqliteStateStore()


def test_store_roundtrip(store: StateStore) -> None:
    assert store.load("01:145038") is None

    store.save("01:145038", {"mode": "tuya_only", "mapping": MAPPING})

    assert store.load("01:145038") == {"mode": "tuya_only", "mapping": MAPPING}
    assert store.load("01:999999") is None


def test_store_merges(store: StateStore) -> None:
    store.save("01:145038", {"mapping": MAPPING})
    store.save("01:145038", {"mode": "hybrid"})

    assert store.load("01:145038") == {"mode": "hybrid", "mapping": MAPPING}

    store.save("01:145038", {"mode": "zcl_only"})  # the last write wins
    assert store.load("01:145038")["mode"] == "zcl_only"  # type: ignore[index]


def test_store_delete(store: StateStore) -> None:
    store.save("01:145038", {"mode": "tuya_only"})
    store.delete("01:145038")
    store.delete("01:145038")

    assert store.load("01:145038") is None


def test_store_not_serialisable(store: StateStore) -> None:
    with pytest.raises(exc.StoreError):
        store.save("01:145038", {"mapping": {"1": {"transform": object()}}})  # type: ignore[dict-item]


def test_sqlite_store_persists(tmp_path: Path) -> None:
    path = str(tmp_path / "state.db")

    store = SqliteStateStore(path)
    store.save("01:145038", {"mode": "tuya_only", "mapping": MAPPING})
    store.close()

    store = SqliteStateStore(path)
    assert store.load("01:145038") == {"mode": "tuya_only", "mapping": MAPPING}
    store.close()


def test_sqlite_store_bad_path(tmp_path: Path) -> None:
    with pytest.raises(exc.StoreError):
        SqliteStateStore(str(tmp_path / "no_such_dir" / "state.db"))
