#!/usr/bin/env python3
"""DataPoint RF - a per-device key-value store of the persisted protocol state.

The record of each device is `{"mode": str, "mapping": {...}}`; the last write wins.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Protocol, TypedDict

from . import exceptions as exc
from .const import SZ_MAPPING, SZ_MODE

_LOGGER = logging.getLogger(__name__)


class DeviceRecordT(TypedDict, total=False):
    mode: str
    mapping: dict[str, dict[str, Any]]


class StateStore(Protocol):
    """The interface of a store, keyed by device id."""

    def load(self, device_id: str) -> DeviceRecordT | None: ...

    def save(self, device_id: str, record: DeviceRecordT) -> None: ...

    def delete(self, device_id: str) -> None: ...


class MemoryStateStore:
    """A store that lives (only) as long as the process."""

    def __init__(self) -> None:
        self._records: dict[str, DeviceRecordT] = {}

    def __repr__(self) -> str:
        return f"MemoryStateStore({len(self._records)} devices)"

    def load(self, device_id: str) -> DeviceRecordT | None:
        if (record := self._records.get(device_id)) is None:
            return None
        return json.loads(json.dumps(record))  # type: ignore[no-any-return]

    def save(self, device_id: str, record: DeviceRecordT) -> None:
        try:
            record = json.loads(json.dumps(record))
        except (TypeError, ValueError) as err:
            raise exc.StoreError(f"{device_id}: record is not serialisable: {err}") from err
        self._records.setdefault(device_id, {}).update(record)

    def delete(self, device_id: str) -> None:
        self._records.pop(device_id, None)


class SqliteStateStore:
    """A simple SQLite3 database of the persisted device state (in memory by default)."""

    def __init__(self, path: str = ":memory:") -> None:
        """Instantiate a state database."""

        self._path = path
        try:
            self._cx = sqlite3.connect(path)
            self._cu = self._cx.cursor()
            self._setup_db_schema()
        except sqlite3.Error as err:
            raise exc.StoreError(f"{path}: unable to open the state store: {err}") from err

    def __repr__(self) -> str:
        return f"SqliteStateStore({self._path})"

    def _setup_db_schema(self) -> None:
        """Setup the database schema."""

        self._cu.execute(
            """
            CREATE TABLE IF NOT EXISTS device_state (
                device_id  TEXT NOT NULL PRIMARY KEY,
                mode       TEXT,
                mapping    TEXT NOT NULL DEFAULT '{}'
            )
            """
        )
        self._cx.commit()

    def load(self, device_id: str) -> DeviceRecordT | None:
        """Return the persisted record of a device, if any."""

        try:
            self._cu.execute(
                "SELECT mode, mapping FROM device_state WHERE device_id = ?", (device_id,)
            )
            row = self._cu.fetchone()
        except sqlite3.Error as err:
            raise exc.StoreError(f"{device_id}: unable to load: {err}") from err

        if row is None:
            return None

        record: DeviceRecordT = {}
        if row[0] is not None:
            record[SZ_MODE] = row[0]
        try:
            record[SZ_MAPPING] = json.loads(row[1])
        except ValueError as err:
            raise exc.StoreError(f"{device_id}: mapping is corrupt: {err}") from err
        return record

    def save(self, device_id: str, record: DeviceRecordT) -> None:
        """Persist the record of a device (merged with any existing record)."""

        try:
            mapping = json.dumps(record[SZ_MAPPING]) if SZ_MAPPING in record else None
        except (TypeError, ValueError) as err:
            raise exc.StoreError(f"{device_id}: mapping is not serialisable: {err}") from err

        sql = """
            INSERT INTO device_state (device_id, mode, mapping)
            VALUES (?, ?, COALESCE(?, '{}'))
            ON CONFLICT (device_id) DO UPDATE SET
                mode = COALESCE(excluded.mode, mode),
                mapping = COALESCE(?, mapping)
        """

        try:
            self._cu.execute(sql, (device_id, record.get(SZ_MODE), mapping, mapping))
            self._cx.commit()
        except sqlite3.Error as err:
            self._cx.rollback()
            raise exc.StoreError(f"{device_id}: unable to save: {err}") from err

    def delete(self, device_id: str) -> None:
        try:
            self._cu.execute("DELETE FROM device_state WHERE device_id = ?", (device_id,))
            self._cx.commit()
        except sqlite3.Error as err:
            self._cx.rollback()
            raise exc.StoreError(f"{device_id}: unable to delete: {err}") from err

    def close(self) -> None:
        self._cx.commit()
        self._cx.close()
