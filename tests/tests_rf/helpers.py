#!/usr/bin/env python3
"""DataPoint RF - Test helpers: the fake collaborators of the engine."""

from datetime import UTC, datetime as dt
from typing import Any

NOW = dt(2024, 6, 15, 12, 0, 0, tzinfo=UTC)


class FakeDevices:
    """The external collaborators of the engine: a transport, & a device registry."""

    def __init__(self, *attrs: str) -> None:
        self.attrs = set(attrs)
        self.sent: list[tuple[str, int, int, bytes]] = []
        self.written: list[tuple[str, str, Any]] = []

    def send_bytes(self, device_id: str, cluster_id: int, command_id: int, buffer: bytes) -> None:
        self.sent.append((device_id, cluster_id, command_id, buffer))

    def write_attribute(self, device_id: str, attribute: str, value: Any) -> None:
        self.written.append((device_id, attribute, value))

    def has_attribute(self, device_id: str, attribute: str) -> bool:
        return attribute in self.attrs
