#!/usr/bin/env python3
"""DataPoint RF - the per-device context of the engine.

Each attached device owns its arbitrator, router, time-sync tracker, query sequencer
and timers. Nothing mutable is shared between devices.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from datapoint_tx.retry import RetryPolicy
from datapoint_tx.time_sync import TimeSyncTracker, select_format

from .arbitrator import ArbitratorContext
from .const import (
    SZ_ARBITRATION,
    SZ_AWAITING_REPORT,
    SZ_DEVICE_ID,
    SZ_STRATEGY_HINT,
    SZ_TIME_FORMAT,
    TimeSyncFormat,
)
from .query import DpQuerySequencer
from .router import DataPointRouter
from .schemas import (
    SZ_BATTERY,
    SZ_FORCED_ACTIVE,
    SZ_MANUFACTURER,
    SZ_MAPPING,
    SZ_MODEL,
    SZ_POWER_SOURCE,
    DeviceTraitsT,
    DpMappingEntryT,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from .arbitrator import DeviceProtocolStateT
    from .query import SendQueryT
    from .router import BatteryOracleT, HasAttributeT


_LOGGER = logging.getLogger(__name__)


class DeviceContext:
    """The engine's view of a single device."""

    def __init__(
        self,
        device_id: str,
        traits: DeviceTraitsT,
        *,
        has_attribute: HasAttributeT,
        send_query: SendQueryT,
        calculate_battery_percentage: BatteryOracleT | None = None,
        on_decided: Callable[[ArbitratorContext], None] | None = None,
        gap_between_queries: float | None = None,
        max_fallback_cycles: int | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.id = device_id
        self._traits = traits
        self._loop = loop

        self.arbitrator = ArbitratorContext(
            device_id,
            forced_active=traits[SZ_FORCED_ACTIVE],
            loop=loop,
            on_decided=on_decided,
        )
        self.router = DataPointRouter(
            device_id,
            mapping=traits[SZ_MAPPING],
            battery=traits[SZ_BATTERY],
            has_attribute=has_attribute,
            calculate_battery_percentage=calculate_battery_percentage,
        )

        time_format: TimeSyncFormat = select_format(
            traits[SZ_MODEL], traits[SZ_MANUFACTURER], traits[SZ_TIME_FORMAT]
        )
        self.tracker = TimeSyncTracker(time_format, **_kwargs(max_cycles=max_fallback_cycles))

        self.sequencer = DpQuerySequencer(
            device_id,
            send_query,
            policy=RetryPolicy.for_power_source(traits[SZ_POWER_SOURCE]),
            **_kwargs(gap=gap_between_queries),
        )

        self.time_requested = False  # has the device ever asked for the time?
        self.strategy_hint: int | None = None

        self._push_handle: asyncio.TimerHandle | None = None
        self._timer_handles: set[asyncio.TimerHandle] = set()

    def __repr__(self) -> str:
        return f"DeviceContext({self.id}, {self.arbitrator.mode}, {self.tracker.format})"

    def __str__(self) -> str:
        return self.id

    @property
    def traits(self) -> DeviceTraitsT:
        return self._traits

    @property
    def mapping(self) -> dict[int, DpMappingEntryT]:
        return self._traits[SZ_MAPPING]

    def set_mapping(self, mapping: dict[int, DpMappingEntryT]) -> None:
        self._traits[SZ_MAPPING] = mapping
        self.router.set_mapping(mapping)

    def note_time_request(self) -> None:
        self.time_requested = True
        self._cancel_push()

    def schedule_push(
        self,
        delay: float,
        callback: Callable[[DeviceContext], None],
        interval: float | None = None,
    ) -> None:
        """Push the time after a delay, and then every interval (if any).

        Pushes stop once the device asks for the time itself.
        """

        if self._push_handle is not None or self.time_requested:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._push_handle = loop.call_later(delay, self._handle_push, callback, interval)

    def _handle_push(
        self, callback: Callable[[DeviceContext], None], interval: float | None
    ) -> None:
        self._push_handle = None
        if self.time_requested:
            return
        callback(self)
        if interval:
            self.schedule_push(interval, callback, interval)

    def _cancel_push(self) -> None:
        if self._push_handle is not None:
            self._push_handle.cancel()
            self._push_handle = None

    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> None:
        """Schedule a callback that is cancelled if the device is detached."""

        def fire() -> None:
            self._timer_handles.discard(handle)
            callback(*args)

        loop = self._loop or asyncio.get_running_loop()
        handle = loop.call_later(delay, fire)
        self._timer_handles.add(handle)

    def cancel(self) -> None:
        """Cancel all timers & tasks of the device (e.g. it is being detached)."""

        self.arbitrator.cancel()
        self.sequencer.cancel()
        self._cancel_push()
        for handle in self._timer_handles:
            handle.cancel()
        self._timer_handles.clear()
        _LOGGER.debug(f"{self}: Cancelled all timers & tasks")

    @property
    def status(self) -> dict[str, Any]:
        arbitration: DeviceProtocolStateT = self.arbitrator.status
        return {
            SZ_DEVICE_ID: self.id,
            SZ_ARBITRATION: arbitration,
            SZ_TIME_FORMAT: str(self.tracker.format),
            SZ_AWAITING_REPORT: sorted(self.sequencer.awaiting_report),
            SZ_STRATEGY_HINT: self.strategy_hint,
            **self.router.status,
        }


def _kwargs(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}
