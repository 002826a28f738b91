#!/usr/bin/env python3
"""DataPoint RF - the engine facade.

It ingests the raw frames of any number of devices, and answers via its collaborators:
 - send_bytes(device_id, cluster_id, command_id, buffer), sync or async
 - write_attribute(device_id, attribute, value), sync or async
 - has_attribute(device_id, attribute) -> bool
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from datetime import datetime as dt
from typing import Any, Final

import voluptuous as vol

from datapoint_tx.const import (
    CMD_DATA_QUERY,
    CMD_DATA_REPORT,
    CMD_DATA_RESPONSE,
    CMD_TIME_SYNC,
    DP_TIME_SYNC,
    DP_TIME_VALID,
    ZCL_READ_ATTRIBUTES_RSP,
)
from datapoint_tx.frame import (
    DataPointRecord,
    FrameDecoder,
    build_time_frame,
    is_time_request,
)
from datapoint_tx.time_sync import build_payload

from . import exceptions as exc
from .arbitrator import ArbitratorContext
from .const import (
    CLUSTER_TIME,
    CLUSTER_TUYA,
    SZ_MAPPING,
    SZ_MODE,
    ArbitrationMode,
    ProtocolFamily,
    TimeSyncFormat,
)
from .device import DeviceContext
from .router import BatteryOracleT
from .schemas import (
    SCH_DEVICE_TRAITS,
    SCH_ENGINE_CONFIG,
    SZ_DECISION_WINDOW,
    SZ_DECODER_CACHE_SIZE,
    SZ_FORCED_ACTIVE,
    SZ_GAP_BETWEEN_QUERIES,
    SZ_MAX_FALLBACK_CYCLES,
    SZ_TIME_DOUBLE_SEND_DELAY,
    SZ_TIME_PUSH_DELAY,
    SZ_TIME_PUSH_INTERVAL,
    SZ_TIME_SYNC_PUSH,
    DpMappingEntryT,
    EngineConfigT,
    serialise_mapping,
    validate_mapping,
)
from .store import DeviceRecordT, StateStore

#
# NOTE: All debug flags should be False for deployment to end-users
_DBG_DISABLE_TIME_PUSH: Final[bool] = False

_LOGGER = logging.getLogger(__name__)


SendBytesT = Callable[[str, int, int, bytes], Any]
WriteAttributeT = Callable[[str, str, Any], Any]
HasAttributeT = Callable[[str, str], bool]

_DP_COMMANDS: Final[tuple[int | None, ...]] = (None, CMD_DATA_REPORT, CMD_DATA_RESPONSE)


def _now() -> dt:
    """Return the current (aware) local time."""
    return dt.now().astimezone()


class Engine:
    """The engine class."""

    def __init__(
        self,
        send_bytes: SendBytesT,
        write_attribute: WriteAttributeT,
        has_attribute: HasAttributeT,
        calculate_battery_percentage: BatteryOracleT | None = None,
        store: StateStore | None = None,
        config: dict[str, Any] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._send_bytes = send_bytes
        self._write_attribute = write_attribute
        self._has_attribute = has_attribute
        self._battery_oracle = calculate_battery_percentage
        self._store = store

        self._config: EngineConfigT = validate_engine_config(config)
        self._loop = loop or asyncio.get_running_loop()

        self._decoder = FrameDecoder(max_devices=self._config[SZ_DECODER_CACHE_SIZE])
        self._devices: dict[str, DeviceContext] = {}
        self._tasks: list[asyncio.Task] = []  # type: ignore[type-arg]

    def __repr__(self) -> str:
        return f"Engine({len(self._devices)} devices)"

    @property
    def config(self) -> EngineConfigT:
        return self._config

    @property
    def devices(self) -> list[DeviceContext]:
        return list(self._devices.values())

    def _add_task(self, coro: Any, name: str | None = None) -> asyncio.Task[Any]:
        task = self._loop.create_task(coro, name=name)
        self._tasks = [t for t in self._tasks if not t.done()]
        self._tasks.append(task)
        return task

    def stop(self) -> None:
        """Detach all devices, and cancel any outstanding tasks."""

        for device_id in list(self._devices):
            self.detach_device(device_id)
        _ = [t.cancel() for t in self._tasks if not t.done()]
        self._tasks.clear()

    #
    # device lifecycle

    def attach_device(
        self, device_id: str, traits: dict[str, Any] | None = None
    ) -> DeviceContext:
        """Create the context of a device, restoring any persisted state.

        Raises vol.Invalid if the traits are invalid.
        """

        if ctx := self._devices.get(device_id):
            _LOGGER.debug("%s: Device is already attached", device_id)
            return ctx

        traits_ = SCH_DEVICE_TRAITS(traits or {})
        record = self._load(device_id)

        if record and record.get(SZ_MAPPING):
            try:
                persisted = validate_mapping(record[SZ_MAPPING])
            except exc.MappingInvalid as err:
                _LOGGER.warning("%s: Persisted mapping ignored: %s", device_id, err)
            else:
                traits_[SZ_MAPPING] = traits_[SZ_MAPPING] | persisted

        ctx = DeviceContext(
            device_id,
            traits_,
            has_attribute=self._make_has_attribute(device_id),
            send_query=self._make_send_query(device_id),
            calculate_battery_percentage=self._battery_oracle,
            on_decided=self._handle_decided,
            gap_between_queries=self._config[SZ_GAP_BETWEEN_QUERIES],
            max_fallback_cycles=self._config[SZ_MAX_FALLBACK_CYCLES],
            loop=self._loop,
        )
        self._devices[device_id] = ctx

        if record and (mode := record.get(SZ_MODE)) not in (None, ArbitrationMode.UNDECIDED):
            try:
                ctx.arbitrator.restore(mode)  # type: ignore[arg-type]
            except ValueError:
                _LOGGER.warning("%s: Persisted mode ignored: %s", device_id, mode)
            else:
                if traits_[SZ_FORCED_ACTIVE]:  # ZCL_ONLY may re-enter as HYBRID_FORCED
                    ctx.arbitrator.decide()

        if not ctx.arbitrator.decided:
            ctx.arbitrator.schedule_decision(self._config[SZ_DECISION_WINDOW])

        if self._push_enabled(ctx) and not _DBG_DISABLE_TIME_PUSH:
            ctx.schedule_push(
                self._config[SZ_TIME_PUSH_DELAY],
                self._push_time,
                interval=self._config[SZ_TIME_PUSH_INTERVAL],
            )

        _LOGGER.info("%s: Device attached: %r", device_id, ctx)
        return ctx

    def detach_device(self, device_id: str) -> None:
        """Cancel all timers & tasks of a device, and forget it (is idempotent)."""

        if (ctx := self._devices.pop(device_id, None)) is None:
            return
        ctx.cancel()
        self._decoder.forget(device_id)
        _LOGGER.info("%s: Device detached", device_id)

    def _get_device(self, device_id: str) -> DeviceContext:
        try:
            return self._devices[device_id]
        except KeyError:
            raise exc.DeviceNotAttached(f"{device_id}: device is not attached") from None

    def _push_enabled(self, ctx: DeviceContext) -> bool:
        if (push := ctx.traits[SZ_TIME_SYNC_PUSH]) is not None:
            return push
        return self._config[SZ_TIME_SYNC_PUSH]

    #
    # ingress

    def on_raw_frame(
        self,
        device_id: str,
        cluster_id: int,
        buffer: bytes,
        command_id: int | None = None,
    ) -> list[DataPointRecord]:
        """Process a raw frame from a device, returning any DP records it contained.

        Never raises for the frame's content.
        """

        if (ctx := self._devices.get(device_id)) is None:
            _LOGGER.warning("%s: Unknown device, attaching with default traits", device_id)
            ctx = self.attach_device(device_id)

        buffer = bytes(buffer)
        time_request = is_time_request(cluster_id, command_id, buffer)

        if time_request:
            self._reply_time(ctx, cluster_id)
            if cluster_id == CLUSTER_TIME or command_id == CMD_TIME_SYNC:
                ctx.arbitrator.register_hit(
                    ProtocolFamily.ZCL if cluster_id == CLUSTER_TIME else ProtocolFamily.TUYA
                )
                return []

        if cluster_id != CLUSTER_TUYA:
            ctx.arbitrator.register_hit(ProtocolFamily.ZCL)
            return []

        if command_id not in _DP_COMMANDS:
            _LOGGER.debug("%s: EF00 command 0x%02X ignored", device_id, command_id)
            return []

        records = self._decoder.decode(device_id, buffer)
        ctx.strategy_hint = self._decoder.hint(device_id)
        if not records:
            return []

        ctx.arbitrator.register_hit(ProtocolFamily.TUYA)
        if not ctx.arbitrator.accepts(ProtocolFamily.TUYA):
            _LOGGER.debug(
                "%s: DP records ignored, protocol is %s", device_id, ctx.arbitrator.mode
            )
            return records

        for record in records:
            if time_request and record.dp_id == DP_TIME_SYNC:
                continue
            self._handle_record(ctx, record)
        return records

    def _handle_record(self, ctx: DeviceContext, record: DataPointRecord) -> None:
        value = record.value

        ctx.sequencer.note_report(record.dp_id)
        if record.dp_id == DP_TIME_VALID and value:
            ctx.tracker.confirm()

        if (result := ctx.router.route(record.dp_id, value)) is not None:
            self._write(ctx.id, *result)

    #
    # time synchronisation

    def _reply_time(self, ctx: DeviceContext, cluster_id: int) -> None:
        ctx.note_time_request()
        if cluster_id == CLUSTER_TIME:  # always zigbee_2000, so not tracked
            self._send_time(ctx, cluster_id)
        else:
            self._send_time(ctx, cluster_id, ctx.tracker.note_request(self._loop.time()))

    def _send_time(
        self, ctx: DeviceContext, cluster_id: int, fmt: TimeSyncFormat | None = None
    ) -> None:
        """Send the time now, and once more after a short delay."""

        now = _now()
        offset = now.utcoffset()
        tz_offset_minutes = int(offset.total_seconds() // 60) if offset else 0

        if cluster_id == CLUSTER_TIME:
            fmt = TimeSyncFormat.ZIGBEE_2000
            command_id = ZCL_READ_ATTRIBUTES_RSP
            buffer = build_payload(fmt, now, tz_offset_minutes)
        else:
            fmt = fmt or ctx.tracker.format
            command_id = CMD_TIME_SYNC
            buffer = build_time_frame(fmt, build_payload(fmt, now, tz_offset_minutes))

        _LOGGER.debug("%s: Sending time as %s: %s", ctx.id, fmt, buffer.hex(" "))

        self._send(ctx.id, cluster_id, command_id, buffer)
        ctx.call_later(
            self._config[SZ_TIME_DOUBLE_SEND_DELAY],
            self._send,
            ctx.id,
            cluster_id,
            command_id,
            buffer,
        )

    def _push_time(self, ctx: DeviceContext) -> None:
        if not ctx.arbitrator.accepts(ProtocolFamily.TUYA):
            return
        _LOGGER.info("%s: Device has not requested the time, pushing it", ctx.id)
        self._send_time(ctx, CLUSTER_TUYA)

    def send_time(self, device_id: str) -> None:
        """Push the time to a device now."""
        self._send_time(self._get_device(device_id), CLUSTER_TUYA)

    #
    # overrides & diagnostics

    def set_forced_active(self, device_id: str, flag: bool) -> ArbitrationMode:
        """Keep (or stop keeping) the DP path of a device live."""

        ctx = self._get_device(device_id)
        ctx.arbitrator.set_forced_active(flag)
        if ctx.arbitrator.decided:
            ctx.arbitrator.decide()
        return ctx.arbitrator.mode

    def decide_now(self, device_id: str) -> ArbitrationMode:
        """Apply the decision rule now, rather than waiting for the window to expire."""
        return self._get_device(device_id).arbitrator.decide()

    def status(self, device_id: str) -> dict[str, Any]:
        return self._get_device(device_id).status

    def request_dps(self, device_id: str, dp_ids: Iterable[int]) -> asyncio.Task[None] | None:
        """Queue queries for DPs, to be sent in sequence."""
        return self._get_device(device_id).sequencer.request(dp_ids)

    def set_mapping(self, device_id: str, mapping: dict[Any, Any]) -> None:
        """Replace the explicit mapping of a device, and persist it.

        Raises MappingInvalid if the mapping is invalid.
        """

        ctx = self._get_device(device_id)
        validated: dict[int, DpMappingEntryT] = validate_mapping(mapping)
        ctx.set_mapping(validated)
        self._save(device_id, {SZ_MAPPING: serialise_mapping(validated)})

    #
    # persistence

    def _handle_decided(self, arbitrator: ArbitratorContext) -> None:
        self._save(arbitrator.device_id, {SZ_MODE: str(arbitrator.mode)})

    def _load(self, device_id: str) -> DeviceRecordT | None:
        if self._store is None:
            return None
        try:
            return self._store.load(device_id)
        except exc.StoreError as err:
            _LOGGER.warning("%s: Unable to restore state: %s", device_id, err)
            return None

    def _save(self, device_id: str, record: DeviceRecordT) -> None:
        if self._store is None:
            return
        try:
            self._store.save(device_id, record)
        except exc.StoreError as err:
            _LOGGER.warning("%s: Unable to persist state: %s", device_id, err)

    #
    # collaborators (their exceptions are logged, never propagated)

    def _make_has_attribute(self, device_id: str) -> Callable[[str], bool]:
        def has_attribute(attribute: str) -> bool:
            try:
                return bool(self._has_attribute(device_id, attribute))
            except Exception as err:  # an external collaborator
                _LOGGER.warning(
                    "%s: has_attribute(%s) failed: %r", device_id, attribute, err
                )
                return False

        return has_attribute

    def _make_send_query(self, device_id: str) -> Callable[[bytes], Any]:
        async def send_query(buffer: bytes) -> None:  # exceptions are for the sequencer
            try:
                result = self._send_bytes(device_id, CLUSTER_TUYA, CMD_DATA_QUERY, buffer)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:  # an external collaborator
                raise exc.SendFailed(f"{device_id}: send_bytes() failed: {err!r}") from err

        return send_query

    def _send(self, device_id: str, cluster_id: int, command_id: int, buffer: bytes) -> None:
        self._call(
            f"send_bytes(0x{cluster_id:04X}, 0x{command_id:02X})",
            self._send_bytes,
            device_id,
            cluster_id,
            command_id,
            buffer,
        )

    def _write(self, device_id: str, attribute: str, value: Any) -> None:
        _LOGGER.debug("%s: Writing %s = %r", device_id, attribute, value)
        self._call(
            f"write_attribute({attribute})", self._write_attribute, device_id, attribute, value
        )

    def _call(self, desc: str, func: Callable[..., Any], device_id: str, *args: Any) -> None:
        """Call a collaborator, fire-and-forget if it is async."""

        try:
            result = func(device_id, *args)
        except Exception as err:  # an external collaborator
            _LOGGER.warning("%s: %s failed: %r", device_id, desc, err)
            return

        if inspect.isawaitable(result):

            async def wait_for_result() -> None:
                try:
                    await result
                except Exception as err:  # an external collaborator
                    _LOGGER.warning("%s: %s failed: %r", device_id, desc, err)

            self._add_task(wait_for_result(), name=f"{device_id}: {desc}")


def validate_engine_config(config: dict[str, Any] | None) -> EngineConfigT:
    """Return the validated engine config (raises vol.Invalid if invalid)."""
    try:
        return SCH_ENGINE_CONFIG(config or {})  # type: ignore[no-any-return]
    except vol.Invalid as err:
        _LOGGER.error("Invalid engine config: %s", err)
        raise
