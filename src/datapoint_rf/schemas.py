#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

Schema processor for the engine config, the device traits, and explicit DP mappings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Final, TypedDict

import voluptuous as vol

from datapoint_tx.const import (
    DEFAULT_CACHE_SIZE,
    DEFAULT_GAP_BETWEEN_QUERIES,
    MAX_FALLBACK_CYCLES,
    MAX_GAP_BETWEEN_QUERIES,
    MIN_GAP_BETWEEN_QUERIES,
    TIME_DOUBLE_SEND_DELAY,
    TIME_PUSH_DELAY,
    TIME_PUSH_INTERVAL,
)

from . import exceptions as exc
from .const import DECISION_WINDOW_SECS, SZ_BATTERY, PowerSource, TimeSyncFormat
from .patterns import TRANSFORMS

_LOGGER = logging.getLogger(__name__)


#
# 1/3: Engine configuration
SZ_DECISION_WINDOW: Final = "decision_window"
SZ_DECODER_CACHE_SIZE: Final = "decoder_cache_size"
SZ_GAP_BETWEEN_QUERIES: Final = "gap_between_queries"
SZ_MAX_FALLBACK_CYCLES: Final = "max_fallback_cycles"
SZ_TIME_DOUBLE_SEND_DELAY: Final = "time_double_send_delay"
SZ_TIME_PUSH_DELAY: Final = "time_push_delay"
SZ_TIME_PUSH_INTERVAL: Final = "time_push_interval"
SZ_TIME_SYNC_PUSH: Final = "time_sync_push"

SCH_ENGINE_CONFIG = vol.Schema(
    {
        vol.Optional(SZ_DECISION_WINDOW, default=DECISION_WINDOW_SECS): vol.All(
            vol.Coerce(float), vol.Range(min=1, max=86400)
        ),
        vol.Optional(SZ_TIME_DOUBLE_SEND_DELAY, default=TIME_DOUBLE_SEND_DELAY): vol.All(
            vol.Coerce(float), vol.Range(min=0.05, max=2.0)
        ),
        vol.Optional(SZ_GAP_BETWEEN_QUERIES, default=DEFAULT_GAP_BETWEEN_QUERIES): vol.All(
            vol.Coerce(float),
            vol.Clamp(min=MIN_GAP_BETWEEN_QUERIES, max=MAX_GAP_BETWEEN_QUERIES),
        ),
        vol.Optional(SZ_DECODER_CACHE_SIZE, default=DEFAULT_CACHE_SIZE): vol.All(
            int, vol.Range(min=1, max=65536)
        ),
        vol.Optional(SZ_TIME_SYNC_PUSH, default=True): bool,
        vol.Optional(SZ_TIME_PUSH_DELAY, default=TIME_PUSH_DELAY): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(SZ_TIME_PUSH_INTERVAL, default=TIME_PUSH_INTERVAL): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),  # 0 to push only once
        vol.Optional(SZ_MAX_FALLBACK_CYCLES, default=MAX_FALLBACK_CYCLES): vol.All(
            int, vol.Range(min=0, max=MAX_FALLBACK_CYCLES)
        ),
    },
    extra=vol.PREVENT_EXTRA,
)


class EngineConfigT(TypedDict):
    decision_window: float
    time_double_send_delay: float
    gap_between_queries: float
    decoder_cache_size: int
    time_sync_push: bool
    time_push_delay: float
    time_push_interval: float
    max_fallback_cycles: int


#
# 2/3: Explicit (per-device) DataPoint mappings
SZ_ATTRIBUTE: Final = "attribute"
SZ_DIVIDE_BY: Final = "divide_by"
SZ_MAX: Final = "max"
SZ_MIN: Final = "min"
SZ_SCALE: Final = "scale"
SZ_SETTING: Final = "setting"
SZ_TRANSFORM: Final = "transform"


class DpMappingEntryT(TypedDict):
    attribute: str | None
    setting: str | None
    divide_by: float | None
    scale: float | None
    transform: str | Callable[[Any], Any] | None
    min: float | None
    max: float | None


def NormaliseDpMapping() -> Callable[[str | dict[str, Any]], dict[str, Any]]:
    """Expand the shorthand (a bare attribute name) into a full mapping entry."""

    def normalise_dp_mapping(node_value: str | dict[str, Any]) -> dict[str, Any]:
        if isinstance(node_value, str):
            return {SZ_ATTRIBUTE: node_value}
        return node_value

    return normalise_dp_mapping


def _check_dp_target(node_value: dict[str, Any]) -> dict[str, Any]:
    if node_value[SZ_ATTRIBUTE] is None and node_value[SZ_SETTING] is None:
        raise vol.Invalid("a DP mapping requires an attribute, or a setting")
    if (
        node_value[SZ_MIN] is not None
        and node_value[SZ_MAX] is not None
        and node_value[SZ_MIN] > node_value[SZ_MAX]
    ):
        raise vol.Invalid(f"{SZ_MIN} is greater than {SZ_MAX}")
    return node_value


def _is_callable(node_value: Any) -> Callable[[Any], Any]:
    if not callable(node_value):
        raise vol.Invalid(f"{node_value!r} is not callable")
    return node_value  # type: ignore[no-any-return]


_SCH_NUMBER = vol.Any(None, vol.All(vol.Coerce(float), vol.Range(min=-1e9, max=1e9)))

SCH_DP_MAPPING_ENTRY = vol.All(
    NormaliseDpMapping(),
    vol.Schema(
        {
            vol.Optional(SZ_ATTRIBUTE, default=None): vol.Any(None, str),
            vol.Optional(SZ_SETTING, default=None): vol.Any(None, str),
            vol.Optional(SZ_DIVIDE_BY, default=None): vol.Any(
                None, vol.All(vol.Coerce(float), vol.NotIn([0.0]))
            ),
            vol.Optional(SZ_SCALE, default=None): _SCH_NUMBER,
            vol.Optional(SZ_TRANSFORM, default=None): vol.Any(
                None, vol.In(list(TRANSFORMS)), _is_callable
            ),
            vol.Optional(SZ_MIN, default=None): _SCH_NUMBER,
            vol.Optional(SZ_MAX, default=None): _SCH_NUMBER,
        },
        extra=vol.PREVENT_EXTRA,
    ),
    _check_dp_target,
)

SCH_DP_ID = vol.All(vol.Coerce(int), vol.Range(min=1, max=255))

SCH_DP_MAPPING = vol.Schema({SCH_DP_ID: SCH_DP_MAPPING_ENTRY}, extra=vol.PREVENT_EXTRA)


def validate_mapping(mapping: dict[Any, Any] | None) -> dict[int, DpMappingEntryT]:
    """Return the validated mapping, or raise MappingInvalid."""

    try:
        return SCH_DP_MAPPING(mapping or {})  # type: ignore[no-any-return]
    except vol.Invalid as err:
        raise exc.MappingInvalid(f"{mapping}: {err}") from err


def serialise_mapping(mapping: dict[int, DpMappingEntryT]) -> dict[str, dict[str, Any]]:
    """Return a JSON-able form of a validated mapping (named transforms only)."""

    result: dict[str, dict[str, Any]] = {}
    for dp_id, entry in mapping.items():
        entry_ = {k: v for k, v in entry.items() if v is not None}
        if callable(transform := entry_.get(SZ_TRANSFORM)):
            name = next((k for k, v in TRANSFORMS.items() if v is transform), None)
            if name is None:
                _LOGGER.warning(
                    "DP%03d: transform %s is not a named transform, it won't persist",
                    dp_id,
                    transform,
                )
                entry_.pop(SZ_TRANSFORM)
            else:
                entry_[SZ_TRANSFORM] = name
        result[str(dp_id)] = entry_
    return result


#
# 3/3: Device traits
SZ_FORCED_ACTIVE: Final = "forced_active"
SZ_HEURISTIC_MIN_DP: Final = "heuristic_min_dp"
SZ_MANUFACTURER: Final = "manufacturer"
SZ_MAPPING: Final = "mapping"
SZ_MODEL: Final = "model"
SZ_PERCENTAGE_DPS: Final = "percentage_dps"
SZ_POWER_SOURCE: Final = "power_source"
SZ_STATE_DPS: Final = "state_dps"
SZ_TIME_FORMAT: Final = "time_format"

DEFAULT_BATTERY_PERCENTAGE_DPS: Final[tuple[int, ...]] = (4, 15)
DEFAULT_BATTERY_STATE_DPS: Final[tuple[int, ...]] = (14,)
DEFAULT_HEURISTIC_MIN_DP: Final[int] = 10

SCH_BATTERY_CONFIG = vol.Schema(
    {
        vol.Optional(SZ_PERCENTAGE_DPS, default=list(DEFAULT_BATTERY_PERCENTAGE_DPS)): [
            SCH_DP_ID
        ],
        vol.Optional(SZ_STATE_DPS, default=list(DEFAULT_BATTERY_STATE_DPS)): [SCH_DP_ID],
        vol.Optional(SZ_HEURISTIC_MIN_DP, default=DEFAULT_HEURISTIC_MIN_DP): SCH_DP_ID,
    },
    extra=vol.PREVENT_EXTRA,
)


class BatteryConfigT(TypedDict):
    percentage_dps: list[int]
    state_dps: list[int]
    heuristic_min_dp: int


SCH_DEVICE_TRAITS = vol.Schema(
    {
        vol.Optional(SZ_MANUFACTURER, default=""): vol.Any(None, str),
        vol.Optional(SZ_MODEL, default=""): vol.Any(None, str),
        vol.Optional(SZ_POWER_SOURCE, default=PowerSource.BATTERY): vol.All(
            vol.Lower, vol.Coerce(PowerSource)
        ),
        vol.Optional(SZ_FORCED_ACTIVE, default=False): bool,
        vol.Optional(SZ_TIME_FORMAT, default=None): vol.Any(
            None, vol.All(vol.Lower, vol.Coerce(TimeSyncFormat))
        ),
        vol.Optional(SZ_TIME_SYNC_PUSH, default=None): vol.Any(None, bool),
        vol.Optional(SZ_BATTERY, default={}): SCH_BATTERY_CONFIG,
        vol.Optional(SZ_MAPPING, default={}): SCH_DP_MAPPING,
    },
    extra=vol.PREVENT_EXTRA,
)


class DeviceTraitsT(TypedDict):
    manufacturer: str | None
    model: str | None
    power_source: PowerSource
    forced_active: bool
    time_format: TimeSyncFormat | None
    time_sync_push: bool | None
    battery: BatteryConfigT
    mapping: dict[int, DpMappingEntryT]
