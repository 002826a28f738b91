#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

Route a decoded (dp_id, value) pair to a semantic attribute of the device.

The layers are tried in order, and the first match wins:
 - battery: the configured battery DPs, if the device has a battery
 - explicit: the device's own mapping table
 - universal: the community-observed patterns, if the device has the attribute
 - heuristic: the shape of the value, if exactly one attribute is plausible
 - unknown: remembered for diagnostics only
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Final, NamedTuple

from .const import (
    SZ_BATTERY,
    SZ_HUMIDITY,
    SZ_LAST_VALUES,
    SZ_LEARNED,
    SZ_SETTINGS,
    SZ_TEMPERATURE,
    SZ_UNKNOWN_DPS,
    UNKNOWN_DPS_MAX,
)
from .patterns import (
    TRANSFORMS,
    UNIVERSAL_DP_PATTERNS,
    TransformT,
    battery_state,
    clamp_percent,
    div_10,
    identity,
)
from .schemas import (
    SZ_ATTRIBUTE,
    SZ_DIVIDE_BY,
    SZ_HEURISTIC_MIN_DP,
    SZ_MAX,
    SZ_MIN,
    SZ_PERCENTAGE_DPS,
    SZ_SCALE,
    SZ_SETTING,
    SZ_STATE_DPS,
    SZ_TRANSFORM,
    SCH_BATTERY_CONFIG,
    BatteryConfigT,
    DpMappingEntryT,
)

_LOGGER = logging.getLogger(__name__)


RouteResultT = tuple[str, Any]  # (attribute, final_value)

HasAttributeT = Callable[[str], bool]
BatteryOracleT = Callable[[Any, BatteryConfigT], Any]

# the value-shape heuristic: plausible ranges of the raw (scaled) value
TEMPERATURE_RANGE: Final[tuple[int, int]] = (-400, 1000)  # tenths of a degree
PERCENT_RANGE: Final[tuple[int, int]] = (0, 100)

SZ_HEURISTIC_LAYER: Final = "heuristic"
SZ_UNIVERSAL_LAYER: Final = "universal"


def _always_valid(value: Any) -> bool:
    return True


class DpMapping(NamedTuple):
    attribute: str | None  # None if setting-only
    transform: TransformT = identity
    valid: Callable[[Any], bool] = _always_valid
    setting: str | None = None


def _compile_entry(entry: DpMappingEntryT) -> DpMapping:
    """Return a DpMapping from a (validated) explicit mapping entry."""

    transform = entry.get(SZ_TRANSFORM)
    func: TransformT = (
        TRANSFORMS[transform] if isinstance(transform, str) else transform or identity
    )
    divide_by = entry.get(SZ_DIVIDE_BY)
    scale = entry.get(SZ_SCALE)

    def _transform(value: Any) -> Any:
        if divide_by:
            value = value / divide_by
        if scale is not None:
            value = value * scale
        return func(value)

    lower, upper = entry.get(SZ_MIN), entry.get(SZ_MAX)

    def _valid(value: Any) -> bool:
        if lower is not None and value < lower:
            return False
        if upper is not None and value > upper:
            return False
        return True

    return DpMapping(
        entry.get(SZ_ATTRIBUTE),
        _transform if (divide_by or scale is not None or transform) else identity,
        _valid if (lower is not None or upper is not None) else _always_valid,
        entry.get(SZ_SETTING),
    )


def compile_mapping(mapping: dict[int, DpMappingEntryT]) -> dict[int, DpMapping]:
    """Return the DpMappings of a (validated) explicit mapping table."""
    return {int(k): _compile_entry(v) for k, v in mapping.items()}


def _default_battery_oracle(raw: Any, config: BatteryConfigT) -> Any:
    return raw


class DataPointRouter:
    """The router of a single device. It performs no I/O, and never raises."""

    def __init__(
        self,
        device_id: str,
        *,
        mapping: dict[int, DpMappingEntryT] | None = None,
        battery: BatteryConfigT | None = None,
        has_attribute: HasAttributeT | None = None,
        calculate_battery_percentage: BatteryOracleT | None = None,
    ) -> None:
        self._device_id = device_id
        self._mapping: dict[int, DpMapping] = compile_mapping(mapping or {})
        self._battery: BatteryConfigT = battery or SCH_BATTERY_CONFIG({})
        self._has_attribute = has_attribute or (lambda attr: False)
        self._battery_oracle = calculate_battery_percentage or _default_battery_oracle

        self.settings: dict[str, Any] = {}
        self.learned: dict[int, tuple[str, str]] = {}  # dp_id -> (layer, attribute)
        self.last_values: dict[int, Any] = {}
        self.unknown_dps: OrderedDict[int, Any] = OrderedDict()

    def __repr__(self) -> str:
        return f"DataPointRouter({self._device_id}, explicit={len(self._mapping)})"

    @property
    def mapping(self) -> dict[int, DpMapping]:
        return self._mapping

    def set_mapping(self, mapping: dict[int, DpMappingEntryT]) -> None:
        """Replace the explicit mapping table (the learned mappings are forgotten)."""
        self._mapping = compile_mapping(mapping)
        self.learned.clear()

    @property
    def status(self) -> dict[str, Any]:
        return {
            SZ_SETTINGS: dict(self.settings),
            SZ_LEARNED: {k: list(v) for k, v in self.learned.items()},
            SZ_LAST_VALUES: dict(self.last_values),
            SZ_UNKNOWN_DPS: dict(self.unknown_dps),
        }

    def _has(self, attribute: str | None) -> bool:
        return bool(attribute) and bool(self._has_attribute(attribute))  # type: ignore[arg-type]

    def route(self, dp_id: int, value: Any) -> RouteResultT | None:
        """Return the (attribute, final_value) for a DP value, or None if unrouted."""

        self.last_values[dp_id] = value

        for layer in (
            self._route_battery,
            self._route_explicit,
            self._route_universal,
            self._route_heuristic,
        ):
            try:
                result = layer(dp_id, value)
            except (ArithmeticError, TypeError, ValueError) as err:
                _LOGGER.debug(
                    "%s: DP%03d value %r can't be routed by %s: %s",
                    self._device_id,
                    dp_id,
                    value,
                    layer.__name__,
                    err,
                )
                break
            if result is not None:
                return result if result is not _HANDLED else None

        self._note_unknown(dp_id, value)
        return None

    def _note_unknown(self, dp_id: int, value: Any) -> None:
        if dp_id not in self.unknown_dps:
            _LOGGER.debug("%s: DP%03d is unknown (value=%r)", self._device_id, dp_id, value)
        self.unknown_dps[dp_id] = value
        self.unknown_dps.move_to_end(dp_id)
        while len(self.unknown_dps) > UNKNOWN_DPS_MAX:
            self.unknown_dps.popitem(last=False)

    def _learn(self, dp_id: int, layer: str, attribute: str) -> None:
        if self.learned.get(dp_id) != (layer, attribute):
            _LOGGER.info(
                "%s: DP%03d mapped to %s (via %s)", self._device_id, dp_id, attribute, layer
            )
            self.learned[dp_id] = (layer, attribute)

    def _note_setting(self, dp_id: int, setting: str, value: Any) -> object:
        _LOGGER.debug("%s: DP%03d is setting %s=%r", self._device_id, dp_id, setting, value)
        self.settings[setting] = value
        return _HANDLED

    def _route_battery(self, dp_id: int, value: Any) -> RouteResultT | None:
        if not self._has(SZ_BATTERY) or isinstance(value, bool):
            return None

        if dp_id in self._battery[SZ_PERCENTAGE_DPS]:
            raw = clamp_percent(value)
        elif dp_id in self._battery[SZ_STATE_DPS]:
            raw = battery_state(value)
        else:
            return None

        try:
            result = self._battery_oracle(raw, self._battery)
        except Exception as err:  # an external collaborator
            _LOGGER.warning(
                "%s: DP%03d battery calculation failed, using %s: %r",
                self._device_id,
                dp_id,
                raw,
                err,
            )
            result = raw
        return SZ_BATTERY, result

    def _route_explicit(self, dp_id: int, value: Any) -> RouteResultT | object | None:
        if (entry := self._mapping.get(dp_id)) is None:
            return None

        if entry.attribute is None:
            return self._note_setting(dp_id, entry.setting, value)  # type: ignore[arg-type]

        result = entry.transform(value)
        if not entry.valid(result):
            _LOGGER.warning(
                "%s: DP%03d value %r is out of range for %s, ignored",
                self._device_id,
                dp_id,
                result,
                entry.attribute,
            )
            return _HANDLED
        return entry.attribute, result

    def _route_universal(self, dp_id: int, value: Any) -> RouteResultT | object | None:
        if (pattern := UNIVERSAL_DP_PATTERNS.get(dp_id)) is None:
            return None

        if self._has(pattern.attribute):
            self._learn(dp_id, SZ_UNIVERSAL_LAYER, pattern.attribute)  # type: ignore[arg-type]
            return pattern.attribute, pattern.transform(value)  # type: ignore[misc, return-value]

        if self._has(pattern.alt_attribute):
            self._learn(dp_id, SZ_UNIVERSAL_LAYER, pattern.alt_attribute)  # type: ignore[arg-type]
            transform = pattern.alt_transform or identity
            return pattern.alt_attribute, transform(value)  # type: ignore[return-value]

        if pattern.setting:
            return self._note_setting(dp_id, pattern.setting, value)
        return None

    def _route_heuristic(self, dp_id: int, value: Any) -> RouteResultT | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None

        candidates: list[RouteResultT] = []

        if TEMPERATURE_RANGE[0] <= value <= TEMPERATURE_RANGE[1] and self._has(
            SZ_TEMPERATURE
        ):
            candidates.append((SZ_TEMPERATURE, div_10(value)))

        if PERCENT_RANGE[0] <= value <= PERCENT_RANGE[1]:
            battery_ok = self._has(SZ_BATTERY) and dp_id >= self._battery[SZ_HEURISTIC_MIN_DP]
            if self._has(SZ_HUMIDITY) and not battery_ok:
                candidates.append((SZ_HUMIDITY, value))
            if battery_ok:
                candidates.append((SZ_BATTERY, value))

        if len(candidates) != 1:  # abstain if ambiguous
            return None

        self._learn(dp_id, SZ_HEURISTIC_LAYER, candidates[0][0])
        return candidates[0]


_HANDLED: Final = object()  # routed, but not to an attribute
