#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

The universal table of community-observed DataPoint patterns, and the transforms used
by both it and the explicit (per-device) mappings.

These are process-wide, immutable data: they are never mutated at runtime.
"""

from __future__ import annotations

from collections.abc import Callable
from types import MappingProxyType
from typing import Any, Final, NamedTuple

from .const import (
    SZ_ALARM_CONTACT,
    SZ_ALARM_MOTION,
    SZ_ALARM_TAMPER,
    SZ_BATTERY,
    SZ_CO2,
    SZ_CURRENT,
    SZ_ENERGY,
    SZ_HUMIDITY,
    SZ_ILLUMINANCE,
    SZ_ONOFF,
    SZ_POWER,
    SZ_TARGET_TEMPERATURE,
    SZ_TEMPERATURE,
    SZ_VOC,
    SZ_VOLTAGE,
)

TransformT = Callable[[Any], Any]


class DpPattern(NamedTuple):
    attribute: str | None  # None if setting-only
    transform: TransformT | None = None
    name: str = ""
    setting: str | None = None
    alt_attribute: str | None = None  # used if the device lacks the attribute
    alt_transform: TransformT | None = None  # for the alt_attribute, else identity


def identity(value: Any) -> Any:
    return value


def to_bool(value: Any) -> bool:
    return bool(value)


def invert(value: Any) -> bool:
    return not value


def clamp_percent(value: float) -> float:
    """Clamp a percentage to 0-100."""
    return min(100, max(0, value))


def cap_percent(value: float) -> float:
    return min(100, value)


BATTERY_STATE_MAP: Final = MappingProxyType({0: 10, 1: 50, 2: 100})  # low/medium/high
BATTERY_STATE_DEFAULT: Final[int] = 50


def battery_state(value: int) -> int:
    """Convert a low/medium/high battery state to a percentage."""
    return BATTERY_STATE_MAP.get(value, BATTERY_STATE_DEFAULT)


def divide_by(scale: float) -> TransformT:
    """Return a transform that divides the (scaled integer) value by scale."""

    def _divide_by(value: float) -> float:
        return value / scale

    _divide_by.__name__ = f"divide_by_{scale:g}"
    return _divide_by


div_10 = divide_by(10)
div_100 = divide_by(100)
div_1000 = divide_by(1000)


# named transforms, for use in explicit (per-device) mappings
TRANSFORMS: Final[MappingProxyType[str, TransformT]] = MappingProxyType(
    {
        "raw": identity,
        "bool": to_bool,
        "invert": invert,
        "battery_state": battery_state,
        "clamp_percent": clamp_percent,
        "divide_by_10": div_10,
        "divide_by_100": div_100,
        "divide_by_1000": div_1000,
    }
)


def _p(
    attr: str | None,
    transform: TransformT | None = identity,
    name: str = "",
    **kwargs: Any,
) -> DpPattern:
    return DpPattern(attr, transform if attr else None, name, **kwargs)


UNIVERSAL_DP_PATTERNS: Final[MappingProxyType[int, DpPattern]] = MappingProxyType(
    {
        # climate & battery
        1: _p(SZ_TEMPERATURE, div_10, "temp-standard"),
        2: _p(SZ_HUMIDITY, identity, "humid-standard"),
        3: _p(SZ_HUMIDITY, identity, "humid-soil"),
        4: _p(SZ_BATTERY, cap_percent, "batt-official"),
        5: _p(SZ_BATTERY, cap_percent, "batt-dp5"),
        6: _p(
            SZ_HUMIDITY,
            identity,
            "humid-alt",
            alt_attribute=SZ_ONOFF,
            alt_transform=to_bool,
        ),
        7: _p(SZ_ILLUMINANCE, identity, "lux-dp7"),
        9: _p(SZ_ILLUMINANCE, identity, "lux-pir", setting="o_sensitivity"),
        10: _p(None, name="pir-v-sens", setting="v_sensitivity"),
        11: _p(None, name="radar-max-range", setting="maximum_range"),
        12: _p(SZ_ILLUMINANCE, identity, "lux-dp12"),
        13: _p(None, name="led-indicator", setting="led_status"),
        14: _p(SZ_BATTERY, battery_state, "batt-state"),
        15: _p(SZ_BATTERY, clamp_percent, "batt-pct"),
        16: _p(SZ_TARGET_TEMPERATURE, div_10, "setpoint"),
        17: _p(SZ_CURRENT, div_1000, "current-mA"),
        18: _p(SZ_TEMPERATURE, div_10, "temp-local"),
        19: _p(None, name="trv-max-temp", setting="max_temperature"),
        20: _p(SZ_ALARM_TAMPER, to_bool, "tamper-dp20"),
        21: _p(SZ_VOLTAGE, div_1000, "voltage-mV"),
        22: _p(SZ_CO2, identity, "co2-ppm"),
        23: _p(SZ_VOC, identity, "voc-ppb"),
        24: _p(SZ_TEMPERATURE, div_10, "temp-dp24"),
        # radar & presence (multi-use, the attribute must be available)
        101: _p(
            SZ_ALARM_MOTION,
            lambda v: v > 0,
            "motion-state",
            alt_attribute=SZ_BATTERY,
        ),
        102: _p(
            SZ_ILLUMINANCE,
            identity,
            "lux-fantem",
            setting="fading_time",
            alt_attribute=SZ_ALARM_CONTACT,
            alt_transform=invert,
        ),
        103: _p(SZ_TEMPERATURE, div_10, "temp-fantem"),
        104: _p(SZ_HUMIDITY, identity, "humid-fantem", setting="fading_time"),
        105: _p(SZ_TEMPERATURE, identity, "temp-siren", setting="keep_time"),
        106: _p(SZ_ILLUMINANCE, identity, "lux-radar", setting="illuminance"),
        107: _p(None, name="led-indicator-dp107", setting="indicator"),
        108: _p(None, name="radar-small-dist", setting="small_detection_distance"),
        109: _p(None, name="radar-small-sens", setting="small_detection_sensitivity"),
        # advanced settings
        110: _p(None, name="pir-vacancy-delay", setting="vacancy_delay"),
        111: _p(None, name="pir-lux-on", setting="light_on_luminance_prefer"),
        112: _p(None, name="pir-lux-off", setting="light_off_luminance_prefer"),
        113: _p(None, name="pir-mode", setting="mode"),
        114: _p(None, name="time-dp114", setting="time"),
        115: _p(None, name="alarm-time", setting="alarm_time"),
        116: _p(None, name="alarm-volume", setting="alarm_volume"),
        117: _p(None, name="working-mode", setting="working_mode"),
        # energy monitoring (sockets, plugs)
        132: _p(SZ_POWER, div_10, "power-W-dp132"),
        133: _p(SZ_CURRENT, div_1000, "current-mA-dp133"),
        134: _p(SZ_ENERGY, div_100, "energy-kWh-dp134"),
    }
)
