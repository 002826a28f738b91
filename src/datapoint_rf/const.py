#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator."""

from __future__ import annotations

from enum import StrEnum
from typing import Final

from datapoint_tx.const import (  # noqa: F401
    CLUSTER_TIME,
    CLUSTER_TUYA,
    DP_TIME_SYNC,
    DP_TIME_VALID,
    PowerSource,
    ProtocolFamily,
    TimeSyncFormat,
    TypeTag,
)

__dev_mode__ = False
DEV_MODE = __dev_mode__


DECISION_WINDOW_SECS: Final[float] = 15 * 60  # the arbitration window

UNKNOWN_DPS_MAX: Final[int] = 64  # diagnostics only


class ArbitrationMode(StrEnum):
    UNDECIDED = "undecided"
    ZCL_ONLY = "zcl_only"
    TUYA_ONLY = "tuya_only"
    HYBRID = "hybrid"
    HYBRID_FORCED = "hybrid_forced"


# semantic attributes, as written via the external capability collaborator
SZ_ALARM_CONTACT: Final = "contact"
SZ_ALARM_MOTION: Final = "motion"
SZ_ALARM_TAMPER: Final = "tamper"
SZ_BATTERY: Final = "battery"
SZ_CO2: Final = "co2"
SZ_CURRENT: Final = "current"
SZ_ENERGY: Final = "energy"
SZ_HUMIDITY: Final = "humidity"
SZ_ILLUMINANCE: Final = "illuminance"
SZ_ONOFF: Final = "onoff"
SZ_POWER: Final = "power"
SZ_TARGET_TEMPERATURE: Final = "target_temperature"
SZ_TEMPERATURE: Final = "temperature"
SZ_VOC: Final = "voc"
SZ_VOLTAGE: Final = "voltage"


# device state & persistence keys
SZ_DECIDED: Final = "decided"
SZ_DEVICE_ID: Final = "device_id"
SZ_FORCED_ACTIVE: Final = "forced_active"
SZ_MAPPING: Final = "mapping"
SZ_MODE: Final = "mode"
SZ_TUYA_HITS: Final = "tuya_hits"
SZ_ZCL_HITS: Final = "zcl_hits"

SZ_ARBITRATION: Final = "arbitration"
SZ_AWAITING_REPORT: Final = "awaiting_report"
SZ_LAST_VALUES: Final = "last_values"
SZ_LEARNED: Final = "learned"
SZ_SETTINGS: Final = "settings"
SZ_STRATEGY_HINT: Final = "strategy_hint"
SZ_TIME_FORMAT: Final = "time_format"
SZ_UNKNOWN_DPS: Final = "unknown_dps"
