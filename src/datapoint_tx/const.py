#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator."""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Final

__dev_mode__ = False  # NOTE: this is const.py
DEV_MODE = __dev_mode__


# used by the frame decoder...
DP_ID_MIN: Final[int] = 1  # ids outside [1, 200] are noise, not errors
DP_ID_MAX: Final[int] = 200
DP_HEADER_LEN: Final[int] = 4  # id (1), type (1), length (2)
SCAN_MAX_PAYLOAD_LEN: Final[int] = 32  # suppress false positives when scanning

DEFAULT_CACHE_SIZE: Final[int] = 256  # devices in the offset hint table


# cluster identifiers, canonicalised by the transport...
CLUSTER_TUYA: Final[int] = 0xEF00  # 61184, the DP tunnel
CLUSTER_TIME: Final[int] = 0x000A  # ZCL Time cluster

# EF00 command identifiers
CMD_SET_DATA: Final[int] = 0x00
CMD_DATA_REPORT: Final[int] = 0x01
CMD_DATA_RESPONSE: Final[int] = 0x02
CMD_DATA_QUERY: Final[int] = 0x03
CMD_MCU_VERSION: Final[int] = 0x10
CMD_TIME_SYNC: Final[int] = 0x24  # both request & response

ZCL_READ_ATTRIBUTES_RSP: Final[int] = 0x01  # a ZCL general command, e.g. a Time reply

# well-known DP ids
DP_TIME_FRAME: Final[int] = 0x24
DP_TIME_SYNC: Final[int] = 103
DP_TIME_VALID: Final[int] = 106

# datatype of a time response record, for the 8-byte dual timestamp
DP_TYPE_TIMESTAMP_8: Final[int] = 0x0C

TUYA_EPOCH_OFFSET: Final[int] = 946684800  # secs from 1970-01-01 to 2000-01-01


# used by the time sync tracker / engine...
TIME_DOUBLE_SEND_DELAY: Final[float] = 0.2  # secs, for short MCU listening windows
TIME_REREQUEST_LIMIT: Final[int] = 3  # re-requests before advancing the fallback
TIME_REREQUEST_WINDOW: Final[float] = 60.0  # secs
TIME_PUSH_DELAY: Final[float] = 900.0  # secs, push if the device never asks
TIME_PUSH_INTERVAL: Final[float] = 24 * 60 * 60  # secs, then re-push this often
MAX_FALLBACK_CYCLES: Final[int] = 5


# used by the retry policy...
RETRY_LIMIT_MAX: Final[int] = 5  # always a finite budget
RETRY_BASE_DELAY: Final[float] = 2.0  # secs
RETRY_MAX_DELAY: Final[float] = 30.0  # secs, clamped to [30, 60]
RETRY_JITTER: Final[float] = 0.25  # +/- 25%

BATTERY_MAX_RETRIES: Final[int] = 2
BATTERY_SEND_TIMEOUT: Final[float] = 5.0
MAINS_MAX_RETRIES: Final[int] = 5
MAINS_SEND_TIMEOUT: Final[float] = 15.0

DEFAULT_GAP_BETWEEN_QUERIES: Final[float] = 0.2  # secs
MIN_GAP_BETWEEN_QUERIES: Final[float] = 0.1
MAX_GAP_BETWEEN_QUERIES: Final[float] = 0.3


SZ_DP_ID: Final = "dp_id"
SZ_TYPE_TAG: Final = "type_tag"
SZ_LENGTH: Final = "length"
SZ_PAYLOAD: Final = "payload"
SZ_VALUE: Final = "value"
SZ_STRATEGY: Final = "strategy"


class TypeTag(IntEnum):
    """The DataPoint datatype, as carried on the wire."""

    RAW = 0
    BOOL = 1
    VALUE = 2
    STRING = 3
    ENUM = 4
    BITMAP = 5


TYPE_TAG_MAX: Final[int] = max(TypeTag)


class TimeSyncFormat(StrEnum):
    # epoch based (4-8 bytes)
    ZIGBEE_2000 = "zigbee_2000"
    ZIGBEE_2000_LOCAL = "zigbee_2000_local"
    ZIGBEE_2000_LE = "zigbee_2000_le"
    UNIX_1970 = "unix_1970"
    UNIX_1970_LOCAL = "unix_1970_local"
    UNIX_1970_LE = "unix_1970_le"
    UNIX_1970_MS = "unix_1970_ms"
    # date-string (7-12 bytes)
    TUYA_STANDARD = "tuya_standard"  # local
    TUYA_UTC = "tuya_utc"
    TUYA_MCU = "tuya_mcu"  # 9 bytes with a 00-07 header
    TUYA_EXT_TZ = "tuya_ext_tz"
    TUYA_FULL_TZ = "tuya_full_tz"
    TUYA_GATEWAY = "tuya_gateway"
    # dual timestamp (8 bytes), local then UTC
    TUYA_DUAL_2000 = "tuya_dual_2000"
    TUYA_DUAL_1970 = "tuya_dual_1970"


class PowerSource(StrEnum):
    BATTERY = "battery"
    MAINS = "mains"


class ProtocolFamily(StrEnum):
    ZCL = "zcl"
    TUYA = "tuya"
