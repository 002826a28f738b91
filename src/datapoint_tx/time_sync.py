#!/usr/bin/env python3
"""DataPoint RF - the time synchronisation sub-protocol.

Devices request the time, but never confirm receipt of a reply. There is no protocol
level negotiation of the encoding, so it is selected empirically by device class, and
a fixed fallback chain is available to the caller if a device keeps re-requesting.
"""

from __future__ import annotations

import logging
import struct
from collections import deque
from datetime import UTC, datetime as dt, timedelta as td, timezone
from types import MappingProxyType
from typing import Any, Final

from . import exceptions as exc
from .const import (
    MAX_FALLBACK_CYCLES,
    TIME_REREQUEST_LIMIT,
    TIME_REREQUEST_WINDOW,
    TUYA_EPOCH_OFFSET,
    TimeSyncFormat as F,
)

_LOGGER = logging.getLogger(__name__)


SZ_VALID: Final = "valid"
SZ_ERROR: Final = "error"
SZ_EPOCH: Final = "epoch"
SZ_SECONDS: Final = "seconds"
SZ_LOCAL: Final = "local"
SZ_UTC: Final = "utc"
SZ_WEEKDAY: Final = "weekday"
SZ_TZ_MINUTES: Final = "tz_minutes"
SZ_DST: Final = "dst"

_EPOCH_1970: Final = dt(1970, 1, 1, tzinfo=UTC)

FORMAT_WIDTHS: Final = MappingProxyType(
    {
        F.ZIGBEE_2000: 4,
        F.ZIGBEE_2000_LOCAL: 4,
        F.ZIGBEE_2000_LE: 4,
        F.UNIX_1970: 4,
        F.UNIX_1970_LOCAL: 4,
        F.UNIX_1970_LE: 4,
        F.UNIX_1970_MS: 8,
        F.TUYA_STANDARD: 7,
        F.TUYA_UTC: 7,
        F.TUYA_MCU: 9,
        F.TUYA_EXT_TZ: 9,
        F.TUYA_FULL_TZ: 10,
        F.TUYA_GATEWAY: 12,
        F.TUYA_DUAL_2000: 8,
        F.TUYA_DUAL_1970: 8,
    }
)

FORMAT_DESCRIPTIONS: Final = MappingProxyType(
    {
        F.ZIGBEE_2000: "Zigbee ZCL (4 bytes BE, epoch 2000, UTC)",
        F.ZIGBEE_2000_LOCAL: "Zigbee ZCL (4 bytes BE, epoch 2000, local)",
        F.ZIGBEE_2000_LE: "Zigbee ZCL (4 bytes LE, epoch 2000, UTC)",
        F.UNIX_1970: "Unix timestamp (4 bytes BE, epoch 1970, UTC)",
        F.UNIX_1970_LOCAL: "Unix timestamp (4 bytes BE, epoch 1970, local)",
        F.UNIX_1970_LE: "Unix timestamp (4 bytes LE, epoch 1970, UTC)",
        F.UNIX_1970_MS: "Unix milliseconds (8 bytes BE)",
        F.TUYA_STANDARD: "Tuya standard (7 bytes, local)",
        F.TUYA_UTC: "Tuya UTC (7 bytes, UTC)",
        F.TUYA_MCU: "Tuya MCU (9 bytes with 00-07 header)",
        F.TUYA_EXT_TZ: "Tuya extended (9 bytes with TZ minutes)",
        F.TUYA_FULL_TZ: "Tuya full TZ (10 bytes with TZ & DST)",
        F.TUYA_GATEWAY: "Tuya gateway (12 bytes, 4-digit year)",
        F.TUYA_DUAL_2000: "Tuya dual (8 bytes [local][UTC], epoch 2000)",
        F.TUYA_DUAL_1970: "Tuya dual (8 bytes [local][UTC], epoch 1970)",
    }
)

# exact manufacturer names, as observed in the field
MANUFACTURER_FORMAT_MAP: Final = MappingProxyType(
    {
        "_TZE200_bjawzodf": F.TUYA_DUAL_2000,  # LCD climate sensors
        "_TZE200_yjjdcqsq": F.TUYA_DUAL_2000,
        "_TZE204_yjjdcqsq": F.TUYA_DUAL_2000,
        "_TZE284_yjjdcqsq": F.TUYA_DUAL_2000,
        "_TZE200_qoy0ekbd": F.TUYA_DUAL_2000,
        "_TZE200_znbl8dj5": F.TUYA_DUAL_2000,
        "_TZE284_znbl8dj5": F.TUYA_DUAL_2000,
        "_TZE200_locansqn": F.TUYA_DUAL_2000,
        "_TZE200_vvmbj46n": F.TUYA_DUAL_2000,
        "_TZE284_vvmbj46n": F.TUYA_DUAL_2000,
        "_TZE200_utkemkbs": F.TUYA_DUAL_2000,
        "_TZE204_utkemkbs": F.TUYA_DUAL_2000,
        "_TZE284_utkemkbs": F.TUYA_DUAL_2000,
        "_TZE284_5m4nchbm": F.TUYA_DUAL_2000,
        "_TZE200_ckud7u2l": F.TUYA_FULL_TZ,  # TRVs & wall thermostats
        "_TZE200_aoclfnxz": F.TUYA_EXT_TZ,
        "_TZE200_kds0pmmv": F.TUYA_FULL_TZ,
        "_TZE200_bvu2wnxz": F.TUYA_EXT_TZ,
        "_TZE200_c88teujp": F.TUYA_EXT_TZ,
        "_TZE200_yw7cahqs": F.TUYA_FULL_TZ,
        "_TZE200_3towulqd": F.TUYA_MCU,  # PIR & mmWave radars
        "_TZE200_rhgsbacq": F.TUYA_MCU,
        "_TZE204_sxm7l9xa": F.TUYA_MCU,
        "_TZE200_cowvfni3": F.TUYA_STANDARD,  # curtain motors, etc.
        "_TZE200_nv6nxo0c": F.TUYA_STANDARD,
        "_TZE200_fzo2pocs": F.TUYA_STANDARD,
    }
)

# ZCL-native manufacturer prefixes, consulted only after the keyword rules
_ZCL_PREFIXES: Final[tuple[str, ...]] = ("_tz3000_", "_tz3210_", "_tyzb01_")

# (keywords, format), in priority order: the first rule that matches wins
_KEYWORD_RULES: Final[tuple[tuple[tuple[str, ...], F], ...]] = (
    (("thermostat", "trv", "radiator", "valve", "heating"), F.TUYA_MCU),
    (("gateway", "hub", "bridge", "coordinator"), F.TUYA_GATEWAY),
    (("soil", "plant", "moisture"), F.UNIX_1970),
)
_LCD_PREFIXES: Final[tuple[str, ...]] = ("_tze284_", "_tze200_")
_LCD_KEYWORDS: Final[tuple[str, ...]] = (
    "temp",
    "climate",
    "humid",
    "th",
    "lcd",
    "display",
)

FALLBACK_CHAINS: Final = MappingProxyType(
    {
        F.TUYA_DUAL_2000: (F.TUYA_DUAL_1970, F.TUYA_STANDARD),
        F.TUYA_MCU: (F.TUYA_STANDARD, F.TUYA_EXT_TZ),
        F.ZIGBEE_2000: (F.ZIGBEE_2000_LOCAL, F.UNIX_1970),
        F.UNIX_1970: (F.UNIX_1970_LOCAL, F.ZIGBEE_2000),
    }
)
_DEFAULT_FALLBACK: Final = (F.TUYA_DUAL_2000, F.ZIGBEE_2000)


def is_dst(now: dt) -> bool:
    """Return True if daylight saving time is in effect at the (aware) datetime.

    The UTC offset is compared to the lesser of the offsets on 1 Jan and 1 Jul, so no
    timezone database is required. A naive datetime is never in DST.

    A fixed-offset datetime that matches the host's local offset (e.g. the result of
    `dt.now().astimezone()`) is compared using the host's local rules.
    """

    if now.tzinfo is None or (offset := now.utcoffset()) is None:
        return False

    if isinstance(now.tzinfo, timezone) and offset == now.astimezone().utcoffset():
        jan = dt(now.year, 1, 1, 12).astimezone().utcoffset()
        jul = dt(now.year, 7, 1, 12).astimezone().utcoffset()
    else:
        jan = dt(now.year, 1, 1, tzinfo=now.tzinfo).utcoffset()
        jul = dt(now.year, 7, 1, tzinfo=now.tzinfo).utcoffset()

    if jan is None or jul is None:
        return False
    return offset > min(jan, jul)


def _date_fields(when: dt) -> bytes:  # [YY, MM, DD, hh, mm, ss, weekday]
    return bytes(
        [
            min(max(when.year - 2000, 0), 0xFF),  # 2000-2255
            when.month,
            when.day,
            when.hour,
            when.minute,
            when.second,
            when.isoweekday(),  # 1=Monday ... 7=Sunday
        ]
    )


def build_payload(fmt: F | str, now: dt, tz_offset_minutes: int = 0) -> bytes:
    """Return the time payload for a format; a pure function of its arguments.

    The DST flag may also depend upon the host's rules, see is_dst().

    A naive `now` is taken to be UTC. The local fields are `now` shifted by the offset.
    """

    try:
        fmt = F(fmt)
    except ValueError as err:
        raise exc.TimeFormatInvalid(f"Unknown time format: {fmt}") from err

    utc = (now if now.tzinfo else now.replace(tzinfo=UTC)).astimezone(UTC)
    local = (utc + td(minutes=tz_offset_minutes)).replace(tzinfo=None)

    unix_utc = int((utc - _EPOCH_1970).total_seconds())
    unix_local = unix_utc + tz_offset_minutes * 60
    zigbee_utc = max(0, unix_utc - TUYA_EPOCH_OFFSET)
    zigbee_local = max(0, unix_local - TUYA_EPOCH_OFFSET)

    tz_hours = tz_offset_minutes // 60
    tz_mins = abs(tz_offset_minutes) % 60
    dst = 1 if is_dst(now) else 0

    match fmt:
        case F.ZIGBEE_2000:
            return struct.pack(">I", zigbee_utc)
        case F.ZIGBEE_2000_LOCAL:
            return struct.pack(">I", zigbee_local)
        case F.ZIGBEE_2000_LE:
            return struct.pack("<I", zigbee_utc)
        case F.UNIX_1970:
            return struct.pack(">I", unix_utc)
        case F.UNIX_1970_LOCAL:
            return struct.pack(">I", unix_local)
        case F.UNIX_1970_LE:
            return struct.pack("<I", unix_utc)
        case F.UNIX_1970_MS:
            return struct.pack(">Q", (utc - _EPOCH_1970) // td(milliseconds=1))

        case F.TUYA_DUAL_2000:  # local first, then UTC
            return struct.pack(">II", zigbee_local, zigbee_utc)
        case F.TUYA_DUAL_1970:
            return struct.pack(">II", unix_local, unix_utc)

        case F.TUYA_STANDARD:
            return _date_fields(local)
        case F.TUYA_UTC:
            return _date_fields(utc)
        case F.TUYA_MCU:
            return b"\x00\x07" + _date_fields(local)
        case F.TUYA_EXT_TZ:
            return _date_fields(local) + struct.pack(">h", tz_offset_minutes)
        case F.TUYA_FULL_TZ:
            return _date_fields(local) + bytes([tz_hours & 0xFF, tz_mins, dst])
        case F.TUYA_GATEWAY:
            return (
                struct.pack(">H", local.year)
                + _date_fields(local)[1:]
                + struct.pack(">bBBB", tz_hours, tz_mins, dst, 0x00)
            )

    raise exc.TimeFormatInvalid(f"Unknown time format: {fmt}")  # pragma: no cover


def _parse_date_fields(buf: bytes, year: int) -> dict[str, Any]:
    month, day, hour, minute, second, weekday = buf[:6]
    return {
        SZ_LOCAL: dt(year, month, day, hour, minute, second),
        SZ_WEEKDAY: weekday,
    }


def _tz_from_fields(tz_hours: int, tz_mins: int) -> int:
    """Invert the (floored hours, absolute minutes) pair used by the TZ forms."""
    if tz_hours < 0 and tz_mins:
        return tz_hours * 60 + 60 - tz_mins
    return tz_hours * 60 + tz_mins


def parse_payload(fmt: F | str, payload: bytes) -> dict[str, Any]:
    """Return the time fields of a payload (for diagnostics), or why it is invalid.

    Never raises; `valid` is False if the payload does not fit the format.
    """

    try:
        fmt = F(fmt)
    except ValueError:
        return {SZ_VALID: False, SZ_ERROR: f"Unknown time format: {fmt}"}

    buf = bytes(payload)
    if len(buf) != FORMAT_WIDTHS[fmt]:
        return {
            SZ_VALID: False,
            SZ_ERROR: f"Expected {FORMAT_WIDTHS[fmt]} bytes, got {len(buf)}",
        }

    def from_epoch(secs: int, epoch_2000: bool) -> dt:
        return (_EPOCH_1970 + td(seconds=secs + (TUYA_EPOCH_OFFSET if epoch_2000 else 0)))

    result: dict[str, Any]
    try:
        match fmt:
            case F.ZIGBEE_2000 | F.ZIGBEE_2000_LOCAL | F.ZIGBEE_2000_LE:
                secs = struct.unpack("<I" if fmt == F.ZIGBEE_2000_LE else ">I", buf)[0]
                key = SZ_LOCAL if fmt == F.ZIGBEE_2000_LOCAL else SZ_UTC
                result = {SZ_EPOCH: 2000, SZ_SECONDS: secs, key: from_epoch(secs, True)}
            case F.UNIX_1970 | F.UNIX_1970_LOCAL | F.UNIX_1970_LE:
                secs = struct.unpack("<I" if fmt == F.UNIX_1970_LE else ">I", buf)[0]
                key = SZ_LOCAL if fmt == F.UNIX_1970_LOCAL else SZ_UTC
                result = {SZ_EPOCH: 1970, SZ_SECONDS: secs, key: from_epoch(secs, False)}
            case F.UNIX_1970_MS:
                msecs = struct.unpack(">Q", buf)[0]
                result = {SZ_EPOCH: 1970, SZ_UTC: _EPOCH_1970 + td(milliseconds=msecs)}
            case F.TUYA_DUAL_2000 | F.TUYA_DUAL_1970:
                local, utc = struct.unpack(">II", buf)
                epoch_2000 = fmt == F.TUYA_DUAL_2000
                result = {
                    SZ_EPOCH: 2000 if epoch_2000 else 1970,
                    SZ_LOCAL: from_epoch(local, epoch_2000).replace(tzinfo=None),
                    SZ_UTC: from_epoch(utc, epoch_2000),
                    SZ_TZ_MINUTES: (local - utc) // 60,
                }
            case F.TUYA_STANDARD | F.TUYA_EXT_TZ | F.TUYA_FULL_TZ:
                result = _parse_date_fields(buf[1:], 2000 + buf[0])
                if fmt == F.TUYA_EXT_TZ:
                    result[SZ_TZ_MINUTES] = struct.unpack(">h", buf[7:9])[0]
                elif fmt == F.TUYA_FULL_TZ:
                    tz_hours = struct.unpack(">b", buf[7:8])[0]
                    result[SZ_TZ_MINUTES] = _tz_from_fields(tz_hours, buf[8])
                    result[SZ_DST] = bool(buf[9])
            case F.TUYA_UTC:
                result = _parse_date_fields(buf[1:], 2000 + buf[0])
                result[SZ_UTC] = result.pop(SZ_LOCAL).replace(tzinfo=UTC)
            case F.TUYA_MCU:
                if buf[:2] != b"\x00\x07":
                    return {SZ_VALID: False, SZ_ERROR: f"Bad header: {buf[:2].hex()}"}
                result = _parse_date_fields(buf[3:], 2000 + buf[2])
            case F.TUYA_GATEWAY:
                result = _parse_date_fields(buf[2:], struct.unpack(">H", buf[:2])[0])
                tz_hours = struct.unpack(">b", buf[8:9])[0]
                result[SZ_TZ_MINUTES] = _tz_from_fields(tz_hours, buf[9])
                result[SZ_DST] = bool(buf[10])

    except (ValueError, OverflowError) as err:  # e.g. month 13, or day 0
        return {SZ_VALID: False, SZ_ERROR: str(err)}

    return {SZ_VALID: True, **result}


def select_format(
    model: str | None, manufacturer: str | None, override: F | str | None = None
) -> F:
    """Return the time format for a device class, by its identity strings.

    Selection is empirical: an exact manufacturer name, then priority-ordered keyword
    rules, then ZCL-native prefixes, else the 7-byte standard form.
    """

    if override:
        return F(override)

    manufacturer = manufacturer or ""
    if fmt := MANUFACTURER_FORMAT_MAP.get(manufacturer):
        return fmt

    ident = f"{manufacturer}_{model or ''}".lower()

    if any(p in ident for p in _LCD_PREFIXES) and any(k in ident for k in _LCD_KEYWORDS):
        return F.TUYA_DUAL_2000

    for keywords, fmt in _KEYWORD_RULES:
        if any(k in ident for k in keywords):
            return fmt

    if not manufacturer.lower().startswith("_t"):
        return F.ZIGBEE_2000

    if "_tze204_" in ident:
        return F.TUYA_EXT_TZ
    if any(k in ident for k in ("presence", "radar", "mmwave", "pir")):
        return F.TUYA_STANDARD
    if any(k in ident for k in ("schedule", "timer")):
        return F.TUYA_FULL_TZ

    if manufacturer.lower().startswith(_ZCL_PREFIXES):
        return F.ZIGBEE_2000

    return F.TUYA_STANDARD


def fallback_chain(fmt: F | str) -> list[F]:
    """Return the formats to try, in order, if the device rejects this one."""
    return list(FALLBACK_CHAINS.get(F(fmt), _DEFAULT_FALLBACK))


class TimeSyncTracker:
    """Track a device's time requests, advancing along the fallback chain if need be.

    No device ever confirms receipt, so a rejection is inferred from re-requests: if
    more than `limit` arrive within `window` secs, the next format is tried.
    """

    def __init__(
        self,
        primary: F,
        *,
        limit: int = TIME_REREQUEST_LIMIT,
        window: float = TIME_REREQUEST_WINDOW,
        max_cycles: int = MAX_FALLBACK_CYCLES,
    ) -> None:
        self._chain: list[F] = [primary, *fallback_chain(primary)]
        self._idx = 0
        self._cycles = 0
        self._confirmed = False

        self._limit = limit
        self._window = window
        self._max_cycles = max_cycles
        self._requests: deque[float] = deque()

    def __repr__(self) -> str:
        return f"TimeSyncTracker({self.format}, cycles={self._cycles})"

    @property
    def format(self) -> F:
        """Return the format currently in use."""
        return self._chain[self._idx]

    @property
    def cycles(self) -> int:
        return self._cycles

    def confirm(self) -> None:
        """Hold the current format (e.g. the device has reported a valid time)."""
        self._confirmed = True

    def note_request(self, when: float) -> F:
        """Record a time request (monotonic secs), and return the format to reply with."""

        while self._requests and when - self._requests[0] > self._window:
            self._requests.popleft()
        self._requests.append(when)

        if (
            not self._confirmed
            and len(self._requests) > self._limit
            and self._cycles < self._max_cycles
        ):
            prev = self.format
            self._idx = (self._idx + 1) % len(self._chain)
            self._cycles += 1
            self._requests.clear()
            _LOGGER.info(
                "Time format %s appears rejected, trying %s (cycle %s of %s)",
                prev,
                self.format,
                self._cycles,
                self._max_cycles,
            )

        return self.format
