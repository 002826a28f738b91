#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

Recover DataPoint records from ambiguously-framed buffers, and build outbound frames.

The vendor framing varies by firmware, with no reliable length/version header, so a
buffer is tried against a fixed, ordered list of header offsets:

  `00 2A 01 03 01 | 01 01 00 01 01 | 02 02 00 04 00 00 00 EB`
   header (5)      DP 1, bool, 1     DP 2, value, 4
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable
from typing import Final, NamedTuple

from . import exceptions as exc
from .codec import DpValueT, decode_value, encode_value
from .const import (
    CLUSTER_TIME,
    CLUSTER_TUYA,
    CMD_DATA_REPORT,
    CMD_DATA_RESPONSE,
    CMD_TIME_SYNC,
    DEFAULT_CACHE_SIZE,
    DP_HEADER_LEN,
    DP_ID_MAX,
    DP_ID_MIN,
    DP_TIME_FRAME,
    DP_TIME_SYNC,
    DP_TYPE_TIMESTAMP_8,
    SCAN_MAX_PAYLOAD_LEN,
    TYPE_TAG_MAX,
    TimeSyncFormat,
    TypeTag,
)

# NOTE: All debug flags should be False for deployment to end-users
_DBG_FORCE_LOG_FRAMES: Final[bool] = False

_LOGGER = logging.getLogger(__name__)
FRAME_LOGGER = logging.getLogger(f"{__package__}.frame_log")


class DataPointRecord(NamedTuple):
    """A typed DataPoint, as recovered from a frame."""

    dp_id: int
    type_tag: TypeTag
    length: int
    payload: bytes

    def __str__(self) -> str:
        return f"DP{self.dp_id:03d} {self.type_tag.name}={self.value!r}"

    @property
    def value(self) -> DpValueT:
        """Return the decoded (semantic) value of the payload."""
        return decode_value(self.type_tag, self.payload)


class ParsingStrategy(NamedTuple):
    name: str
    header_offset: int


# status, seq(2), cmd, count, through to no header at all
PARSING_STRATEGIES: Final[tuple[ParsingStrategy, ...]] = (
    ParsingStrategy("format_a", 5),
    ParsingStrategy("format_b", 4),
    ParsingStrategy("format_c", 3),
    ParsingStrategy("format_d", 2),
    ParsingStrategy("format_e", 0),
)
STRATEGY_BY_OFFSET: Final[dict[int, ParsingStrategy]] = {
    s.header_offset: s for s in PARSING_STRATEGIES
}
SZ_SCAN: Final = "scan"


def _read_header(buffer: bytes, offset: int) -> tuple[int, int, int] | None:
    """Return the (id, type, length) of a plausible record at offset, else None."""

    if offset + DP_HEADER_LEN > len(buffer):
        return None
    dp_id, type_tag = buffer[offset], buffer[offset + 1]
    length = int.from_bytes(buffer[offset + 2 : offset + 4], "big")

    if not DP_ID_MIN <= dp_id <= DP_ID_MAX or type_tag > TYPE_TAG_MAX:
        return None
    if offset + DP_HEADER_LEN + length > len(buffer):
        return None
    return dp_id, type_tag, length


def _make_record(buffer: bytes, offset: int, header: tuple[int, int, int]) -> DataPointRecord:
    dp_id, type_tag, length = header
    start = offset + DP_HEADER_LEN
    return DataPointRecord(dp_id, TypeTag(type_tag), length, buffer[start : start + length])


def walk_records(buffer: bytes, header_offset: int) -> tuple[list[DataPointRecord], int]:
    """Walk the buffer from header_offset, returning the records & the end offset.

    The walk stops at the first header that is out of bounds; the remaining bytes are
    simply not a further record under this hypothesis.
    """

    records: list[DataPointRecord] = []
    offset = header_offset

    while header := _read_header(buffer, offset):
        records.append(_make_record(buffer, offset, header))
        offset += DP_HEADER_LEN + header[2]

    return records, offset


def scan_records(buffer: bytes) -> list[DataPointRecord]:
    """Scan the buffer byte-by-byte for plausible records (the last resort)."""

    records: list[DataPointRecord] = []
    offset = 0

    while offset + DP_HEADER_LEN <= len(buffer):
        header = _read_header(buffer, offset)
        if header is None or header[2] > SCAN_MAX_PAYLOAD_LEN:
            offset += 1
            continue
        records.append(_make_record(buffer, offset, header))
        offset += DP_HEADER_LEN + header[2]

    return records


def _search(buffer: bytes) -> tuple[list[DataPointRecord], ParsingStrategy | None]:
    """Return the records of the first succeeding strategy, else of the scan."""

    for strategy in PARSING_STRATEGIES:
        if len(buffer) < strategy.header_offset + DP_HEADER_LEN:
            continue
        records, _ = walk_records(buffer, strategy.header_offset)
        if records:
            return records, strategy

    return scan_records(buffer), None


def decode_frame(buffer: bytes) -> list[DataPointRecord]:
    """Return the DataPoint records within a raw frame (possibly none).

    Will never raise, whatever the buffer's contents.
    """
    return _search(bytes(buffer))[0]


class FrameDecoder:
    """A frame decoder that remembers which strategy last succeeded, per device.

    The hint is a soft cache: it reduces the work done for a device whose framing is
    stable, but never changes the result of the full ordered search.
    """

    def __init__(self, max_devices: int = DEFAULT_CACHE_SIZE) -> None:
        self._max_devices = max_devices
        self._hints: OrderedDict[str, int] = OrderedDict()  # device_id -> offset

    def __repr__(self) -> str:
        return f"FrameDecoder({len(self._hints)} hints)"

    def hint(self, device_id: str) -> int | None:
        """Return the offset that last yielded the records for this device, if any."""
        return self._hints.get(device_id)

    def forget(self, device_id: str) -> None:
        self._hints.pop(device_id, None)

    def _remember(self, device_id: str, offset: int) -> None:
        self._hints[device_id] = offset
        self._hints.move_to_end(device_id)
        while len(self._hints) > self._max_devices:
            self._hints.popitem(last=False)

    def _try_hint(self, buffer: bytes, offset: int) -> list[DataPointRecord]:
        """Return the hinted walk only if no higher-priority strategy would succeed."""

        for strategy in PARSING_STRATEGIES:
            if strategy.header_offset == offset:
                break
            if _read_header(buffer, strategy.header_offset):
                return []  # a higher-priority strategy yields at least one record
        return walk_records(buffer, offset)[0]

    def decode(self, device_id: str, buffer: bytes) -> list[DataPointRecord]:
        """Return the DataPoint records within a device's raw frame (possibly none)."""

        buffer = bytes(buffer)
        strategy: ParsingStrategy | None

        if (offset := self._hints.get(device_id)) is not None and (
            records := self._try_hint(buffer, offset)
        ):
            strategy = STRATEGY_BY_OFFSET[offset]
        else:
            records, strategy = _search(buffer)

        if strategy is not None:
            self._remember(device_id, strategy.header_offset)

        if _DBG_FORCE_LOG_FRAMES or FRAME_LOGGER.isEnabledFor(logging.INFO):
            FRAME_LOGGER.info(
                "%s",
                ", ".join(str(r) for r in records) or "no records",
                extra={
                    "_frame": buffer.hex(" ").upper(),
                    "device_id": device_id,
                    "strategy": strategy.name if strategy else SZ_SCAN,
                },
            )
        return records


def is_time_request(cluster_id: int, command_id: int | None, payload: bytes) -> bool:
    """Return True if the frame is a device-initiated request for the time.

    Devices 'hungry' for time send a ZCL Time read, an (almost) empty EF00 0x24, or a
    report of the time sync DP.
    """

    if cluster_id == CLUSTER_TIME:
        return True
    if cluster_id != CLUSTER_TUYA:
        return False

    if command_id == CMD_TIME_SYNC:
        return len(payload) <= 2
    if command_id in (CMD_DATA_REPORT, CMD_DATA_RESPONSE):
        return any(r.dp_id == DP_TIME_SYNC for r in decode_frame(payload))
    return False


def _seq_to_bytes(seq: int) -> bytes:
    if not 0 <= seq <= 0xFFFF:
        raise exc.FrameInvalid(f"Invalid seq: {seq}, is not a uint16")
    return seq.to_bytes(2, "big")


def build_dp_record(
    dp_id: int, type_tag: TypeTag | int, value: DpValueT | None = None, *, raw: bytes | None = None
) -> bytes:
    """Return a DataPoint record: `id | type | len(2) | payload`."""

    if not 0 < dp_id <= 0xFF:
        raise exc.FrameInvalid(f"Invalid dp_id: {dp_id}, is not a uint8")

    payload = raw if raw is not None else encode_value(type_tag, value)  # type: ignore[arg-type]
    if len(payload) > 0xFFFF:
        raise exc.FrameInvalid(f"Invalid payload: {len(payload)} bytes is too long")

    return bytes([dp_id, int(type_tag)]) + len(payload).to_bytes(2, "big") + payload


def build_dp_frame(seq: int, records: Iterable[bytes]) -> bytes:
    """Return the body of an EF00 setData: `status | transid | records...`."""
    return bytes([0x00, _seq_to_bytes(seq)[1]]) + b"".join(records)


def build_data_query(seq: int) -> bytes:
    """Return a request for the device to report all of its DPs."""
    return _seq_to_bytes(seq) + b"\x02"


def build_mcu_version_request(seq: int) -> bytes:
    return _seq_to_bytes(seq) + b"\x10"


def build_dp_query(seq: int, dp_id: int) -> bytes:
    """Return a request for the device to report a single DP."""

    if not DP_ID_MIN <= dp_id <= 0xFF:
        raise exc.FrameInvalid(f"Invalid dp_id: {dp_id}, is not a uint8")
    return _seq_to_bytes(seq) + bytes([dp_id])


def build_time_frame(fmt: TimeSyncFormat, payload: bytes, seq: int = 0) -> bytes:
    """Return the body of an EF00 time response, wrapping a time payload."""

    type_tag = DP_TYPE_TIMESTAMP_8 if fmt == TimeSyncFormat.TUYA_DUAL_2000 else TypeTag.RAW
    return build_dp_frame(seq, [build_dp_record(DP_TIME_FRAME, type_tag, raw=payload)])
