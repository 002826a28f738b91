#!/usr/bin/env python3
"""DataPoint RF - Codec layer - Helper functions for DataPoint values.

Decoding never raises: a malformed payload degrades to a best-effort value, as such
payloads are common and must not abort a session. Encoding is for egress, and will
raise a ValueEncodeInvalid (a ValueError) if a value cannot be represented.
"""

from __future__ import annotations

from typing import Final, TypeAlias

from . import exceptions as exc
from .const import TypeTag

DpValueT: TypeAlias = bool | int | str | bytes

_I32_MIN: Final[int] = -(2**31)
_I32_MAX: Final[int] = 2**31 - 1
_BITMAP_WIDTHS: Final[tuple[int, ...]] = (1, 2, 4)


def dp_to_bool(value: bytes) -> bool:  # 00 is False, anything else is True
    """Convert a 1-byte payload to a bool."""
    return bool(value) and value[0] != 0x00


def dp_from_bool(value: bool) -> bytes:
    """Convert a bool to a 1-byte payload."""
    return b"\x01" if value else b"\x00"


def dp_to_value(value: bytes) -> int:  # a signed, big-endian i32
    """Convert a 1, 2 or 4-byte payload to a signed int.

    Irregular widths are best-effort: the first 4 bytes of a wider payload, or all the
    bytes of a narrower one, sign-extended.
    """
    if not value:
        return 0
    return int.from_bytes(value[:4], "big", signed=True)


def dp_from_value(value: int) -> bytes:  # always 4 bytes
    """Convert a signed int to a 4-byte payload."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise exc.ValueEncodeInvalid(f"Invalid value: {value}, is not an int")
    if not _I32_MIN <= value <= _I32_MAX:
        raise exc.ValueEncodeInvalid(f"Invalid value: {value}, is not an i32")
    return value.to_bytes(4, "big", signed=True)


def dp_to_str(value: bytes) -> str:
    """Convert a UTF-8 payload to a str, stripping any trailing NULs."""
    return value.rstrip(b"\x00").decode("utf-8", errors="replace")


def dp_from_str(value: str) -> bytes:
    return value.encode("utf-8")


def dp_to_enum(value: bytes) -> int:  # the raw ordinal, no symbolic mapping
    """Convert a 1-byte payload to an ordinal."""
    return value[0] if value else 0


def dp_from_enum(value: int) -> bytes:
    """Convert an ordinal to a 1-byte payload."""
    if not isinstance(value, int) or not 0 <= value <= 0xFF:
        raise exc.ValueEncodeInvalid(f"Invalid value: {value}, is not a uint8")
    return bytes([value])


def dp_to_bitmap(value: bytes) -> int | bytes:
    """Convert a 1, 2 or 4-byte payload to an unsigned int, else return the bytes."""
    if len(value) in _BITMAP_WIDTHS:
        return int.from_bytes(value, "big", signed=False)
    return bytes(value)


def dp_from_bitmap(value: int | bytes) -> bytes:
    """Convert an unsigned int to the narrowest 1, 2 or 4-byte payload."""
    if isinstance(value, bytes | bytearray):
        return bytes(value)
    if not isinstance(value, int) or value < 0:
        raise exc.ValueEncodeInvalid(f"Invalid value: {value}, is not a bitmap")
    for width in _BITMAP_WIDTHS:
        if value < 2 ** (width * 8):
            return value.to_bytes(width, "big")
    raise exc.ValueEncodeInvalid(f"Invalid value: {value}, is wider than 32 bits")


_DECODERS: Final = {
    TypeTag.RAW: bytes,
    TypeTag.BOOL: dp_to_bool,
    TypeTag.VALUE: dp_to_value,
    TypeTag.STRING: dp_to_str,
    TypeTag.ENUM: dp_to_enum,
    TypeTag.BITMAP: dp_to_bitmap,
}

_ENCODERS: Final = {
    TypeTag.RAW: bytes,
    TypeTag.BOOL: dp_from_bool,
    TypeTag.VALUE: dp_from_value,
    TypeTag.STRING: dp_from_str,
    TypeTag.ENUM: dp_from_enum,
    TypeTag.BITMAP: dp_from_bitmap,
}


def decode_value(type_tag: TypeTag | int, payload: bytes) -> DpValueT:
    """Return the semantic value of a DataPoint payload (an unknown tag is RAW)."""

    try:
        decoder = _DECODERS[TypeTag(type_tag)]
    except ValueError:
        return bytes(payload)
    return decoder(bytes(payload))  # type: ignore[operator]


def encode_value(type_tag: TypeTag | int, value: DpValueT) -> bytes:
    """Return the wire payload of a DataPoint value."""

    try:
        encoder = _ENCODERS[TypeTag(type_tag)]
    except ValueError as err:
        raise exc.ValueEncodeInvalid(f"Invalid type tag: {type_tag}") from err
    return encoder(value)  # type: ignore[operator]
