#!/usr/bin/env python3
"""DataPoint RF - exceptions within the codec/frame/time-sync layer."""

from __future__ import annotations


class _DataPointBaseException(Exception):
    """Base class for all datapoint_tx exceptions."""

    pass


class DataPointException(_DataPointBaseException):
    """Base class for all datapoint_tx exceptions."""

    HINT: None | str = None

    def __init__(self, *args: object):
        super().__init__(*args)
        self.message: str | None = args[0] if args else None  # type: ignore[assignment]

    def __str__(self) -> str:
        if self.message and self.HINT:
            return f"{self.message} (hint: {self.HINT})"
        if self.message:
            return self.message
        if self.HINT:
            return f"Hint: {self.HINT}"
        return ""


class _DataPointLowerError(DataPointException):
    """A failure in the lower layer (codec, frame, time sync, transport)."""


########################################################################################
# Errors when building frames & values (decoding never raises)


class CodecError(_DataPointLowerError):
    """A value could not be encoded for the wire."""


class ValueEncodeInvalid(CodecError, ValueError):
    """The value does not fit the datatype's canonical width."""


class FrameError(_DataPointLowerError):
    """A frame could not be built."""


class FrameInvalid(FrameError, ValueError):
    """The frame's fields are out of range."""


########################################################################################
# Errors in the time sync sub-protocol


class TimeSyncError(_DataPointLowerError):
    """An error occurred when building or parsing a time payload."""


class TimeFormatInvalid(TimeSyncError, ValueError):
    """The time format is not known."""

    HINT = "use one of the TimeSyncFormat values"


########################################################################################
# Errors at the transport boundary (wrapping the collaborators' own errors)


class TransportError(_DataPointLowerError):
    """An error when sending bytes via the external transport."""


class SendFailed(TransportError):
    """The transport failed to send a frame (the query sequencer may retry it)."""
