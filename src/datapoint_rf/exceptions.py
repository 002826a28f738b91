#!/usr/bin/env python3
"""DataPoint RF - exceptions above the codec/frame/time-sync layer."""

from __future__ import annotations

from datapoint_tx.exceptions import (
    DataPointException as DataPointException,
    FrameInvalid as FrameInvalid,
    SendFailed as SendFailed,
    TimeFormatInvalid as TimeFormatInvalid,
    TransportError as TransportError,
    ValueEncodeInvalid as ValueEncodeInvalid,
)


class _DataPointUpperError(DataPointException):
    """A failure in the upper layer (arbitration, routing, state/config, store)."""


########################################################################################
# Errors in protocol arbitration


class ArbitrationError(_DataPointUpperError):
    """An error occurred when arbitrating a device's protocol."""


class ArbitrationFsmError(ArbitrationError):
    """The arbitrator FSM was/became inconsistent (this shouldn't happen)."""


########################################################################################
# Errors in the device config, mappings & state


class MappingInvalid(_DataPointUpperError):
    """The explicit DP mapping is not valid."""

    HINT = "check the mapping against SCH_DP_MAPPING"


class DeviceNotAttached(_DataPointUpperError):
    """The device is not attached to the engine."""


class StoreError(_DataPointUpperError):
    """The persisted state could not be read or written."""
