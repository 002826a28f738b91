#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator."""

from __future__ import annotations

from .codec import DpValueT, decode_value, encode_value
from .const import (
    CLUSTER_TIME,
    CLUSTER_TUYA,
    PowerSource,
    ProtocolFamily,
    TimeSyncFormat,
    TypeTag,
)
from .frame import (
    FRAME_LOGGER,
    PARSING_STRATEGIES,
    DataPointRecord,
    FrameDecoder,
    ParsingStrategy,
    build_data_query,
    build_dp_frame,
    build_dp_query,
    build_dp_record,
    build_mcu_version_request,
    build_time_frame,
    decode_frame,
    is_time_request,
)
from .logger import set_frame_logging, set_logging
from .retry import RetryPolicy
from .time_sync import (
    TimeSyncTracker,
    build_payload,
    fallback_chain,
    parse_payload,
    select_format,
)
from .version import VERSION

__all__ = [
    "VERSION",
    #
    "CLUSTER_TIME",
    "CLUSTER_TUYA",
    "FRAME_LOGGER",
    "PARSING_STRATEGIES",
    #
    "DataPointRecord",
    "DpValueT",
    "FrameDecoder",
    "ParsingStrategy",
    "PowerSource",
    "ProtocolFamily",
    "RetryPolicy",
    "TimeSyncFormat",
    "TimeSyncTracker",
    "TypeTag",
    #
    "build_data_query",
    "build_dp_frame",
    "build_dp_query",
    "build_dp_record",
    "build_mcu_version_request",
    "build_payload",
    "build_time_frame",
    "decode_frame",
    "decode_value",
    "encode_value",
    "fallback_chain",
    "is_time_request",
    "parse_payload",
    "select_format",
    "set_frame_logging",
    "set_logging",
]
