#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

Works with devices that speak (amongst others):
- the vendor DataPoint protocol, tunnelled in the 0xEF00 cluster
- native ZCL, alongside (or instead of) the above
"""

from __future__ import annotations


from datapoint_tx import DataPointRecord, TimeSyncFormat  # noqa: F401

from .arbitrator import ArbitratorContext  # noqa: F401
from .const import ArbitrationMode, PowerSource, ProtocolFamily  # noqa: F401
from .device import DeviceContext  # noqa: F401
from .engine import Engine  # noqa: F401
from .router import DataPointRouter, DpMapping  # noqa: F401
from .store import MemoryStateStore, SqliteStateStore, StateStore  # noqa: F401
from .version import VERSION  # noqa: F401
