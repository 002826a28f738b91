#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

This module wraps logger to provide bespoke functionality, especially for frame logs.
"""

from __future__ import annotations

import logging
import logging.handlers
import shutil
import sys
from datetime import datetime as dt
from typing import Any

import colorlog

from .version import VERSION

DEFAULT_FMT = "%(asctime)s.%(msecs)03d %(message)s"
DEFAULT_DATEFMT = "%H:%M:%S"

CONSOLE_COLS = int(shutil.get_terminal_size(fallback=(int(2e3), 24)).columns - 1)
CONSOLE_FMT = f"%(asctime)s %(device_id)s%(frame).{CONSOLE_COLS - 24}s"

FRAME_LOG_FMT = "%(asctime)s %(device_id)s%(frame)s"

BANDW_SUFFIX = "%(message)s%(comment)s"
COLOR_SUFFIX = "%(yellow)s%(message)s%(cyan)s%(comment)s"

LOG_COLOURS = {
    "DEBUG": "white",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "bold_red",
    "CRITICAL": "bold_red",
}  # default_log_colors


class _FrameRecordFilter(logging.Filter):
    """Ensure the bespoke fields of a frame record exist, and are decorated."""

    def filter(self, record: logging.LogRecord) -> bool:
        frame = getattr(record, "_frame", "")
        strategy = getattr(record, "strategy", "")
        record.frame = f" [{strategy}] {frame}" if frame else ""
        record.device_id = getattr(record, "device_id", "") or ""

        if record.msg:
            record.msg = f" < {record.msg}"
        comment = getattr(record, "comment", "")
        record.comment = f" # {comment}" if comment else ""
        return True


class _Formatter:  # format asctime with configurable precision
    """Formatter instances convert a LogRecord to text."""

    default_time_format = "%Y-%m-%dT%H:%M:%S.%f"
    precision = 3

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Return the creation time (asctime) of the LogRecord as formatted text.

        Allows for sub-millisecond precision, using datetime instead of time objects.
        """
        result = dt.fromtimestamp(record.created).strftime(
            datefmt or self.default_time_format
        )
        if "f" not in self.default_time_format:
            return result
        precision = self.precision or -1
        return result[: precision - 6] if -1 <= precision < 6 else result


class ColoredFormatter(_Formatter, colorlog.ColoredFormatter):  # type: ignore[misc]
    pass


class Formatter(_Formatter, logging.Formatter):  # type: ignore[misc]
    pass


class StdErrFilter(logging.Filter):  # record.levelno >= logging.WARNING
    """For sys.stderr, process only wanted records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.WARNING


class StdOutFilter(logging.Filter):  # record.levelno < logging.WARNING
    """For sys.stdout, process only wanted records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


def set_logging(level: int = logging.WARNING, use_color: bool = True) -> None:
    """Configure the root logger for console (application/debug) logging."""

    handler = colorlog.StreamHandler() if use_color else logging.StreamHandler()
    if use_color:
        handler.setFormatter(
            colorlog.ColoredFormatter(
                fmt=f"%(log_color)s{DEFAULT_FMT}",
                datefmt=DEFAULT_DATEFMT,
                log_colors=LOG_COLOURS,
            )
        )
    else:
        handler.setFormatter(logging.Formatter(fmt=DEFAULT_FMT, datefmt=DEFAULT_DATEFMT))

    root = logging.getLogger()
    for old in root.handlers[:]:  # set_logging() may be called several times
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)


def set_frame_logging(
    logger: logging.Logger,
    cc_console: bool = False,
    file_name: str | None = None,
    rotate_backups: int = 0,
    rotate_bytes: int | None = None,
) -> None:
    """Create/configure handlers, formatters, etc. for the frame log.

    Parameters:
    - rotate_backups: keep this many copies, and rotate at midnight unless:
    - rotate_bytes:   rotate log files when log > rotate_bytes
    """

    logger.propagate = False  # frame log is distinct from any app/debug logging
    logger.setLevel(logging.DEBUG)  # must be at least .INFO

    for handler in logger.handlers[:]:  # avoid duplicates if called several times
        logger.removeHandler(handler)
    for fltr in logger.filters[:]:
        logger.removeFilter(fltr)

    if not file_name and not cc_console:
        logger.setLevel(logging.CRITICAL)
        return

    logger.addFilter(_FrameRecordFilter())

    handler: logging.Handler
    if file_name:
        if rotate_bytes:
            handler = logging.handlers.RotatingFileHandler(
                file_name, maxBytes=rotate_bytes, backupCount=rotate_backups or 2
            )
        elif rotate_backups:
            handler = logging.handlers.TimedRotatingFileHandler(
                file_name, when="MIDNIGHT", backupCount=rotate_backups
            )
        else:
            handler = logging.FileHandler(file_name)

        handler.setFormatter(Formatter(fmt=FRAME_LOG_FMT + BANDW_SUFFIX))
        handler.setLevel(logging.INFO)
        logger.addHandler(handler)

    if cc_console:  # CC: output to stdout/stderr
        console_fmt = ColoredFormatter(
            fmt=f"%(log_color)s{CONSOLE_FMT + COLOR_SUFFIX}",
            reset=True,
            log_colors=LOG_COLOURS,
        )

        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(console_fmt)
        handler.setLevel(logging.WARNING)
        handler.addFilter(StdErrFilter())
        logger.addHandler(handler)

        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(console_fmt)
        handler.setLevel(logging.DEBUG)
        handler.addFilter(StdOutFilter())
        logger.addHandler(handler)

    extras: dict[str, Any] = {"comment": f"datapoint_tx {VERSION}"}
    logger.warning("", extra=extras)  # initial log line
