#!/usr/bin/env python3
"""A CLI for the datapoint_rf library."""

from __future__ import annotations

import logging
import sys
from datetime import datetime as dt
from typing import Any, Final

import click
import voluptuous as vol
import yaml
from colorama import Fore, Style, init as colorama_init

from datapoint_rf import DataPointRouter, exceptions as exc
from datapoint_rf.const import TimeSyncFormat
from datapoint_rf.schemas import (
    SCH_DEVICE_TRAITS,
    SZ_BATTERY,
    SZ_MANUFACTURER,
    SZ_MAPPING,
    SZ_MODEL,
    SZ_TIME_FORMAT,
)
from datapoint_tx.frame import FRAME_LOGGER, STRATEGY_BY_OFFSET, SZ_SCAN, FrameDecoder
from datapoint_tx.logger import set_frame_logging, set_logging
from datapoint_tx.time_sync import (
    FORMAT_DESCRIPTIONS,
    FORMAT_WIDTHS,
    build_payload,
    fallback_chain,
    parse_payload,
    select_format,
)

SZ_DEBUG: Final = "debug"

DEFAULT_DEVICE_ID: Final = "cli"

COLORS = {
    "record": Fore.GREEN,
    "route": Fore.CYAN,
    "unrouted": Fore.YELLOW,
    "header": Style.BRIGHT + Fore.MAGENTA,
}

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


class HexParamType(click.ParamType):
    name = "hex"

    def convert(self, value: str | bytes, param: Any, ctx: Any) -> bytes:
        if isinstance(value, bytes):
            return value
        try:
            return bytes.fromhex(value.replace(":", " ").replace("-", " "))
        except ValueError:
            self.fail(f"{value!r} is not a valid hex string", param, ctx)


def _echo(color: str, text: str) -> None:
    click.echo(f"{color}{text}{Style.RESET_ALL}")


def _load_traits(traits_file: Any | None, **kwargs: Any) -> dict[str, Any]:
    """Return the device traits from a YAML file, overridden by any CLI options."""

    traits: dict[str, Any] = {}
    if traits_file:
        try:
            traits = yaml.safe_load(traits_file) or {}
        except yaml.YAMLError as err:
            raise click.BadParameter(f"invalid YAML: {err}") from err
    traits.update({k: v for k, v in kwargs.items() if v})

    try:
        return SCH_DEVICE_TRAITS(traits)  # type: ignore[no-any-return]
    except vol.Invalid as err:
        raise click.BadParameter(f"invalid traits: {err}") from err


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-z", "--debug", count=True, help="-z for info, -zz for debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: int = 0) -> None:
    """A CLI for the datapoint_rf library."""

    level = {0: logging.WARNING, 1: logging.INFO}.get(debug, logging.DEBUG)
    set_logging(level=level)
    set_frame_logging(FRAME_LOGGER, cc_console=debug > 1)
    ctx.obj = {SZ_DEBUG: debug}


#
# 1/3: DECODE (a raw EF00 frame, and show how it would be routed)
@click.command()
@click.argument("frame", type=HexParamType())
@click.option("-d", "--device-id", default=DEFAULT_DEVICE_ID, help="e.g. 0x1234abcd")
@click.option("-m", "--manufacturer", help="e.g. _TZE200_bjawzodf")
@click.option("-M", "--model", help="e.g. TS0601")
@click.option(
    "-a", "--attr", "attrs", multiple=True, help="an attribute of the device (repeatable)"
)
@click.option("-t", "--traits-file", type=click.File("r"), help="device traits (YAML)")
def decode(
    frame: bytes,
    device_id: str,
    attrs: tuple[str, ...],
    traits_file: Any = None,
    **kwargs: Any,
) -> None:
    """Decode a raw DP frame, and show how it would be routed."""

    traits = _load_traits(traits_file, **kwargs)

    decoder = FrameDecoder()
    records = decoder.decode(device_id, frame)

    offset = decoder.hint(device_id)
    strategy = STRATEGY_BY_OFFSET[offset].name if offset is not None else SZ_SCAN

    _echo(COLORS["header"], f"{frame.hex(' ').upper()} ({len(records)} records, {strategy})")
    _echo(
        COLORS["header"],
        "time format: "
        f"{select_format(traits[SZ_MODEL], traits[SZ_MANUFACTURER], traits[SZ_TIME_FORMAT])}",
    )

    router = DataPointRouter(
        device_id,
        mapping=traits[SZ_MAPPING],
        battery=traits[SZ_BATTERY],
        has_attribute=lambda attr: attr in attrs,
    )
    for record in records:
        _echo(COLORS["record"], f" - {record}")
        if result := router.route(record.dp_id, record.value):
            _echo(COLORS["route"], f"   > {result[0]} = {result[1]!r}")
        else:
            _echo(COLORS["unrouted"], "   > (not routed to an attribute)")

    if router.settings:
        _echo(COLORS["header"], f"settings: {router.settings}")


#
# 2/3: TIMESYNC (show the time payload that would be sent to a device)
@click.command()
@click.option("-m", "--manufacturer", help="e.g. _TZE200_bjawzodf")
@click.option("-M", "--model", help="e.g. TS0601")
@click.option(
    "-f",
    "--format",
    "fmt",
    type=click.Choice([str(f) for f in TimeSyncFormat]),
    help="override the selected format",
)
@click.option("--tz", type=int, help="the UTC offset in minutes (default: local)")
def timesync(
    manufacturer: str | None = None,
    model: str | None = None,
    fmt: str | None = None,
    tz: int | None = None,
) -> None:
    """Show the time sync payload for a device, as of now."""

    try:
        selected = select_format(model, manufacturer, fmt)
    except ValueError as err:
        raise click.BadParameter(str(err)) from err

    now = dt.now().astimezone()
    if tz is None:
        offset = now.utcoffset()
        tz = int(offset.total_seconds() // 60) if offset else 0

    try:
        payload = build_payload(selected, now, tz)
    except exc.TimeFormatInvalid as err:
        raise click.ClickException(str(err)) from err

    _echo(COLORS["header"], f"format:   {selected} ({FORMAT_DESCRIPTIONS[selected]})")
    _echo(COLORS["record"], f"payload:  {payload.hex(' ').upper()}")
    _echo(COLORS["route"], f"parsed:   {parse_payload(selected, payload)}")
    click.echo(f"fallback: {', '.join(str(f) for f in fallback_chain(selected))}")


#
# 3/3: FORMATS (list the known time sync formats)
@click.command()
def formats() -> None:
    """List the time sync formats."""

    for fmt in TimeSyncFormat:
        click.echo(
            f"{Fore.CYAN}{fmt!s:<20}{Style.RESET_ALL} "
            f"{FORMAT_WIDTHS[fmt]:>2} bytes  {FORMAT_DESCRIPTIONS[fmt]}"
        )


cli.add_command(decode)
cli.add_command(timesync)
cli.add_command(formats)


def main() -> None:
    colorama_init()

    try:
        cli(standalone_mode=False)
    except click.ClickException as err:
        err.show()
        sys.exit(err.exit_code)
    except click.Abort:
        sys.exit(1)


if __name__ == "__main__":
    main()
