#!/usr/bin/env python3
"""DataPoint RF - Test the CLI utility."""

from pathlib import Path

from click.testing import CliRunner

from datapoint_cli.client import cli

TEST_DIR = Path(__file__).resolve().parent
FIXTURES_DIR = TEST_DIR / "fixtures"

# DP1 value 215
FRAME_TEMPERATURE = "002A010301 01020004000000D7"
# DP1 value 55, DP9 enum 1
FRAME_LCD = "002A010302 0102000400000037 0904000101"


def test_decode_routed() -> None:
    result = CliRunner().invoke(
        cli, ["decode", FRAME_TEMPERATURE.replace(" ", ""), "-a", "temperature"]
    )

    assert result.exit_code == 0, result.output
    assert "(1 records, format_a)" in result.output
    assert "time format: zigbee_2000" in result.output
    assert " - DP001 VALUE=215" in result.output
    assert "   > temperature = 21.5" in result.output


def test_decode_unrouted() -> None:
    result = CliRunner().invoke(cli, ["decode", "00:2A:01:03:01:01:01:00:01:01"])

    assert result.exit_code == 0, result.output
    assert " - DP001 BOOL=True" in result.output
    assert "   > (not routed to an attribute)" in result.output


def test_decode_with_traits() -> None:
    result = CliRunner().invoke(
        cli,
        [
            "decode",
            FRAME_LCD.replace(" ", ""),
            "--traits-file",
            str(FIXTURES_DIR / "traits_lcd.yaml"),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "(2 records, format_a)" in result.output
    assert "time format: tuya_dual_2000" in result.output
    assert "   > humidity = 55" in result.output
    assert "settings: {'temperature_unit': 1}" in result.output


def test_decode_bad_args(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["decode", "not-hex"])
    assert result.exit_code == 2

    traits_file = tmp_path / "traits.yaml"
    traits_file.write_text("power_source: solar\n")

    result = CliRunner().invoke(
        cli, ["decode", FRAME_TEMPERATURE.replace(" ", ""), "-t", str(traits_file)]
    )
    assert result.exit_code == 2
    assert "invalid traits" in result.output


def test_timesync() -> None:
    result = CliRunner().invoke(cli, ["timesync", "-f", "zigbee_2000", "--tz", "0"])

    assert result.exit_code == 0, result.output
    assert "format:   zigbee_2000 (Zigbee ZCL (4 bytes BE, epoch 2000, UTC))" in result.output
    assert "'valid': True" in result.output
    assert "fallback: zigbee_2000_local, unix_1970" in result.output


def test_timesync_selects_format() -> None:
    result = CliRunner().invoke(cli, ["timesync", "-m", "_TZE200_bjawzodf", "--tz", "60"])

    assert result.exit_code == 0, result.output
    assert "format:   tuya_dual_2000" in result.output


def test_formats() -> None:
    result = CliRunner().invoke(cli, ["formats"])

    assert result.exit_code == 0, result.output
    assert len(result.output.splitlines()) == 15
    assert "12 bytes  Tuya gateway (12 bytes, 4-digit year)" in result.output
