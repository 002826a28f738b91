#!/usr/bin/env python3
"""DataPoint RF - Test the configuration parsers."""

from typing import Any

import pytest
import voluptuous as vol
import yaml

from datapoint_rf import exceptions as exc
from datapoint_rf.const import PowerSource, TimeSyncFormat
from datapoint_rf.patterns import div_10
from datapoint_rf.schemas import (
    SCH_DEVICE_TRAITS,
    SCH_DP_MAPPING,
    SCH_ENGINE_CONFIG,
    serialise_mapping,
    validate_mapping,
)


def no_duplicates_constructor(
    loader: yaml.Loader, node: yaml.Node, deep: bool = False
) -> Any:
    """Check for duplicate keys."""
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)  # type: ignore[no-untyped-call]
        if key in mapping:
            raise yaml.constructor.ConstructorError(
                f"Duplicate key: {key} ('{mapping[key]}' overwrites '{value_node}')"
            )
        mapping[key] = loader.construct_object(value_node, deep=deep)  # type: ignore[no-untyped-call]
    return loader.construct_mapping(node, deep)


class CheckForDuplicatesLoader(yaml.Loader):
    """Local class to prevent pollution of global yaml.Loader."""

    pass


CheckForDuplicatesLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, no_duplicates_constructor
)


def _test_schema(validator: vol.Schema, config: str) -> dict:
    return validator(yaml.load(config, CheckForDuplicatesLoader))  # type: ignore[no-any-return]


def _test_schema_bad(validator: vol.Schema, config: str) -> None:
    try:
        _test_schema(validator, config)
    except (vol.MultipleInvalid, yaml.YAMLError):
        pass
    else:
        raise TypeError(f"should *not* be valid YAML, but parsed OK: {config}")


def _test_schema_good(validator: vol.Schema, config: str) -> dict:
    try:
        return _test_schema(validator, config)
    except vol.MultipleInvalid as err:
        raise TypeError(
            f"should parse via voluptuous, but didn't: {config} ({err})"
        ) from err
    except yaml.YAMLError as err:
        raise TypeError(f"should be valid YAML, but isn't: {config} ({err})") from err


ENGINE_CONFIG_BAD = (
    """
    #  expected a dictionary
    """,
    """
    other_key: null  # extra keys not allowed @ data['other_key']
    """,
    """
    decision_window: 0
    """,
    """
    time_double_send_delay: 5
    """,
    """
    decoder_cache_size: 0
    """,
    """
    time_sync_push: null
    """,
    """
    max_fallback_cycles: 6
    """,
    """
    time_push_interval: -1
    """,
)
ENGINE_CONFIG_GOOD = (
    """
    {}
    """,
    """
    decision_window: 60
    """,
    """
    gap_between_queries: 1.0  # clamped, not rejected
    """,
    """
    decision_window: 900
    time_double_send_delay: 0.2
    gap_between_queries: 0.2
    decoder_cache_size: 256
    time_sync_push: false
    time_push_delay: 0
    time_push_interval: 3600
    max_fallback_cycles: 0
    """,
)


@pytest.mark.parametrize("index", range(len(ENGINE_CONFIG_BAD)))
def test_engine_config_bad(index: int, configs: tuple[str, ...] = ENGINE_CONFIG_BAD) -> None:
    _test_schema_bad(SCH_ENGINE_CONFIG, configs[index])


@pytest.mark.parametrize("index", range(len(ENGINE_CONFIG_GOOD)))
def test_engine_config_good(
    index: int, configs: tuple[str, ...] = ENGINE_CONFIG_GOOD
) -> None:
    _test_schema_good(SCH_ENGINE_CONFIG, configs[index])


def test_engine_config_defaults() -> None:
    config = SCH_ENGINE_CONFIG({"gap_between_queries": 1.0})

    assert config["decision_window"] == 900
    assert config["gap_between_queries"] == 0.3
    assert config["time_sync_push"] is True
    assert config["time_push_interval"] == 24 * 60 * 60


MAPPING_BAD = (
    """
    0: temperature  # not a DP id
    """,
    """
    256: temperature
    """,
    """
    1: {}  # requires an attribute, or a setting
    """,
    """
    1: {attribute: temperature, divide_by: 0}
    """,
    """
    1: {attribute: temperature, transform: square_root}
    """,
    """
    1: {attribute: temperature, min: 10, max: 0}
    """,
    """
    1: {attribute: temperature, other_key: null}
    """,
    """
    1: temperature
    1: humidity  # a duplicate key
    """,
)
MAPPING_GOOD = (
    """
    {}
    """,
    """
    1: temperature
    2: humidity
    """,
    """
    "17": {attribute: power, divide_by: 10, min: 0, max: 3680}
    """,
    """
    20: {attribute: contact, transform: invert}
    30: {setting: child_lock}
    255: {attribute: voltage, scale: 0.1}
    """,
)


@pytest.mark.parametrize("index", range(len(MAPPING_BAD)))
def test_mapping_bad(index: int, configs: tuple[str, ...] = MAPPING_BAD) -> None:
    _test_schema_bad(SCH_DP_MAPPING, configs[index])


@pytest.mark.parametrize("index", range(len(MAPPING_GOOD)))
def test_mapping_good(index: int, configs: tuple[str, ...] = MAPPING_GOOD) -> None:
    _test_schema_good(SCH_DP_MAPPING, configs[index])


def test_mapping_shorthand() -> None:
    mapping = validate_mapping({"1": "temperature"})

    assert mapping == {
        1: {
            "attribute": "temperature",
            "setting": None,
            "divide_by": None,
            "scale": None,
            "transform": None,
            "min": None,
            "max": None,
        }
    }


def test_mapping_invalid() -> None:
    with pytest.raises(exc.MappingInvalid):
        validate_mapping({1: {}})

    assert validate_mapping(None) == {}


def test_serialise_mapping() -> None:
    mapping = validate_mapping(
        {
            1: {"attribute": "temperature", "transform": div_10},
            2: {"attribute": "humidity", "transform": lambda v: v},
            3: {"setting": "child_lock"},
        }
    )

    assert serialise_mapping(mapping) == {
        "1": {"attribute": "temperature", "transform": "divide_by_10"},
        "2": {"attribute": "humidity"},  # only named transforms persist
        "3": {"setting": "child_lock"},
    }


TRAITS_BAD = (
    """
    #  expected a dictionary
    """,
    """
    other_key: null  # extra keys not allowed @ data['other_key']
    """,
    """
    power_source: solar
    """,
    """
    time_format: tuya_nonsense
    """,
    """
    forced_active: null
    """,
    """
    battery: {percentage_dps: [0]}
    """,
    """
    mapping: {1: {}}
    """,
)
TRAITS_GOOD = (
    """
    {}
    """,
    """
    manufacturer: _TZE200_bjawzodf
    model: TS0601
    power_source: Battery
    """,
    """
    manufacturer: _TZ3000_abcdef
    power_source: mains
    forced_active: true
    time_format: ZIGBEE_2000
    time_sync_push: false
    """,
    """
    battery:
      percentage_dps: [4, 15, 33]
      state_dps: []
      heuristic_min_dp: 20
    mapping:
      1: temperature
      101: {setting: sensitivity}
    """,
)


@pytest.mark.parametrize("index", range(len(TRAITS_BAD)))
def test_traits_bad(index: int, configs: tuple[str, ...] = TRAITS_BAD) -> None:
    _test_schema_bad(SCH_DEVICE_TRAITS, configs[index])


@pytest.mark.parametrize("index", range(len(TRAITS_GOOD)))
def test_traits_good(index: int, configs: tuple[str, ...] = TRAITS_GOOD) -> None:
    _test_schema_good(SCH_DEVICE_TRAITS, configs[index])


def test_traits_defaults() -> None:
    traits = SCH_DEVICE_TRAITS({"power_source": "MAINS", "time_format": "Tuya_MCU"})

    assert traits["power_source"] == PowerSource.MAINS
    assert traits["time_format"] == TimeSyncFormat.TUYA_MCU
    assert traits["manufacturer"] == ""
    assert traits["forced_active"] is False
    assert traits["battery"] == {
        "percentage_dps": [4, 15],
        "state_dps": [14],
        "heuristic_min_dp": 10,
    }
    assert traits["mapping"] == {}
