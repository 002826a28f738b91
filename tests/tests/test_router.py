#!/usr/bin/env python3
"""DataPoint RF - Test the layered DataPoint router."""

from collections.abc import Callable
from typing import Any

import pytest

from datapoint_rf.router import DataPointRouter
from datapoint_rf.schemas import SCH_BATTERY_CONFIG, validate_mapping

HasAttrsT = Callable[..., Callable[[str], bool]]


def _router(has_attrs: HasAttrsT, *attrs: str, mapping: Any = None, **kwargs: Any) -> DataPointRouter:
    return DataPointRouter(
        "01:145038",
        mapping=validate_mapping(mapping),
        has_attribute=has_attrs(*attrs),
        **kwargs,
    )


def test_battery_layer(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "battery", mapping={4: "humidity"})

    assert router.route(4, 120) == ("battery", 100)  # before explicit, and clamped
    assert router.route(15, -5) == ("battery", 0)
    assert router.route(14, 0) == ("battery", 10)  # low/medium/high
    assert router.route(14, 9) == ("battery", 50)


def test_battery_oracle(has_attrs: HasAttrsT) -> None:
    router = _router(
        has_attrs, "battery", calculate_battery_percentage=lambda raw, cfg: raw / 2
    )
    assert router.route(15, 80) == ("battery", 40.0)

    def oracle(raw: Any, cfg: Any) -> Any:
        raise RuntimeError("battery model unavailable")

    router = _router(has_attrs, "battery", calculate_battery_percentage=oracle)
    assert router.route(15, 80) == ("battery", 80)  # the raw value


def test_battery_config(has_attrs: HasAttrsT) -> None:
    router = _router(
        has_attrs, "battery", battery=SCH_BATTERY_CONFIG({"percentage_dps": [33]})
    )

    assert router.route(33, 77) == ("battery", 77)
    assert router.route(4, 77) == ("battery", 77)  # now via the universal layer


def test_explicit_layer(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "temperature", "humidity", mapping={1: "humidity"})

    assert router.route(1, 55) == ("humidity", 55)  # before universal
    assert router.learned == {}


def test_explicit_transforms(has_attrs: HasAttrsT) -> None:
    mapping = {
        17: {"attribute": "power", "divide_by": 10, "scale": 2, "min": 0, "max": 100},
        20: {"attribute": "contact", "transform": "invert"},
        21: {"attribute": "voltage", "transform": lambda v: v + 1},
    }
    router = _router(has_attrs, mapping=mapping)

    assert router.route(17, 250) == ("power", 50.0)  # divide_by, then scale
    assert router.route(20, True) == ("contact", False)
    assert router.route(21, 1) == ("voltage", 2)


def test_explicit_out_of_range(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, mapping={17: {"attribute": "power", "max": 100}})

    assert router.route(17, 600) is None
    assert 17 not in router.unknown_dps
    assert router.last_values[17] == 600


def test_explicit_setting(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, mapping={30: {"setting": "child_lock"}})

    assert router.route(30, True) is None
    assert router.settings == {"child_lock": True}
    assert 30 not in router.unknown_dps


def test_explicit_transform_fails(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "power", mapping={40: {"attribute": "power", "divide_by": 10}})

    assert router.route(40, "abc") is None  # never raises
    assert router.unknown_dps[40] == "abc"


def test_universal_layer(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "temperature", "motion")

    assert router.route(1, 215) == ("temperature", 21.5)
    assert router.learned[1] == ("universal", "temperature")
    assert router.route(101, 1) == ("motion", True)
    assert router.route(101, 0) == ("motion", False)

    router = _router(has_attrs, "motion")
    assert router.route(2, 55) is None  # no humidity
    assert router.unknown_dps[2] == 55


def test_universal_alt_attribute(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "battery")

    assert router.route(101, 80) == ("battery", 80)
    assert router.learned[101] == ("universal", "battery")


@pytest.mark.parametrize(
    "attr,dp_id,value,expected",
    (
        ("onoff", 6, 1, ("onoff", True)),
        ("onoff", 6, 0, ("onoff", False)),
        ("contact", 102, 0, ("contact", True)),  # the contact is closed
        ("contact", 102, 1, ("contact", False)),
        ("humidity", 6, 1, ("humidity", 1)),  # the attribute has precedence
    ),
)
def test_universal_alt_transform(
    has_attrs: HasAttrsT, attr: str, dp_id: int, value: int, expected: tuple
) -> None:
    router = _router(has_attrs, attr)

    assert router.route(dp_id, value) == expected
    assert router.learned[dp_id] == ("universal", attr)


def test_universal_setting(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "temperature")

    assert router.route(10, 3) is None
    assert router.route(105, 30) == ("temperature", 30)  # the attribute, else the setting
    assert router.settings == {"v_sensitivity": 3}

    router = _router(has_attrs)
    assert router.route(105, 30) is None
    assert router.settings == {"keep_time": 30}


@pytest.mark.parametrize(
    "attrs,dp_id,value,expected",
    (
        (("temperature",), 50, 215, ("temperature", 21.5)),
        (("temperature",), 50, 1500, None),  # out of range
        (("temperature",), 50, True, None),  # bools are never heuristic
        (("humidity",), 8, 60, ("humidity", 60)),
        (("battery", "humidity"), 50, 60, ("battery", 60)),  # battery qualifies
        (("battery", "humidity"), 8, 60, ("humidity", 60)),  # dp_id < 10
        (("temperature", "humidity"), 50, 60, None),  # ambiguous, so abstain
        ((), 50, 60, None),
    ),
)
def test_heuristic_layer(
    has_attrs: HasAttrsT,
    attrs: tuple[str, ...],
    dp_id: int,
    value: Any,
    expected: tuple[str, Any] | None,
) -> None:
    router = _router(has_attrs, *attrs)

    assert router.route(dp_id, value) == expected
    if expected:
        assert router.learned[dp_id] == ("heuristic", expected[0])
    else:
        assert router.unknown_dps[dp_id] == value


def test_unknown_dps_are_bounded(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs)

    for dp_id in range(120, 200):
        assert router.route(dp_id, "noise") is None

    assert list(router.unknown_dps) == list(range(136, 200))


def test_set_mapping(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "temperature")
    router.route(1, 215)
    assert router.learned

    router.set_mapping(validate_mapping({1: {"attribute": "temperature", "divide_by": 100}}))

    assert router.learned == {}
    assert router.route(1, 2150) == ("temperature", 21.5)


def test_status(has_attrs: HasAttrsT) -> None:
    router = _router(has_attrs, "temperature")
    router.route(1, 215)
    router.route(10, 3)

    assert router.status == {
        "settings": {"v_sensitivity": 3},
        "learned": {1: ["universal", "temperature"]},
        "last_values": {1: 215, 10: 3},
        "unknown_dps": {},
    }
