"""Test helper functions for powermeter-mcp.

Example:
    from tests.helpers import assert_implements_protocol
    from powermeter_mcp.drivers.meters import MeterDriver

    def test_twin_implements_protocol():
        assert_implements_protocol(DigitalTwinMeterDriver(), MeterDriver)
"""

from __future__ import annotations

import json
from typing import Any, Protocol
from unittest.mock import MagicMock

from powermeter_mcp.drivers.meters import (
    BoundKind,
    DiscoveredResource,
    Parameter,
    RawSensorInfo,
)

PM100D_RESOURCE = "USB0::0x1313::0x8078::P0012345::INSTR"
PM400_RESOURCE = "USB0::0x1313::0x8075::P5000123::INSTR"


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Lists the missing public members in the failure message.

    Raises:
        AssertionError: If instance doesn't implement protocol.
    """
    if not isinstance(instance, protocol):
        object_attrs = set(dir(object))
        expected = {
            attr
            for attr in set(dir(protocol)) - object_attrs
            if not attr.startswith("_")
        }
        missing = sorted(a for a in expected if not hasattr(instance, a))
        missing_str = ", ".join(missing) if missing else "unknown"
        raise AssertionError(
            f"{type(instance).__name__} does not implement {protocol.__name__}. "
            f"Missing: {missing_str}"
        )


def assert_all_implement_protocol(
    instances: list[Any],
    protocol: type[Protocol],
) -> None:
    """Assert that all instances in a list implement a Protocol."""
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


def tool_json(result: list[Any]) -> dict[str, Any]:
    """Decode the single TextContent returned by a tool handler."""
    assert len(result) == 1
    return json.loads(result[0].text)


class FakeClock:
    """Clock that advances only when slept on."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds


def make_mock_driver(
    model: str = "PM100D",
    resource: str = "USB0::0x1313::0x8078::M0000001::INSTR",
    bounds: dict[Parameter, tuple[float, float]] | None = None,
    power: float = 1.0e-3,
    unit_code: int = 0,
) -> MagicMock:
    """MagicMock driver that records every call.

    Args:
        model: Model reported by discovery.
        resource: Resource name reported by discovery.
        bounds: (min, max) per parameter returned by get_bound.
        power: Value returned by measure.
        unit_code: Value returned by get_power_unit.
    """
    bounds = bounds or {
        Parameter.WAVELENGTH: (100.0, 1600.0),
        Parameter.AVERAGE_TIME: (0.001, 10.0),
        Parameter.POWER_RANGE: (1.0e-9, 1.0e-1),
        Parameter.ATTENUATION: (-60.0, 60.0),
    }

    driver = MagicMock(name="driver")
    driver.discover.return_value = [
        DiscoveredResource(
            resource_name=resource,
            model_name=model,
            serial_number="M0000001",
            manufacturer="Thorlabs",
            available=True,
        )
    ]
    driver.open.return_value = MagicMock(name="handle")
    driver.get_bound.side_effect = lambda handle, parameter, which: bounds[
        parameter
    ][0 if which is BoundKind.MIN else 1]
    driver.measure.return_value = power
    driver.get_power_unit.return_value = unit_code
    driver.get_sensor_info.return_value = RawSensorInfo(
        name="S120C",
        serial_number="11223344",
        calibration_message="03-Jun-2024",
        type_code=0x01,
        subtype_code=0x02,
        flag_bits=0x0001,
    )
    driver.is_dark_adjust_in_progress.return_value = False
    driver.get_dark_offset.return_value = 2.0e-5
    return driver
