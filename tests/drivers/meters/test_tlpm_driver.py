"""Unit tests for the TLPM hardware driver.

The .NET assembly is replaced by a TLPMBinding whose TLPM class is a
MagicMock returning pythonnet-style ``(status, out...)`` tuples, so these
tests run on any platform without pythonnet.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from powermeter_mcp.drivers.meters import (
    BoundKind,
    MeterDriver,
    MeterDriverError,
    Parameter,
    Quantity,
    TLPMBinding,
    TLPMDriver,
    TLPMLibraryConfig,
    load_tlpm_binding,
)
from tests.helpers import assert_implements_protocol


class FakeStringBuilder:
    """Stand-in for System.Text.StringBuilder."""

    def __init__(self) -> None:
        self.Capacity = 0
        self._parts: list[str] = []

    def Append(self, text: str) -> FakeStringBuilder:  # noqa: N802
        self._parts.append(text)
        return self

    def ToString(self) -> str:  # noqa: N802
        return "".join(self._parts)


RESOURCES = [
    ("USB0::0x1313::0x8078::P0012345::INSTR", "PM100D", "P0012345", "Thorlabs", True),
    ("USB0::0x1313::0x8075::P5000123::INSTR", "PM400", "P5000123", "Thorlabs", False),
]


def _make_finder() -> MagicMock:
    finder = MagicMock(name="finder")
    finder.findRsrc.return_value = (0, len(RESOURCES))

    def get_name(index, buffer):
        buffer.Append(RESOURCES[index][0])
        return 0

    def get_info(index, model, serial, manufacturer, available):
        _, model_name, serial_number, maker, is_available = RESOURCES[index]
        model.Append(model_name)
        serial.Append(serial_number)
        manufacturer.Append(maker)
        return (0, is_available)

    finder.getRsrcName.side_effect = get_name
    finder.getRsrcInfo.side_effect = get_info
    return finder


@pytest.fixture
def device() -> MagicMock:
    """TLPM instance returned when opening a resource."""
    device = MagicMock(name="device")
    device.getWavelength.side_effect = lambda which, _: (0, 400.0 if which == 1 else 1100.0)
    device.measPower.return_value = (0, 1.25e-3)
    device.measVoltage.return_value = (0, 0.31)
    device.getPowerUnit.return_value = (0, 1)
    device.getDarkAdjustState.return_value = (0, 1)
    device.getDarkOffset.return_value = (0, 2.0e-5)

    def sensor_info(name, serial, message, *_):
        name.Append("S120C")
        serial.Append("11223344")
        message.Append("03-Jun-2024")
        return (0, 1, 2, 0x0021)

    device.getSensorInfo.side_effect = sensor_info
    return device


@pytest.fixture
def tlpm_class(device) -> MagicMock:
    """TLPM class: null pointer gives a finder, a resource name gives a device."""
    finder = _make_finder()

    def construct(*args):
        return finder if args == ("NULL",) else device

    cls = MagicMock(name="TLPM", side_effect=construct)
    cls.finder = finder
    return cls


@pytest.fixture
def driver(tlpm_class) -> TLPMDriver:
    binding = TLPMBinding(
        tlpm_class=tlpm_class, string_builder=FakeStringBuilder, null_ptr="NULL"
    )
    return TLPMDriver(binding=binding)


class TestTLPMLibraryConfig:
    """Assembly location."""

    def test_default_path(self) -> None:
        config = TLPMLibraryConfig()

        assert config.dll_path.name == "Thorlabs.TLPM_64.Interop.dll"
        assert config.class_name == "Thorlabs.TLPM_64.Interop.TLPM"

    def test_custom_dir(self, tmp_path: Path) -> None:
        config = TLPMLibraryConfig(dll_dir=tmp_path)

        assert config.dll_path == tmp_path / "Thorlabs.TLPM_64.Interop.dll"

    def test_hashable(self) -> None:
        assert hash(TLPMLibraryConfig()) == hash(TLPMLibraryConfig())

    def test_load_failure_is_driver_error(self, tmp_path: Path) -> None:
        """Without pythonnet or the assembly, loading raises MeterDriverError."""
        with pytest.raises(MeterDriverError, match="Unable to load .NET assembly"):
            load_tlpm_binding(TLPMLibraryConfig(dll_dir=tmp_path / "missing"))


class TestTLPMDiscovery:
    """findRsrc / getRsrcName / getRsrcInfo."""

    def test_implements_protocol(self, driver) -> None:
        assert_implements_protocol(driver, MeterDriver)

    def test_discover(self, driver, tlpm_class) -> None:
        resources = driver.discover()

        assert [r["model_name"] for r in resources] == ["PM100D", "PM400"]
        assert resources[0]["resource_name"] == RESOURCES[0][0]
        assert resources[0]["available"] is True
        assert resources[1]["available"] is False
        tlpm_class.finder.Dispose.assert_called_once()

    def test_discover_disposes_on_error(self, driver, tlpm_class) -> None:
        tlpm_class.finder.getRsrcName.side_effect = RuntimeError("VI_ERROR")

        with pytest.raises(MeterDriverError, match="getRsrcName"):
            driver.discover()

        tlpm_class.finder.Dispose.assert_called_once()


class TestTLPMDevice:
    """Per-handle calls."""

    def test_open_passes_flags(self, driver, tlpm_class, device) -> None:
        handle = driver.open("USB0::X::INSTR", True, False)

        assert handle is device
        tlpm_class.assert_called_with("USB0::X::INSTR", True, False)

    def test_open_failure(self, driver, tlpm_class) -> None:
        tlpm_class.side_effect = RuntimeError("VI_ERROR_RSRC_NFOUND")

        with pytest.raises(MeterDriverError, match="Failed to open"):
            driver.open("USB0::X::INSTR", True, True)

    def test_close_disposes(self, driver, device) -> None:
        driver.close(device)

        device.Dispose.assert_called_once()

    def test_get_bound(self, driver, device) -> None:
        assert driver.get_bound(device, Parameter.WAVELENGTH, BoundKind.MIN) == 400.0
        assert driver.get_bound(device, Parameter.WAVELENGTH, BoundKind.MAX) == 1100.0
        device.getWavelength.assert_called_with(2, 0.0)

    def test_get_bound_unbounded_parameter(self, driver, device) -> None:
        with pytest.raises(MeterDriverError, match="No device bounds"):
            driver.get_bound(device, Parameter.BRIGHTNESS, BoundKind.MIN)

    @pytest.mark.parametrize(
        ("parameter", "value", "method", "sent"),
        [
            (Parameter.WAVELENGTH, 635, "setWavelength", 635.0),
            (Parameter.AVERAGE_TIME, 0.1, "setAvgTime", 0.1),
            (Parameter.ATTENUATION, 3, "setAttenuation", 3.0),
            (Parameter.BRIGHTNESS, 0.5, "setDispBrightness", 0.5),
            (Parameter.TIMEOUT, 5000.0, "setTimeoutValue", 5000),
            (Parameter.AUTO_RANGE, 1, "setPowerAutoRange", True),
        ],
    )
    def test_set_parameter(self, driver, device, parameter, value, method, sent) -> None:
        driver.set_parameter(device, parameter, value)

        getattr(device, method).assert_called_once_with(sent)
        assert type(getattr(device, method).call_args.args[0]) is type(sent)

    def test_measure(self, driver, device) -> None:
        assert driver.measure(device, Quantity.POWER) == pytest.approx(1.25e-3)
        assert driver.measure(device, Quantity.VOLTAGE) == pytest.approx(0.31)

    def test_measure_error_is_wrapped(self, driver, device) -> None:
        device.measVoltage.side_effect = RuntimeError("wrong sensor")

        with pytest.raises(MeterDriverError, match="measVoltage") as exc_info:
            driver.measure(device, Quantity.VOLTAGE)

        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_power_unit(self, driver, device) -> None:
        assert driver.get_power_unit(device) == 1

    def test_sensor_info(self, driver, device) -> None:
        info = driver.get_sensor_info(device)

        assert info == {
            "name": "S120C",
            "serial_number": "11223344",
            "calibration_message": "03-Jun-2024",
            "type_code": 1,
            "subtype_code": 2,
            "flag_bits": 0x0021,
        }

    def test_dark_adjust_calls(self, driver, device) -> None:
        driver.start_dark_adjust(device)

        device.startDarkAdjust.assert_called_once_with()
        assert driver.is_dark_adjust_in_progress(device) is True
        assert driver.get_dark_offset(device) == pytest.approx(2.0e-5)

    def test_repr(self, driver) -> None:
        assert repr(driver).startswith("TLPMDriver(dll=")
