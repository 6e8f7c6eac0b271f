"""Unit tests for the digital twin meter driver.

Test Categories:
- Configuration (defaults, repr)
- Discovery and open/close
- Bounds, settings and measurements
- Dark adjustment simulation
- Failure injection

Example:
    Run all digital twin meter tests::

        pytest tests/drivers/meters/test_twin_meter.py -v
"""

from __future__ import annotations

import pytest

from powermeter_mcp.drivers.meters import (
    BoundKind,
    DigitalTwinMeterConfig,
    DigitalTwinMeterDriver,
    MeterDriver,
    MeterDriverError,
    Parameter,
    Quantity,
    SimulatedMeter,
)
from tests.helpers import PM100D_RESOURCE, PM400_RESOURCE, assert_implements_protocol

# =============================================================================
# Configuration Tests
# =============================================================================


class TestDigitalTwinMeterConfig:
    """Bench description defaults."""

    def test_defaults(self) -> None:
        """Verifies the default bench is a PM100D and a PM400.

        Arrangement:
        1. Create config with no arguments.

        Action:
        Inspect the simulated meters.

        Assertion Strategy:
        Model names, sensor codes and noise level match the documented
        default bench.

        Testing Principle:
        Validates sensible defaults for development use.
        """
        config = DigitalTwinMeterConfig()

        assert [m.model_name for m in config.meters] == ["PM100D", "PM400"]
        assert config.meters[1].flag_bits == 0x0161
        assert config.noise_std == 0.01
        assert config.dark_adjust_polls == 3

    def test_repr(self) -> None:
        assert repr(DigitalTwinMeterConfig()) == (
            "DigitalTwinMeterConfig(meters=[PM100D,PM400], noise=0.01)"
        )


class TestDigitalTwinMeterDriver:
    """Driver behavior against the default bench."""

    def test_implements_protocol(self, twin_driver) -> None:
        assert_implements_protocol(twin_driver, MeterDriver)

    def test_discover(self, twin_driver) -> None:
        resources = twin_driver.discover()

        assert [r["resource_name"] for r in resources] == [PM100D_RESOURCE, PM400_RESOURCE]
        assert all(r["available"] for r in resources)

    def test_open_marks_busy_and_close_releases(self, twin_driver) -> None:
        handle = twin_driver.open(PM100D_RESOURCE, True, True)

        assert twin_driver.discover()[0]["available"] is False
        assert "open" in repr(handle)

        twin_driver.close(handle)

        assert twin_driver.discover()[0]["available"] is True
        assert handle.closed

    def test_open_unknown_resource(self, twin_driver) -> None:
        with pytest.raises(MeterDriverError, match="Resource not found"):
            twin_driver.open("USB0::nothing::INSTR", True, True)

    def test_closed_handle_rejected(self, twin_driver) -> None:
        handle = twin_driver.open(PM100D_RESOURCE, True, True)
        twin_driver.close(handle)

        with pytest.raises(MeterDriverError, match="closed"):
            twin_driver.measure(handle, Quantity.POWER)

    def test_bounds(self, twin_driver) -> None:
        handle = twin_driver.open(PM100D_RESOURCE, True, True)

        assert twin_driver.get_bound(handle, Parameter.WAVELENGTH, BoundKind.MIN) == 400.0
        assert twin_driver.get_bound(handle, Parameter.WAVELENGTH, BoundKind.MAX) == 1100.0

    def test_bounds_missing_for_unbounded_parameter(self, twin_driver) -> None:
        handle = twin_driver.open(PM100D_RESOURCE, True, True)

        with pytest.raises(MeterDriverError):
            twin_driver.get_bound(handle, Parameter.BRIGHTNESS, BoundKind.MIN)

    def test_set_parameter_recorded(self, twin_driver) -> None:
        handle = twin_driver.open(PM100D_RESOURCE, True, True)

        twin_driver.set_parameter(handle, Parameter.WAVELENGTH, 635.0)

        assert handle.settings[Parameter.WAVELENGTH] == 635.0

    def test_power_near_configured_level(self, twin_driver) -> None:
        handle = twin_driver.open(PM400_RESOURCE, True, True)

        readings = [twin_driver.measure(handle, Quantity.POWER) for _ in range(50)]

        assert sum(readings) / len(readings) == pytest.approx(0.25, rel=0.02)

    def test_noise_free_power(self) -> None:
        driver = DigitalTwinMeterDriver(DigitalTwinMeterConfig(noise_std=0.0))
        handle = driver.open(PM100D_RESOURCE, True, True)

        assert driver.measure(handle, Quantity.POWER) == pytest.approx(1e-3)
        assert driver.measure(handle, Quantity.VOLTAGE) == pytest.approx(0.25)
        assert driver.get_power_unit(handle) == 0

    def test_dbm_meter(self) -> None:
        meter = SimulatedMeter(
            resource_name="USB0::dbm::INSTR", model_name="PM100D", serial_number="X",
            power_unit=1,
        )
        driver = DigitalTwinMeterDriver(
            DigitalTwinMeterConfig(meters=[meter], noise_std=0.0)
        )
        handle = driver.open("USB0::dbm::INSTR", True, True)

        # 1 mW is 0 dBm
        assert driver.measure(handle, Quantity.POWER) == pytest.approx(0.0)
        assert driver.get_power_unit(handle) == 1

    def test_voltage_unsupported_head(self) -> None:
        meter = SimulatedMeter(
            resource_name="USB0::th::INSTR", model_name="PM100D", serial_number="X",
            voltage_supported=False,
        )
        driver = DigitalTwinMeterDriver(DigitalTwinMeterConfig(meters=[meter]))
        handle = driver.open("USB0::th::INSTR", True, True)

        with pytest.raises(MeterDriverError, match="Wrong sensor type"):
            driver.measure(handle, Quantity.VOLTAGE)

    def test_sensor_info(self, twin_driver) -> None:
        handle = twin_driver.open(PM400_RESOURCE, True, True)

        info = twin_driver.get_sensor_info(handle)

        assert info["name"] == "S425C"
        assert (info["type_code"], info["subtype_code"], info["flag_bits"]) == (
            0x02,
            0x12,
            0x0161,
        )

    def test_seeded_noise_is_reproducible(self) -> None:
        def readings(seed: int) -> list[float]:
            driver = DigitalTwinMeterDriver(DigitalTwinMeterConfig(seed=seed))
            handle = driver.open(PM100D_RESOURCE, True, True)
            return [driver.measure(handle, Quantity.POWER) for _ in range(5)]

        assert readings(7) == readings(7)


class TestTwinDarkAdjust:
    """Simulated dark adjustment."""

    def test_completes_after_configured_polls(self, twin_driver) -> None:
        handle = twin_driver.open(PM400_RESOURCE, True, True)

        assert twin_driver.get_dark_offset(handle) == 0.0
        twin_driver.start_dark_adjust(handle)
        states = [twin_driver.is_dark_adjust_in_progress(handle) for _ in range(4)]

        assert states == [True, True, True, False]
        assert twin_driver.get_dark_offset(handle) == pytest.approx(1.5e-5)

    def test_negative_polls_never_complete(self) -> None:
        driver = DigitalTwinMeterDriver(DigitalTwinMeterConfig(dark_adjust_polls=-1))
        handle = driver.open(PM400_RESOURCE, True, True)
        driver.start_dark_adjust(handle)

        assert all(driver.is_dark_adjust_in_progress(handle) for _ in range(100))


class TestTwinFailureInjection:
    """Injected open/close failures."""

    def test_fail_open(self) -> None:
        driver = DigitalTwinMeterDriver(
            DigitalTwinMeterConfig(fail_open={PM400_RESOURCE})
        )

        with pytest.raises(MeterDriverError, match="VI_ERROR_RSRC_NFOUND"):
            driver.open(PM400_RESOURCE, True, True)
        assert driver.open(PM100D_RESOURCE, True, True) is not None

    def test_fail_close_still_releases(self) -> None:
        driver = DigitalTwinMeterDriver(DigitalTwinMeterConfig(fail_close=True))
        handle = driver.open(PM100D_RESOURCE, True, True)

        with pytest.raises(MeterDriverError):
            driver.close(handle)

        assert driver.discover()[0]["available"] is True
