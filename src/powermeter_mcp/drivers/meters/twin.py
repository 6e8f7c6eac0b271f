"""Digital twin power meter driver for testing without hardware.

Simulates a bench of Thorlabs meters: discovery, per-parameter bounds,
noisy power readings, sensor head codes and the PM400 dark adjustment.
Failures can be injected per resource to exercise error paths.

Example:
    from powermeter_mcp.drivers.meters import DigitalTwinMeterDriver, Quantity

    driver = DigitalTwinMeterDriver()
    resource = driver.discover()[0]
    handle = driver.open(resource["resource_name"], True, True)
    print(driver.measure(handle, Quantity.POWER))
    driver.close(handle)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from powermeter_mcp.drivers.meters.types import (
    BoundKind,
    DiscoveredResource,
    MeterDriverError,
    Parameter,
    Quantity,
    RawSensorInfo,
)
from powermeter_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "DigitalTwinMeterConfig",
    "DigitalTwinMeterDriver",
    "DigitalTwinMeterHandle",
    "SimulatedMeter",
    "default_bounds",
]


def default_bounds() -> dict[Parameter, tuple[float, float]]:
    """Bounds of a PM100D with an S120C photodiode head."""
    return {
        Parameter.WAVELENGTH: (400.0, 1100.0),  # nm
        Parameter.AVERAGE_TIME: (0.001, 10.0),  # s
        Parameter.POWER_RANGE: (5.0e-9, 5.0e-2),  # W
        Parameter.ATTENUATION: (-60.0, 60.0),  # dB
    }


@dataclass
class SimulatedMeter:
    """One simulated meter and its sensor head.

    Attributes:
        resource_name: VISA-style resource string.
        model_name: Meter model, drives capability checks in the session.
        serial_number: Meter serial number.
        manufacturer: Manufacturer string.
        sensor_name: Sensor head model.
        sensor_serial: Sensor head serial number.
        calibration_message: Sensor calibration text.
        type_code: Raw sensor type byte.
        subtype_code: Raw sensor subtype byte.
        flag_bits: Raw sensor flag field.
        bounds: Device-reported (min, max) per parameter.
        power_w: Mean simulated optical power in watts.
        voltage_v: Mean simulated photodiode voltage.
        voltage_supported: False makes measVoltage fail like a wrong head.
        power_unit: Power unit code (0 = W, 1 = dBm).
        dark_offset_v: Value reported after dark adjustment.
    """

    resource_name: str
    model_name: str
    serial_number: str
    manufacturer: str = "Thorlabs"
    sensor_name: str = "S120C"
    sensor_serial: str = "11223344"
    calibration_message: str = "03-Jun-2024"
    type_code: int = 0x01
    subtype_code: int = 0x02
    flag_bits: int = 0x0021
    bounds: dict[Parameter, tuple[float, float]] = field(default_factory=default_bounds)
    power_w: float = 1.0e-3
    voltage_v: float = 0.25
    voltage_supported: bool = True
    power_unit: int = 0
    dark_offset_v: float = 1.5e-5


def _default_meters() -> list[SimulatedMeter]:
    return [
        SimulatedMeter(
            resource_name="USB0::0x1313::0x8078::P0012345::INSTR",
            model_name="PM100D",
            serial_number="P0012345",
        ),
        SimulatedMeter(
            resource_name="USB0::0x1313::0x8075::P5000123::INSTR",
            model_name="PM400",
            serial_number="P5000123",
            sensor_name="S425C",
            type_code=0x02,
            subtype_code=0x12,
            flag_bits=0x0161,
            power_w=2.5e-1,
        ),
    ]


@dataclass
class DigitalTwinMeterConfig:
    """Configuration for the simulated bench.

    Attributes:
        meters: Meters reported by discovery, in order.
        noise_std: Relative standard deviation of power/voltage readings.
        dark_adjust_polls: Number of "in progress" polls before the dark
            adjustment reports completion. Negative never completes.
        seed: RNG seed for reproducible noise.
        fail_open: Resource names whose open() raises.
        fail_close: Make close() raise after releasing the handle.
    """

    meters: list[SimulatedMeter] = field(default_factory=_default_meters)
    noise_std: float = 0.01
    dark_adjust_polls: int = 3
    seed: int | None = None
    fail_open: set[str] = field(default_factory=set)
    fail_close: bool = False

    def __repr__(self) -> str:
        """Return a concise config representation for log lines."""
        models = ",".join(m.model_name for m in self.meters)
        return f"DigitalTwinMeterConfig(meters=[{models}], noise={self.noise_std})"


class DigitalTwinMeterHandle:
    """Open handle on a simulated meter. Holds the written settings."""

    def __init__(self, meter: SimulatedMeter) -> None:
        """Create a handle with nothing written yet."""
        self.meter = meter
        self.settings: dict[Parameter, Any] = {}
        self.dark_polls_remaining = 0
        self.dark_adjusted = False
        self.closed = False

    def __repr__(self) -> str:
        """Return resource and open state."""
        state = "closed" if self.closed else "open"
        return f"<DigitalTwinMeterHandle({self.meter.resource_name}, {state})>"


class DigitalTwinMeterDriver:
    """Simulated MeterDriver.

    Discovery marks a resource unavailable while one of its handles is
    open, mirroring getRsrcInfo on real hardware. Opening it again is still
    allowed, as the vendor driver does for a forced connection.

    Note:
        Not thread-safe.
    """

    def __init__(self, config: DigitalTwinMeterConfig | None = None) -> None:
        """Create the simulated bench.

        Args:
            config: Bench description. Defaults to a PM100D and a PM400.
        """
        self._config = config or DigitalTwinMeterConfig()
        self._rng = np.random.default_rng(self._config.seed)
        self._open_handles: list[DigitalTwinMeterHandle] = []
        logger.debug("Digital twin meter driver created", config=repr(self._config))

    @property
    def config(self) -> DigitalTwinMeterConfig:
        """Bench configuration."""
        return self._config

    def _find(self, resource_name: str) -> SimulatedMeter:
        for meter in self._config.meters:
            if meter.resource_name == resource_name:
                return meter
        raise MeterDriverError(f"Resource not found: {resource_name}")

    @staticmethod
    def _check(handle: DigitalTwinMeterHandle) -> SimulatedMeter:
        if handle.closed:
            raise MeterDriverError("Handle is closed")
        return handle.meter

    def _noisy(self, value: float) -> float:
        return float(value * (1.0 + self._rng.normal(0.0, self._config.noise_std)))

    def discover(self) -> list[DiscoveredResource]:
        """Report every simulated meter."""
        busy = {h.meter.resource_name for h in self._open_handles}
        return [
            DiscoveredResource(
                resource_name=m.resource_name,
                model_name=m.model_name,
                serial_number=m.serial_number,
                manufacturer=m.manufacturer,
                available=m.resource_name not in busy,
            )
            for m in self._config.meters
        ]

    def open(
        self, resource_name: str, query_id: bool, reset: bool
    ) -> DigitalTwinMeterHandle:
        """Open a simulated meter.

        Raises:
            MeterDriverError: Unknown resource or injected failure.
        """
        meter = self._find(resource_name)
        if resource_name in self._config.fail_open:
            raise MeterDriverError(f"VI_ERROR_RSRC_NFOUND: {resource_name}")
        handle = DigitalTwinMeterHandle(meter)
        self._open_handles.append(handle)
        logger.debug(
            "Twin meter opened", resource=resource_name, query_id=query_id, reset=reset
        )
        return handle

    def close(self, handle: DigitalTwinMeterHandle) -> None:
        """Release a handle. With fail_close the release happens, then raises."""
        handle.closed = True
        if handle in self._open_handles:
            self._open_handles.remove(handle)
        if self._config.fail_close:
            raise MeterDriverError("VI_ERROR_CONN_LOST")

    def get_bound(
        self, handle: DigitalTwinMeterHandle, parameter: Parameter, which: BoundKind
    ) -> float:
        """Return the configured bound."""
        meter = self._check(handle)
        if parameter not in meter.bounds:
            raise MeterDriverError(f"No device bounds for {parameter.value}")
        low, high = meter.bounds[parameter]
        return low if which is BoundKind.MIN else high

    def set_parameter(
        self, handle: DigitalTwinMeterHandle, parameter: Parameter, value: Any
    ) -> None:
        """Record the written value on the handle."""
        self._check(handle)
        handle.settings[parameter] = value

    def measure(self, handle: DigitalTwinMeterHandle, quantity: Quantity) -> float:
        """Return a noisy reading around the configured level."""
        meter = self._check(handle)
        if quantity is Quantity.VOLTAGE:
            if not meter.voltage_supported:
                raise MeterDriverError("Wrong sensor type for this operation")
            return self._noisy(meter.voltage_v)
        power = self._noisy(meter.power_w)
        if meter.power_unit == 1:
            return float(10.0 * np.log10(abs(power) * 1000.0))
        return power

    def get_power_unit(self, handle: DigitalTwinMeterHandle) -> int:
        """Return the configured unit code."""
        return self._check(handle).power_unit

    def get_sensor_info(self, handle: DigitalTwinMeterHandle) -> RawSensorInfo:
        """Return the configured sensor head codes."""
        meter = self._check(handle)
        return RawSensorInfo(
            name=meter.sensor_name,
            serial_number=meter.sensor_serial,
            calibration_message=meter.calibration_message,
            type_code=meter.type_code,
            subtype_code=meter.subtype_code,
            flag_bits=meter.flag_bits,
        )

    def start_dark_adjust(self, handle: DigitalTwinMeterHandle) -> None:
        """Begin a simulated dark adjustment."""
        self._check(handle)
        handle.dark_polls_remaining = self._config.dark_adjust_polls
        handle.dark_adjusted = False

    def is_dark_adjust_in_progress(self, handle: DigitalTwinMeterHandle) -> bool:
        """Count down the configured number of polls."""
        self._check(handle)
        if handle.dark_polls_remaining == 0:
            handle.dark_adjusted = True
            return False
        if handle.dark_polls_remaining > 0:
            handle.dark_polls_remaining -= 1
        return True

    def get_dark_offset(self, handle: DigitalTwinMeterHandle) -> float:
        """Return the offset, zero until an adjustment has completed."""
        meter = self._check(handle)
        return meter.dark_offset_v if handle.dark_adjusted else 0.0

    def __repr__(self) -> str:
        """Return a short representation with the open handle count."""
        return (
            f"<DigitalTwinMeterDriver(meters={len(self._config.meters)}, "
            f"open={len(self._open_handles)})>"
        )
