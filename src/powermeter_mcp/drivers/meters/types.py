"""Power meter driver type definitions and protocols.

This module holds the capability interface every meter driver implements,
plus the enums and TypedDicts that cross it. Keeping them apart from the
implementations avoids circular imports between the TLPM and digital twin
drivers.

Types defined here:
- Parameter, BoundKind, Quantity: enums naming driver operations
- DiscoveredResource, RawSensorInfo: TypedDicts returned by drivers
- MeterDriver: Protocol for driver implementations
- MeterDriverError: raised by drivers when the vendor call fails

Example:
    from powermeter_mcp.drivers.meters.types import MeterDriver, Parameter

    def apply_wavelength(driver: MeterDriver, handle, nm: float) -> None:
        driver.set_parameter(handle, Parameter.WAVELENGTH, nm)
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Protocol, TypedDict, runtime_checkable

__all__ = [
    "BoundKind",
    "DiscoveredResource",
    "MeterDriver",
    "MeterDriverError",
    "Parameter",
    "POWER_UNIT_LABELS",
    "Quantity",
    "RawSensorInfo",
]


class MeterDriverError(Exception):
    """Raised when a vendor driver call fails.

    Wraps the underlying .NET or simulated exception; the original is
    chained as ``__cause__``.
    """

    pass


class Parameter(Enum):
    """Settable meter parameters."""

    WAVELENGTH = "wavelength"  # nm
    AVERAGE_TIME = "average_time"  # s
    POWER_RANGE = "power_range"  # W
    ATTENUATION = "attenuation"  # dB
    BRIGHTNESS = "brightness"  # 0.0 - 1.0
    TIMEOUT = "timeout"  # ms
    AUTO_RANGE = "auto_range"  # bool


class BoundKind(IntEnum):
    """Which bound to query. Values match the TLPM attribute codes."""

    MIN = 1
    MAX = 2


class Quantity(Enum):
    """Measurable quantities."""

    POWER = "power"
    VOLTAGE = "voltage"


#: Power unit codes reported by getPowerUnit.
POWER_UNIT_LABELS: dict[int, str] = {0: "W", 1: "dBm"}


class DiscoveredResource(TypedDict):
    """One resource reported by driver discovery.

    Keys:
        resource_name: VISA resource string used to open the device.
        model_name: Meter model, e.g. "PM100D".
        serial_number: Meter serial number.
        manufacturer: Manufacturer string.
        available: False when another process already holds the device.
    """

    resource_name: str
    model_name: str
    serial_number: str
    manufacturer: str
    available: bool


class RawSensorInfo(TypedDict):
    """Undecoded sensor information read from the meter head.

    Keys:
        name: Sensor model name.
        serial_number: Sensor serial number.
        calibration_message: Free text calibration info.
        type_code: Sensor type byte.
        subtype_code: Sensor subtype byte (meaning depends on type_code).
        flag_bits: 16-bit capability flag field.
    """

    name: str
    serial_number: str
    calibration_message: str
    type_code: int
    subtype_code: int
    flag_bits: int


@runtime_checkable
class MeterDriver(Protocol):  # pragma: no cover
    """Capability interface required from a power meter driver.

    Handles are opaque to callers; only the driver that produced one
    interprets it. Every method except ``discover`` takes the handle
    returned by ``open``. Failures surface as MeterDriverError.

    Implementations: TLPMDriver (hardware via the vendor .NET assembly)
    and DigitalTwinMeterDriver (simulation).
    """

    def discover(self) -> list[DiscoveredResource]:
        """Enumerate meters currently attached.

        Returns:
            Resources in driver order. Empty list if none found.
        """
        ...

    def open(self, resource_name: str, query_id: bool, reset: bool) -> Any:
        """Open a device and return its handle.

        Args:
            resource_name: Resource string from discover().
            query_id: Ask the instrument to identify itself on open.
            reset: Reset the instrument to its default state on open.

        Raises:
            MeterDriverError: If the device cannot be opened.
        """
        ...

    def close(self, handle: Any) -> None:
        """Release a device handle."""
        ...

    def get_bound(self, handle: Any, parameter: Parameter, which: BoundKind) -> float:
        """Return the device-reported minimum or maximum for a parameter."""
        ...

    def set_parameter(self, handle: Any, parameter: Parameter, value: Any) -> None:
        """Write a parameter value to the device."""
        ...

    def measure(self, handle: Any, quantity: Quantity) -> float:
        """Take one measurement."""
        ...

    def get_power_unit(self, handle: Any) -> int:
        """Return the power unit code (0 = W, 1 = dBm)."""
        ...

    def get_sensor_info(self, handle: Any) -> RawSensorInfo:
        """Read the undecoded sensor head information."""
        ...

    def start_dark_adjust(self, handle: Any) -> None:
        """Start the dark-offset adjustment routine."""
        ...

    def is_dark_adjust_in_progress(self, handle: Any) -> bool:
        """Return True while the dark adjustment is running."""
        ...

    def get_dark_offset(self, handle: Any) -> float:
        """Return the dark offset voltage in volts."""
        ...
