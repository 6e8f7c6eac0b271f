"""Logical power meter session with driver injection.

This module provides a hardware-agnostic PowerMeter class that accepts a
driver (TLPM hardware or digital twin) via dependency injection and owns
the lifecycle of one open device handle.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTING -> DISCONNECTED

Every setting goes through the parameter guard, sensor info goes through
the descriptor decoder, and measurements go straight to the driver.
Non-fatal conditions come back as Advisory objects on the result and are
also delivered to ``MeterHooks.on_advisory``.

Example:
    from powermeter_mcp.devices import MeterRegistry
    from powermeter_mcp.drivers.meters import DigitalTwinMeterDriver

    registry = MeterRegistry(DigitalTwinMeterDriver())
    descriptor = registry.enumerate()[0]

    with registry.open(descriptor) as meter:
        meter.set_wavelength(635.0)
        reading = meter.read_power()
        print(f"{reading.power:.3e} {reading.power_unit}")
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from powermeter_mcp.devices.errors import (
    Advisory,
    AdvisoryKind,
    DarkAdjustTimeoutError,
    MeterConnectionError,
    MeterStateError,
)
from powermeter_mcp.devices.guard import BoundViolation, ClampDirection, clamp_and_apply
from powermeter_mcp.devices.sensor_info import SensorDescriptor, decode
from powermeter_mcp.drivers.meters.types import (
    POWER_UNIT_LABELS,
    BoundKind,
    MeterDriverError,
    Parameter,
    Quantity,
)
from powermeter_mcp.observability import get_logger

if TYPE_CHECKING:
    from powermeter_mcp.devices.registry import MeterRegistry, ResourceDescriptor
    from powermeter_mcp.drivers.meters import MeterDriver

logger = get_logger(__name__)

__all__ = [
    "ATTENUATION_MODELS",
    "BRIGHTNESS_BOUNDS",
    "Clock",
    "ConnectOptions",
    "DARK_ADJUST_MODELS",
    "DarkAdjustResult",
    "DarkOffset",
    "MeterHooks",
    "MeterSettings",
    "MeterState",
    "PowerMeter",
    "PowerReading",
    "PowerSeries",
    "SettingResult",
    "SystemClock",
    "VOLTAGE_MODELS",
]

# --- Constants ---

ATTENUATION_MODELS = frozenset({"PM100A", "PM100D", "PM100USB", "PM200", "PM400"})
"""Models that accept an attenuation setting."""

VOLTAGE_MODELS = frozenset(
    {"PM100D", "PM100A", "PM100USB", "PM160T", "PM200", "PM400"}
)
"""Models that can measure sensor voltage (with a suitable head)."""

DARK_ADJUST_MODELS = frozenset({"PM400"})
"""Models with a dark (zero) adjustment routine."""

BRIGHTNESS_BOUNDS: tuple[float, float] = (0.0, 1.0)
"""Display brightness bounds, fixed rather than device-reported."""

DEFAULT_DARK_ADJUST_TIMEOUT_S: float = 30.0
DEFAULT_DARK_ADJUST_POLL_S: float = 0.1

VOLTAGE_UNIT = "V"


# --- Protocols (Injectable Dependencies) ---


@runtime_checkable
class Clock(Protocol):  # pragma: no cover
    """Protocol for time functions (injectable for testing).

    Example:
        class FakeClock:
            def __init__(self):
                self.now = 0.0

            def monotonic(self) -> float:
                return self.now

            def sleep(self, seconds: float) -> None:
                self.now += seconds

        meter = PowerMeter(driver, clock=FakeClock())
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds``. Zero or negative returns immediately."""
        ...


class SystemClock:
    """Default clock using the time module."""

    def monotonic(self) -> float:
        """Return time.monotonic()."""
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` if positive."""
        if seconds > 0:
            time.sleep(seconds)


class OnAdvisoryCallback(Protocol):  # pragma: no cover
    """Callback receiving every advisory the session produces."""

    def __call__(self, advisory: Advisory) -> None:
        """Handle a non-fatal condition."""
        ...


@dataclass(slots=True)
class MeterHooks:
    """Optional callbacks for session events.

    Hook exceptions are logged and swallowed so a faulty observer cannot
    break a measurement.

    Attributes:
        on_advisory: Called for every advisory (bound violation, skipped
            operation, decode error, capability, disconnection).
        on_connect: Called with the session after a successful connect.
        on_disconnect: Called with the session after disconnect.
    """

    on_advisory: OnAdvisoryCallback | None = None
    on_connect: Callable[[PowerMeter], object] | None = None
    on_disconnect: Callable[[PowerMeter], object] | None = None


# --- Value types ---


class MeterState(Enum):
    """Lifecycle state of a session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class ConnectOptions:
    """Options forwarded to the driver on open.

    Attributes:
        query_id: Ask the instrument for its identification on open.
        reset_device: Reset the instrument to defaults on open.
    """

    query_id: bool = True
    reset_device: bool = True


@dataclass
class MeterSettings:
    """Last values written to the device. None means never written."""

    wavelength_nm: float | None = None
    attenuation_db: float | None = None
    brightness: float | None = None
    average_time_s: float | None = None
    timeout_ms: int | None = None
    power_range_w: float | None = None
    auto_range: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return settings as a plain dict."""
        return asdict(self)


@dataclass(frozen=True)
class SettingResult:
    """Outcome of one setter call.

    Attributes:
        parameter: Setting that was addressed.
        requested: Value the caller asked for.
        applied: Value written to the device, None when skipped.
        clamp: Correction made by the guard.
        supported: False when the model does not offer this setting.
        advisories: Non-fatal conditions raised by the call.
        linear_factor: For attenuation, ``10 ** (dB / 20)`` of the applied value.
    """

    parameter: Parameter
    requested: Any
    applied: Any
    clamp: ClampDirection = ClampDirection.NONE
    supported: bool = True
    advisories: tuple[Advisory, ...] = ()
    linear_factor: float | None = None

    @property
    def was_clamped(self) -> bool:
        """True when the applied value differs from the request."""
        return self.clamp is not ClampDirection.NONE

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        data: dict[str, Any] = {
            "parameter": self.parameter.value,
            "requested": self.requested,
            "applied": self.applied,
            "clamped": self.clamp.value,
            "supported": self.supported,
            "advisories": [a.to_dict() for a in self.advisories],
        }
        if self.linear_factor is not None:
            data["linear_factor"] = self.linear_factor
        return data


@dataclass(frozen=True)
class PowerReading:
    """One power measurement, optionally with the sensor voltage.

    Attributes:
        power: Reading in ``power_unit``.
        power_unit: "W" or "dBm"; None if the device reported an unknown code.
        voltage: Sensor voltage, None when not measured.
        voltage_unit: "V" when voltage is present.
        advisories: Non-fatal conditions raised by the read.
    """

    power: float
    power_unit: str | None
    voltage: float | None = None
    voltage_unit: str | None = None
    advisories: tuple[Advisory, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "power": self.power,
            "power_unit": self.power_unit,
            "voltage": self.voltage,
            "voltage_unit": self.voltage_unit,
            "advisories": [a.to_dict() for a in self.advisories],
        }


@dataclass
class PowerSeries:
    """A run of consecutive power readings.

    Attributes:
        values: Readings as a float64 array, in acquisition order.
        unit: Unit of the last reading.
        interval_s: Pause requested between readings.
        advisories: Advisories collected over the run, deduplicated.
    """

    values: np.ndarray
    unit: str | None
    interval_s: float = 0.0
    advisories: tuple[Advisory, ...] = ()

    @property
    def count(self) -> int:
        """Number of readings."""
        return int(self.values.size)

    @property
    def mean(self) -> float:
        """Arithmetic mean, NaN when empty."""
        return float(np.mean(self.values)) if self.count else math.nan

    @property
    def std(self) -> float:
        """Population standard deviation, NaN when empty."""
        return float(np.std(self.values)) if self.count else math.nan

    @property
    def min(self) -> float:
        """Smallest reading, NaN when empty."""
        return float(np.min(self.values)) if self.count else math.nan

    @property
    def max(self) -> float:
        """Largest reading, NaN when empty."""
        return float(np.max(self.values)) if self.count else math.nan

    def to_dict(self, include_values: bool = True) -> dict[str, Any]:
        """Return summary statistics and, optionally, the raw values."""
        data: dict[str, Any] = {
            "count": self.count,
            "unit": self.unit,
            "interval_s": self.interval_s,
            "mean": self.mean,
            "std": self.std,
            "min": self.min,
            "max": self.max,
            "advisories": [a.to_dict() for a in self.advisories],
        }
        if include_values:
            data["values"] = self.values.tolist()
        return data


@dataclass(frozen=True)
class DarkOffset:
    """Dark (zero) offset voltage. ``value`` is None when not supported."""

    value: float | None
    unit: str = VOLTAGE_UNIT
    advisories: tuple[Advisory, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "value": self.value,
            "unit": self.unit,
            "advisories": [a.to_dict() for a in self.advisories],
        }


@dataclass(frozen=True)
class DarkAdjustResult:
    """Outcome of a dark adjustment.

    Attributes:
        performed: False when the model has no dark adjustment.
        polls: Number of progress polls made.
        elapsed_s: Time spent waiting for completion.
        advisories: Non-fatal conditions raised by the call.
    """

    performed: bool
    polls: int = 0
    elapsed_s: float = 0.0
    advisories: tuple[Advisory, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "performed": self.performed,
            "polls": self.polls,
            "elapsed_s": self.elapsed_s,
            "advisories": [a.to_dict() for a in self.advisories],
        }


# --- Session ---


class PowerMeter:
    """One device session over an injected MeterDriver.

    Injectable Dependencies:
        - driver: Meter driver (required)
        - registry: Claim arbitration (optional; without it only the
          descriptor's own availability flag is checked)
        - clock: Time functions for dark-adjust polling and sampling
        - hooks: Event callbacks

    Can be used as a context manager for automatic disconnect:

        meter = PowerMeter(driver, registry=registry)
        meter.connect(descriptor)
        with meter:
            meter.read_power()

    Attributes:
        state: Current MeterState
        descriptor: Resource the session was opened from
        settings: Last written settings
        last_reading: Most recent PowerReading
        last_sensor: Most recent SensorDescriptor
        dark_offset: Most recent DarkOffset
    """

    def __init__(
        self,
        driver: MeterDriver,
        registry: MeterRegistry | None = None,
        clock: Clock | None = None,
        hooks: MeterHooks | None = None,
        dark_adjust_timeout_s: float = DEFAULT_DARK_ADJUST_TIMEOUT_S,
        dark_adjust_poll_s: float = DEFAULT_DARK_ADJUST_POLL_S,
    ) -> None:
        """Create a disconnected session.

        Args:
            driver: Driver used for every device call.
            registry: Registry whose claim set arbitrates exclusive access.
            clock: Time source (default: SystemClock).
            hooks: Optional callbacks.
            dark_adjust_timeout_s: Default deadline for dark_adjust().
            dark_adjust_poll_s: Default pause between progress polls.
        """
        self._driver = driver
        self._registry = registry
        self._clock = clock or SystemClock()
        self._hooks = hooks or MeterHooks()
        self._dark_adjust_timeout_s = dark_adjust_timeout_s
        self._dark_adjust_poll_s = dark_adjust_poll_s

        self._state = MeterState.DISCONNECTED
        self._handle: Any = None
        self._descriptor: ResourceDescriptor | None = None
        self._model_name: str | None = None
        self._serial_number: str | None = None
        self._manufacturer: str | None = None

        self.settings = MeterSettings()
        self.last_reading: PowerReading | None = None
        self.last_sensor: SensorDescriptor | None = None
        self.dark_offset: DarkOffset | None = None

    # --- Properties ---

    @property
    def state(self) -> MeterState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True in CONNECTED state."""
        return self._state is MeterState.CONNECTED

    @property
    def descriptor(self) -> ResourceDescriptor | None:
        """Descriptor of the connected resource, None when disconnected."""
        return self._descriptor

    @property
    def resource_name(self) -> str | None:
        """Resource string of the connected device."""
        return self._descriptor.resource_name if self._descriptor else None

    @property
    def model_name(self) -> str | None:
        """Model snapshot taken at connect, None when disconnected."""
        return self._model_name

    @property
    def serial_number(self) -> str | None:
        """Serial number snapshot taken at connect, None when disconnected."""
        return self._serial_number

    @property
    def manufacturer(self) -> str | None:
        """Manufacturer snapshot taken at connect, None when disconnected."""
        return self._manufacturer

    # --- Lifecycle ---

    def connect(
        self, descriptor: ResourceDescriptor, options: ConnectOptions | None = None
    ) -> PowerMeter:
        """Open the resource and claim it.

        Args:
            descriptor: Resource chosen from MeterRegistry.enumerate().
            options: Open options (default: query ID and reset).

        Returns:
            Self, for chaining.

        Raises:
            MeterStateError: If the session is not DISCONNECTED.
            MeterConnectionError: If the resource is unavailable (driver
                flag or registry claim) or the driver fails to open it.
        """
        self._require_state(MeterState.DISCONNECTED, "connect")
        if not self._resource_available(descriptor):
            logger.warning(
                "Device is not available", resource=descriptor.resource_name
            )
            raise MeterConnectionError(
                f"Device is not available: {descriptor.resource_name}"
            )
        return self._open(descriptor, options or ConnectOptions())

    def connect_force(
        self, descriptor: ResourceDescriptor, options: ConnectOptions | None = None
    ) -> PowerMeter:
        """Open the resource regardless of its availability.

        The availability check is skipped, so the device may be held by
        another session or process and may not actually respond.

        Raises:
            MeterStateError: If the session is not DISCONNECTED.
            MeterConnectionError: If the driver fails to open the resource.
        """
        self._require_state(MeterState.DISCONNECTED, "connect")
        logger.warning(
            "Force connection. The actual device may not be connected",
            resource=descriptor.resource_name,
        )
        return self._open(descriptor, options or ConnectOptions())

    def _resource_available(self, descriptor: ResourceDescriptor) -> bool:
        if not descriptor.available:
            return False
        if self._registry is not None:
            return self._registry.is_available(descriptor)
        return True

    def _open(
        self, descriptor: ResourceDescriptor, options: ConnectOptions
    ) -> PowerMeter:
        name = descriptor.resource_name
        self._state = MeterState.CONNECTING
        logger.info("Connecting to meter", resource=name, model=descriptor.model_name)
        try:
            self._handle = self._driver.open(
                name, options.query_id, options.reset_device
            )
        except Exception as e:
            # Any open failure leaves the session reusable
            self._state = MeterState.DISCONNECTED
            self._handle = None
            logger.error(
                "Failed to connect the device",
                resource=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise MeterConnectionError(f"Failed to connect the device: {name}") from e

        self._descriptor = descriptor
        self._model_name = descriptor.model_name
        self._serial_number = descriptor.serial_number
        self._manufacturer = descriptor.manufacturer
        self._state = MeterState.CONNECTED
        if self._registry is not None:
            self._registry.mark_claimed(descriptor)

        logger.info(
            "Meter connected",
            resource=name,
            model=self._model_name,
            serial=self._serial_number,
        )
        self._fire(self._hooks.on_connect, self)
        return self

    def disconnect(self) -> tuple[Advisory, ...]:
        """Close the device handle and release the claim.

        From CONNECTED the driver close is always attempted. A close failure
        becomes a DISCONNECTION advisory; the session ends DISCONNECTED and
        the claim is released either way. From any other state this is a
        logged no-op.

        Returns:
            Advisories raised while closing (empty on a clean close).
        """
        if self._state is not MeterState.CONNECTED:
            logger.warning("Device not connected", state=self._state.value)
            return ()

        descriptor = self._descriptor
        name = self.resource_name
        advisories: list[Advisory] = []
        self._state = MeterState.DISCONNECTING
        logger.info("Disconnecting meter", resource=name)
        try:
            self._driver.close(self._handle)
            logger.info("Device released properly", resource=name)
        except MeterDriverError as e:
            advisories.append(
                self._advise(
                    AdvisoryKind.DISCONNECTION,
                    "Unable to disconnect device",
                    resource=name,
                    error=str(e),
                )
            )
        finally:
            self._handle = None
            self._descriptor = None
            self._model_name = None
            self._serial_number = None
            self._manufacturer = None
            self._state = MeterState.DISCONNECTED
            if self._registry is not None and descriptor is not None:
                self._registry.mark_released(descriptor)

        self._fire(self._hooks.on_disconnect, self)
        return tuple(advisories)

    # --- Settings ---

    def set_wavelength(self, wavelength_nm: float) -> SettingResult:
        """Set the correction wavelength, clamped to the sensor's range."""
        result = self._set_bounded(Parameter.WAVELENGTH, wavelength_nm)
        self.settings.wavelength_nm = result.applied
        return result

    def set_average_time(self, average_time_s: float) -> SettingResult:
        """Set the averaging time in seconds, clamped to the device range."""
        result = self._set_bounded(Parameter.AVERAGE_TIME, average_time_s)
        self.settings.average_time_s = result.applied
        return result

    def set_power_range(self, power_range_w: float) -> SettingResult:
        """Set the power range in watts, clamped to the device range."""
        result = self._set_bounded(Parameter.POWER_RANGE, power_range_w)
        self.settings.power_range_w = result.applied
        return result

    def set_brightness(self, brightness: float) -> SettingResult:
        """Set the display brightness, clamped to 0.0-1.0."""
        result = self._set_bounded(
            Parameter.BRIGHTNESS, brightness, bounds=BRIGHTNESS_BOUNDS
        )
        self.settings.brightness = result.applied
        return result

    def set_attenuation(self, attenuation_db: float) -> SettingResult:
        """Set the input attenuation in dB.

        Only ATTENUATION_MODELS accept it. On any other model nothing is sent
        to the driver and an UNSUPPORTED_OPERATION advisory is returned.

        Returns:
            SettingResult with the linear factor ``10 ** (dB / 20)`` of the
            applied attenuation.

        Raises:
            MeterStateError: If not connected.
            MeterDeviceError: If the device reports inverted bounds.
        """
        self._require_connected("set_attenuation")
        if self._model_name not in ATTENUATION_MODELS:
            advisory = self._unsupported("set_attenuation")
            return SettingResult(
                parameter=Parameter.ATTENUATION,
                requested=attenuation_db,
                applied=None,
                supported=False,
                advisories=(advisory,),
            )

        result = self._set_bounded(Parameter.ATTENUATION, attenuation_db)
        factor = 10 ** (result.applied / 20)
        self.settings.attenuation_db = result.applied
        logger.info(
            "Set attenuation", attenuation_db=result.applied, linear_factor=factor
        )
        return SettingResult(
            parameter=result.parameter,
            requested=result.requested,
            applied=result.applied,
            clamp=result.clamp,
            advisories=result.advisories,
            linear_factor=factor,
        )

    def set_timeout(self, timeout_ms: int) -> SettingResult:
        """Set the instrument communication timeout, forwarded unchanged."""
        self._require_connected("set_timeout")
        self._driver.set_parameter(self._handle, Parameter.TIMEOUT, timeout_ms)
        self.settings.timeout_ms = timeout_ms
        logger.info("Set timeout value", timeout_ms=timeout_ms)
        return SettingResult(Parameter.TIMEOUT, timeout_ms, timeout_ms)

    def set_power_auto_range(self, enable: bool) -> SettingResult:
        """Enable or disable power auto-ranging."""
        self._require_connected("set_power_auto_range")
        enable = bool(enable)
        self._driver.set_parameter(self._handle, Parameter.AUTO_RANGE, enable)
        self.settings.auto_range = enable
        logger.info("Set power auto range", enabled=enable)
        return SettingResult(Parameter.AUTO_RANGE, enable, enable)

    def _set_bounded(
        self,
        parameter: Parameter,
        requested: float,
        bounds: tuple[float, float] | None = None,
    ) -> SettingResult:
        """Fetch bounds (unless fixed), clamp, apply, and report."""
        self._require_connected(f"set_{parameter.value}")
        if bounds is None:
            minimum = self._driver.get_bound(self._handle, parameter, BoundKind.MIN)
            maximum = self._driver.get_bound(self._handle, parameter, BoundKind.MAX)
        else:
            minimum, maximum = bounds

        violations: list[BoundViolation] = []
        value, _, direction = clamp_and_apply(
            requested,
            minimum,
            maximum,
            lambda v: self._driver.set_parameter(self._handle, parameter, v),
            parameter=parameter.value,
            on_clamp=violations.append,
        )
        advisories = tuple(self._emit(v.to_advisory()) for v in violations)
        logger.info(f"Set {parameter.value}", value=value)
        return SettingResult(
            parameter=parameter,
            requested=requested,
            applied=value,
            clamp=direction,
            advisories=advisories,
        )

    # --- Measurements ---

    def read_power(self, period_s: float = 0.0) -> PowerReading:
        """Measure power and read the display unit.

        Args:
            period_s: Pause between the measurement and the unit query.

        Returns:
            PowerReading. An unknown unit code gives ``power_unit=None`` and a
            DECODE_ERROR advisory.

        Raises:
            MeterStateError: If not connected. No driver call is made.
            MeterDriverError: If the driver fails to measure.
        """
        self._require_connected("read_power")
        power, unit, advisories = self._measure_power(period_s)
        reading = PowerReading(power=power, power_unit=unit, advisories=advisories)
        self.last_reading = reading
        logger.debug("Power reading", power=power, unit=unit)
        return reading

    def read_power_and_voltage(self, period_s: float = 0.0) -> PowerReading:
        """Measure power and, where the model and head allow it, voltage.

        The power half is always returned. A model outside VOLTAGE_MODELS, or
        a driver that rejects the voltage measurement, yields a CAPABILITY
        advisory instead of a voltage.

        Raises:
            MeterStateError: If not connected.
            MeterDriverError: If the power measurement fails.
        """
        self._require_connected("read_power_and_voltage")
        power, unit, advisories = self._measure_power(period_s)
        collected = list(advisories)
        voltage: float | None = None

        if self._model_name in VOLTAGE_MODELS:
            try:
                voltage = self._driver.measure(self._handle, Quantity.VOLTAGE)
            except MeterDriverError as e:
                collected.append(
                    self._advise(
                        AdvisoryKind.CAPABILITY,
                        "Wrong sensor type for this operation",
                        model=self._model_name,
                        error=str(e),
                    )
                )
        else:
            collected.append(
                self._advise(
                    AdvisoryKind.CAPABILITY,
                    f"Voltage measurement is not supported on {self._model_name}",
                    model=self._model_name,
                )
            )

        reading = PowerReading(
            power=power,
            power_unit=unit,
            voltage=voltage,
            voltage_unit=VOLTAGE_UNIT if voltage is not None else None,
            advisories=tuple(collected),
        )
        self.last_reading = reading
        logger.debug("Power and voltage reading", power=power, unit=unit, voltage=voltage)
        return reading

    def sample_power(self, count: int, interval_s: float = 0.0) -> PowerSeries:
        """Take ``count`` consecutive power readings.

        Args:
            count: Number of readings (>= 1).
            interval_s: Pause between readings.

        Returns:
            PowerSeries with the readings and summary statistics.

        Raises:
            ValueError: If count < 1 or interval_s < 0.
            MeterStateError: If not connected.
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        if interval_s < 0:
            raise ValueError(f"interval_s must be >= 0, got {interval_s}")
        self._require_connected("sample_power")

        values = np.empty(count, dtype=np.float64)
        unit: str | None = None
        advisories: dict[str, Advisory] = {}
        for i in range(count):
            if i:
                self._clock.sleep(interval_s)
            reading = self.read_power()
            values[i] = reading.power
            unit = reading.power_unit
            for advisory in reading.advisories:
                advisories.setdefault(advisory.message, advisory)

        series = PowerSeries(
            values=values,
            unit=unit,
            interval_s=interval_s,
            advisories=tuple(advisories.values()),
        )
        logger.info(
            "Power series acquired",
            count=count,
            mean=series.mean,
            std=series.std,
            unit=unit,
        )
        return series

    def _measure_power(
        self, period_s: float
    ) -> tuple[float, str | None, tuple[Advisory, ...]]:
        power = self._driver.measure(self._handle, Quantity.POWER)
        self._clock.sleep(period_s)
        code = self._driver.get_power_unit(self._handle)
        unit = POWER_UNIT_LABELS.get(code)
        if unit is None:
            advisory = self._advise(
                AdvisoryKind.DECODE_ERROR, f"Unknown power unit code {code}", code=code
            )
            return power, None, (advisory,)
        return power, unit, ()

    # --- Dark adjustment ---

    def dark_adjust(
        self, timeout_s: float | None = None, poll_interval_s: float | None = None
    ) -> DarkAdjustResult:
        """Run the dark (zero) adjustment and wait for it to finish.

        Only DARK_ADJUST_MODELS support it; other models get an
        UNSUPPORTED_OPERATION advisory and nothing is sent to the driver.

        Args:
            timeout_s: Deadline (default from the constructor, 30 s).
            poll_interval_s: Pause between progress polls (default 0.1 s).

        Returns:
            DarkAdjustResult with poll count and elapsed time.

        Raises:
            MeterStateError: If not connected.
            DarkAdjustTimeoutError: If still in progress at the deadline.
        """
        self._require_connected("dark_adjust")
        if self._model_name not in DARK_ADJUST_MODELS:
            return DarkAdjustResult(
                performed=False, advisories=(self._unsupported("dark_adjust"),)
            )

        timeout = self._dark_adjust_timeout_s if timeout_s is None else timeout_s
        interval = (
            self._dark_adjust_poll_s if poll_interval_s is None else poll_interval_s
        )

        logger.info("Starting dark adjustment", resource=self.resource_name)
        self._driver.start_dark_adjust(self._handle)
        start = self._clock.monotonic()
        polls = 0
        while True:
            polls += 1
            if not self._driver.is_dark_adjust_in_progress(self._handle):
                break
            elapsed = self._clock.monotonic() - start
            if elapsed >= timeout:
                logger.error(
                    "Dark adjustment timed out",
                    resource=self.resource_name,
                    timeout_s=timeout,
                    polls=polls,
                )
                raise DarkAdjustTimeoutError(timeout, polls)
            self._clock.sleep(interval)

        elapsed = self._clock.monotonic() - start
        logger.info("Dark adjustment complete", polls=polls, elapsed_s=elapsed)
        return DarkAdjustResult(performed=True, polls=polls, elapsed_s=elapsed)

    def read_dark_offset(self) -> DarkOffset:
        """Read the dark offset voltage (PM400 only).

        Raises:
            MeterStateError: If not connected.
        """
        self._require_connected("read_dark_offset")
        if self._model_name not in DARK_ADJUST_MODELS:
            return DarkOffset(
                value=None, advisories=(self._unsupported("read_dark_offset"),)
            )
        offset = DarkOffset(value=self._driver.get_dark_offset(self._handle))
        self.dark_offset = offset
        logger.info("Dark offset", value=offset.value, unit=offset.unit)
        return offset

    # --- Sensor ---

    def sensor_info(self) -> SensorDescriptor:
        """Fetch and decode the attached sensor head description.

        Decode problems are reported as DECODE_ERROR advisories; the
        descriptor keeps whatever could be decoded.

        Raises:
            MeterStateError: If not connected.
        """
        self._require_connected("sensor_info")
        raw = self._driver.get_sensor_info(self._handle)
        descriptor = decode(
            raw["type_code"],
            raw["subtype_code"],
            raw["flag_bits"],
            name=raw["name"],
            serial_number=raw["serial_number"],
            calibration_message=raw["calibration_message"],
        )
        for error in descriptor.decode_errors:
            self._advise(AdvisoryKind.DECODE_ERROR, error, sensor=descriptor.name)
        self.last_sensor = descriptor
        logger.info(
            "Sensor info",
            sensor=descriptor.name,
            type=descriptor.type_label,
            subtype=descriptor.subtype_label,
            flags=list(descriptor.flags),
        )
        return descriptor

    # --- Status ---

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the session for tools and the CLI."""
        return {
            "state": self._state.value,
            "resource_name": self.resource_name,
            "model_name": self._model_name,
            "serial_number": self._serial_number,
            "manufacturer": self._manufacturer,
            "settings": self.settings.to_dict(),
            "last_reading": self.last_reading.to_dict() if self.last_reading else None,
            "sensor": self.last_sensor.to_dict() if self.last_sensor else None,
            "dark_offset": self.dark_offset.to_dict() if self.dark_offset else None,
            "capabilities": {
                "attenuation": self._model_name in ATTENUATION_MODELS,
                "voltage": self._model_name in VOLTAGE_MODELS,
                "dark_adjust": self._model_name in DARK_ADJUST_MODELS,
            },
        }

    # --- Helpers ---

    def _require_state(self, expected: MeterState, operation: str) -> None:
        if self._state is not expected:
            raise MeterStateError(
                f"Cannot {operation} while {self._state.value} "
                f"(requires {expected.value})"
            )

    def _require_connected(self, operation: str) -> None:
        self._require_state(MeterState.CONNECTED, operation)

    def _unsupported(self, operation: str) -> Advisory:
        return self._advise(
            AdvisoryKind.UNSUPPORTED_OPERATION,
            f"This command is not supported on {self._model_name}",
            operation=operation,
            model=self._model_name,
        )

    def _advise(self, kind: AdvisoryKind, message: str, **details: Any) -> Advisory:
        return self._emit(Advisory(kind=kind, message=message, details=details))

    def _emit(self, advisory: Advisory) -> Advisory:
        """Log an advisory and hand it to the hook."""
        if advisory.kind is not AdvisoryKind.BOUND_VIOLATION:
            # The guard already logged bound violations
            logger.warning(advisory.message, kind=advisory.kind.value, **advisory.details)
        self._fire(self._hooks.on_advisory, advisory)
        return advisory

    def _fire(self, hook: Callable[..., object] | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as e:
            logger.error("Hook raised", hook=repr(hook), error=str(e))

    # --- Context manager support ---

    def __enter__(self) -> PowerMeter:
        """Return self. Connect before entering."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Disconnect on exit if still connected. Does not suppress exceptions."""
        if self.is_connected:
            self.disconnect()

    def __del__(self) -> None:
        """Best-effort release of a session dropped while connected."""
        if getattr(self, "_state", None) is MeterState.CONNECTED:
            logger.warning(
                "Program terminated with device connected",
                resource=self.resource_name,
            )
            try:
                self.disconnect()
            except Exception as e:
                logger.warning("Failed to release the device", error=str(e))

    def __repr__(self) -> str:
        """Return model, resource and state."""
        name = self.resource_name or "no resource"
        return f"<PowerMeter({self._model_name or '?'}, {name}, {self._state.value})>"
