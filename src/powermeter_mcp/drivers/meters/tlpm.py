"""TLPM Power Meter Driver - Real Hardware Implementation.

Wraps the Thorlabs TLPM .NET interop assembly (shipped with the Optical
Power Monitor software) through pythonnet, following the MeterDriver
protocol.

The assembly is loaded once per process. Loading requires a .NET runtime
and the vendor VISA stack, so ``clr`` is imported only when the first
TLPMDriver needs the binding.

pythonnet calling convention for ``out`` parameters: a placeholder is passed
in their position and the call returns a tuple ``(status, out1, out2, ...)``.
StringBuilder arguments are filled in place.

Classes:
    TLPMLibraryConfig: Location and class name of the interop assembly
    TLPMBinding: Loaded .NET types the driver needs
    TLPMDriver: MeterDriver over the TLPM class

Example:
    from powermeter_mcp.drivers.meters.tlpm import TLPMDriver, TLPMLibraryConfig

    driver = TLPMDriver(TLPMLibraryConfig(dll_dir=Path(r"C:\\TLPM")))
    resources = driver.discover()
    handle = driver.open(resources[0]["resource_name"], True, True)
    print(driver.measure(handle, Quantity.POWER))
    driver.close(handle)
"""

from __future__ import annotations

import importlib
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

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
    "DEFAULT_DLL_DIR",
    "TLPMBinding",
    "TLPMDriver",
    "TLPMLibraryConfig",
    "load_tlpm_binding",
]

# =============================================================================
# Constants
# =============================================================================

#: Install location of the interop assemblies on 64-bit Windows.
DEFAULT_DLL_DIR = Path(
    r"C:\Program Files\IVI Foundation\VISA\VisaCom64\Primary Interop Assemblies"
)
DEFAULT_BINARY_NAME = "Thorlabs.TLPM_64.Interop.dll"
DEFAULT_CLASS_NAME = "Thorlabs.TLPM_64.Interop.TLPM"

_RESOURCE_BUFFER_SIZE = 2048  # chars, discovery strings
_SENSOR_BUFFER_SIZE = 1024  # chars, sensor info strings

# Parameter to TLPM setter method (immutable)
SETTERS: Mapping[Parameter, str] = MappingProxyType(
    {
        Parameter.WAVELENGTH: "setWavelength",
        Parameter.AVERAGE_TIME: "setAvgTime",
        Parameter.POWER_RANGE: "setPowerRange",
        Parameter.ATTENUATION: "setAttenuation",
        Parameter.BRIGHTNESS: "setDispBrightness",
        Parameter.TIMEOUT: "setTimeoutValue",
        Parameter.AUTO_RANGE: "setPowerAutoRange",
    }
)

# Parameter to TLPM getter taking an attribute code (min/max)
BOUND_GETTERS: Mapping[Parameter, str] = MappingProxyType(
    {
        Parameter.WAVELENGTH: "getWavelength",
        Parameter.AVERAGE_TIME: "getAvgTime",
        Parameter.POWER_RANGE: "getPowerRange",
        Parameter.ATTENUATION: "getAttenuation",
    }
)

_MEASUREMENTS: Mapping[Quantity, str] = MappingProxyType(
    {
        Quantity.POWER: "measPower",
        Quantity.VOLTAGE: "measVoltage",
    }
)


# =============================================================================
# Assembly loading
# =============================================================================


@dataclass(frozen=True)
class TLPMLibraryConfig:
    """Where to find the TLPM interop assembly.

    Attributes:
        dll_dir: Directory holding the interop DLL.
        binary_name: Assembly file name.
        class_name: Fully qualified .NET class of the driver.
    """

    dll_dir: Path = DEFAULT_DLL_DIR
    binary_name: str = DEFAULT_BINARY_NAME
    class_name: str = DEFAULT_CLASS_NAME

    @property
    def dll_path(self) -> Path:
        """Full path to the assembly."""
        return Path(self.dll_dir) / self.binary_name


@dataclass(frozen=True)
class TLPMBinding:
    """.NET types resolved from the loaded assembly.

    Attributes:
        tlpm_class: The TLPM driver class. ``tlpm_class(resource, id, reset)``
            opens a device; ``tlpm_class(null_ptr)`` gives a discovery
            session.
        string_builder: System.Text.StringBuilder, used for string outputs.
        null_ptr: System.IntPtr.Zero.
    """

    tlpm_class: Any
    string_builder: Any
    null_ptr: Any


_bindings: dict[TLPMLibraryConfig, TLPMBinding] = {}
_bindings_lock = threading.Lock()


def load_tlpm_binding(config: TLPMLibraryConfig) -> TLPMBinding:
    """Load the TLPM assembly once and return its .NET types.

    Subsequent calls with an equal config return the cached binding, so
    every session in the process shares one loaded assembly.

    Args:
        config: Assembly location and class name.

    Returns:
        TLPMBinding for constructing driver objects.

    Raises:
        MeterDriverError: If pythonnet, the assembly or the class cannot
            be loaded.
    """
    with _bindings_lock:
        binding = _bindings.get(config)
        if binding is not None:
            return binding

        logger.info("Loading TLPM assembly", path=str(config.dll_path))
        try:
            import clr

            clr.AddReference(str(config.dll_path))

            from System import IntPtr
            from System.Text import StringBuilder

            namespace, _, class_name = config.class_name.rpartition(".")
            module = importlib.import_module(namespace)
            tlpm_class = getattr(module, class_name)
        except Exception as e:
            raise MeterDriverError(
                f"Unable to load .NET assembly {config.dll_path}: {e}"
            ) from e

        binding = TLPMBinding(
            tlpm_class=tlpm_class,
            string_builder=StringBuilder,
            null_ptr=IntPtr.Zero,
        )
        _bindings[config] = binding
        return binding


def _outputs(result: Any) -> tuple[Any, ...]:
    """Return the ``out`` values of a pythonnet call result.

    pythonnet returns ``(status, out1, ...)`` when a method has out
    parameters and the bare status otherwise.
    """
    if isinstance(result, tuple):
        return result[1:]
    return ()


def _invoke(target: Any, method: str, *args: Any) -> Any:
    """Call a TLPM method, wrapping .NET exceptions as MeterDriverError."""
    try:
        return getattr(target, method)(*args)
    except Exception as e:
        raise MeterDriverError(f"TLPM.{method} failed: {e}") from e


# =============================================================================
# Driver
# =============================================================================


class TLPMDriver:
    """MeterDriver backed by the Thorlabs TLPM .NET interop assembly.

    Handles are TLPM instances; ``close`` disposes them.

    Thread Safety:
        The vendor driver tolerates separate handles on separate threads.
        A single handle must not be shared between threads.
    """

    def __init__(
        self,
        config: TLPMLibraryConfig | None = None,
        binding: TLPMBinding | None = None,
    ) -> None:
        """Create a driver. The assembly loads lazily on first use.

        Args:
            config: Assembly location. Defaults to TLPMLibraryConfig().
            binding: Pre-resolved .NET types. Tests pass a fake here;
                production code leaves it None.
        """
        self._config = config or TLPMLibraryConfig()
        self._binding = binding

    @property
    def config(self) -> TLPMLibraryConfig:
        """Assembly configuration used by this driver."""
        return self._config

    @property
    def binding(self) -> TLPMBinding:
        """Loaded .NET types, loading the assembly on first access."""
        if self._binding is None:
            self._binding = load_tlpm_binding(self._config)
        return self._binding

    def _string_buffer(self, capacity: int) -> Any:
        buffer = self.binding.string_builder()
        buffer.Capacity = capacity
        return buffer

    def discover(self) -> list[DiscoveredResource]:
        """Enumerate attached meters via findRsrc/getRsrcName/getRsrcInfo.

        Returns:
            One DiscoveredResource per meter, in driver order.

        Raises:
            MeterDriverError: If the discovery session fails.
        """
        binding = self.binding
        finder = _invoke(binding, "tlpm_class", binding.null_ptr)
        try:
            (count,) = _outputs(_invoke(finder, "findRsrc", 0))
            resources: list[DiscoveredResource] = []
            for index in range(int(count)):
                name = self._string_buffer(_RESOURCE_BUFFER_SIZE)
                model = self._string_buffer(_RESOURCE_BUFFER_SIZE)
                serial = self._string_buffer(_RESOURCE_BUFFER_SIZE)
                manufacturer = self._string_buffer(_RESOURCE_BUFFER_SIZE)

                _invoke(finder, "getRsrcName", index, name)
                (available,) = _outputs(
                    _invoke(
                        finder, "getRsrcInfo", index, model, serial, manufacturer, False
                    )
                )
                resources.append(
                    DiscoveredResource(
                        resource_name=str(name.ToString()),
                        model_name=str(model.ToString()),
                        serial_number=str(serial.ToString()),
                        manufacturer=str(manufacturer.ToString()),
                        available=bool(available),
                    )
                )
        finally:
            _invoke(finder, "Dispose")

        logger.debug("TLPM discovery complete", count=len(resources))
        return resources

    def open(self, resource_name: str, query_id: bool, reset: bool) -> Any:
        """Open a meter by resource name.

        Raises:
            MeterDriverError: If the constructor rejects the resource.
        """
        binding = self.binding
        try:
            return binding.tlpm_class(resource_name, bool(query_id), bool(reset))
        except Exception as e:
            raise MeterDriverError(f"Failed to open {resource_name}: {e}") from e

    def close(self, handle: Any) -> None:
        """Dispose the TLPM instance."""
        _invoke(handle, "Dispose")

    def get_bound(self, handle: Any, parameter: Parameter, which: BoundKind) -> float:
        """Query a min/max attribute, e.g. ``getWavelength(1, out min)``.

        Raises:
            MeterDriverError: If the parameter has no queryable bounds.
        """
        method = BOUND_GETTERS.get(parameter)
        if method is None:
            raise MeterDriverError(f"No device bounds for {parameter.value}")
        (value,) = _outputs(_invoke(handle, method, int(which), 0.0))
        return float(value)

    def set_parameter(self, handle: Any, parameter: Parameter, value: Any) -> None:
        """Write a parameter through its TLPM setter."""
        method = SETTERS[parameter]
        if parameter is Parameter.TIMEOUT:
            value = int(value)
        elif parameter is Parameter.AUTO_RANGE:
            value = bool(value)
        else:
            value = float(value)
        _invoke(handle, method, value)

    def measure(self, handle: Any, quantity: Quantity) -> float:
        """Run measPower or measVoltage."""
        (value,) = _outputs(_invoke(handle, _MEASUREMENTS[quantity], 0.0))
        return float(value)

    def get_power_unit(self, handle: Any) -> int:
        """Return the getPowerUnit code."""
        (unit,) = _outputs(_invoke(handle, "getPowerUnit", 0))
        return int(unit)

    def get_sensor_info(self, handle: Any) -> RawSensorInfo:
        """Read sensor name, serial, calibration text and raw codes."""
        name = self._string_buffer(_SENSOR_BUFFER_SIZE)
        serial = self._string_buffer(_SENSOR_BUFFER_SIZE)
        message = self._string_buffer(_SENSOR_BUFFER_SIZE)
        type_code, subtype_code, flag_bits = _outputs(
            _invoke(handle, "getSensorInfo", name, serial, message, 0, 0, 0)
        )
        return RawSensorInfo(
            name=str(name.ToString()),
            serial_number=str(serial.ToString()),
            calibration_message=str(message.ToString()),
            type_code=int(type_code),
            subtype_code=int(subtype_code),
            flag_bits=int(flag_bits),
        )

    def start_dark_adjust(self, handle: Any) -> None:
        """Start the PM400 dark adjustment."""
        _invoke(handle, "startDarkAdjust")

    def is_dark_adjust_in_progress(self, handle: Any) -> bool:
        """Poll getDarkAdjustState."""
        (state,) = _outputs(_invoke(handle, "getDarkAdjustState", 0))
        return bool(state)

    def get_dark_offset(self, handle: Any) -> float:
        """Read the dark offset voltage."""
        (offset,) = _outputs(_invoke(handle, "getDarkOffset", 0.0))
        return float(offset)

    def __repr__(self) -> str:
        """Return a short representation naming the assembly path."""
        return f"TLPMDriver(dll={self._config.dll_path})"
