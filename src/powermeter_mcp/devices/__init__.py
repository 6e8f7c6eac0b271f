"""Logical device layer - hardware-agnostic meter sessions."""

from powermeter_mcp.devices.errors import (
    Advisory,
    AdvisoryKind,
    DarkAdjustTimeoutError,
    MeterConnectionError,
    MeterDeviceError,
    MeterError,
    MeterStateError,
)
from powermeter_mcp.devices.guard import (
    BoundViolation,
    ClampDirection,
    ClampResult,
    clamp,
    clamp_and_apply,
)
from powermeter_mcp.devices.meter import (
    ATTENUATION_MODELS,
    DARK_ADJUST_MODELS,
    VOLTAGE_MODELS,
    Clock,
    ConnectOptions,
    DarkAdjustResult,
    DarkOffset,
    MeterHooks,
    MeterSettings,
    MeterState,
    PowerMeter,
    PowerReading,
    PowerSeries,
    SettingResult,
    SystemClock,
)
from powermeter_mcp.devices.registry import (
    MeterRegistry,
    ResourceDescriptor,
    get_registry,
    init_registry,
    shutdown_registry,
)
from powermeter_mcp.devices.sensor_info import (
    MeasurementKind,
    SensorDescriptor,
    SensorType,
    SettableCapability,
    decode,
)

__all__ = [
    # Errors and advisories
    "Advisory",
    "AdvisoryKind",
    "DarkAdjustTimeoutError",
    "MeterConnectionError",
    "MeterDeviceError",
    "MeterError",
    "MeterStateError",
    # Guard
    "BoundViolation",
    "ClampDirection",
    "ClampResult",
    "clamp",
    "clamp_and_apply",
    # Session
    "ATTENUATION_MODELS",
    "DARK_ADJUST_MODELS",
    "VOLTAGE_MODELS",
    "ConnectOptions",
    "DarkAdjustResult",
    "DarkOffset",
    "MeterHooks",
    "MeterSettings",
    "MeterState",
    "PowerMeter",
    "PowerReading",
    "PowerSeries",
    "SettingResult",
    # Clock (shared)
    "Clock",
    "SystemClock",
    # Registry
    "MeterRegistry",
    "ResourceDescriptor",
    "init_registry",
    "get_registry",
    "shutdown_registry",
    # Sensor descriptor
    "MeasurementKind",
    "SensorDescriptor",
    "SensorType",
    "SettableCapability",
    "decode",
]
