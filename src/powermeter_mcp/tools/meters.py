"""MCP Tools for power meter control.

Uses the device layer with MeterRegistry for hardware abstraction.
Supports both real Thorlabs meters and digital twin simulation.

Meters are addressed by VISA resource name. When a tool's
``resource_name`` is omitted and exactly one meter is connected, that
meter is used.
"""

import asyncio
import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from powermeter_mcp.devices import (
    ConnectOptions,
    MeterError,
    MeterRegistry,
    MeterStateError,
    PowerMeter,
    get_registry,
)
from powermeter_mcp.drivers import get_factory
from powermeter_mcp.drivers.meters import MeterDriverError
from powermeter_mcp.observability import LogContext, get_logger

logger = get_logger(__name__)

SETTINGS = (
    "wavelength",
    "average_time",
    "brightness",
    "attenuation",
    "power_range",
    "timeout",
    "auto_range",
)

_RESOURCE_NAME = {
    "type": "string",
    "description": (
        "VISA resource name, e.g. USB0::0x1313::0x8078::P0012345::INSTR. "
        "Optional when exactly one meter is connected."
    ),
}


# Tool definitions
TOOLS = [
    Tool(
        name="list_meters",
        description="List Thorlabs power meters visible to the driver",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    Tool(
        name="connect_meter",
        description="Connect to a power meter (first available if none given)",
        inputSchema={
            "type": "object",
            "properties": {
                "resource_name": _RESOURCE_NAME,
                "force": {
                    "type": "boolean",
                    "description": "Connect even if the meter is reported busy",
                    "default": False,
                },
                "query_id": {
                    "type": "boolean",
                    "description": "Query the instrument ID on open",
                    "default": True,
                },
                "reset_device": {
                    "type": "boolean",
                    "description": "Reset the instrument on open",
                    "default": True,
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="disconnect_meter",
        description="Disconnect a power meter and release it",
        inputSchema={
            "type": "object",
            "properties": {"resource_name": _RESOURCE_NAME},
            "required": [],
        },
    ),
    Tool(
        name="set_meter_setting",
        description=(
            "Change a meter setting. Out-of-range values are clamped to the "
            "device bounds and reported as advisories."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "resource_name": _RESOURCE_NAME,
                "setting": {
                    "type": "string",
                    "enum": list(SETTINGS),
                    "description": (
                        "wavelength (nm), average_time (s), brightness (0-1), "
                        "attenuation (dB), power_range (W), timeout (ms), "
                        "auto_range (bool)"
                    ),
                },
                "value": {
                    "type": ["number", "boolean"],
                    "description": "New value",
                },
            },
            "required": ["setting", "value"],
        },
    ),
    Tool(
        name="read_power",
        description="Read optical power, optionally with the sensor voltage",
        inputSchema={
            "type": "object",
            "properties": {
                "resource_name": _RESOURCE_NAME,
                "include_voltage": {
                    "type": "boolean",
                    "description": "Also measure sensor voltage where supported",
                    "default": False,
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="sample_power",
        description="Take a series of power readings and return statistics",
        inputSchema={
            "type": "object",
            "properties": {
                "resource_name": _RESOURCE_NAME,
                "count": {
                    "type": "integer",
                    "description": "Number of readings",
                    "default": 100,
                    "minimum": 1,
                },
                "interval_s": {
                    "type": "number",
                    "description": "Pause between readings in seconds",
                    "default": 0.0,
                    "minimum": 0,
                },
                "include_values": {
                    "type": "boolean",
                    "description": "Include every reading, not just statistics",
                    "default": False,
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="get_sensor_info",
        description="Identify the attached sensor head and its capabilities",
        inputSchema={
            "type": "object",
            "properties": {"resource_name": _RESOURCE_NAME},
            "required": [],
        },
    ),
    Tool(
        name="dark_adjust",
        description="Run the dark (zero) adjustment and wait for it (PM400 only)",
        inputSchema={
            "type": "object",
            "properties": {
                "resource_name": _RESOURCE_NAME,
                "timeout_s": {
                    "type": "number",
                    "description": "Give up after this many seconds",
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="get_dark_offset",
        description="Read the dark offset voltage (PM400 only)",
        inputSchema={
            "type": "object",
            "properties": {"resource_name": _RESOURCE_NAME},
            "required": [],
        },
    ),
    Tool(
        name="get_meter_status",
        description="Connection state, settings and last reading of a meter",
        inputSchema={
            "type": "object",
            "properties": {"resource_name": _RESOURCE_NAME},
            "required": [],
        },
    ),
]


def register(server: Server) -> None:
    """Register power meter tools with the MCP server.

    Tools registered:
    - list_meters, connect_meter, disconnect_meter
    - set_meter_setting
    - read_power, sample_power
    - get_sensor_info, dark_adjust, get_dark_offset, get_meter_status

    Args:
        server: MCP Server instance, not yet running.
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return available meter tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Route tool calls to the meter implementations."""
        return await dispatch(name, arguments)


async def dispatch(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Call the tool ``name`` with MCP ``arguments``.

    Returns:
        Single TextContent holding a JSON document. Failures are returned
        as ``{"error": ..., "message": ...}``, never raised.
    """
    arguments = arguments or {}
    context: dict[str, Any] = {"tool": name}
    if arguments.get("resource_name"):
        context["resource"] = arguments["resource_name"]
    with LogContext(**context):
        return await _route(name, arguments)


async def _route(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    resource = arguments.get("resource_name")
    if name == "list_meters":
        return await _list_meters()
    elif name == "connect_meter":
        return await _connect_meter(
            resource,
            arguments.get("force", False),
            arguments.get("query_id", True),
            arguments.get("reset_device", True),
        )
    elif name == "disconnect_meter":
        return await _disconnect_meter(resource)
    elif name == "set_meter_setting":
        return await _set_meter_setting(
            resource, arguments.get("setting"), arguments.get("value")
        )
    elif name == "read_power":
        return await _read_power(resource, arguments.get("include_voltage", False))
    elif name == "sample_power":
        return await _sample_power(
            resource,
            arguments.get("count", 100),
            arguments.get("interval_s", 0.0),
            arguments.get("include_values", False),
        )
    elif name == "get_sensor_info":
        return await _get_sensor_info(resource)
    elif name == "dark_adjust":
        return await _dark_adjust(resource, arguments.get("timeout_s"))
    elif name == "get_dark_offset":
        return await _get_dark_offset(resource)
    elif name == "get_meter_status":
        return await _get_meter_status(resource)
    else:
        return _error("unknown_tool", f"Unknown tool: {name}")


# Helpers


def _json(result: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


def _error(error: str, message: str) -> list[TextContent]:
    return _json({"error": error, "message": message})


def _failure(action: str, e: Exception) -> list[TextContent]:
    logger.error(f"Error {action}", error=str(e), error_type=type(e).__name__)
    return _error(type(e).__name__, str(e))


def _session(registry: MeterRegistry, resource_name: str | None) -> PowerMeter:
    """Resolve a connected session by name, or the only one."""
    if resource_name:
        meter = registry.get_session(resource_name)
        if meter is None:
            raise MeterStateError(f"Meter not connected: {resource_name}")
        return meter
    sessions = registry.sessions
    if not sessions:
        raise MeterStateError("No meter connected. Call connect_meter first.")
    if len(sessions) > 1:
        raise MeterStateError(
            "Several meters connected; pass resource_name to choose one"
        )
    return sessions[0]


# Tool implementations using device layer


async def _list_meters(registry: MeterRegistry | None = None) -> list[TextContent]:
    """Enumerate meters with their availability."""
    try:
        descriptors = (registry or get_registry()).enumerate()
        result = {
            "count": len(descriptors),
            "meters": [d.to_dict() for d in descriptors],
        }
        return _json(result)
    except (MeterError, MeterDriverError) as e:
        return _failure("listing meters", e)


async def _connect_meter(
    resource_name: str | None,
    force: bool = False,
    query_id: bool = True,
    reset_device: bool = True,
    registry: MeterRegistry | None = None,
) -> list[TextContent]:
    """Connect to ``resource_name`` or the first available meter.

    Session defaults for query_id and reset_device come from the driver
    config when the caller leaves them at their defaults.
    """
    try:
        registry = registry or get_registry()
        descriptors = registry.enumerate()
        if resource_name:
            matches = [d for d in descriptors if d.resource_name == resource_name]
            if not matches:
                return _error("not_found", f"Meter not found: {resource_name}")
            descriptor = matches[0]
        else:
            candidates = [d for d in descriptors if d.available or force]
            if not candidates:
                return _error("not_found", "No available meter")
            descriptor = candidates[0]

        config = get_factory().config
        options = ConnectOptions(
            query_id=query_id and config.query_id,
            reset_device=reset_device and config.reset_device,
        )
        meter = registry.open(descriptor, options, force=force)
        return _json({"connected": True, **meter.get_status()})
    except (MeterError, MeterDriverError) as e:
        return _failure("connecting meter", e)


async def _disconnect_meter(
    resource_name: str | None, registry: MeterRegistry | None = None
) -> list[TextContent]:
    """Disconnect a meter; close errors come back as advisories."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        name = meter.resource_name
        advisories = meter.disconnect()
        return _json(
            {
                "disconnected": True,
                "resource_name": name,
                "advisories": [a.to_dict() for a in advisories],
            }
        )
    except MeterError as e:
        return _failure("disconnecting meter", e)


async def _set_meter_setting(
    resource_name: str | None,
    setting: str | None,
    value: Any,
    registry: MeterRegistry | None = None,
) -> list[TextContent]:
    """Apply one setting through the session's guarded setters."""
    if setting not in SETTINGS:
        return _error(
            "invalid_setting",
            f"Unknown setting '{setting}'. Expected one of: {', '.join(SETTINGS)}",
        )
    try:
        meter = _session(registry or get_registry(), resource_name)
        if setting == "wavelength":
            result = meter.set_wavelength(float(value))
        elif setting == "average_time":
            result = meter.set_average_time(float(value))
        elif setting == "brightness":
            result = meter.set_brightness(float(value))
        elif setting == "attenuation":
            result = meter.set_attenuation(float(value))
        elif setting == "power_range":
            result = meter.set_power_range(float(value))
        elif setting == "timeout":
            result = meter.set_timeout(int(value))
        else:
            result = meter.set_power_auto_range(bool(value))
        return _json(result.to_dict())
    except (MeterError, MeterDriverError, TypeError, ValueError) as e:
        return _failure("setting meter value", e)


async def _read_power(
    resource_name: str | None,
    include_voltage: bool = False,
    registry: MeterRegistry | None = None,
) -> list[TextContent]:
    """Single power reading, optionally with voltage."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        reading = (
            meter.read_power_and_voltage() if include_voltage else meter.read_power()
        )
        return _json({"resource_name": meter.resource_name, **reading.to_dict()})
    except (MeterError, MeterDriverError) as e:
        return _failure("reading power", e)


async def _sample_power(
    resource_name: str | None,
    count: int = 100,
    interval_s: float = 0.0,
    include_values: bool = False,
    registry: MeterRegistry | None = None,
) -> list[TextContent]:
    """Series of readings with mean/std/min/max."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        series = await asyncio.to_thread(
            meter.sample_power, int(count), float(interval_s)
        )
        return _json(
            {
                "resource_name": meter.resource_name,
                **series.to_dict(include_values=include_values),
            }
        )
    except (MeterError, MeterDriverError, ValueError) as e:
        return _failure("sampling power", e)


async def _get_sensor_info(
    resource_name: str | None, registry: MeterRegistry | None = None
) -> list[TextContent]:
    """Decoded sensor head description."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        return _json(meter.sensor_info().to_dict())
    except (MeterError, MeterDriverError) as e:
        return _failure("reading sensor info", e)


async def _dark_adjust(
    resource_name: str | None,
    timeout_s: float | None = None,
    registry: MeterRegistry | None = None,
) -> list[TextContent]:
    """Run the dark adjustment, then report the new offset."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        result = await asyncio.to_thread(meter.dark_adjust, timeout_s=timeout_s)
        data = result.to_dict()
        if result.performed:
            data["dark_offset"] = meter.read_dark_offset().to_dict()
        return _json(data)
    except (MeterError, MeterDriverError) as e:
        return _failure("running dark adjustment", e)


async def _get_dark_offset(
    resource_name: str | None, registry: MeterRegistry | None = None
) -> list[TextContent]:
    """Current dark offset voltage."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        return _json(meter.read_dark_offset().to_dict())
    except (MeterError, MeterDriverError) as e:
        return _failure("reading dark offset", e)


async def _get_meter_status(
    resource_name: str | None, registry: MeterRegistry | None = None
) -> list[TextContent]:
    """Session snapshot."""
    try:
        meter = _session(registry or get_registry(), resource_name)
        return _json(meter.get_status())
    except MeterError as e:
        return _failure("getting meter status", e)
