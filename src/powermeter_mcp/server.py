"""MCP Server entry point for power meter control."""

import argparse
import asyncio
import dataclasses
from typing import Literal

from mcp.server import Server
from mcp.server.stdio import stdio_server

from powermeter_mcp.observability import configure_logging, get_logger
from powermeter_mcp.tools import meters

logger = get_logger(__name__)

SERVER_NAME = "powermeter-mcp"


def create_server(
    mode: Literal["hardware", "digital_twin"] = "digital_twin",
    dll_dir: str | None = None,
    dark_adjust_timeout_s: float | None = None,
) -> Server:
    """Create the MCP server and the meter registry behind it.

    Configures the driver factory, initializes the module-level
    MeterRegistry with the configured driver and registers the meter tools.

    Args:
        mode: "hardware" for the TLPM driver, "digital_twin" for simulation.
            Defaults to "digital_twin" for safety.
        dll_dir: Directory of the TLPM interop assembly (hardware mode).
        dark_adjust_timeout_s: Override the dark-adjust deadline.

    Returns:
        Configured MCP Server instance.

    Example:
        >>> server = create_server(mode="hardware", dll_dir=r"C:\\TLPM")
        >>> # Tools: list_meters, connect_meter, read_power, ...
    """
    from powermeter_mcp.devices import init_registry
    from powermeter_mcp.drivers.config import (
        DriverConfig,
        DriverMode,
        configure,
        get_factory,
    )

    server = Server(SERVER_NAME)

    config = DriverConfig(
        mode=DriverMode.HARDWARE
        if mode.lower() == "hardware"
        else DriverMode.DIGITAL_TWIN
    )
    if dll_dir:
        config = config.with_dll_dir(dll_dir)
    if dark_adjust_timeout_s is not None:
        config = dataclasses.replace(
            config, dark_adjust_timeout_s=dark_adjust_timeout_s
        )
    configure(config)

    if config.mode is DriverMode.HARDWARE:
        logger.info("Using HARDWARE mode (TLPM driver)", dll=str(config.tlpm.dll_path))
    else:
        logger.info("Using DIGITAL_TWIN mode (simulated meters)")

    driver = get_factory().create_meter_driver()
    init_registry(
        driver,
        dark_adjust_timeout_s=config.dark_adjust_timeout_s,
        dark_adjust_poll_s=config.dark_adjust_poll_s,
    )
    logger.info(f"Initialized meter registry with {type(driver).__name__}")

    meters.register(server)
    return server


async def run_server(
    mode: Literal["hardware", "digital_twin"] = "digital_twin",
    dll_dir: str | None = None,
    dark_adjust_timeout_s: float | None = None,
) -> None:
    """Run the MCP server over stdio until stdin closes.

    Every connected meter is disconnected on exit.
    """
    server = create_server(mode, dll_dir, dark_adjust_timeout_s)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        from powermeter_mcp.devices import shutdown_registry

        shutdown_registry()
        logger.info("Meter registry shut down")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments for the server.

    Args:
        argv: Arguments to parse. None reads sys.argv.

    Returns:
        Namespace with mode, dll_dir, dark_adjust_timeout, log_level and
        json_logs.
    """
    parser = argparse.ArgumentParser(
        description="Power Meter MCP Server - Control Thorlabs optical power meters"
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=["hardware", "digital_twin"],
        default="digital_twin",
        help="Driver mode: hardware (TLPM) or digital_twin (simulation)",
    )
    parser.add_argument(
        "--dll-dir",
        type=str,
        default=None,
        help="Directory containing Thorlabs.TLPM_64.Interop.dll",
    )
    parser.add_argument(
        "--dark-adjust-timeout",
        type=float,
        default=None,
        help="Seconds to wait for a dark adjustment (default 30)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["critical", "error", "warning", "info", "debug"],
        default="info",
        help="Log level",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines on stderr",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the powermeter-mcp server.

    Parses arguments, configures structured logging on stderr and runs the
    MCP server over stdio. Blocks until the client disconnects.

    Example:
        >>> # From an MCP client config:
        >>> # "command": "python", "args": ["-m", "powermeter_mcp.server"]
    """
    args = parse_args(argv)

    configure_logging(
        level=args.log_level.upper(), json_format=args.json_logs, force=True
    )

    logger.info("Starting MCP server", mode=args.mode)
    asyncio.run(run_server(args.mode, args.dll_dir, args.dark_adjust_timeout))


if __name__ == "__main__":  # pragma: no cover
    main()
