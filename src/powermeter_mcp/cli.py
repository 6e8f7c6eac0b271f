"""CLI entry point for powermeter-mcp.

Provides the ``powermeter-mcp`` console script with subcommands:

- ``install``: Generate ``.vscode/mcp.json`` for a project
- ``server``: Run the MCP server (default if no subcommand)
- ``list``: List the meters the driver can see
- ``measure``: Connect, apply settings, print a series of readings

Usage::

    # Install MCP config in current project
    powermeter-mcp install

    # Run MCP server (default, same as python -m powermeter_mcp.server)
    powermeter-mcp
    powermeter-mcp server --mode hardware

    # Bench use without an MCP client
    powermeter-mcp list --mode hardware
    powermeter-mcp measure --wavelength 635 --brightness 0.3 --count 100 --interval 0.5
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from functools import lru_cache
from pathlib import Path

from powermeter_mcp.devices import MeterError, MeterRegistry
from powermeter_mcp.drivers.meters import MeterDriverError

# Constants
SERVER_NAME = "powermeter-mcp"
MODULE_NAME = "powermeter_mcp.server"
VSCODE_DIR = ".vscode"
CONFIG_FILE = "mcp.json"


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Message-only logger for CLI output, configured once.

    Named outside the ``powermeter_mcp`` hierarchy so CLI messages reach the
    root handler instead of the structured stderr handler.
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger(SERVER_NAME)


def _log(message: str, *, emoji: str = "") -> None:
    """Log message with optional emoji prefix for CLI feedback.

    Example:
        >>> _log("Config created", emoji="✅")
    """
    prefix = f"{emoji} " if emoji else ""
    _get_logger().info(f"{prefix}{message}")


def _strip_jsonc_comments(text: str) -> str:
    """Strip single-line // comments and trailing commas from JSONC text.

    Does not handle ``/* */`` block comments.

    Example:
        >>> _strip_jsonc_comments('{"key": "val"} // comment')
        '{"key": "val"} '
    """
    # Remove // comments (not string-aware, enough for mcp.json)
    text = re.sub(r"//.*$", "", text, flags=re.MULTILINE)
    # Remove trailing commas before ] or } (invalid in JSON)
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    return text


def _detect_python_path() -> str:
    """Python executable of the environment powermeter-mcp is installed in."""
    return sys.executable


def _get_global_vscode_dir() -> Path:
    """Global VS Code user settings directory, Insiders preferred."""
    home = Path.home()
    if sys.platform == "darwin":  # pragma: no cover
        base = home / "Library" / "Application Support"
    elif os.name == "nt":  # pragma: no cover
        base = home / "AppData" / "Roaming"
    else:  # Linux
        base = home / ".config"

    insiders = base / "Code - Insiders" / "User"
    if insiders.exists():
        return insiders
    return base / "Code" / "User"


def _generate_mcp_template(python_path: str) -> str:
    """Full JSONC mcp.json with every server option, optional ones commented.

    Args:
        python_path: Absolute path to the Python executable.
    """
    # {{PYTHON_PATH}} placeholder avoids f-string brace escaping
    template = """\
{
  "servers": {
    "powermeter-mcp": {
      "command": "{{PYTHON_PATH}}",
      "args": [
        "-m",
        "powermeter_mcp.server",
        // Driver mode: "hardware" for Thorlabs meters (Windows, TLPM),
        // "digital_twin" for simulation
        "--mode", "digital_twin",
        // Directory of Thorlabs.TLPM_64.Interop.dll (hardware mode)
        // "--dll-dir", "C:\\\\Program Files\\\\IVI Foundation\\\\VISA\\\\VisaCom64\\\\Primary Interop Assemblies",
        // Seconds to wait for a PM400 dark adjustment
        // "--dark-adjust-timeout", "30",
        // Log level (critical/error/warning/info/debug)
        // "--log-level", "info",
        // JSON log lines on stderr
        // "--json-logs"
      ]
    }
  }
}
"""
    return template.replace("{{PYTHON_PATH}}", python_path)


def run_install(
    cwd: str | None = None,
    *,
    global_install: bool = False,
) -> None:
    """Install powermeter-mcp MCP configuration.

    Behavior:
    - **No existing config**: Writes full JSONC template.
    - **Existing config without powermeter-mcp**: Backs up original, parses
      JSONC, adds the server entry, writes merged config.
    - **Already installed**: Reports up-to-date, no changes.

    Args:
        cwd: Project root. Defaults to current directory.
        global_install: Install to the user's global VS Code settings.
    """
    working_dir = Path(cwd) if cwd else Path.cwd()
    python_path = _detect_python_path()

    if global_install:
        vscode_dir = _get_global_vscode_dir()
        _log(f"Installing globally to: {vscode_dir}", emoji="🌐")
    else:
        vscode_dir = working_dir / VSCODE_DIR

    config_path = vscode_dir / CONFIG_FILE

    if not config_path.exists():
        vscode_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(_generate_mcp_template(python_path))
        _log(f"Created {config_path}", emoji="✅")
    else:
        existing_text = config_path.read_text()

        backup_path = config_path.with_suffix(".json.bak")
        backup_path.write_text(existing_text)
        _log(f"Backed up to {backup_path.name}", emoji="💾")

        try:
            config: dict[str, object] = json.loads(
                _strip_jsonc_comments(existing_text)
            )
        except json.JSONDecodeError:
            _log("Could not parse existing config, writing fresh", emoji="⚠️")
            config_path.write_text(_generate_mcp_template(python_path))
            _log(f"Created {config_path}", emoji="✅")
            _log(f"Python: {python_path}")
            return

        servers: dict[str, object] = config.setdefault(  # type: ignore[assignment]
            "servers", {}
        )

        if SERVER_NAME in servers:
            _log(f"{SERVER_NAME} already configured in {CONFIG_FILE}", emoji="✅")
            return

        servers[SERVER_NAME] = {
            "command": python_path,
            "args": ["-m", MODULE_NAME, "--mode", "digital_twin"],
        }
        config_path.write_text(json.dumps(config, indent=2) + "\n")
        _log(f"Added {SERVER_NAME} to {CONFIG_FILE}", emoji="➕")
        _log("Note: JSONC comments from original were not preserved", emoji="⚠️")

    _log(f"Config: {config_path}")
    _log(f"Python: {python_path}")


def _create_registry(mode: str, dll_dir: str | None) -> MeterRegistry:
    """Registry over the driver selected by ``mode``."""
    from powermeter_mcp.drivers.config import (
        DriverConfig,
        DriverFactory,
        DriverMode,
    )

    config = DriverConfig(mode=DriverMode(mode))
    if dll_dir:
        config = config.with_dll_dir(dll_dir)
    return MeterRegistry(
        DriverFactory(config).create_meter_driver(),
        dark_adjust_timeout_s=config.dark_adjust_timeout_s,
        dark_adjust_poll_s=config.dark_adjust_poll_s,
    )


def run_list(registry: MeterRegistry) -> int:
    """Print one line per meter. Returns the process exit code."""
    descriptors = registry.enumerate()
    if not descriptors:
        _log("No power meter found", emoji="⚠️")
        return 1
    for i, d in enumerate(descriptors):
        status = "available" if d.available else "busy"
        _log(
            f"[{i}] {d.model_name} {d.serial_number} "
            f"({d.manufacturer}) {d.resource_name} - {status}"
        )
    return 0


def run_measure(registry: MeterRegistry, args: argparse.Namespace) -> int:
    """Connect, apply the requested settings, print readings, disconnect.

    Returns:
        Process exit code: 0 on success, 1 when no meter could be used.
    """
    descriptors = registry.enumerate()
    if args.resource:
        chosen = [d for d in descriptors if d.resource_name == args.resource]
    else:
        chosen = descriptors[args.index : args.index + 1]
    if not chosen:
        _log("Requested power meter not found", emoji="❌")
        return 1

    with registry.open(chosen[0], force=args.force) as meter:
        _log(f"Connected {meter.model_name} {meter.serial_number}", emoji="🔌")

        if args.wavelength is not None:
            _report(meter.set_wavelength(args.wavelength).to_dict())
        if args.average_time is not None:
            _report(meter.set_average_time(args.average_time).to_dict())
        if args.brightness is not None:
            _report(meter.set_brightness(args.brightness).to_dict())
        if args.attenuation is not None:
            _report(meter.set_attenuation(args.attenuation).to_dict())

        sensor = meter.sensor_info()
        _log(f"Sensor: {sensor.name} {sensor.type_label} / {sensor.subtype_label}")
        if sensor.flags:
            _log(f"Flags: {', '.join(sensor.flags)}")

        for _ in range(args.count):
            if args.voltage:
                reading = meter.read_power_and_voltage(period_s=args.interval)
            else:
                reading = meter.read_power(period_s=args.interval)
            line = f"{reading.power:.10f} {reading.power_unit or '?'}"
            if reading.voltage is not None:
                line += f"  {reading.voltage:.6f} {reading.voltage_unit}"
            _log(line)
    return 0


def _report(result: dict[str, object]) -> None:
    """Print a setting result and its advisories."""
    _log(f"Set {result['parameter']} to {result['applied']}")
    for advisory in result["advisories"]:  # type: ignore[attr-defined]
        _log(advisory["message"], emoji="⚠️")


def _non_negative_int(text: str) -> int:
    """argparse type for meter indexes."""
    value = int(text)
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {value}")
    return value


def _add_driver_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=["hardware", "digital_twin"],
        default="hardware",
        help="Driver mode (default: hardware)",
    )
    parser.add_argument(
        "--dll-dir",
        default=None,
        help="Directory containing Thorlabs.TLPM_64.Interop.dll",
    )


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for powermeter-mcp.

    Dispatches to subcommands. ``server`` or no subcommand delegates to
    ``server.main()``, which has its own argument parser.

    Returns:
        Process exit code.
    """
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = argparse.ArgumentParser(
        prog="powermeter-mcp",
        description="Power Meter MCP: Thorlabs optical power meters for AI agents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    install_parser = subparsers.add_parser(
        "install", help="Create .vscode/mcp.json configuration"
    )
    install_parser.add_argument(
        "--global",
        dest="global_install",
        action="store_true",
        help="Install to global VS Code settings",
    )

    subparsers.add_parser(
        "server", help="Run MCP server (default if no subcommand)", add_help=False
    )

    list_parser = subparsers.add_parser("list", help="List power meters")
    _add_driver_args(list_parser)

    measure_parser = subparsers.add_parser(
        "measure", help="Take readings from a power meter"
    )
    _add_driver_args(measure_parser)
    measure_parser.add_argument(
        "--resource", default=None, help="Resource name (default: by --index)"
    )
    measure_parser.add_argument(
        "--index",
        type=_non_negative_int,
        default=0,
        help="Meter index from 'list' (default 0)",
    )
    measure_parser.add_argument(
        "--force", action="store_true", help="Connect even if reported busy"
    )
    measure_parser.add_argument("--wavelength", type=float, help="Wavelength in nm")
    measure_parser.add_argument(
        "--average-time", type=float, help="Averaging time in seconds"
    )
    measure_parser.add_argument(
        "--brightness", type=float, help="Display brightness 0-1"
    )
    measure_parser.add_argument("--attenuation", type=float, help="Attenuation in dB")
    measure_parser.add_argument(
        "--count", type=int, default=100, help="Number of readings (default 100)"
    )
    measure_parser.add_argument(
        "--interval",
        type=float,
        default=0.5,
        help="Seconds between readings (default 0.5)",
    )
    measure_parser.add_argument(
        "--voltage", action="store_true", help="Also read sensor voltage"
    )

    # Only parse known args so server flags pass through
    args, _ = parser.parse_known_args(argv)

    if args.command == "install":
        run_install(global_install=args.global_install)
        return 0

    if args.command in ("list", "measure"):
        registry = _create_registry(args.mode, args.dll_dir)
        try:
            if args.command == "list":
                return run_list(registry)
            return run_measure(registry, args)
        except (MeterError, MeterDriverError) as e:
            _log(str(e), emoji="❌")
            return 1
        finally:
            registry.clear()

    # Default or "server": strip the subcommand so server.parse_args() works
    if argv and argv[0] == "server":
        argv = argv[1:]

    from powermeter_mcp.server import main as server_main

    server_main(argv)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
