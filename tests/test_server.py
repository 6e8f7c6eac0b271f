"""Tests for server.py: server construction, argument parsing and main."""

from unittest.mock import patch

import pytest
from mcp.server import Server

from powermeter_mcp import server as server_module
from powermeter_mcp.devices import get_registry, shutdown_registry
from powermeter_mcp.drivers import DriverMode, get_factory
from powermeter_mcp.drivers.meters import DigitalTwinMeterDriver, TLPMDriver
from powermeter_mcp.server import create_server, parse_args


class TestCreateServer:
    """create_server wiring."""

    def test_digital_twin_default(self):
        """Verifies the default server runs on the digital twin.

        Arrangement:
        1. No arguments.

        Action:
        create_server().

        Assertion Strategy:
        Returns an MCP Server named powermeter-mcp, the factory is in
        DIGITAL_TWIN mode and the module-level registry sees the twin bench.
        """
        server = create_server()

        assert isinstance(server, Server)
        assert server.name == "powermeter-mcp"
        assert get_factory().config.mode == DriverMode.DIGITAL_TWIN
        assert isinstance(get_registry().driver, DigitalTwinMeterDriver)
        assert len(get_registry().enumerate()) == 2

    def test_hardware_mode_with_dll_dir(self, tmp_path):
        create_server(mode="hardware", dll_dir=str(tmp_path))

        driver = get_registry().driver
        assert isinstance(driver, TLPMDriver)
        assert driver.config.dll_dir == tmp_path

    def test_dark_adjust_timeout_override(self):
        create_server(dark_adjust_timeout_s=5.0)

        assert get_factory().config.dark_adjust_timeout_s == 5.0
        assert get_registry()._dark_adjust_timeout_s == 5.0

    def test_recreate_replaces_registry(self):
        create_server()
        first = get_registry()
        shutdown_registry()

        create_server()

        assert get_registry() is not first


class TestParseArgs:
    """Command line parsing."""

    def test_defaults(self):
        args = parse_args([])

        assert args.mode == "digital_twin"
        assert args.dll_dir is None
        assert args.dark_adjust_timeout is None
        assert args.log_level == "info"
        assert args.json_logs is False

    def test_all_options(self):
        args = parse_args(
            [
                "--mode", "hardware",
                "--dll-dir", r"C:\TLPM",
                "--dark-adjust-timeout", "12.5",
                "--log-level", "debug",
                "--json-logs",
            ]
        )

        assert args.mode == "hardware"
        assert args.dll_dir == r"C:\TLPM"
        assert args.dark_adjust_timeout == 12.5
        assert args.log_level == "debug"
        assert args.json_logs is True

    def test_invalid_mode(self):
        with pytest.raises(SystemExit):
            parse_args(["--mode", "simulator"])


class TestMain:
    """main() entry point."""

    def test_main_configures_logging_and_runs(self):
        with (
            patch.object(server_module, "configure_logging") as mock_logging,
            patch.object(server_module.asyncio, "run") as mock_run,
        ):
            server_module.main(["--log-level", "debug", "--json-logs"])

        mock_logging.assert_called_once_with(level="DEBUG", json_format=True, force=True)
        mock_run.assert_called_once()
        mock_run.call_args.args[0].close()

    @pytest.mark.asyncio
    async def test_run_server_shuts_down_registry(self):
        """The registry is dropped even when the transport fails."""
        with patch.object(server_module, "stdio_server", side_effect=RuntimeError("no stdio")):
            with pytest.raises(RuntimeError):
                await server_module.run_server()

        with pytest.raises(RuntimeError, match="not initialized"):
            get_registry()
