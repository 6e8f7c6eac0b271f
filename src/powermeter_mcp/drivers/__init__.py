"""Drivers for Thorlabs optical power meters.

Supports two modes:
- HARDWARE: Real meters through the TLPM .NET interop assembly
- DIGITAL_TWIN: Simulated meters for testing without hardware

Use drivers.config to switch modes:
    from powermeter_mcp.drivers import config
    config.use_digital_twin()  # or config.use_hardware()
"""

from powermeter_mcp.drivers import config, meters
from powermeter_mcp.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    reset_factory,
    use_digital_twin,
    use_hardware,
)

__all__ = [
    # Submodules
    "config",
    "meters",
    # Configuration
    "DriverMode",
    "DriverConfig",
    "DriverFactory",
    "get_factory",
    "configure",
    "reset_factory",
    "use_digital_twin",
    "use_hardware",
]
