"""Power meter drivers.

Key components:

- MeterDriver: Protocol every driver implements
- TLPMDriver: Real hardware through the Thorlabs TLPM .NET assembly
- DigitalTwinMeterDriver: Simulated meters for testing

Example:
    from powermeter_mcp.drivers.meters import DigitalTwinMeterDriver, TLPMDriver

    # For testing (no hardware required)
    driver = DigitalTwinMeterDriver()

    # For real hardware (Windows, Optical Power Monitor installed)
    driver = TLPMDriver()
    for resource in driver.discover():
        print(resource["resource_name"], resource["model_name"])
"""

# Import order: types first (avoid circular imports), then implementations
from powermeter_mcp.drivers.meters.types import (
    POWER_UNIT_LABELS,
    BoundKind,
    DiscoveredResource,
    MeterDriver,
    MeterDriverError,
    Parameter,
    Quantity,
    RawSensorInfo,
)
from powermeter_mcp.drivers.meters.tlpm import (
    TLPMBinding,
    TLPMDriver,
    TLPMLibraryConfig,
    load_tlpm_binding,
)
from powermeter_mcp.drivers.meters.twin import (
    DigitalTwinMeterConfig,
    DigitalTwinMeterDriver,
    DigitalTwinMeterHandle,
    SimulatedMeter,
)

__all__ = [
    # Types
    "BoundKind",
    "DiscoveredResource",
    "MeterDriver",
    "MeterDriverError",
    "Parameter",
    "POWER_UNIT_LABELS",
    "Quantity",
    "RawSensorInfo",
    # TLPM hardware
    "TLPMBinding",
    "TLPMDriver",
    "TLPMLibraryConfig",
    "load_tlpm_binding",
    # Digital twin
    "DigitalTwinMeterConfig",
    "DigitalTwinMeterDriver",
    "DigitalTwinMeterHandle",
    "SimulatedMeter",
]
