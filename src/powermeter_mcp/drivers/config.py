"""Driver configuration and factory.

Supports switching between the real TLPM hardware driver and the digital
twin driver for testing and development without a power meter attached.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from powermeter_mcp.drivers.meters import (
    DigitalTwinMeterConfig,
    DigitalTwinMeterDriver,
    MeterDriver,
    TLPMDriver,
    TLPMLibraryConfig,
)
from powermeter_mcp.observability import get_logger

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_DARK_ADJUST_TIMEOUT_S = 30.0
DEFAULT_DARK_ADJUST_POLL_S = 0.1


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # TLPM .NET driver
    DIGITAL_TWIN = "digital_twin"  # Simulated meters for testing


@dataclass
class DriverConfig:
    """Configuration for driver selection and session defaults.

    Attributes:
        mode: HARDWARE for real meters, DIGITAL_TWIN for simulation.
        tlpm: Location and class name of the TLPM interop assembly.
        twin: Simulated bench for DIGITAL_TWIN mode (None = default bench).
        dark_adjust_timeout_s: Deadline for dark adjustment.
        dark_adjust_poll_s: Pause between dark-adjust progress polls.
        query_id: Query the instrument ID on open.
        reset_device: Reset the instrument on open.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN

    # Hardware settings
    tlpm: TLPMLibraryConfig = field(default_factory=TLPMLibraryConfig)

    # Digital twin settings
    twin: DigitalTwinMeterConfig | None = None

    # Session defaults
    dark_adjust_timeout_s: float = DEFAULT_DARK_ADJUST_TIMEOUT_S
    dark_adjust_poll_s: float = DEFAULT_DARK_ADJUST_POLL_S
    query_id: bool = True
    reset_device: bool = True

    def with_dll_dir(self, dll_dir: Path | str) -> DriverConfig:
        """Return a copy pointing at another interop assembly directory."""
        return dataclasses.replace(
            self, tlpm=dataclasses.replace(self.tlpm, dll_dir=Path(dll_dir))
        )


class DriverFactory:
    """Factory for creating meter drivers based on configuration.

    Thread Safety:
        Not thread-safe. The global factory should be configured once at
        startup before concurrent access.

    Hardware Mode Limitations:
        create_meter_driver() returns a TLPMDriver whose assembly loads on
        first use, which needs Windows, pythonnet and the Thorlabs Optical
        Power Monitor software.
    """

    def __init__(self, config: DriverConfig | None = None):
        """Store the configuration. Drivers are created on demand.

        Args:
            config: Driver settings. None uses DriverConfig() defaults
                (digital twin).
        """
        self.config = config or DriverConfig()

    def create_meter_driver(self) -> MeterDriver:
        """Create the meter driver for the configured mode.

        Returns:
            TLPMDriver in HARDWARE mode, DigitalTwinMeterDriver in
            DIGITAL_TWIN mode.

        Example:
            >>> factory = DriverFactory(DriverConfig(mode=DriverMode.DIGITAL_TWIN))
            >>> driver = factory.create_meter_driver()
            >>> [r["model_name"] for r in driver.discover()]
            ['PM100D', 'PM400']
        """
        if self.config.mode == DriverMode.HARDWARE:
            logger.info("Creating TLPM driver", dll=str(self.config.tlpm.dll_path))
            return TLPMDriver(self.config.tlpm)
        else:
            logger.info("Creating digital twin meter driver")
            return DigitalTwinMeterDriver(self.config.twin)

    def __repr__(self) -> str:
        """Return the configured mode."""
        return f"<DriverFactory(mode={self.config.mode.value})>"


# =============================================================================
# Global Singletons
# =============================================================================

# Not thread-safe. Configure once at startup before spawning threads.
_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Return the global factory, creating a digital twin one on first use."""
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory with one using ``config``.

    Args:
        config: New driver settings.

    Example:
        >>> configure(DriverConfig(mode=DriverMode.HARDWARE))
        >>> get_factory().config.mode
        <DriverMode.HARDWARE: 'hardware'>
    """
    global _factory
    _factory = DriverFactory(config)
    logger.debug("Driver factory configured", mode=config.mode.value)


def _copy_config_with_mode(mode: DriverMode) -> DriverConfig:
    """Copy the current config with a different mode."""
    return dataclasses.replace(get_factory().config, mode=mode)


def use_digital_twin(preserve_config: bool = False) -> None:
    """Switch to simulated meters.

    Args:
        preserve_config: Keep the current TLPM location and session
            defaults instead of resetting to DriverConfig() defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.DIGITAL_TWIN))
    else:
        configure(DriverConfig(mode=DriverMode.DIGITAL_TWIN))


def use_hardware(preserve_config: bool = False) -> None:
    """Switch to the TLPM hardware driver.

    Args:
        preserve_config: Keep the current TLPM location and session
            defaults instead of resetting to DriverConfig() defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.HARDWARE))
    else:
        configure(DriverConfig(mode=DriverMode.HARDWARE))


def reset_factory() -> None:
    """Drop the global factory so the next get_factory() starts fresh."""
    global _factory
    _factory = None
