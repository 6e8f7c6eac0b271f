"""Pytest configuration and fixtures for powermeter-mcp tests.

Everything runs against the digital twin driver or recording mocks, so no
power meter, Windows or pythonnet is needed.
"""

from unittest.mock import MagicMock

import pytest

from powermeter_mcp.devices import MeterRegistry, shutdown_registry
from powermeter_mcp.drivers import reset_factory
from powermeter_mcp.drivers.meters import DigitalTwinMeterConfig, DigitalTwinMeterDriver
from powermeter_mcp.observability import reset_logging
from tests.helpers import FakeClock, make_mock_driver


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset logging, the driver factory and the registry around each test."""
    reset_logging()
    reset_factory()
    yield
    shutdown_registry()
    reset_factory()
    reset_logging()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Deterministic clock."""
    return FakeClock()


@pytest.fixture
def twin_driver() -> DigitalTwinMeterDriver:
    """Default simulated bench: a PM100D and a PM400, seeded noise."""
    return DigitalTwinMeterDriver(DigitalTwinMeterConfig(seed=1234))


@pytest.fixture
def registry(twin_driver, fake_clock) -> MeterRegistry:
    """Registry over the twin driver with a fake clock."""
    with MeterRegistry(twin_driver, clock=fake_clock) as reg:
        yield reg


@pytest.fixture
def mock_driver() -> MagicMock:
    """Recording PM100D driver with wavelength bounds [100, 1600]."""
    return make_mock_driver()
