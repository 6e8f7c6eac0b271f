"""Tests for MeterRegistry and the module-level registry singleton."""

import pytest

from powermeter_mcp.devices import (
    MeterConnectionError,
    MeterHooks,
    MeterRegistry,
    PowerMeter,
    ResourceDescriptor,
    get_registry,
    init_registry,
    shutdown_registry,
)
from powermeter_mcp.drivers.meters import DigitalTwinMeterConfig, DigitalTwinMeterDriver
from tests.helpers import PM100D_RESOURCE, PM400_RESOURCE


class TestEnumerate:
    """Discovery through the registry."""

    def test_lists_twin_bench(self, registry):
        descriptors = registry.enumerate()

        assert [d.resource_name for d in descriptors] == [PM100D_RESOURCE, PM400_RESOURCE]
        assert [d.model_name for d in descriptors] == ["PM100D", "PM400"]
        assert all(d.available for d in descriptors)
        assert descriptors[0].manufacturer == "Thorlabs"

    def test_open_session_marks_resource_busy(self, registry):
        registry.open(registry.enumerate()[0])

        descriptors = registry.enumerate()

        assert descriptors[0].available is False
        assert descriptors[1].available is True

    def test_descriptor_is_snapshot(self, registry):
        """A descriptor taken before a connect keeps its old availability."""
        before = registry.enumerate()[0]
        registry.open(before)

        assert before.available is True
        assert registry.is_available(before) is False

    def test_descriptor_to_dict(self):
        descriptor = ResourceDescriptor("R", "PM100D", "S1", "Thorlabs")

        assert descriptor.to_dict() == {
            "resource_name": "R",
            "model_name": "PM100D",
            "serial_number": "S1",
            "manufacturer": "Thorlabs",
            "available": True,
        }


class TestClaims:
    """Exclusive access arbitration."""

    def test_second_open_is_rejected(self, registry):
        descriptor = registry.enumerate()[0]
        registry.open(descriptor)

        with pytest.raises(MeterConnectionError, match="Device is not available"):
            registry.open(descriptor)

        assert len(registry.sessions) == 1

    def test_force_open_bypasses_claim(self, registry):
        """Verifies forced double claims are counted, not collapsed.

        Arrangement:
        1. Open the PM100D normally.
        2. Open it again with force=True.

        Action:
        Disconnect the forced session only.

        Assertion Strategy:
        The resource stays claimed until the first session is closed too.
        """
        descriptor = registry.enumerate()[0]
        first = registry.open(descriptor)
        forced = registry.open(descriptor, force=True)

        forced.disconnect()
        assert registry.is_available(descriptor) is False

        first.disconnect()
        assert registry.is_available(descriptor) is True

    def test_release_after_disconnect(self, registry):
        descriptor = registry.enumerate()[1]
        meter = registry.open(descriptor)

        meter.disconnect()

        assert registry.enumerate()[1].available is True
        reopened = registry.open(descriptor)
        assert reopened.is_connected

    def test_release_of_unclaimed_is_ignored(self, registry):
        descriptor = registry.enumerate()[0]

        registry.mark_released(descriptor)

        assert registry.is_available(descriptor)

    def test_claims_are_per_registry(self, twin_driver):
        first = MeterRegistry(twin_driver)
        second = MeterRegistry(twin_driver)
        descriptor = first.enumerate()[0]
        first.open(descriptor)

        # The driver still reports the resource busy to the second registry
        assert second.enumerate()[0].available is False
        assert second.is_available(descriptor) is True
        first.clear()

    def test_failed_open_does_not_claim(self, fake_clock):
        driver = DigitalTwinMeterDriver(
            DigitalTwinMeterConfig(fail_open={PM100D_RESOURCE})
        )
        registry = MeterRegistry(driver, clock=fake_clock)
        descriptor = registry.enumerate()[0]

        with pytest.raises(MeterConnectionError, match="Failed to connect"):
            registry.open(descriptor)

        assert registry.is_available(descriptor)
        assert registry.sessions == []


class TestSessions:
    """Session tracking and shutdown."""

    def test_get_session(self, registry):
        meter = registry.open(registry.enumerate()[1])

        assert registry.get_session(PM400_RESOURCE) is meter
        assert registry.get_session(PM100D_RESOURCE) is None

    def test_sessions_pruned_after_disconnect(self, registry):
        meter = registry.open(registry.enumerate()[0])
        meter.disconnect()

        assert registry.sessions == []
        assert registry.get_session(PM100D_RESOURCE) is None

    def test_sessions_inherit_registry_dependencies(self, twin_driver, fake_clock):
        hooks = MeterHooks()
        registry = MeterRegistry(
            twin_driver, clock=fake_clock, hooks=hooks, dark_adjust_poll_s=0.5
        )

        meter = registry.open(registry.enumerate()[1])
        meter.dark_adjust()

        assert isinstance(meter, PowerMeter)
        assert fake_clock.sleeps[-1] == 0.5
        registry.clear()

    def test_clear_disconnects_everything(self, registry):
        meters = [registry.open(d) for d in registry.enumerate()]

        registry.clear()

        assert all(not m.is_connected for m in meters)
        assert all(d.available for d in registry.enumerate())

    def test_clear_tolerates_close_failure(self, fake_clock):
        driver = DigitalTwinMeterDriver(DigitalTwinMeterConfig(fail_close=True))
        registry = MeterRegistry(driver, clock=fake_clock)
        meters = [registry.open(d) for d in registry.enumerate()]

        registry.clear()

        assert all(not m.is_connected for m in meters)
        assert all(registry.is_available(d) for d in registry.enumerate())

    def test_clear_keeps_claims_of_untracked_sessions(self, registry, twin_driver):
        """A session connected directly against the registry survives clear().

        Its claim must still block a second session on the same resource.
        """
        descriptor = registry.enumerate()[0]
        first = PowerMeter(twin_driver, registry=registry).connect(descriptor)

        registry.clear()

        assert first.is_connected
        assert not registry.is_available(descriptor)
        with pytest.raises(MeterConnectionError, match="not available"):
            PowerMeter(twin_driver, registry=registry).connect(descriptor)
        first.disconnect()
        assert registry.is_available(descriptor)

    def test_context_manager(self, twin_driver):
        with MeterRegistry(twin_driver) as registry:
            meter = registry.open(registry.enumerate()[0])

        assert not meter.is_connected

    def test_repr(self, registry):
        registry.open(registry.enumerate()[0])

        assert repr(registry) == "<MeterRegistry(claimed=1, sessions=1)>"


class TestSingleton:
    """Module-level registry used by the MCP tools."""

    def test_get_before_init_raises(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            get_registry()

    def test_init_and_get(self, twin_driver):
        registry = init_registry(twin_driver)

        assert get_registry() is registry
        assert registry.driver is twin_driver

    def test_shutdown_disconnects_and_is_idempotent(self, twin_driver):
        registry = init_registry(twin_driver)
        meter = registry.open(registry.enumerate()[0])

        shutdown_registry()
        shutdown_registry()

        assert not meter.is_connected
        with pytest.raises(RuntimeError):
            get_registry()
