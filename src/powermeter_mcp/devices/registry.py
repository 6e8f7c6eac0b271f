"""Meter registry for discovery and claim arbitration.

Enumerates the resources a driver can see, tracks which of them are
claimed by an open session, and keeps the sessions it opened so they can
be looked up by resource name and shut down together.

Example:
    from powermeter_mcp.devices import MeterRegistry
    from powermeter_mcp.drivers.meters import DigitalTwinMeterDriver

    with MeterRegistry(DigitalTwinMeterDriver()) as registry:
        for descriptor in registry.enumerate():
            print(descriptor.resource_name, descriptor.model_name)
        meter = registry.open(registry.enumerate()[0])
        print(meter.read_power())
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from powermeter_mcp.devices.errors import MeterError
from powermeter_mcp.devices.meter import (
    DEFAULT_DARK_ADJUST_POLL_S,
    DEFAULT_DARK_ADJUST_TIMEOUT_S,
    Clock,
    ConnectOptions,
    MeterHooks,
    PowerMeter,
    SystemClock,
)
from powermeter_mcp.observability import get_logger

if TYPE_CHECKING:
    from powermeter_mcp.drivers.meters import MeterDriver

logger = get_logger(__name__)

__all__ = [
    "MeterRegistry",
    "ResourceDescriptor",
    "get_registry",
    "init_registry",
    "shutdown_registry",
]


@dataclass(frozen=True)
class ResourceDescriptor:
    """Identity and availability of one meter, as seen at enumeration.

    Immutable and not refreshed: call MeterRegistry.enumerate() again after
    devices are plugged or unplugged.

    Attributes:
        resource_name: VISA resource string used to open the device.
        model_name: Meter model, e.g. "PM100D".
        serial_number: Meter serial number.
        manufacturer: Manufacturer string.
        available: Driver-reported availability combined with the
            registry's claims at enumeration time.
    """

    resource_name: str
    model_name: str
    serial_number: str
    manufacturer: str
    available: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return asdict(self)


class MeterRegistry:
    """Resource enumeration and exclusive-claim bookkeeping.

    Provides:
    - enumerate() over the driver's discovery
    - A claim count per resource name (mark_claimed / mark_released)
    - Sessions created through open(), with clear() to disconnect them all
    - Injectable clock and hooks passed to created sessions

    Claims are per registry instance. Two registries over the same driver
    do not see each other's claims.

    Thread Safety:
        Not thread-safe. Use external synchronization if needed.
    """

    def __init__(
        self,
        driver: MeterDriver,
        clock: Clock | None = None,
        hooks: MeterHooks | None = None,
        dark_adjust_timeout_s: float = DEFAULT_DARK_ADJUST_TIMEOUT_S,
        dark_adjust_poll_s: float = DEFAULT_DARK_ADJUST_POLL_S,
    ) -> None:
        """Create registry with driver and optional session dependencies.

        Args:
            driver: Meter driver (TLPMDriver or DigitalTwinMeterDriver).
            clock: Clock passed to created sessions (default: SystemClock).
            hooks: Hooks passed to created sessions.
            dark_adjust_timeout_s: Dark-adjust deadline for created sessions.
            dark_adjust_poll_s: Dark-adjust poll interval for created sessions.
        """
        self._driver = driver
        self._clock = clock or SystemClock()
        self._hooks = hooks
        self._dark_adjust_timeout_s = dark_adjust_timeout_s
        self._dark_adjust_poll_s = dark_adjust_poll_s

        self._claims: Counter[str] = Counter()
        self._sessions: list[PowerMeter] = []

    @property
    def driver(self) -> MeterDriver:
        """Driver used for discovery and by created sessions."""
        return self._driver

    def enumerate(self) -> list[ResourceDescriptor]:
        """List the resources the driver can currently see.

        Returns:
            One ResourceDescriptor per resource in driver order. A resource
            is available only if the driver says so and this registry holds
            no claim on it.

        Raises:
            MeterDriverError: If discovery fails.
        """
        descriptors = [
            ResourceDescriptor(
                resource_name=r["resource_name"],
                model_name=r["model_name"],
                serial_number=r["serial_number"],
                manufacturer=r["manufacturer"],
                available=bool(r["available"])
                and self._claims[r["resource_name"]] == 0,
            )
            for r in self._driver.discover()
        ]
        logger.info(
            "Meters enumerated",
            count=len(descriptors),
            available=sum(d.available for d in descriptors),
        )
        return descriptors

    def mark_claimed(self, descriptor: ResourceDescriptor) -> None:
        """Record a connected session on the resource."""
        self._claims[descriptor.resource_name] += 1
        logger.debug(
            "Resource claimed",
            resource=descriptor.resource_name,
            claims=self._claims[descriptor.resource_name],
        )

    def mark_released(self, descriptor: ResourceDescriptor) -> None:
        """Drop one claim on the resource. Unclaimed resources are ignored."""
        name = descriptor.resource_name
        if self._claims[name] > 0:
            self._claims[name] -= 1
        if self._claims[name] == 0:
            del self._claims[name]
        logger.debug("Resource released", resource=name)

    def is_available(self, descriptor: ResourceDescriptor) -> bool:
        """True when no session of this registry holds the resource."""
        return self._claims[descriptor.resource_name] == 0

    def open(
        self,
        descriptor: ResourceDescriptor,
        options: ConnectOptions | None = None,
        force: bool = False,
    ) -> PowerMeter:
        """Create a session on the resource and connect it.

        Args:
            descriptor: Resource from enumerate().
            options: Open options (default: query ID and reset).
            force: Skip the availability check (connect_force).

        Returns:
            Connected PowerMeter, tracked by this registry.

        Raises:
            MeterConnectionError: If the resource is claimed or unavailable
                (without force) or the driver cannot open it.
        """
        meter = PowerMeter(
            self._driver,
            registry=self,
            clock=self._clock,
            hooks=self._hooks,
            dark_adjust_timeout_s=self._dark_adjust_timeout_s,
            dark_adjust_poll_s=self._dark_adjust_poll_s,
        )
        if force:
            meter.connect_force(descriptor, options)
        else:
            meter.connect(descriptor, options)
        self._prune()
        self._sessions.append(meter)
        return meter

    def get_session(self, resource_name: str) -> PowerMeter | None:
        """Most recent connected session on ``resource_name``, if any."""
        for meter in reversed(self._sessions):
            if meter.is_connected and meter.resource_name == resource_name:
                return meter
        return None

    @property
    def sessions(self) -> list[PowerMeter]:
        """Connected sessions opened through this registry."""
        self._prune()
        return list(self._sessions)

    def _prune(self) -> None:
        self._sessions = [m for m in self._sessions if m.is_connected]

    def clear(self) -> None:
        """Disconnect every tracked session.

        Each disconnect releases its own claim. Claims held by sessions
        connected with this registry but not opened through it are kept.
        Disconnect errors are logged and the remaining sessions are still
        closed.
        """
        for meter in self._sessions:
            if meter.is_connected:
                try:
                    meter.disconnect()
                except MeterError as e:
                    logger.warning(
                        "Error during meter disconnect",
                        resource=meter.resource_name,
                        error=str(e),
                    )
        self._sessions.clear()

    # Context manager support

    def __enter__(self) -> MeterRegistry:
        """Return self."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect all sessions. Does not suppress exceptions."""
        self.clear()

    def __repr__(self) -> str:
        """Return claim and session counts."""
        return (
            f"<MeterRegistry(claimed={len(self._claims)}, "
            f"sessions={len(self.sessions)})>"
        )


# =============================================================================
# Module-level convenience (optional singleton pattern)
# =============================================================================

_default_registry: MeterRegistry | None = None


def init_registry(
    driver: MeterDriver,
    clock: Clock | None = None,
    hooks: MeterHooks | None = None,
    dark_adjust_timeout_s: float = DEFAULT_DARK_ADJUST_TIMEOUT_S,
    dark_adjust_poll_s: float = DEFAULT_DARK_ADJUST_POLL_S,
) -> MeterRegistry:
    """Create the module-level registry used by the MCP tools.

    Replaces any existing registry without disconnecting it; call
    shutdown_registry() first for a clean swap.
    """
    global _default_registry
    _default_registry = MeterRegistry(
        driver,
        clock=clock,
        hooks=hooks,
        dark_adjust_timeout_s=dark_adjust_timeout_s,
        dark_adjust_poll_s=dark_adjust_poll_s,
    )
    return _default_registry


def get_registry() -> MeterRegistry:
    """Return the module-level registry.

    Raises:
        RuntimeError: If init_registry() has not been called.
    """
    if _default_registry is None:
        raise RuntimeError("Registry not initialized. Call init_registry() first.")
    return _default_registry


def shutdown_registry() -> None:
    """Disconnect everything and drop the module-level registry. Idempotent."""
    global _default_registry
    if _default_registry is not None:
        _default_registry.clear()
        _default_registry = None
