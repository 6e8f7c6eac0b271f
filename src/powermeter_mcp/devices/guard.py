"""Parameter guard: clamp a requested setting into device bounds.

The guard never forwards an out-of-range value to the driver. A request
outside ``[minimum, maximum]`` is replaced with the nearest bound, the
replacement is applied, and a BoundViolation event describes what changed.

Example:
    from powermeter_mcp.devices.guard import clamp_and_apply

    applied = []
    result = clamp_and_apply(2000.0, 100.0, 1600.0, applied.append)
    value, was_clamped, direction = result
    # value == 1600.0, was_clamped is True, direction is ClampDirection.MAXIMUM
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from powermeter_mcp.devices.errors import Advisory, AdvisoryKind, MeterDeviceError
from powermeter_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "BoundViolation",
    "ClampDirection",
    "ClampResult",
    "clamp",
    "clamp_and_apply",
]


class ClampDirection(Enum):
    """Which correction, if any, the guard made."""

    NONE = "none"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"


class ClampResult(NamedTuple):
    """Outcome of clamp_and_apply, unpackable as a 3-tuple."""

    value: float
    was_clamped: bool
    direction: ClampDirection


@dataclass(frozen=True)
class BoundViolation:
    """Event emitted when a requested value had to be clamped.

    Attributes:
        parameter: Name of the setting, e.g. "wavelength".
        requested: Value the caller asked for.
        applied: Value actually written.
        direction: MINIMUM or MAXIMUM.
        minimum: Lower bound in force.
        maximum: Upper bound in force.
    """

    parameter: str
    requested: float
    applied: float
    direction: ClampDirection
    minimum: float
    maximum: float

    @property
    def message(self) -> str:
        """Text in the form 'Exceed maximum wavelength! Forced to 1600'."""
        return (
            f"Exceed {self.direction.value} {self.parameter}! "
            f"Forced to {self.applied:g}"
        )

    def to_advisory(self) -> Advisory:
        """Convert to a BOUND_VIOLATION advisory."""
        return Advisory(
            kind=AdvisoryKind.BOUND_VIOLATION,
            message=self.message,
            details={
                "parameter": self.parameter,
                "requested": self.requested,
                "applied": self.applied,
                "direction": self.direction.value,
                "minimum": self.minimum,
                "maximum": self.maximum,
            },
        )


def clamp(requested: float, minimum: float, maximum: float) -> ClampResult:
    """Clamp without applying.

    Raises:
        MeterDeviceError: If ``minimum > maximum``.
    """
    if minimum > maximum:
        raise MeterDeviceError(
            f"Device reported inverted bounds: min={minimum} > max={maximum}"
        )
    if requested < minimum:
        return ClampResult(minimum, True, ClampDirection.MINIMUM)
    if requested > maximum:
        return ClampResult(maximum, True, ClampDirection.MAXIMUM)
    return ClampResult(requested, False, ClampDirection.NONE)


def clamp_and_apply(
    requested: float,
    minimum: float,
    maximum: float,
    apply_fn: Callable[[float], object],
    *,
    parameter: str = "value",
    on_clamp: Callable[[BoundViolation], object] | None = None,
) -> ClampResult:
    """Clamp ``requested`` into ``[minimum, maximum]`` and apply it.

    ``apply_fn`` is called exactly once, always with the clamped value.
    When clamping occurs a BoundViolation is logged at WARNING and handed to
    ``on_clamp``; it is never raised.

    Args:
        requested: Value asked for by the caller.
        minimum: Device-reported lower bound.
        maximum: Device-reported upper bound.
        apply_fn: Writes the value to the device.
        parameter: Setting name used in the event and logs.
        on_clamp: Receives the BoundViolation when clamping occurs.

    Returns:
        ClampResult(value, was_clamped, direction).

    Raises:
        MeterDeviceError: If ``minimum > maximum``. Nothing is applied.

    Example:
        >>> clamp_and_apply(50, 100, 1600, lambda v: None)
        ClampResult(value=100, was_clamped=True, direction=<ClampDirection.MINIMUM: 'minimum'>)
    """
    result = clamp(requested, minimum, maximum)
    apply_fn(result.value)

    if result.was_clamped:
        event = BoundViolation(
            parameter=parameter,
            requested=requested,
            applied=result.value,
            direction=result.direction,
            minimum=minimum,
            maximum=maximum,
        )
        logger.warning(
            event.message,
            parameter=parameter,
            requested=requested,
            applied=result.value,
        )
        if on_clamp is not None:
            on_clamp(event)

    return result
