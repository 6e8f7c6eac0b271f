"""Exceptions and non-fatal advisories for the meter device layer.

Fatal conditions abort the call and raise a MeterError subclass. Everything
else is recovered locally (value clamped, operation skipped, partial
decode) and reported as an Advisory next to a successful result.

Exceptions:
    MeterError: Base for all device-layer failures
    MeterConnectionError: Open failed or resource already claimed
    MeterStateError: Operation invalid in the current session state
    MeterDeviceError: Device reported inconsistent state (min > max)
    DarkAdjustTimeoutError: Dark adjustment did not finish in time

Advisories:
    AdvisoryKind, Advisory
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

__all__ = [
    "Advisory",
    "AdvisoryKind",
    "DarkAdjustTimeoutError",
    "MeterConnectionError",
    "MeterDeviceError",
    "MeterError",
    "MeterStateError",
]


# --- Exceptions ---


class MeterError(Exception):
    """Base exception for meter operations."""

    pass


class MeterConnectionError(MeterError):
    """Raised when a resource cannot be opened or is already claimed."""

    pass


class MeterStateError(MeterError):
    """Raised when an operation is invalid for the session state."""

    pass


class MeterDeviceError(MeterError):
    """Raised when the device reports inconsistent bounds."""

    pass


class DarkAdjustTimeoutError(MeterError):
    """Raised when the dark adjustment is still running at the deadline."""

    def __init__(self, timeout_s: float, polls: int) -> None:
        """Record the deadline and how many polls were made."""
        super().__init__(
            f"Dark adjustment still in progress after {timeout_s:.1f}s ({polls} polls)"
        )
        self.timeout_s = timeout_s
        self.polls = polls


# --- Advisories ---


class AdvisoryKind(Enum):
    """Category of a non-fatal condition."""

    BOUND_VIOLATION = "bound_violation"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    DECODE_ERROR = "decode_error"
    CAPABILITY = "capability"
    DISCONNECTION = "disconnection"


@dataclass(frozen=True)
class Advisory:
    """A non-fatal condition reported alongside a successful result.

    Attributes:
        kind: Category.
        message: Human-readable description.
        details: Structured values (requested/applied value, model, ...).
    """

    kind: AdvisoryKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {"kind": self.kind.value, "message": self.message, **self.details}
