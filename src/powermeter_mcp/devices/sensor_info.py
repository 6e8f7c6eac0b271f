"""Sensor descriptor decoding.

Turns the three codes a meter reports for its sensor head (type byte,
subtype byte, 16-bit flag field) into a SensorDescriptor with readable
labels. Decoding is total: unknown codes are recorded in
``decode_errors`` and everything that could be decoded is kept.

Flag field layout:

    bits  0-3   measurement kind      0 none, 1 power, 2 energy
    bits  4-7   settable capabilities 0x10 responsivity, 0x20 wavelength,
                                      0x40 time constant (combinable)
    bits  8-11  temperature sensor    0x100 present
    bits 12-15  unassigned

Example:
    >>> d = decode(0x01, 0x02, 0x0001)
    >>> d.type_label, d.subtype_label, d.flags
    ('Photodiode sensor', 'Photodiode sensor', ('Power sensor',))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag
from typing import Any

__all__ = [
    "MeasurementKind",
    "SensorDescriptor",
    "SensorType",
    "SettableCapability",
    "decode",
]

MEASUREMENT_MASK = 0x000F
SETTABLE_MASK = 0x00F0
TEMPERATURE_MASK = 0x0F00
UNASSIGNED_MASK = 0xF000

TEMPERATURE_SENSOR_BIT = 0x0100


class SensorType(IntEnum):
    """Sensor type byte."""

    NONE = 0x00
    PHOTODIODE = 0x01
    THERMOPILE = 0x02
    PYROELECTRIC = 0x03


class MeasurementKind(Enum):
    """What the head measures (flag bits 0-3)."""

    NONE = 0x0
    POWER = 0x1
    ENERGY = 0x2


class SettableCapability(IntFlag):
    """Settable capability bits (flag bits 4-7)."""

    RESPONSIVITY = 0x10
    WAVELENGTH = 0x20
    TIME_CONSTANT = 0x40


TYPE_LABELS: dict[SensorType, str] = {
    SensorType.NONE: "No sensor",
    SensorType.PHOTODIODE: "Photodiode sensor",
    SensorType.THERMOPILE: "Thermopile sensor",
    SensorType.PYROELECTRIC: "Pyroelectric sensor",
}

SUBTYPE_LABELS: dict[SensorType, dict[int, str]] = {
    SensorType.NONE: {0x00: "No sensor"},
    SensorType.PHOTODIODE: {
        0x01: "Photodiode adapter",
        0x02: "Photodiode sensor",
        0x03: "Photodiode sensor with integrated filter identified by position",
        0x12: "Photodiode sensor with temperature sensor",
    },
    SensorType.THERMOPILE: {
        0x01: "Thermopile adapter",
        0x02: "Thermopile sensor",
        0x12: "Thermopile sensor with temperature sensor",
    },
    SensorType.PYROELECTRIC: {
        0x01: "Pyroelectric adapter",
        0x02: "Pyroelectric sensor",
        0x12: "Pyroelectric sensor with temperature sensor",
    },
}

MEASUREMENT_LABELS: dict[MeasurementKind, str | None] = {
    MeasurementKind.NONE: None,
    MeasurementKind.POWER: "Power sensor",
    MeasurementKind.ENERGY: "Energy sensor",
}

SETTABLE_LABELS: dict[SettableCapability, str] = {
    SettableCapability.RESPONSIVITY: "Responsivity settable",
    SettableCapability.WAVELENGTH: "Wavelength settable",
    SettableCapability.TIME_CONSTANT: "Time constant settable",
}

TEMPERATURE_LABEL = "With Temperature sensor"
UNKNOWN_TYPE_LABEL = "Unknown sensor"


@dataclass(frozen=True)
class SensorDescriptor:
    """Decoded description of a sensor head.

    Attributes:
        name: Sensor model name from the driver.
        serial_number: Sensor serial number from the driver.
        calibration_message: Free-text calibration info from the driver.
        type_code: Raw type byte.
        subtype_code: Raw subtype byte.
        flag_bits: Raw flag field.
        sensor_type: Decoded type, None when unknown.
        type_label: Readable type, "Unknown sensor" when unknown.
        subtype_label: Readable subtype, None when unknown.
        measurement_kind: Decoded bits 0-3, None when unknown.
        settable: Decoded bits 4-7.
        has_temperature_sensor: Bit 8.
        flags: Labels in decode order: measurement kind, settable
            capabilities by ascending bit, temperature sensor.
        decode_errors: One entry per unrecognized code.
    """

    name: str
    serial_number: str
    calibration_message: str
    type_code: int
    subtype_code: int
    flag_bits: int
    sensor_type: SensorType | None
    type_label: str
    subtype_label: str | None
    measurement_kind: MeasurementKind | None
    settable: SettableCapability = SettableCapability(0)
    has_temperature_sensor: bool = False
    flags: tuple[str, ...] = ()
    decode_errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        """True when every code was recognized."""
        return not self.decode_errors

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "name": self.name,
            "serial_number": self.serial_number,
            "calibration_message": self.calibration_message,
            "type": self.type_label,
            "subtype": self.subtype_label,
            "flags": list(self.flags),
            "type_code": self.type_code,
            "subtype_code": self.subtype_code,
            "flag_bits": self.flag_bits,
            "decode_errors": list(self.decode_errors),
        }


def _decode_type(
    type_code: int, subtype_code: int, errors: list[str]
) -> tuple[SensorType | None, str, str | None]:
    try:
        sensor_type = SensorType(type_code)
    except ValueError:
        errors.append(f"Unknown sensor type 0x{type_code:02X}")
        return None, UNKNOWN_TYPE_LABEL, None

    subtype_label = SUBTYPE_LABELS[sensor_type].get(subtype_code)
    if subtype_label is None:
        errors.append(
            f"Unknown subtype 0x{subtype_code:02X} for {TYPE_LABELS[sensor_type]}"
        )
    return sensor_type, TYPE_LABELS[sensor_type], subtype_label


def _decode_flags(
    flag_bits: int, errors: list[str]
) -> tuple[MeasurementKind | None, SettableCapability, bool, list[str]]:
    labels: list[str] = []

    kind: MeasurementKind | None
    try:
        kind = MeasurementKind(flag_bits & MEASUREMENT_MASK)
    except ValueError:
        kind = None
        errors.append(f"Unknown flag 0x{flag_bits & MEASUREMENT_MASK:04X}")
    else:
        label = MEASUREMENT_LABELS[kind]
        if label is not None:
            labels.append(label)

    settable_bits = flag_bits & SETTABLE_MASK
    settable = SettableCapability(0)
    for capability, label in SETTABLE_LABELS.items():
        if settable_bits & capability:
            settable |= capability
            labels.append(label)
    leftover = settable_bits & ~int(sum(SETTABLE_LABELS))
    if leftover:
        errors.append(f"Unknown flag 0x{leftover:04X}")

    temperature_bits = flag_bits & TEMPERATURE_MASK
    has_temperature = bool(temperature_bits & TEMPERATURE_SENSOR_BIT)
    if has_temperature:
        labels.append(TEMPERATURE_LABEL)
    if temperature_bits & ~TEMPERATURE_SENSOR_BIT:
        errors.append(f"Unknown flag 0x{temperature_bits & ~TEMPERATURE_SENSOR_BIT:04X}")

    # Anything outside the 16-bit field, or in its top nibble, is unassigned
    unassigned = flag_bits & ~(MEASUREMENT_MASK | SETTABLE_MASK | TEMPERATURE_MASK)
    if unassigned:
        errors.append(f"Unknown flag 0x{unassigned:04X}")

    return kind, settable, has_temperature, labels


def decode(
    type_code: int,
    subtype_code: int,
    flag_bits: int,
    *,
    name: str = "",
    serial_number: str = "",
    calibration_message: str = "",
) -> SensorDescriptor:
    """Decode raw sensor codes into a SensorDescriptor.

    Never raises for integer input. Unrecognized codes are listed in
    ``decode_errors`` and the recognized parts are still returned.

    Args:
        type_code: Sensor type byte.
        subtype_code: Subtype byte, interpreted relative to the type.
        flag_bits: Capability flag field.
        name: Sensor name, passed through.
        serial_number: Sensor serial, passed through.
        calibration_message: Calibration text, passed through.

    Returns:
        SensorDescriptor with labels and any decode errors.

    Example:
        >>> decode(0x02, 0x12, 0x0161).flags
        ('Power sensor', 'Wavelength settable', 'Time constant settable', 'With Temperature sensor')
    """
    errors: list[str] = []
    sensor_type, type_label, subtype_label = _decode_type(
        type_code, subtype_code, errors
    )
    kind, settable, has_temperature, labels = _decode_flags(flag_bits, errors)

    return SensorDescriptor(
        name=name,
        serial_number=serial_number,
        calibration_message=calibration_message,
        type_code=type_code,
        subtype_code=subtype_code,
        flag_bits=flag_bits,
        sensor_type=sensor_type,
        type_label=type_label,
        subtype_label=subtype_label,
        measurement_kind=kind,
        settable=settable,
        has_temperature_sensor=has_temperature,
        flags=tuple(labels),
        decode_errors=tuple(errors),
    )
