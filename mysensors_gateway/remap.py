#!/usr/bin/env python3
"""
Sensor Value Transforms

Per-sensor value mapping between the units a sensor uses on the wire and the
units consumers see:

    Invert: flips a logical "0"/"1" value.
    Remap:  linearly rescales [remap_from_min, remap_from_max] onto
            [remap_to_min, remap_to_max].

The forward transform (wire -> consumer) applies invert then remap; the
reverse transform (consumer -> wire) undoes them in the opposite order, so
reverse(forward(x)) == x for the same sensor settings.

Transforms fail open: when a value cannot be transformed the original
value is returned untouched and the result is tagged as not applied.
"""

from typing import NamedTuple, Optional

from .protocol import Message, MessageType


# Significant digits used when rendering remapped numbers
NUMBER_PRECISION = 15


class TransformResult(NamedTuple):
    """Outcome of a transform: the resulting state and whether it changed."""
    state: str
    applied: bool

    @classmethod
    def passthrough(cls, state: str) -> "TransformResult":
        return cls(state, False)


# =============================================================================
# Value Helpers
# =============================================================================

def parse_number(state: str) -> Optional[float]:
    """Parse a payload as a number, or None if it is not numeric."""
    try:
        return float(state)
    except (TypeError, ValueError):
        return None


def format_number(value: float) -> str:
    """Render a number without float noise, integers without a decimal point."""
    text = format(value, f".{NUMBER_PRECISION}g")
    return "0" if text == "-0" else text


def remap_value(
    value: float,
    from_min: float,
    from_max: float,
    to_min: float,
    to_max: float,
) -> float:
    """Linearly map value from [from_min, from_max] onto [to_min, to_max]."""
    return to_min + (value - from_min) * (to_max - to_min) / (from_max - from_min)


def unremap_value(
    value: float,
    from_min: float,
    from_max: float,
    to_min: float,
    to_max: float,
) -> float:
    """Inverse of remap_value() for the same ranges."""
    return from_min + (value - to_min) * (from_max - from_min) / (to_max - to_min)


def invert_value(state: str) -> Optional[str]:
    """Flip a logical value, or None if the state is not numerically 0 or 1."""
    value = parse_number(state)
    if value == 0:
        return "1"
    if value == 1:
        return "0"
    return None


def _can_remap(sensor) -> bool:
    return (
        sensor.remap_from_min != sensor.remap_from_max
        and sensor.remap_to_min != sensor.remap_to_max
    )


# =============================================================================
# Sensor Transforms
# =============================================================================

def forward_transform(sensor, state: str) -> TransformResult:
    """
    Transform a value received from the bus into consumer units.

    Args:
        sensor: Sensor holding the invert/remap settings.
        state: Value as sent by the sensor.

    Returns:
        TransformResult with the consumer-side value.
    """
    result = state
    applied = False

    if sensor.invert_data:
        inverted = invert_value(result)
        if inverted is not None:
            result = inverted
            applied = True

    if sensor.remap_enabled:
        value = parse_number(result)
        if value is None or not _can_remap(sensor):
            return TransformResult.passthrough(state)
        result = format_number(remap_value(
            value,
            sensor.remap_from_min,
            sensor.remap_from_max,
            sensor.remap_to_min,
            sensor.remap_to_max,
        ))
        applied = True

    return TransformResult(result, applied)


def reverse_transform(sensor, state: str) -> TransformResult:
    """
    Transform a consumer value back into the units the sensor expects.

    Args:
        sensor: Sensor holding the invert/remap settings.
        state: Value in consumer units.

    Returns:
        TransformResult with the wire-side value.
    """
    result = state
    applied = False

    if sensor.remap_enabled:
        value = parse_number(result)
        if value is None or not _can_remap(sensor):
            return TransformResult.passthrough(state)
        result = format_number(unremap_value(
            value,
            sensor.remap_from_min,
            sensor.remap_from_max,
            sensor.remap_to_min,
            sensor.remap_to_max,
        ))
        applied = True

    if sensor.invert_data:
        inverted = invert_value(result)
        if inverted is not None:
            result = inverted
            applied = True

    return TransformResult(result, applied)


# =============================================================================
# Message Transforms
# =============================================================================

def _transform_message(registry, message: Message, transform) -> Message:
    if message.message_type != MessageType.SET or not message.is_valid:
        return message

    sensor = registry.live_sensor(message.node_id, message.sensor_id)
    if sensor is None:
        return message

    result = transform(sensor, message.payload)
    if not result.applied:
        return message

    return message.with_payload(result.state)


def remap_message(registry, message: Message) -> Message:
    """
    Apply the forward transform to an incoming SET message.

    Returns a new Message with the transformed payload, or the original
    message if the sensor is unknown or the value cannot be transformed.
    """
    return _transform_message(registry, message, forward_transform)


def unremap_message(registry, message: Message) -> Message:
    """Apply the reverse transform to an outgoing SET message (fails open)."""
    return _transform_message(registry, message, reverse_transform)
