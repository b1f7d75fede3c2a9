#!/usr/bin/env python3
"""
Exceptions raised by the MySensors gateway.
"""


class GatewayError(Exception):
    """Base class for gateway errors."""


class NotConnectedError(GatewayError):
    """Raised when sending while no transport is connected."""


class SensorTypeOutOfRangeError(GatewayError, ValueError):
    """
    Raised when a PRESENTATION message names an unknown sensor type.

    Usually caused by a corrupted or truncated line on the serial bus,
    so it is expected to be transient.
    """

    def __init__(self, node_id: int, sensor_id: int, sub_type: int):
        self.node_id = node_id
        self.sensor_id = sensor_id
        self.sub_type = sub_type
        super().__init__(
            f"Sensor type {sub_type} out of range "
            f"(node {node_id}, sensor {sensor_id})"
        )


class DuplicateNodeError(GatewayError, ValueError):
    """Raised when adding a node whose id is already registered."""

    def __init__(self, node_id: int):
        self.node_id = node_id
        super().__init__(f"Node {node_id} already registered")
