#!/usr/bin/env python3
"""
Node Registry

In-memory store of every node and sensor known to the gateway.

The registry owns the Node and Sensor objects. Public lookups return
snapshot copies; the live objects are only handed to code holding
`registry.lock` (the gateway while it processes a message).
"""

import logging
import threading
from typing import Dict, List, Optional

from .errors import DuplicateNodeError
from .events import EventBus, EventType
from .models import (
    BROADCAST_ID,
    MAX_ASSIGNABLE_NODE_ID,
    MIN_NODE_ID,
    Node,
    Sensor,
)


# Settings copied by update_node_settings()
SENSOR_SETTINGS_FIELDS = (
    "description",
    "store_history_enabled",
    "store_history_every_change",
    "store_history_with_interval",
    "invert_data",
    "remap_enabled",
    "remap_from_min",
    "remap_from_max",
    "remap_to_min",
    "remap_to_max",
)


class NodeRegistry:
    """Authoritative set of nodes and their sensors."""

    def __init__(self, events: EventBus = None, logger: logging.Logger = None):
        self.events = events or EventBus()
        self.logger = logger or logging.getLogger("NodeRegistry")
        self.lock = threading.RLock()
        self._nodes: Dict[int, Node] = {}

    # -------------------------------------------------------------------------
    # Lookups (snapshots)
    # -------------------------------------------------------------------------

    def get_node(self, node_id: int) -> Optional[Node]:
        """Get a copy of a node, or None if unknown."""
        with self.lock:
            node = self._nodes.get(node_id)
            return node.copy() if node else None

    def get_nodes(self) -> List[Node]:
        """Get copies of all nodes, in registration order."""
        with self.lock:
            return [node.copy() for node in self._nodes.values()]

    def get_sensor(self, node_id: int, sensor_id: int) -> Optional[Sensor]:
        """Get a copy of a sensor, or None if the node or sensor is unknown."""
        with self.lock:
            sensor = self.live_sensor(node_id, sensor_id)
            return sensor.copy() if sensor else None

    def has_node(self, node_id: int) -> bool:
        with self.lock:
            return node_id in self._nodes

    def node_count(self) -> int:
        with self.lock:
            return len(self._nodes)

    def sensor_count(self) -> int:
        with self.lock:
            return sum(len(node.sensors) for node in self._nodes.values())

    # -------------------------------------------------------------------------
    # Live access (caller must hold self.lock)
    # -------------------------------------------------------------------------

    def live_node(self, node_id: int) -> Optional[Node]:
        """Get the registry-owned node. Hold `lock` while using it."""
        return self._nodes.get(node_id)

    def live_sensor(self, node_id: int, sensor_id: int) -> Optional[Sensor]:
        """Get the registry-owned sensor. Hold `lock` while using it."""
        node = self._nodes.get(node_id)
        if node is None:
            return None
        return node.get_sensor(sensor_id)

    def create_node(self, node_id: int) -> Node:
        """Create and register an empty node, returning the live object."""
        if node_id == BROADCAST_ID:
            raise ValueError(f"Node id {BROADCAST_ID} is reserved")
        with self.lock:
            if node_id in self._nodes:
                raise DuplicateNodeError(node_id)
            node = Node(node_id=node_id)
            self._nodes[node_id] = node
            return node

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def get_free_node_id(self) -> int:
        """
        Get the lowest node id not in use.

        Returns:
            An id in [1, 253], or 255 if all of them are taken.
        """
        with self.lock:
            for node_id in range(MIN_NODE_ID, MAX_ASSIGNABLE_NODE_ID + 1):
                if node_id not in self._nodes:
                    return node_id
        return BROADCAST_ID

    def add_node(self, node: Node):
        """
        Register a node (with its sensors), e.g. when loading saved settings.

        The registry keeps its own copy of the node.

        Raises:
            DuplicateNodeError: If the node id is already registered.
            ValueError: If the node id is the broadcast id.
        """
        if node.node_id == BROADCAST_ID:
            raise ValueError(f"Node id {BROADCAST_ID} is reserved")

        with self.lock:
            if node.node_id in self._nodes:
                raise DuplicateNodeError(node.node_id)
            self._nodes[node.node_id] = node.copy()

        self.logger.debug(f"Node {node.node_id} added ({len(node.sensors)} sensors)")

    def delete_node(self, node_id: int) -> bool:
        """Remove a node. Returns False if it was not registered."""
        with self.lock:
            node = self._nodes.pop(node_id, None)

        if node is None:
            return False

        self.logger.info(f"Node {node_id} deleted")
        return True

    def clear(self):
        """Remove every node and notify NODES_CLEARED."""
        with self.lock:
            self._nodes.clear()
            self.logger.info("Nodes list cleared")
            self.events.emit(EventType.NODES_CLEARED)

    def update_node_settings(self, node: Node) -> bool:
        """
        Copy user-editable settings from `node` onto the registered node.

        Copies the node name and, for every sensor present on both sides,
        the description, history policy, invert and remap settings. Node and
        sensor identity and the stored sensor data are left untouched.

        Returns:
            False if the node is not registered.
        """
        with self.lock:
            live = self._nodes.get(node.node_id)
            if live is None:
                return False

            live.name = node.name
            for sensor in node.sensors.values():
                live_sensor = live.get_sensor(sensor.sensor_id)
                if live_sensor is None:
                    self.logger.debug(
                        f"Settings for unknown sensor {node.node_id}/{sensor.sensor_id} ignored"
                    )
                    continue
                for name in SENSOR_SETTINGS_FIELDS:
                    setattr(live_sensor, name, getattr(sensor, name))

        return True
