#!/usr/bin/env python3
"""
Node Storage for the MySensors Gateway

SQLite-based storage for node and sensor settings, so names, descriptions
and remap settings survive a restart. Sensor values and history are not
stored.
"""

import logging
import sqlite3
from typing import List

from .events import EventBus, EventType
from .models import Node, Sensor
from .protocol import SensorType
from .registry import NodeRegistry


# =============================================================================
# Constants
# =============================================================================

# Default database file
DEFAULT_DB_PATH = "gateway.db"


# =============================================================================
# Storage Manager
# =============================================================================

class NodeStorage:
    """
    SQLite-based storage for nodes and their sensor settings.

    Usage:
        storage = NodeStorage("gateway.db")
        storage.load_into(gateway.registry)
        storage.attach(gateway.events)
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, logger: logging.Logger = None):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path
        self.logger = logger or logging.getLogger("NodeStorage")
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS nodes (
                    node_id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    firmware_version TEXT NOT NULL DEFAULT '',
                    battery_level INTEGER,
                    is_repeating_node INTEGER NOT NULL DEFAULT 0,
                    last_seen REAL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sensors (
                    node_id INTEGER NOT NULL,
                    sensor_id INTEGER NOT NULL,
                    sensor_type INTEGER,
                    description TEXT NOT NULL DEFAULT '',
                    invert_data INTEGER NOT NULL DEFAULT 0,
                    remap_enabled INTEGER NOT NULL DEFAULT 0,
                    remap_from_min REAL NOT NULL DEFAULT 0,
                    remap_from_max REAL NOT NULL DEFAULT 0,
                    remap_to_min REAL NOT NULL DEFAULT 0,
                    remap_to_max REAL NOT NULL DEFAULT 0,
                    store_history_enabled INTEGER NOT NULL DEFAULT 0,
                    store_history_every_change INTEGER NOT NULL DEFAULT 1,
                    store_history_with_interval INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (node_id, sensor_id)
                )
            """)

            conn.commit()

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def save_node(self, node: Node):
        """Insert or replace a node and all of its sensors."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO nodes
                    (node_id, name, firmware_version, battery_level, is_repeating_node, last_seen)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    node.node_id,
                    node.name,
                    node.firmware_version,
                    node.battery_level,
                    int(node.is_repeating_node),
                    node.last_seen,
                )
            )
            for sensor in node.sensors.values():
                self._write_sensor(conn, sensor)
            conn.commit()

    def save_sensor(self, sensor: Sensor):
        """Insert or replace the settings of one sensor."""
        with sqlite3.connect(self.db_path) as conn:
            self._write_sensor(conn, sensor)
            conn.commit()

    def _write_sensor(self, conn: sqlite3.Connection, sensor: Sensor):
        conn.execute(
            """
            INSERT OR REPLACE INTO sensors (
                node_id, sensor_id, sensor_type, description,
                invert_data, remap_enabled,
                remap_from_min, remap_from_max, remap_to_min, remap_to_max,
                store_history_enabled, store_history_every_change, store_history_with_interval
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                sensor.node_id,
                sensor.sensor_id,
                int(sensor.sensor_type) if sensor.sensor_type is not None else None,
                sensor.description,
                int(sensor.invert_data),
                int(sensor.remap_enabled),
                sensor.remap_from_min,
                sensor.remap_from_max,
                sensor.remap_to_min,
                sensor.remap_to_max,
                int(sensor.store_history_enabled),
                int(sensor.store_history_every_change),
                sensor.store_history_with_interval,
            )
        )

    def delete_node(self, node_id: int) -> bool:
        """Delete a node and its sensors. Returns False if it was not stored."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM sensors WHERE node_id = ?", (node_id,))
            cursor = conn.execute("DELETE FROM nodes WHERE node_id = ?", (node_id,))
            conn.commit()
            return cursor.rowcount > 0

    def drop_all(self):
        """Delete every stored node and sensor."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM sensors")
            conn.execute("DELETE FROM nodes")
            conn.commit()
        self.logger.info("All stored nodes dropped")

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def load_nodes(self) -> List[Node]:
        """Load all stored nodes with their sensors, ordered by node id."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            node_rows = conn.execute("SELECT * FROM nodes ORDER BY node_id").fetchall()
            sensor_rows = conn.execute(
                "SELECT * FROM sensors ORDER BY node_id, sensor_id"
            ).fetchall()

        nodes = {}
        for row in node_rows:
            nodes[row["node_id"]] = Node(
                node_id=row["node_id"],
                name=row["name"],
                firmware_version=row["firmware_version"],
                battery_level=row["battery_level"],
                is_repeating_node=bool(row["is_repeating_node"]),
                last_seen=row["last_seen"],
            )

        for row in sensor_rows:
            node = nodes.get(row["node_id"])
            if node is None:
                self.logger.warning(
                    f"Orphan sensor {row['node_id']}/{row['sensor_id']} skipped"
                )
                continue
            node.sensors[row["sensor_id"]] = self._row_to_sensor(row)

        return list(nodes.values())

    def _row_to_sensor(self, row: sqlite3.Row) -> Sensor:
        sensor_type = row["sensor_type"]
        if sensor_type is not None:
            try:
                sensor_type = SensorType(sensor_type)
            except ValueError:
                sensor_type = None

        return Sensor(
            node_id=row["node_id"],
            sensor_id=row["sensor_id"],
            sensor_type=sensor_type,
            description=row["description"],
            invert_data=bool(row["invert_data"]),
            remap_enabled=bool(row["remap_enabled"]),
            remap_from_min=row["remap_from_min"],
            remap_from_max=row["remap_from_max"],
            remap_to_min=row["remap_to_min"],
            remap_to_max=row["remap_to_max"],
            store_history_enabled=bool(row["store_history_enabled"]),
            store_history_every_change=bool(row["store_history_every_change"]),
            store_history_with_interval=row["store_history_with_interval"],
        )

    # -------------------------------------------------------------------------
    # Gateway Integration
    # -------------------------------------------------------------------------

    def load_into(self, registry: NodeRegistry) -> int:
        """
        Register stored nodes in a registry.

        Unknown nodes are added; for nodes already registered only the
        settings are applied.

        Returns:
            Number of nodes loaded.
        """
        nodes = self.load_nodes()
        for node in nodes:
            if registry.has_node(node.node_id):
                registry.update_node_settings(node)
            else:
                registry.add_node(node)

        self.logger.info(f"Loaded {len(nodes)} nodes from {self.db_path}")
        return len(nodes)

    def attach(self, events: EventBus):
        """Keep storage in sync with registry changes."""
        events.subscribe(EventType.NEW_NODE, self.save_node)
        events.subscribe(EventType.NODE_UPDATED, self.save_node)
        events.subscribe(EventType.NODE_BATTERY_UPDATED, self.save_node)
        events.subscribe(EventType.NEW_SENSOR, self.save_sensor)
        events.subscribe(EventType.SENSOR_UPDATED, self.save_sensor)
        events.subscribe(EventType.NODES_CLEARED, self.drop_all)

    def detach(self, events: EventBus):
        events.unsubscribe(EventType.NEW_NODE, self.save_node)
        events.unsubscribe(EventType.NODE_UPDATED, self.save_node)
        events.unsubscribe(EventType.NODE_BATTERY_UPDATED, self.save_node)
        events.unsubscribe(EventType.NEW_SENSOR, self.save_sensor)
        events.unsubscribe(EventType.SENSOR_UPDATED, self.save_sensor)
        events.unsubscribe(EventType.NODES_CLEARED, self.drop_all)
