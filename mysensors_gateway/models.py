#!/usr/bin/env python3
"""
Data Models for the MySensors Gateway

This module contains the node/sensor entities, the gateway configuration
and the in-memory message log.
"""

import copy
import logging
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional

import yaml

from .protocol import Message, SensorDataType, SensorType


# =============================================================================
# Constants
# =============================================================================

# Node id used by nodes that have not been assigned an id yet
BROADCAST_ID = 255

# Sensor id used by messages addressed to the node itself
NODE_SENSOR_ID = 255

# Range of node ids on the bus
MIN_NODE_ID = 1
MAX_NODE_ID = 254

# Highest id handed out by automatic id assignment
MAX_ASSIGNABLE_NODE_ID = 253

# Payload of the config response (metric units)
METRIC_SYSTEM_PAYLOAD = "M"

# Minimum delay between reboot messages during a broadcast
MIN_REBOOT_PACING_MS = 10

# Maximum handlers per event type
MAX_EVENT_HANDLERS = 32

# Default number of messages kept in the message log
DEFAULT_MESSAGE_LOG_SIZE = 1000


# =============================================================================
# Enums
# =============================================================================

class GatewayState(Enum):
    """Gateway connection states."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


# =============================================================================
# Entities
# =============================================================================

@dataclass
class SensorData:
    """Most recent value of one data type for a sensor."""
    data_type: SensorDataType
    state: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class Sensor:
    """
    A single channel of a node (temperature probe, relay, dimmer, ...).

    Holds the per-sensor transform settings (invert and remap) and the
    latest value for each data type. The history flags are not used by the
    gateway; they are only carried for the persistence layer.
    """
    node_id: int
    sensor_id: int
    sensor_type: Optional[SensorType] = None
    description: str = ""
    external_id: Optional[int] = None

    # Transform settings
    invert_data: bool = False
    remap_enabled: bool = False
    remap_from_min: float = 0.0
    remap_from_max: float = 0.0
    remap_to_min: float = 0.0
    remap_to_max: float = 0.0

    # History policy (opaque)
    store_history_enabled: bool = False
    store_history_every_change: bool = True
    store_history_with_interval: int = 0

    # Latest value per data type
    data: Dict[SensorDataType, SensorData] = field(default_factory=dict)

    def get_data(self, data_type: SensorDataType) -> Optional[SensorData]:
        """Get the latest value for a data type."""
        return self.data.get(data_type)

    def set_data(self, data_type: SensorDataType, state: str, timestamp: float = None) -> SensorData:
        """Store a value, replacing any previous value of the same type."""
        data = SensorData(
            data_type=data_type,
            state=state,
            timestamp=timestamp if timestamp is not None else time.time(),
        )
        self.data[data_type] = data
        return data

    def copy(self) -> "Sensor":
        return copy.deepcopy(self)


@dataclass
class Node:
    """
    A device on the sensor bus.

    Sensors are kept in presentation order, keyed by sensor id.
    """
    node_id: int
    name: str = ""
    firmware_version: str = ""
    battery_level: Optional[int] = None
    is_repeating_node: bool = False
    last_seen: Optional[float] = None
    external_id: Optional[int] = None
    sensors: Dict[int, Sensor] = field(default_factory=dict)

    def get_sensor(self, sensor_id: int) -> Optional[Sensor]:
        """Get a sensor by id."""
        return self.sensors.get(sensor_id)

    def add_sensor(self, sensor_id: int) -> Sensor:
        """Create and attach a new sensor."""
        sensor = Sensor(node_id=self.node_id, sensor_id=sensor_id)
        self.sensors[sensor_id] = sensor
        return sensor

    def update_last_seen(self):
        self.last_seen = time.time()

    def copy(self) -> "Node":
        return copy.deepcopy(self)


@dataclass
class GatewayInfo:
    """Summary of the gateway state."""
    is_connected: bool
    nodes_registered: int
    sensors_registered: int


# =============================================================================
# Message Log
# =============================================================================

class MessageLog:
    """Bounded, thread-safe log of messages seen by the gateway (newest last)."""

    def __init__(self, max_size: int = DEFAULT_MESSAGE_LOG_SIZE):
        self._messages: Deque[Message] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def add(self, message: Message):
        with self._lock:
            self._messages.append(message)

    def get_messages(self, limit: int = None) -> List[Message]:
        """Get logged messages, oldest first, optionally only the last `limit`."""
        with self._lock:
            messages = list(self._messages)
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def clear(self):
        with self._lock:
            self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class ApiConfig:
    """API server configuration."""
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class GatewayConfig:
    """Configuration for the gateway."""
    # Serial settings
    serial_port: str = ""
    baudrate: int = 115200
    serial_timeout: float = 1.0

    # Gateway behaviour
    auto_assign_id: bool = True
    store_messages: bool = True
    message_log_size: int = DEFAULT_MESSAGE_LOG_SIZE
    reboot_pacing_ms: int = MIN_REBOOT_PACING_MS

    # Settings storage
    storage_enabled: bool = True
    db_path: str = "gateway.db"

    # API settings
    api: ApiConfig = field(default_factory=ApiConfig)

    # Logging
    log_level: str = "INFO"
    log_file: str = "gateway.log"

    @classmethod
    def from_dict(cls, data: Dict) -> "GatewayConfig":
        """Build configuration from a parsed YAML mapping."""
        data = data or {}
        serial = data.get("serial", {})
        gateway = data.get("gateway", {})
        storage = data.get("storage", {})
        api_data = data.get("api", {})

        return cls(
            serial_port=serial.get("port", ""),
            baudrate=serial.get("baudrate", 115200),
            serial_timeout=serial.get("timeout", 1.0),
            auto_assign_id=gateway.get("auto_assign_id", True),
            store_messages=gateway.get("store_messages", True),
            message_log_size=gateway.get("message_log_size", DEFAULT_MESSAGE_LOG_SIZE),
            reboot_pacing_ms=gateway.get("reboot_pacing_ms", MIN_REBOOT_PACING_MS),
            storage_enabled=storage.get("enabled", True),
            db_path=storage.get("db_path", "gateway.db"),
            api=ApiConfig(
                enabled=api_data.get("enabled", False),
                host=api_data.get("host", "0.0.0.0"),
                port=api_data.get("port", 8080),
            ),
            log_level=data.get("logging", {}).get("level", "INFO"),
            log_file=data.get("logging", {}).get("file", "gateway.log"),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "GatewayConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data)

    def to_dict(self) -> Dict:
        """Convert config to dictionary."""
        return {
            "serial": {
                "port": self.serial_port,
                "baudrate": self.baudrate,
                "timeout": self.serial_timeout,
            },
            "gateway": {
                "auto_assign_id": self.auto_assign_id,
                "store_messages": self.store_messages,
                "message_log_size": self.message_log_size,
                "reboot_pacing_ms": self.reboot_pacing_ms,
            },
            "storage": {
                "enabled": self.storage_enabled,
                "db_path": self.db_path,
            },
            "api": {
                "enabled": self.api.enabled,
                "host": self.api.host,
                "port": self.api.port,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }


def setup_logging(config: GatewayConfig):
    """Configure logging."""
    level = getattr(logging, config.log_level.upper())

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.insert(0, logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
