"""
MySensors Gateway Module

Controller-side core for a MySensors serial gateway: decodes the gateway's
line protocol, keeps a registry of nodes and sensors in sync with what the
nodes report, answers their id/config/value requests and sends commands.

Architecture:
    Gateway (this module)
        │
        ├── USB/Serial (or socket://)
        ▼
    MySensors Serial Gateway
        │
        ├── Radio (nRF24 / RFM69 / RS485)
        ▼
    Nodes
        - Present themselves and their sensors (PRESENTATION)
        - Report values (SET) and ask for stored ones (REQUEST)
        - Ask for a node id, metric/imperial config, report battery (INTERNAL)

Wire Format:
    node-id;child-sensor-id;message-type;ack;sub-type;payload\\n

Usage:
    from mysensors_gateway import EventType, Gateway, GatewayConfig, SerialTransport

    config = GatewayConfig.from_yaml("config.yaml")
    gateway = Gateway(config)

    # Register handlers
    gateway.on(EventType.NEW_NODE, lambda node: print(f"New node {node.node_id}"))
    gateway.on(EventType.SENSOR_UPDATED, lambda sensor: print(sensor.data))

    transport = SerialTransport(config.serial_port)
    transport.open()
    gateway.connect(transport)

    for node in gateway.get_nodes():
        print(f"{node.node_id}: {node.name} bat={node.battery_level}%")
"""

from .errors import (
    DuplicateNodeError,
    GatewayError,
    NotConnectedError,
    SensorTypeOutOfRangeError,
)
from .events import EventBus, EventType
from .gateway import Gateway, RebootBroadcast
from .models import (
    BROADCAST_ID,
    NODE_SENSOR_ID,
    GatewayConfig,
    GatewayInfo,
    GatewayState,
    MessageLog,
    Node,
    Sensor,
    SensorData,
)
from .protocol import (
    Direction,
    InternalDataType,
    Message,
    MessageType,
    SensorDataType,
    SensorType,
    parse_message,
    serialize_message,
)
from .registry import NodeRegistry
from .remap import TransformResult, forward_transform, reverse_transform
from .storage import NodeStorage
from .transport import SerialTransport

__version__ = "0.1.0"
__all__ = [
    # Gateway
    "Gateway",
    "GatewayConfig",
    "GatewayInfo",
    "GatewayState",
    "RebootBroadcast",
    "EventBus",
    "EventType",
    "NodeRegistry",
    "MessageLog",
    # Entities
    "Node",
    "Sensor",
    "SensorData",
    "BROADCAST_ID",
    "NODE_SENSOR_ID",
    # Protocol
    "Message",
    "MessageType",
    "Direction",
    "SensorType",
    "SensorDataType",
    "InternalDataType",
    "parse_message",
    "serialize_message",
    # Transforms
    "TransformResult",
    "forward_transform",
    "reverse_transform",
    # Collaborators
    "SerialTransport",
    "NodeStorage",
    # Errors
    "GatewayError",
    "NotConnectedError",
    "SensorTypeOutOfRangeError",
    "DuplicateNodeError",
]
