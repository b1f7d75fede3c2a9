#!/usr/bin/env python3
"""
MySensors Serial Protocol

This module defines the text protocol spoken between the gateway and the
MySensors serial bus, and the codec that converts between wire lines and
Message objects.

Line Format:
    node-id;child-sensor-id;message-type;ack;sub-type;payload\\n

Fields:
    node-id:          0-255, 255 = broadcast / node without an assigned id
    child-sensor-id:  0-255, 255 = the node itself (no sensor)
    message-type:     integer value of MessageType
    ack:              "1" or "0"
    sub-type:         integer, meaning depends on message-type:
                          PRESENTATION -> SensorType
                          SET, REQUEST -> SensorDataType
                          INTERNAL     -> InternalDataType
    payload:          remainder of the line, may itself contain ";"

Message Types:
    0: PRESENTATION - A node presents itself or one of its sensors
    1: SET          - A value pushed to or from a sensor
    2: REQUEST      - A node asks for the last known value of a sensor
    3: INTERNAL     - Protocol control traffic (ids, battery, config, reboot)
    4: STREAM       - Firmware streaming (not handled by the gateway)
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum


# =============================================================================
# Constants
# =============================================================================

# Field separator on the wire
FIELD_SEPARATOR = ";"

# Number of fields in a line (payload is the last one)
FIELD_COUNT = 6

# Line terminator appended on serialize
LINE_TERMINATOR = "\n"

# Largest node or sensor id (one byte)
MAX_ID = 255


# =============================================================================
# Enums
# =============================================================================

class MessageType(IntEnum):
    """Protocol message types."""
    PRESENTATION = 0
    SET = 1
    REQUEST = 2
    INTERNAL = 3
    STREAM = 4


class Direction(Enum):
    """Which way a message travelled through the gateway."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class SensorType(IntEnum):
    """Sensor types sent as sub-type of PRESENTATION messages."""
    S_DOOR = 0
    S_MOTION = 1
    S_SMOKE = 2
    S_LIGHT = 3
    S_DIMMER = 4
    S_COVER = 5
    S_TEMP = 6
    S_HUM = 7
    S_BARO = 8
    S_WIND = 9
    S_RAIN = 10
    S_UV = 11
    S_WEIGHT = 12
    S_POWER = 13
    S_HEATER = 14
    S_DISTANCE = 15
    S_LIGHT_LEVEL = 16
    S_ARDUINO_NODE = 17
    S_ARDUINO_REPEATER_NODE = 18
    S_LOCK = 19
    S_IR = 20
    S_WATER = 21
    S_AIR_QUALITY = 22
    S_CUSTOM = 23
    S_DUST = 24
    S_SCENE_CONTROLLER = 25
    S_RGB_LIGHT = 26
    S_RGBW_LIGHT = 27
    S_COLOR_SENSOR = 28
    S_HVAC = 29
    S_MULTIMETER = 30
    S_SPRINKLER = 31
    S_WATER_LEAK = 32
    S_SOUND = 33
    S_VIBRATION = 34
    S_MOISTURE = 35


class SensorDataType(IntEnum):
    """Value types sent as sub-type of SET and REQUEST messages."""
    V_TEMP = 0
    V_HUM = 1
    V_STATUS = 2
    V_PERCENTAGE = 3
    V_PRESSURE = 4
    V_FORECAST = 5
    V_RAIN = 6
    V_RAINRATE = 7
    V_WIND = 8
    V_GUST = 9
    V_DIRECTION = 10
    V_UV = 11
    V_WEIGHT = 12
    V_DISTANCE = 13
    V_IMPEDANCE = 14
    V_ARMED = 15
    V_TRIPPED = 16
    V_WATT = 17
    V_KWH = 18
    V_SCENE_ON = 19
    V_SCENE_OFF = 20
    V_HVAC_FLOW_STATE = 21
    V_HVAC_SPEED = 22
    V_LIGHT_LEVEL = 23
    V_VAR1 = 24
    V_VAR2 = 25
    V_VAR3 = 26
    V_VAR4 = 27
    V_VAR5 = 28
    V_UP = 29
    V_DOWN = 30
    V_STOP = 31
    V_IR_SEND = 32
    V_IR_RECEIVE = 33
    V_FLOW = 34
    V_VOLUME = 35
    V_LOCK_STATUS = 36
    V_LEVEL = 37
    V_VOLTAGE = 38
    V_CURRENT = 39
    V_RGB = 40
    V_RGBW = 41
    V_ID = 42
    V_UNIT_PREFIX = 43
    V_HVAC_SETPOINT_COOL = 44
    V_HVAC_SETPOINT_HEAT = 45
    V_HVAC_FLOW_MODE = 46


class InternalDataType(IntEnum):
    """Sub-types of INTERNAL messages."""
    I_BATTERY_LEVEL = 0
    I_TIME = 1
    I_VERSION = 2
    I_ID_REQUEST = 3
    I_ID_RESPONSE = 4
    I_INCLUSION_MODE = 5
    I_CONFIG = 6
    I_FIND_PARENT = 7
    I_FIND_PARENT_RESPONSE = 8
    I_LOG_MESSAGE = 9
    I_CHILDREN = 10
    I_SKETCH_NAME = 11
    I_SKETCH_VERSION = 12
    I_REBOOT = 13
    I_GATEWAY_READY = 14
    I_REQUEST_SIGNING = 15
    I_GET_NONCE = 16
    I_GET_NONCE_RESPONSE = 17


# Sub-type enum used for each message type (for display only)
_SUB_TYPE_ENUMS = {
    MessageType.PRESENTATION: SensorType,
    MessageType.SET: SensorDataType,
    MessageType.REQUEST: SensorDataType,
    MessageType.INTERNAL: InternalDataType,
}


def sub_type_name(message_type: MessageType, sub_type: int) -> str:
    """Get a readable name for a sub-type, falling back to the number."""
    enum_cls = _SUB_TYPE_ENUMS.get(message_type)
    if enum_cls is None:
        return str(sub_type)
    try:
        return enum_cls(sub_type).name
    except ValueError:
        return str(sub_type)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class Message:
    """
    A single protocol message.

    Messages are immutable. Tagging the direction or remapping the payload
    produces a new copy (see with_direction() and with_payload()), so the
    original stays available for logging.
    """
    node_id: int = 0
    sensor_id: int = 0
    message_type: MessageType = MessageType.PRESENTATION
    ack: bool = False
    sub_type: int = 0
    payload: str = ""
    direction: Direction = Direction.OUTGOING
    is_valid: bool = True
    timestamp: float = field(default_factory=time.time, compare=False)

    @property
    def incoming(self) -> bool:
        return self.direction == Direction.INCOMING

    def with_direction(self, direction: Direction) -> "Message":
        """Return a copy tagged with the given direction."""
        return replace(self, direction=direction)

    def with_payload(self, payload: str) -> "Message":
        """Return a copy carrying a different payload."""
        return replace(self, payload=payload)

    def to_line(self) -> str:
        """Serialize to a wire line."""
        return serialize_message(self)

    def __str__(self) -> str:
        if not self.is_valid:
            return f"[invalid] {self.payload!r}"
        return (
            f"{self.node_id};{self.sensor_id};{self.message_type.name};"
            f"{1 if self.ack else 0};"
            f"{sub_type_name(self.message_type, self.sub_type)};{self.payload}"
        )


# =============================================================================
# Codec
# =============================================================================

def _parse_field(text: str, maximum: int = None) -> int:
    """Parse an unsigned decimal field; signs, spaces and underscores are rejected."""
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"not a decimal field: {text!r}")
    value = int(text)
    if maximum is not None and value > maximum:
        raise ValueError(f"field out of range: {value}")
    return value


def parse_message(line: str) -> Message:
    """
    Parse a wire line into a Message.

    Never raises. A line with fewer than six fields, a numeric field that is
    not plain decimal digits, an id above 255 or an unknown message type
    yields a Message with is_valid=False whose payload is the raw line.

    Args:
        line: One line received from the bus, with or without terminator.

    Returns:
        The decoded Message.
    """
    text = line.rstrip("\r\n")
    fields = text.split(FIELD_SEPARATOR, FIELD_COUNT - 1)

    if len(fields) < FIELD_COUNT:
        return Message(is_valid=False, payload=line)

    try:
        return Message(
            node_id=_parse_field(fields[0], MAX_ID),
            sensor_id=_parse_field(fields[1], MAX_ID),
            message_type=MessageType(_parse_field(fields[2])),
            ack=fields[3] == "1",
            sub_type=_parse_field(fields[4]),
            payload=fields[5],
        )
    except ValueError:
        return Message(is_valid=False, payload=line)


def serialize_message(message: Message) -> str:
    """Serialize a Message to a wire line (terminator included)."""
    return (
        f"{message.node_id}{FIELD_SEPARATOR}"
        f"{message.sensor_id}{FIELD_SEPARATOR}"
        f"{int(message.message_type)}{FIELD_SEPARATOR}"
        f"{'1' if message.ack else '0'}{FIELD_SEPARATOR}"
        f"{message.sub_type}{FIELD_SEPARATOR}"
        f"{message.payload}{LINE_TERMINATOR}"
    )
