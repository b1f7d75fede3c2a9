#!/usr/bin/env python3
"""
MySensors Gateway

This module processes the traffic of a MySensors serial gateway and keeps the
node registry in sync with what the nodes report.

Architecture:
    Consumers (API, storage, UI)
        ▲
        ├── EventBus (synchronous notifications)
        │
    Gateway (this module)
        │   - decodes lines, reconciles nodes/sensors
        │   - answers id, config and value requests
        │   - remaps SET values between sensor and consumer units
        │
        ├── Transport (pypubsub topics: mysensors.receive / connection.lost)
        ▼
    MySensors serial gateway
        │
        ├── Radio / RS485
        ▼
    Nodes and their sensors

Every incoming message is handled to completion under the registry lock, so
event handlers and other readers never observe a half-applied update.
"""

import logging
import threading
from typing import Callable, List, Optional

from pubsub import pub

from .errors import NotConnectedError, SensorTypeOutOfRangeError
from .events import EventBus, EventType
from .models import (
    BROADCAST_ID,
    MAX_NODE_ID,
    METRIC_SYSTEM_PAYLOAD,
    MIN_NODE_ID,
    MIN_REBOOT_PACING_MS,
    NODE_SENSOR_ID,
    GatewayConfig,
    GatewayInfo,
    GatewayState,
    MessageLog,
    Node,
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
from .remap import remap_message, unremap_message
from .transport import TOPIC_CONNECTION_LOST, TOPIC_RECEIVE


# =============================================================================
# Reboot Broadcast
# =============================================================================

class RebootBroadcast:
    """
    Background task sending a reboot message to every node id (1-254).

    Sends are paced by waiting on a stop event, so the broadcast can be
    cancelled at any time and never blocks incoming traffic for longer than
    a single send.
    """

    def __init__(self, gateway: "Gateway", pacing_ms: int, logger: logging.Logger = None):
        self.gateway = gateway
        self.pacing_ms = max(pacing_ms, MIN_REBOOT_PACING_MS)
        self.logger = logger or logging.getLogger("RebootBroadcast")
        self.sent_count = 0
        self.error: Optional[Exception] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="RebootBroadcast",
        )
        self._thread.start()

    def cancel(self):
        """Stop sending after the current message."""
        self._stop_event.set()

    def join(self, timeout: float = None) -> bool:
        """Wait for the broadcast to finish. Returns True if it has."""
        if self._thread:
            self._thread.join(timeout)
        return not self.is_running()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def _run(self):
        self.logger.info(f"Sending reboot to all nodes ({self.pacing_ms} ms pacing)")
        delay = self.pacing_ms / 1000.0

        for node_id in range(MIN_NODE_ID, MAX_NODE_ID + 1):
            if self._stop_event.is_set():
                break

            try:
                self.gateway.send_reboot(node_id)
            except NotConnectedError as e:
                self.logger.error(f"Reboot broadcast stopped at node {node_id}: {e}")
                self.error = e
                break

            self.sent_count += 1

            if node_id < MAX_NODE_ID and self._stop_event.wait(delay):
                break

        if self._stop_event.is_set():
            self.logger.info(f"Reboot broadcast cancelled after {self.sent_count} nodes")
        else:
            self.logger.info(f"Reboot broadcast finished ({self.sent_count} nodes)")


# =============================================================================
# Gateway
# =============================================================================

class Gateway:
    """
    MySensors gateway.

    Owns the node registry and event bus, reconciles incoming messages,
    applies sensor remapping and sends messages through the attached
    transport.
    """

    def __init__(self, config: GatewayConfig = None):
        """
        Initialize the gateway.

        Args:
            config: Gateway configuration (defaults if None).
        """
        self.config = config or GatewayConfig()
        self.logger = logging.getLogger("Gateway")

        self.events = EventBus()
        self.registry = NodeRegistry(self.events)
        self.messages_log = MessageLog(self.config.message_log_size)

        self.auto_assign_id = self.config.auto_assign_id
        self.store_messages = self.config.store_messages

        self.state = GatewayState.DISCONNECTED
        self._transport = None
        self._reboot_broadcast: Optional[RebootBroadcast] = None

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: EventType, handler: Callable) -> bool:
        """Register an event handler (see events.EventType for signatures)."""
        return self.events.subscribe(event, handler)

    def _trace(self, text: str):
        self.logger.debug(text)
        self.events.emit(EventType.TX_RX_TRACE, text)

    def _gateway_state(self, text: str):
        self.logger.info(text)
        self.events.emit(EventType.GATEWAY_STATE, text)

    def _node_updated(self, node: Node):
        self.events.emit(EventType.NODE_UPDATED, node.copy())
        self._gateway_state(f"Node {node.node_id} updated")

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def connect(self, transport):
        """
        Attach a transport and start processing its lines.

        An already attached transport is detached first.

        Args:
            transport: Object with send(line) and is_connected() that
                publishes on the mysensors.receive / connection.lost topics.
        """
        with self.registry.lock:
            if self._transport is not None or self.state == GatewayState.CONNECTED:
                self.disconnect()

            self._transport = transport
            pub.subscribe(self._on_transport_line, TOPIC_RECEIVE)
            pub.subscribe(self._on_transport_lost, TOPIC_CONNECTION_LOST)
            self.state = GatewayState.CONNECTED

            self._gateway_state("Gateway connected.")
            self.events.emit(EventType.CONNECTED)

    def disconnect(self):
        """Detach the transport. Safe to call when already disconnected."""
        with self.registry.lock:
            self.state = GatewayState.DISCONNECTED

            if self._transport is not None:
                pub.unsubscribe(self._on_transport_line, TOPIC_RECEIVE)
                pub.unsubscribe(self._on_transport_lost, TOPIC_CONNECTION_LOST)
                self._transport = None

            self._gateway_state("Gateway disconnected.")
            self.events.emit(EventType.DISCONNECTED)

    def is_connected(self) -> bool:
        """True if attached and the transport reports it is connected."""
        return (
            self.state == GatewayState.CONNECTED
            and self._transport is not None
            and self._transport.is_connected()
        )

    def _on_transport_line(self, line, transport):
        """Handle a line published by a transport."""
        if transport is not self._transport:
            return
        self.receive_line(line)

    def _on_transport_lost(self, transport):
        """Handle connection loss published by a transport."""
        if transport is not self._transport:
            return
        self.logger.warning("Transport connection lost")
        self.disconnect()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send_message(self, message: Message):
        """
        Send a message to the bus.

        SET messages update the stored sensor value (in consumer units) and
        are converted back to sensor units before they are written.

        Raises:
            NotConnectedError: If no connected transport is attached.
        """
        with self.registry.lock:
            transport = self._transport
            if not self.is_connected():
                raise NotConnectedError("Failed to send message. Gateway is not connected.")

            message = message.with_direction(Direction.OUTGOING)

            wire_message = message
            if message.message_type == MessageType.SET:
                wire_message = unremap_message(self.registry, message)

            self._trace(f"TX: {wire_message}")
            transport.send(serialize_message(wire_message))

            # Only values that reached the transport are published
            self.events.emit(EventType.MESSAGE_SENT, message)
            if message.message_type == MessageType.SET:
                self._store_sent_value(message)

            if self.store_messages:
                self.messages_log.add(message)

    def _store_sent_value(self, message: Message):
        """Record an outgoing SET value on the target sensor."""
        sensor = self.registry.live_sensor(message.node_id, message.sensor_id)
        if sensor is None:
            return

        try:
            data_type = SensorDataType(message.sub_type)
        except ValueError:
            return

        sensor.set_data(data_type, message.payload)
        self.events.emit(EventType.SENSOR_UPDATED, sensor.copy())

    def send_sensor_state(self, node_id: int, sensor_id: int, data: SensorData):
        """Send a value to a sensor as a SET message."""
        self.send_message(Message(
            node_id=node_id,
            sensor_id=sensor_id,
            message_type=MessageType.SET,
            ack=False,
            sub_type=int(data.data_type),
            payload=data.state,
        ))

    def send_new_id_response(self) -> int:
        """
        Offer the lowest free node id to a node asking for one.

        Returns:
            The id sent (255 if none is free).
        """
        free_id = self.registry.get_free_node_id()
        self.send_message(Message(
            node_id=BROADCAST_ID,
            sensor_id=NODE_SENSOR_ID,
            message_type=MessageType.INTERNAL,
            ack=False,
            sub_type=InternalDataType.I_ID_RESPONSE,
            payload=str(free_id),
        ))
        self.logger.info(f"Assigned node id {free_id}")
        return free_id

    def send_metric_response(self, node_id: int):
        """Tell a node to use metric units."""
        self.send_message(Message(
            node_id=node_id,
            sensor_id=NODE_SENSOR_ID,
            message_type=MessageType.INTERNAL,
            ack=False,
            sub_type=InternalDataType.I_CONFIG,
            payload=METRIC_SYSTEM_PAYLOAD,
        ))

    def send_reboot(self, node_id: int):
        """Ask a node to reboot."""
        self.send_message(Message(
            node_id=node_id,
            sensor_id=0,
            message_type=MessageType.INTERNAL,
            ack=False,
            sub_type=InternalDataType.I_REBOOT,
            payload="0",
        ))

    def send_reboot_to_all_nodes(self, pacing_ms: int = None) -> RebootBroadcast:
        """
        Start sending a reboot message to every node id in the background.

        A broadcast already in progress is cancelled first.

        Args:
            pacing_ms: Delay between messages (config value if None, at
                least 10 ms).

        Returns:
            The running RebootBroadcast (cancel() / join() / sent_count).
        """
        if self._reboot_broadcast and self._reboot_broadcast.is_running():
            self._reboot_broadcast.cancel()
            self._reboot_broadcast.join()

        if pacing_ms is None:
            pacing_ms = self.config.reboot_pacing_ms

        self._reboot_broadcast = RebootBroadcast(self, pacing_ms)
        self._reboot_broadcast.start()
        return self._reboot_broadcast

    def _reply(self, send: Callable, *args):
        """Send a protocol reply; a lost connection must not abort processing."""
        try:
            send(*args)
        except NotConnectedError as e:
            self.logger.warning(f"Reply not sent: {e}")

    # -------------------------------------------------------------------------
    # Receiving
    # -------------------------------------------------------------------------

    def receive_line(self, line: str):
        """Decode and process one line from the bus."""
        self.receive_message(parse_message(line))

    def receive_message(self, message: Message):
        """
        Process one incoming message.

        Raises:
            SensorTypeOutOfRangeError: If a sensor presentation names an
                unknown sensor type. The registry is left unchanged for
                that sensor.
        """
        with self.registry.lock:
            self._process_message(message)

    def _process_message(self, message: Message):
        message = message.with_direction(Direction.INCOMING)

        if self.store_messages:
            self.messages_log.add(message)

        self._trace(f"RX: {message}")

        if message.message_type == MessageType.SET:
            message = remap_message(self.registry, message)

        self.events.emit(EventType.MESSAGE_RECEIVED, message)

        if not message.is_valid:
            self.logger.warning(f"Invalid message: {message.payload!r}")
            return

        if message.message_type == MessageType.INTERNAL:
            if message.sub_type == InternalDataType.I_GATEWAY_READY:
                self.logger.debug(f"Gateway ready: {message.payload}")
                return
            if message.sub_type == InternalDataType.I_LOG_MESSAGE:
                self.logger.debug(f"Gateway log: {message.payload}")
                return

        # Nodes without an id
        if message.node_id == BROADCAST_ID:
            if (message.message_type == MessageType.INTERNAL
                    and message.sub_type == InternalDataType.I_ID_REQUEST
                    and self.auto_assign_id):
                self._reply(self.send_new_id_response)
            return

        if (message.message_type == MessageType.INTERNAL
                and message.sub_type == InternalDataType.I_CONFIG):
            self._reply(self.send_metric_response, message.node_id)

        if message.message_type == MessageType.REQUEST:
            self._handle_request(message)

        self._update_node(message)
        self._update_sensor(message)

    def _handle_request(self, message: Message):
        """Answer a REQUEST with the last stored value, if there is one."""
        sensor = self.registry.live_sensor(message.node_id, message.sensor_id)
        if sensor is None:
            return

        try:
            data_type = SensorDataType(message.sub_type)
        except ValueError:
            return

        data = sensor.get_data(data_type)
        if data is None:
            return

        self._reply(self.send_sensor_state, message.node_id, message.sensor_id, data)

    def _update_node(self, message: Message):
        """Create/refresh the node and apply node-level messages."""
        node = self.registry.live_node(message.node_id)

        if node is None:
            node = self.registry.create_node(message.node_id)
            self.events.emit(EventType.NEW_NODE, node.copy())
            self._gateway_state(f"New node (id: {node.node_id}) registered")

        node.update_last_seen()
        self.events.emit(EventType.NODE_LAST_SEEN_UPDATED, node.copy())

        if message.sensor_id != NODE_SENSOR_ID:
            return

        if message.message_type == MessageType.PRESENTATION:
            if message.sub_type == SensorType.S_ARDUINO_NODE:
                node.is_repeating_node = False
            elif message.sub_type == SensorType.S_ARDUINO_REPEATER_NODE:
                node.is_repeating_node = True
            self._node_updated(node)

        elif message.message_type == MessageType.INTERNAL:
            if message.sub_type == InternalDataType.I_SKETCH_NAME:
                node.name = message.payload
                self._node_updated(node)

            elif message.sub_type == InternalDataType.I_SKETCH_VERSION:
                node.firmware_version = message.payload
                self._node_updated(node)

            elif message.sub_type == InternalDataType.I_BATTERY_LEVEL:
                try:
                    node.battery_level = int(message.payload)
                except ValueError:
                    self.logger.warning(
                        f"Invalid battery level from node {node.node_id}: {message.payload!r}"
                    )
                    return
                self.events.emit(EventType.NODE_BATTERY_UPDATED, node.copy())

    def _update_sensor(self, message: Message):
        """Create/refresh a sensor from a PRESENTATION or SET message."""
        if message.sensor_id == NODE_SENSOR_ID:
            return

        if message.message_type not in (MessageType.PRESENTATION, MessageType.SET):
            return

        # Validate before touching the registry
        sensor_type = None
        data_type = None
        if message.message_type == MessageType.PRESENTATION:
            try:
                sensor_type = SensorType(message.sub_type)
            except ValueError:
                raise SensorTypeOutOfRangeError(
                    message.node_id, message.sensor_id, message.sub_type
                ) from None
        else:
            try:
                data_type = SensorDataType(message.sub_type)
            except ValueError:
                self.logger.warning(
                    f"Unknown value type {message.sub_type} from "
                    f"node {message.node_id}, sensor {message.sensor_id}"
                )

        node = self.registry.live_node(message.node_id)
        sensor = node.get_sensor(message.sensor_id)
        is_new_sensor = False

        if sensor is None:
            sensor = node.add_sensor(message.sensor_id)
            is_new_sensor = True

        if message.message_type == MessageType.SET:
            if data_type is not None:
                sensor.set_data(data_type, message.payload)
        else:
            sensor.sensor_type = sensor_type
            if message.payload:
                sensor.description = message.payload

        if is_new_sensor:
            self.events.emit(EventType.NEW_SENSOR, sensor.copy())
            self._gateway_state(
                f"New sensor (node id {sensor.node_id}, sensor id: {sensor.sensor_id}) registered"
            )
        else:
            self.events.emit(EventType.SENSOR_UPDATED, sensor.copy())

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def get_nodes(self) -> List[Node]:
        """Get snapshots of all nodes."""
        return self.registry.get_nodes()

    def get_node(self, node_id: int) -> Optional[Node]:
        """Get a snapshot of one node, or None."""
        return self.registry.get_node(node_id)

    def add_node(self, node: Node):
        """Register a node (e.g. loaded from storage)."""
        self.registry.add_node(node)

    def delete_node(self, node_id: int) -> bool:
        return self.registry.delete_node(node_id)

    def clear_nodes(self):
        """Forget every node."""
        self.registry.clear()

    def update_node_settings(self, node: Node) -> bool:
        """Apply user settings (name, descriptions, remap, ...) to a node."""
        return self.registry.update_node_settings(node)

    def get_messages(self, limit: int = None) -> List[Message]:
        """Get logged messages, oldest first."""
        return self.messages_log.get_messages(limit)

    def get_gateway_info(self) -> GatewayInfo:
        with self.registry.lock:
            return GatewayInfo(
                is_connected=self.is_connected(),
                nodes_registered=self.registry.node_count(),
                sensors_registered=self.registry.sensor_count(),
            )
