#!/usr/bin/env python3
"""
Gateway Event Bus

Synchronous, in-process notifications with one handler list per event type.
Handlers run on the thread that emits the event, in registration order.

Event types and handler signatures:
    MESSAGE_RECEIVED        handler(message: Message)
    MESSAGE_SENT            handler(message: Message)
    NEW_NODE                handler(node: Node)
    NODE_UPDATED            handler(node: Node)
    NODE_LAST_SEEN_UPDATED  handler(node: Node)
    NODE_BATTERY_UPDATED    handler(node: Node)
    NEW_SENSOR              handler(sensor: Sensor)
    SENSOR_UPDATED          handler(sensor: Sensor)
    NODES_CLEARED           handler()
    CONNECTED               handler()
    DISCONNECTED            handler()
    TX_RX_TRACE             handler(text: str)
    GATEWAY_STATE           handler(text: str)

Node and Sensor arguments are snapshot copies; changing them has no effect
on the registry.
"""

import logging
from enum import Enum
from typing import Callable, Dict, List

from .models import MAX_EVENT_HANDLERS


class EventType(Enum):
    """Gateway event channels."""
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_SENT = "message_sent"
    NEW_NODE = "new_node"
    NODE_UPDATED = "node_updated"
    NODE_LAST_SEEN_UPDATED = "node_last_seen_updated"
    NODE_BATTERY_UPDATED = "node_battery_updated"
    NEW_SENSOR = "new_sensor"
    SENSOR_UPDATED = "sensor_updated"
    NODES_CLEARED = "nodes_cleared"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TX_RX_TRACE = "tx_rx_trace"
    GATEWAY_STATE = "gateway_state"


class EventBus:
    """Observer registry with one handler list per EventType."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger("EventBus")
        self._handlers: Dict[EventType, List[Callable]] = {
            event: [] for event in EventType
        }

    def subscribe(self, event: EventType, handler: Callable) -> bool:
        """
        Register a handler for an event type.

        Returns:
            True if registered, False if the handler limit was reached.
        """
        handlers = self._handlers[event]
        if len(handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning(f"Max {event.value} handlers reached ({MAX_EVENT_HANDLERS})")
            return False
        handlers.append(handler)
        return True

    def unsubscribe(self, event: EventType, handler: Callable) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            return False
        return True

    def handler_count(self, event: EventType) -> int:
        return len(self._handlers[event])

    def emit(self, event: EventType, *args):
        """Call every handler of an event type, in registration order."""
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception as e:
                self.logger.error(f"{event.value} handler error: {e}")
