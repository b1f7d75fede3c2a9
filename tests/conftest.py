"""Shared fixtures for the gateway tests."""

import threading
import time

import pytest
from pubsub import pub

from mysensors_gateway.errors import NotConnectedError
from mysensors_gateway.events import EventType
from mysensors_gateway.gateway import Gateway
from mysensors_gateway.models import GatewayConfig
from mysensors_gateway.transport import TOPIC_CONNECTION_LOST, TOPIC_RECEIVE


# =============================================================================
# Fakes
# =============================================================================

class FakeTransport:
    """In-memory transport publishing on the same topics as SerialTransport."""

    def __init__(self, fail_after: int = None):
        self.sent = []
        self.sent_at = []
        self.connected = True
        self.fail_after = fail_after
        self._lock = threading.Lock()

    def is_connected(self) -> bool:
        return self.connected

    def send(self, line: str):
        with self._lock:
            if not self.connected:
                raise NotConnectedError("fake transport closed")
            if self.fail_after is not None and len(self.sent) >= self.fail_after:
                raise NotConnectedError("fake transport write failed")
            self.sent.append(line)
            self.sent_at.append(time.monotonic())

    def feed(self, line: str):
        """Deliver a line as if it was read from the port."""
        pub.sendMessage(TOPIC_RECEIVE, line=line, transport=self)

    def lose_connection(self):
        self.connected = False
        pub.sendMessage(TOPIC_CONNECTION_LOST, transport=self)


class EventRecorder:
    """Records every event emitted by a gateway, in order."""

    def __init__(self, events):
        self.records = []
        for event in EventType:
            events.subscribe(event, self._make_handler(event))

    def _make_handler(self, event):
        def handler(*args):
            self.records.append((event, args))
        return handler

    def types(self, ignore=(EventType.TX_RX_TRACE, EventType.GATEWAY_STATE)):
        return [event for event, _ in self.records if event not in ignore]

    def args_of(self, event):
        return [args for recorded, args in self.records if recorded == event]

    def clear(self):
        self.records.clear()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def config():
    return GatewayConfig(storage_enabled=False, log_file="")


@pytest.fixture
def gateway(config):
    gw = Gateway(config)
    yield gw
    gw.disconnect()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def connected_gateway(gateway, transport):
    gateway.connect(transport)
    return gateway


@pytest.fixture
def recorder(gateway):
    return EventRecorder(gateway.events)


@pytest.fixture
def make_transport():
    return FakeTransport
