#!/usr/bin/env python3
"""
Serial Transport for the MySensors Gateway

Line-oriented transport over a serial port (or any pyserial URL such as
socket://host:5003 for Ethernet gateways, loop:// for testing).

Received lines and connection loss are published on pypubsub topics, the
same way the Meshtastic interface publishes its packets:

    mysensors.receive          (line: str, transport: SerialTransport)
    mysensors.connection.lost  (transport: SerialTransport)

Listeners should compare `transport` against the transport they attached to.
"""

import logging
import threading
from typing import Optional

import serial
from pubsub import pub

from .errors import NotConnectedError


# =============================================================================
# Topics
# =============================================================================

TOPIC_RECEIVE = "mysensors.receive"
TOPIC_CONNECTION_LOST = "mysensors.connection.lost"


def _receive_args(line, transport):
    """Message data of TOPIC_RECEIVE."""


def _connection_lost_args(transport):
    """Message data of TOPIC_CONNECTION_LOST."""


_topic_mgr = pub.getDefaultTopicMgr()
_topic_mgr.getOrCreateTopic(TOPIC_RECEIVE, _receive_args)
_topic_mgr.getOrCreateTopic(TOPIC_CONNECTION_LOST, _connection_lost_args)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_BAUDRATE = 115200

# Seconds a read blocks before checking for shutdown
DEFAULT_READ_TIMEOUT = 1.0

# Longest line kept in the receive buffer before it is discarded
MAX_LINE_LENGTH = 1024

LINE_ENCODING = "utf-8"


# =============================================================================
# Serial Transport
# =============================================================================

class SerialTransport:
    """
    Reads newline-delimited lines from a serial port on a background thread.

    Usage:
        transport = SerialTransport("/dev/ttyUSB0")
        transport.open()
        gateway.connect(transport)
        ...
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = DEFAULT_READ_TIMEOUT,
        logger: logging.Logger = None,
    ):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.logger = logger or logging.getLogger("SerialTransport")

        self._serial: Optional[serial.SerialBase] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._write_lock = threading.Lock()
        self._connected = False

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def open(self) -> bool:
        """
        Open the port and start the reader thread.

        Returns:
            True if the port was opened.
        """
        if self._connected:
            return True

        try:
            self.logger.info(f"Opening {self.port} @ {self.baudrate} baud...")
            self._serial = serial.serial_for_url(
                self.port,
                baudrate=self.baudrate,
                timeout=self.timeout,
            )
        except (serial.SerialException, ValueError) as e:
            self.logger.error(f"Failed to open {self.port}: {e}")
            return False

        self._connected = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._read_loop,
            daemon=True,
            name="SerialTransport",
        )
        self._thread.start()
        self.logger.info(f"Serial port {self.port} opened")
        return True

    def close(self):
        """Stop the reader thread and close the port."""
        self._stop_event.set()
        self._connected = False

        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.timeout + 1)
        self._thread = None

        if self._serial:
            try:
                self._serial.close()
            except serial.SerialException as e:
                self.logger.warning(f"Error closing {self.port}: {e}")
            self._serial = None
            self.logger.info(f"Serial port {self.port} closed")

    def is_connected(self) -> bool:
        return self._connected and self._serial is not None and self._serial.is_open

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send(self, line: str):
        """
        Write one line to the port, blocking until it is accepted.

        Raises:
            NotConnectedError: If the port is closed or the write fails.
        """
        with self._write_lock:
            if not self.is_connected():
                raise NotConnectedError(f"Serial port {self.port} is not open")

            try:
                self._serial.write(line.encode(LINE_ENCODING))
                self._serial.flush()
            except serial.SerialException as e:
                self.logger.error(f"Write to {self.port} failed: {e}")
                self._connection_lost()
                raise NotConnectedError(f"Write to {self.port} failed") from e

    # -------------------------------------------------------------------------
    # Reader Thread
    # -------------------------------------------------------------------------

    def _read_loop(self):
        """Read bytes, split into lines and publish each line."""
        buffer = b""

        while not self._stop_event.is_set():
            try:
                chunk = self._serial.read(self._serial.in_waiting or 1)
            except (serial.SerialException, OSError, AttributeError) as e:
                if self._stop_event.is_set():
                    return
                self.logger.error(f"Read from {self.port} failed: {e}")
                self._connection_lost()
                return

            if not chunk:
                continue

            buffer += chunk
            while b"\n" in buffer:
                raw, buffer = buffer.split(b"\n", 1)
                line = raw.decode(LINE_ENCODING, errors="replace").rstrip("\r")
                if line:
                    self._publish_line(line)

            if len(buffer) > MAX_LINE_LENGTH:
                self.logger.warning(f"Discarding {len(buffer)} bytes without line end")
                buffer = b""

    def _publish_line(self, line: str):
        """Publish a received line to the gateway."""
        try:
            pub.sendMessage(TOPIC_RECEIVE, line=line, transport=self)
        except Exception as e:
            self.logger.error(f"Error processing line {line!r}: {e}")

    def _connection_lost(self):
        """Close the port and notify listeners."""
        if not self._connected:
            return

        self.logger.warning(f"Connection to {self.port} lost")
        self.close()
        pub.sendMessage(TOPIC_CONNECTION_LOST, transport=self)
