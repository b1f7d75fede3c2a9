#!/usr/bin/env python3
"""
Gateway Reconciliation Tests

Incoming message handling, protocol replies and the send path.
"""

import pytest

from mysensors_gateway.errors import NotConnectedError, SensorTypeOutOfRangeError
from mysensors_gateway.events import EventType
from mysensors_gateway.gateway import Gateway
from mysensors_gateway.models import GatewayConfig, Node, SensorData
from mysensors_gateway.protocol import (
    Direction,
    Message,
    MessageType,
    SensorDataType,
    SensorType,
)


def remap_sensor(gateway, node_id, sensor_id, from_max, to_max, invert=False):
    """Enable remapping [0, from_max] -> [0, to_max] on a known sensor."""
    node = gateway.get_node(node_id)
    sensor = node.sensors[sensor_id]
    sensor.remap_enabled = True
    sensor.remap_from_max = from_max
    sensor.remap_to_max = to_max
    sensor.invert_data = invert
    gateway.update_node_settings(node)


# =============================================================================
# Node and Sensor Discovery
# =============================================================================

def test_presentation_creates_node_then_sensor(connected_gateway, recorder):
    connected_gateway.receive_line("12;6;0;0;6;Temp sensor")

    assert recorder.types() == [
        EventType.MESSAGE_RECEIVED,
        EventType.NEW_NODE,
        EventType.NODE_LAST_SEEN_UPDATED,
        EventType.NEW_SENSOR,
    ]

    sensor = connected_gateway.registry.get_sensor(12, 6)
    assert sensor.sensor_type == SensorType.S_TEMP
    assert sensor.description == "Temp sensor"
    assert connected_gateway.get_node(12).last_seen is not None


def test_second_presentation_updates_sensor(connected_gateway, recorder):
    connected_gateway.receive_line("12;6;0;0;6;Temp sensor")
    recorder.clear()

    connected_gateway.receive_line("12;6;0;0;7;")

    assert recorder.types() == [
        EventType.MESSAGE_RECEIVED,
        EventType.NODE_LAST_SEEN_UPDATED,
        EventType.SENSOR_UPDATED,
    ]
    sensor = connected_gateway.registry.get_sensor(12, 6)
    assert sensor.sensor_type == SensorType.S_HUM
    assert sensor.description == "Temp sensor"


def test_gateway_state_traces(connected_gateway, recorder):
    connected_gateway.receive_line("12;6;0;0;6;")

    texts = [args[0] for args in recorder.args_of(EventType.GATEWAY_STATE)]
    assert "New node (id: 12) registered" in texts
    assert "New sensor (node id 12, sensor id: 6) registered" in texts


def test_set_stores_value(connected_gateway, recorder):
    connected_gateway.receive_line("12;6;1;0;0;21.5")

    data = connected_gateway.registry.get_sensor(12, 6).get_data(SensorDataType.V_TEMP)
    assert data.state == "21.5"
    assert EventType.NEW_SENSOR in recorder.types()


def test_set_unknown_value_type_stores_nothing(connected_gateway):
    connected_gateway.receive_line("12;6;1;0;99;x")

    sensor = connected_gateway.registry.get_sensor(12, 6)
    assert sensor is not None
    assert sensor.data == {}


def test_presentation_out_of_range_raises(connected_gateway):
    with pytest.raises(SensorTypeOutOfRangeError) as excinfo:
        connected_gateway.receive_line("12;7;0;0;99;bogus")

    assert excinfo.value.sub_type == 99
    assert connected_gateway.get_node(12) is not None
    assert connected_gateway.registry.get_sensor(12, 7) is None


def test_event_payloads_are_snapshots(connected_gateway):
    def vandal(node):
        node.battery_level = 1

    def vandal_sensor(sensor):
        sensor.data.clear()

    connected_gateway.on(EventType.NEW_NODE, vandal)
    connected_gateway.on(EventType.NEW_SENSOR, vandal_sensor)
    connected_gateway.receive_line("3;1;1;0;0;20")

    node = connected_gateway.get_node(3)
    assert node.battery_level is None
    assert node.sensors[1].get_data(SensorDataType.V_TEMP).state == "20"


# =============================================================================
# Node-Level Messages
# =============================================================================

def test_sketch_name_and_version(connected_gateway, recorder):
    connected_gateway.receive_line("12;255;3;0;11;Weather Station")
    connected_gateway.receive_line("12;255;3;0;12;2.1")

    node = connected_gateway.get_node(12)
    assert node.name == "Weather Station"
    assert node.firmware_version == "2.1"
    assert recorder.types().count(EventType.NODE_UPDATED) == 2
    assert node.sensors == {}


def test_node_presentation_sets_repeater_flag(connected_gateway):
    connected_gateway.receive_line("4;255;0;0;18;1.5")
    assert connected_gateway.get_node(4).is_repeating_node is True

    connected_gateway.receive_line("4;255;0;0;17;1.5")
    assert connected_gateway.get_node(4).is_repeating_node is False


def test_battery_level(connected_gateway, recorder):
    connected_gateway.receive_line("12;255;3;0;0;87")

    assert connected_gateway.get_node(12).battery_level == 87
    types = recorder.types()
    assert EventType.NODE_BATTERY_UPDATED in types
    assert EventType.NODE_UPDATED not in types


def test_invalid_battery_level_is_ignored(connected_gateway, recorder):
    connected_gateway.receive_line("12;255;3;0;0;full")

    assert connected_gateway.get_node(12).battery_level is None
    assert EventType.NODE_BATTERY_UPDATED not in recorder.types()


# =============================================================================
# Protocol Replies
# =============================================================================

def test_id_request_gets_lowest_free_id(connected_gateway, transport):
    for node_id in (1, 2, 3, 5):
        connected_gateway.add_node(Node(node_id=node_id))

    connected_gateway.receive_line("255;255;3;0;3;")

    assert transport.sent == ["255;255;3;0;4;4\n"]
    assert connected_gateway.get_node(255) is None


def test_id_request_ignored_without_auto_assign(transport):
    gateway = Gateway(GatewayConfig(auto_assign_id=False))
    gateway.connect(transport)

    gateway.receive_line("255;255;3;0;3;")

    assert transport.sent == []
    assert gateway.get_nodes() == []
    gateway.disconnect()


def test_broadcast_messages_do_not_create_nodes(connected_gateway):
    connected_gateway.receive_line("255;1;1;0;0;20")

    assert connected_gateway.get_nodes() == []


def test_config_request_gets_metric(connected_gateway, transport):
    connected_gateway.receive_line("12;255;3;0;6;0")

    assert transport.sent == ["12;255;3;0;6;M\n"]
    assert connected_gateway.get_node(12) is not None


def test_request_answered_with_stored_value(connected_gateway, transport):
    connected_gateway.receive_line("12;6;1;0;2;1")
    connected_gateway.receive_line("12;6;2;0;2;")

    assert transport.sent == ["12;6;1;0;2;1\n"]


def test_request_without_value_sends_nothing(connected_gateway, transport):
    connected_gateway.receive_line("12;6;0;0;3;")
    connected_gateway.receive_line("12;6;2;0;2;")
    connected_gateway.receive_line("13;1;2;0;2;")

    assert transport.sent == []


def test_reply_while_disconnected_does_not_abort(gateway):
    gateway.receive_line("12;255;3;0;6;0")

    assert gateway.get_node(12) is not None


# =============================================================================
# Gateway Traffic
# =============================================================================

def test_gateway_ready_and_log_messages_ignored(connected_gateway, recorder):
    connected_gateway.receive_line("0;255;3;0;14;Gateway startup complete.")
    connected_gateway.receive_line("0;255;3;0;9;read: 1-1-0 s=255")

    assert connected_gateway.get_nodes() == []
    assert recorder.types() == [EventType.MESSAGE_RECEIVED, EventType.MESSAGE_RECEIVED]


def test_invalid_line_is_reported_but_ignored(connected_gateway, recorder):
    connected_gateway.receive_line("this is not a message")

    received = recorder.args_of(EventType.MESSAGE_RECEIVED)
    assert len(received) == 1
    assert received[0][0].is_valid is False
    assert connected_gateway.get_nodes() == []


def test_rx_trace(connected_gateway, recorder):
    connected_gateway.receive_line("12;6;1;0;0;21.5")

    traces = [args[0] for args in recorder.args_of(EventType.TX_RX_TRACE)]
    assert traces == ["RX: 12;6;SET;0;V_TEMP;21.5"]


# =============================================================================
# Remapping
# =============================================================================

def test_incoming_set_is_remapped(connected_gateway, recorder):
    connected_gateway.receive_line("12;6;0;0;16;Light")
    remap_sensor(connected_gateway, 12, 6, from_max=1023, to_max=100)
    recorder.clear()

    connected_gateway.receive_line("12;6;1;0;23;1023")

    sensor = connected_gateway.registry.get_sensor(12, 6)
    assert sensor.get_data(SensorDataType.V_LIGHT_LEVEL).state == "100"

    received = recorder.args_of(EventType.MESSAGE_RECEIVED)[0][0]
    assert received.payload == "100"
    assert received.direction == Direction.INCOMING

    logged = connected_gateway.get_messages()[-1]
    assert logged.payload == "1023"


def test_outgoing_set_is_unremapped(connected_gateway, transport, recorder):
    connected_gateway.receive_line("12;6;0;0;4;Dimmer")
    remap_sensor(connected_gateway, 12, 6, from_max=10, to_max=100)
    recorder.clear()

    connected_gateway.send_sensor_state(
        12, 6, SensorData(data_type=SensorDataType.V_PERCENTAGE, state="30")
    )

    assert transport.sent == ["12;6;1;0;3;3\n"]
    sensor = connected_gateway.registry.get_sensor(12, 6)
    assert sensor.get_data(SensorDataType.V_PERCENTAGE).state == "30"
    assert recorder.types() == [EventType.MESSAGE_SENT, EventType.SENSOR_UPDATED]


def test_request_reply_is_sent_in_sensor_units(connected_gateway, transport):
    connected_gateway.receive_line("12;6;0;0;3;")
    remap_sensor(connected_gateway, 12, 6, from_max=1, to_max=100, invert=True)

    connected_gateway.receive_line("12;6;1;0;2;0")
    assert connected_gateway.registry.get_sensor(12, 6).get_data(
        SensorDataType.V_STATUS
    ).state == "100"

    connected_gateway.receive_line("12;6;2;0;2;")
    assert transport.sent == ["12;6;1;0;2;0\n"]


# =============================================================================
# Sending
# =============================================================================

def test_send_while_disconnected_has_no_side_effects(gateway, recorder):
    message = Message(node_id=1, sensor_id=1, message_type=MessageType.SET, sub_type=2, payload="1")

    with pytest.raises(NotConnectedError):
        gateway.send_message(message)

    assert recorder.types() == []
    assert gateway.get_messages() == []


def test_send_reboot(connected_gateway, transport, recorder):
    connected_gateway.send_reboot(5)

    assert transport.sent == ["5;0;3;0;13;0\n"]
    traces = [args[0] for args in recorder.args_of(EventType.TX_RX_TRACE)]
    assert traces == ["TX: 5;0;INTERNAL;0;I_REBOOT;0"]

    sent = connected_gateway.get_messages()[-1]
    assert sent.direction == Direction.OUTGOING


def test_send_to_unknown_sensor_does_not_create_it(connected_gateway, transport):
    connected_gateway.send_sensor_state(
        9, 1, SensorData(data_type=SensorDataType.V_STATUS, state="1")
    )

    assert transport.sent == ["9;1;1;0;2;1\n"]
    assert connected_gateway.get_node(9) is None


def test_disconnect_during_send_uses_bound_transport(connected_gateway, transport):
    connected_gateway.on(EventType.TX_RX_TRACE, lambda text: connected_gateway.disconnect())

    connected_gateway.send_reboot(3)

    assert transport.sent == ["3;0;3;0;13;0\n"]
    assert not connected_gateway.is_connected()


def test_send_after_disconnect_from_handler_raises_not_connected(connected_gateway, transport):
    connected_gateway.on(EventType.MESSAGE_SENT, lambda message: connected_gateway.disconnect())

    connected_gateway.send_reboot(3)
    with pytest.raises(NotConnectedError):
        connected_gateway.send_reboot(4)

    assert transport.sent == ["3;0;3;0;13;0\n"]


def test_failed_write_has_no_side_effects(gateway, make_transport, recorder):
    transport = make_transport(fail_after=0)
    gateway.connect(transport)
    gateway.receive_line("12;6;0;0;3;Relay")
    recorder.clear()

    with pytest.raises(NotConnectedError):
        gateway.send_sensor_state(
            12, 6, SensorData(data_type=SensorDataType.V_STATUS, state="1")
        )

    assert recorder.types() == []
    assert gateway.registry.get_sensor(12, 6).get_data(SensorDataType.V_STATUS) is None
    assert [m.payload for m in gateway.get_messages()] == ["Relay"]


# =============================================================================
# Message Log / Info
# =============================================================================

def test_message_log_is_bounded(transport):
    gateway = Gateway(GatewayConfig(message_log_size=3))
    gateway.connect(transport)

    for value in range(5):
        gateway.receive_line(f"1;1;1;0;0;{value}")

    assert [m.payload for m in gateway.get_messages()] == ["2", "3", "4"]
    assert [m.payload for m in gateway.get_messages(limit=1)] == ["4"]
    gateway.disconnect()


def test_message_log_disabled(transport):
    gateway = Gateway(GatewayConfig(store_messages=False))
    gateway.connect(transport)

    gateway.receive_line("1;1;1;0;0;20")

    assert gateway.get_messages() == []
    gateway.disconnect()


def test_gateway_info(connected_gateway):
    connected_gateway.receive_line("1;1;0;0;6;")
    connected_gateway.receive_line("1;2;0;0;7;")
    connected_gateway.receive_line("2;1;0;0;3;")

    info = connected_gateway.get_gateway_info()
    assert info.is_connected is True
    assert info.nodes_registered == 2
    assert info.sensors_registered == 3


def test_clear_nodes(connected_gateway, recorder):
    connected_gateway.receive_line("1;1;0;0;6;")
    connected_gateway.clear_nodes()

    assert connected_gateway.get_nodes() == []
    assert EventType.NODES_CLEARED in recorder.types()
