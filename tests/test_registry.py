#!/usr/bin/env python3
"""
Node Registry Tests
"""

import pytest

from mysensors_gateway.errors import DuplicateNodeError
from mysensors_gateway.events import EventBus, EventType
from mysensors_gateway.models import Node, Sensor
from mysensors_gateway.protocol import SensorDataType
from mysensors_gateway.registry import NodeRegistry


def make_node(node_id: int, *sensor_ids: int, **fields) -> Node:
    node = Node(node_id=node_id, **fields)
    for sensor_id in sensor_ids:
        node.add_sensor(sensor_id)
    return node


# =============================================================================
# Free Node Id
# =============================================================================

def test_free_node_id_fills_gap():
    registry = NodeRegistry()
    for node_id in (1, 2, 3, 5):
        registry.create_node(node_id)

    assert registry.get_free_node_id() == 4


def test_free_node_id_empty_registry():
    assert NodeRegistry().get_free_node_id() == 1


def test_free_node_id_exhausted():
    registry = NodeRegistry()
    for node_id in range(1, 254):
        registry.create_node(node_id)

    assert registry.get_free_node_id() == 255


def test_free_node_id_never_254():
    registry = NodeRegistry()
    for node_id in range(1, 253):
        registry.create_node(node_id)

    assert registry.get_free_node_id() == 253
    registry.create_node(253)
    assert registry.get_free_node_id() == 255


# =============================================================================
# Registration
# =============================================================================

def test_create_node_rejects_broadcast_id():
    with pytest.raises(ValueError):
        NodeRegistry().create_node(255)


def test_create_node_rejects_duplicate():
    registry = NodeRegistry()
    registry.create_node(7)

    with pytest.raises(DuplicateNodeError):
        registry.create_node(7)


def test_add_node_keeps_copy():
    registry = NodeRegistry()
    node = make_node(3, 1, 2, name="Kitchen")

    registry.add_node(node)
    node.name = "changed"

    assert registry.get_node(3).name == "Kitchen"
    assert registry.sensor_count() == 2


def test_add_node_rejects_duplicate():
    registry = NodeRegistry()
    registry.add_node(make_node(3))

    with pytest.raises(DuplicateNodeError):
        registry.add_node(make_node(3))


def test_lookups_return_snapshots():
    registry = NodeRegistry()
    registry.create_node(1).add_sensor(4)

    snapshot = registry.get_node(1)
    snapshot.name = "mutated"
    snapshot.sensors[4].description = "mutated"

    assert registry.get_node(1).name == ""
    assert registry.get_sensor(1, 4).description == ""


def test_missing_lookups_return_none():
    registry = NodeRegistry()
    registry.create_node(1)

    assert registry.get_node(2) is None
    assert registry.get_sensor(1, 9) is None
    assert registry.get_sensor(2, 1) is None


def test_delete_node():
    registry = NodeRegistry()
    registry.create_node(1)

    assert registry.delete_node(1) is True
    assert registry.delete_node(1) is False
    assert registry.node_count() == 0


def test_clear_emits_nodes_cleared():
    events = EventBus()
    calls = []
    events.subscribe(EventType.NODES_CLEARED, lambda: calls.append("cleared"))
    registry = NodeRegistry(events)
    registry.create_node(1)
    registry.create_node(2)

    registry.clear()

    assert registry.node_count() == 0
    assert calls == ["cleared"]


# =============================================================================
# Settings
# =============================================================================

def test_update_node_settings_copies_settings_only():
    registry = NodeRegistry()
    live = registry.create_node(9)
    live.firmware_version = "1.2"
    live.add_sensor(1).set_data(SensorDataType.V_TEMP, "20")

    settings = make_node(9, 1, name="Garage")
    sensor = settings.sensors[1]
    sensor.description = "Outside"
    sensor.invert_data = True
    sensor.remap_enabled = True
    sensor.remap_from_max = 1023
    sensor.remap_to_max = 100
    sensor.store_history_enabled = True

    assert registry.update_node_settings(settings) is True

    node = registry.get_node(9)
    assert node.name == "Garage"
    assert node.firmware_version == "1.2"

    stored = node.sensors[1]
    assert stored.description == "Outside"
    assert stored.invert_data is True
    assert stored.remap_enabled is True
    assert stored.remap_from_max == 1023
    assert stored.remap_to_max == 100
    assert stored.store_history_enabled is True
    assert stored.get_data(SensorDataType.V_TEMP).state == "20"


def test_update_node_settings_skips_unknown_sensors():
    registry = NodeRegistry()
    registry.create_node(9)

    settings = make_node(9)
    settings.sensors[3] = Sensor(node_id=9, sensor_id=3, description="ghost")

    assert registry.update_node_settings(settings) is True
    assert registry.get_sensor(9, 3) is None


def test_update_node_settings_unknown_node():
    assert NodeRegistry().update_node_settings(make_node(4)) is False
