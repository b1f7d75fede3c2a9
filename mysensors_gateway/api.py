#!/usr/bin/env python3
"""
REST API for the MySensors Gateway

This module provides a FastAPI-based REST API for inspecting nodes and
sensors, editing their settings and sending messages to the bus.

Endpoints:
    GET    /api/health                                  - API health
    GET    /api/gateway                                 - Gateway status
    GET    /api/nodes                                   - List all nodes
    GET    /api/nodes/{node_id}                         - Get node details
    DELETE /api/nodes/{node_id}                         - Forget a node
    DELETE /api/nodes                                   - Forget all nodes
    PUT    /api/nodes/{node_id}/settings                - Update node settings
    POST   /api/nodes/{node_id}/sensors/{sensor_id}/state - Send a sensor value
    POST   /api/nodes/{node_id}/reboot                  - Reboot a node
    POST   /api/broadcast/reboot                        - Reboot all nodes
    GET    /api/messages                                - Message log
    POST   /api/messages                                - Send a raw message

Usage:
    from mysensors_gateway import Gateway, GatewayConfig
    from mysensors_gateway.api import create_api, run_api_server

    gateway = Gateway(GatewayConfig.from_yaml("config.yaml"))
    app = create_api(gateway)
    run_api_server(app, host="0.0.0.0", port=8080)
"""

import logging
from datetime import datetime
from typing import List, Optional

try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
except ImportError:
    raise ImportError(
        "FastAPI and Pydantic are required for the API module.\n"
        "Install with: pip3 install fastapi uvicorn pydantic"
    )

from .errors import NotConnectedError
from .models import MAX_NODE_ID, MIN_NODE_ID, Node, Sensor, SensorData
from .protocol import (
    Message,
    MessageType,
    SensorDataType,
    sub_type_name,
)


# =============================================================================
# Constants
# =============================================================================

# Maximum messages to return from the message log
MAX_MESSAGES_PER_REQUEST = 1000


# =============================================================================
# Pydantic Models for API Responses
# =============================================================================

class HealthResponse(BaseModel):
    """API health check response."""
    status: str = Field(..., description="Health status")
    timestamp: str = Field(..., description="Current server time")
    gateway_connected: bool = Field(..., description="Whether the gateway is connected")


class GatewayInfoResponse(BaseModel):
    """Gateway status."""
    is_connected: bool = Field(..., description="Whether a transport is connected")
    nodes_registered: int = Field(..., ge=0, description="Number of known nodes")
    sensors_registered: int = Field(..., ge=0, description="Number of known sensors")


class SensorDataResponse(BaseModel):
    """Latest value of one data type."""
    data_type: str = Field(..., description="Value type (e.g. V_TEMP)")
    state: str = Field(..., description="Value in consumer units")
    timestamp: float = Field(..., description="Unix timestamp of the value")


class SensorResponse(BaseModel):
    """Sensor information and settings."""
    node_id: int
    sensor_id: int
    sensor_type: Optional[str] = Field(None, description="Presented type (e.g. S_TEMP)")
    description: str = ""
    invert_data: bool = False
    remap_enabled: bool = False
    remap_from_min: float = 0.0
    remap_from_max: float = 0.0
    remap_to_min: float = 0.0
    remap_to_max: float = 0.0
    store_history_enabled: bool = False
    store_history_every_change: bool = True
    store_history_with_interval: int = 0
    data: List[SensorDataResponse] = Field(default=[], description="Latest values")


class NodeResponse(BaseModel):
    """Node information with its sensors."""
    node_id: int
    name: str = ""
    firmware_version: str = ""
    battery_level: Optional[int] = None
    is_repeating_node: bool = False
    last_seen: Optional[float] = Field(None, description="Unix timestamp of last message")
    sensors: List[SensorResponse] = Field(default=[])


class SensorSettingsRequest(BaseModel):
    """Editable settings of one sensor."""
    sensor_id: int = Field(..., ge=0, le=254)
    description: str = ""
    invert_data: bool = False
    remap_enabled: bool = False
    remap_from_min: float = 0.0
    remap_from_max: float = 0.0
    remap_to_min: float = 0.0
    remap_to_max: float = 0.0
    store_history_enabled: bool = False
    store_history_every_change: bool = True
    store_history_with_interval: int = Field(0, ge=0)


class NodeSettingsRequest(BaseModel):
    """Editable settings of a node and its sensors."""
    name: str = ""
    sensors: List[SensorSettingsRequest] = Field(default=[])


class SensorStateRequest(BaseModel):
    """Value to send to a sensor."""
    data_type: str = Field(..., description="Value type name (V_STATUS) or number")
    state: str = Field(..., description="Value in consumer units")


class MessageRequest(BaseModel):
    """Raw message to send."""
    node_id: int = Field(..., ge=0, le=255)
    sensor_id: int = Field(..., ge=0, le=255)
    message_type: int = Field(..., ge=0, le=4, description="0=presentation .. 4=stream")
    ack: bool = False
    sub_type: int = Field(..., ge=0)
    payload: str = ""


class MessageResponse(BaseModel):
    """A logged message."""
    node_id: int
    sensor_id: int
    message_type: str
    ack: bool
    sub_type: int
    sub_type_name: str
    payload: str
    direction: str
    is_valid: bool
    timestamp: float


class CommandResponse(BaseModel):
    """Response from a command."""
    success: bool = Field(..., description="Whether the command was accepted")
    message: str = Field(..., description="Status message")


# =============================================================================
# API Factory
# =============================================================================

def create_api(gateway, storage=None) -> FastAPI:
    """
    Create a FastAPI application with gateway reference.

    Args:
        gateway: Gateway instance.
        storage: Optional NodeStorage; settings changes and deletions are
            written through to it.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="MySensors Gateway API",
        description="REST API for monitoring and controlling MySensors nodes",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.gateway = gateway
    app.state.storage = storage
    logger = logging.getLogger("API")

    # -------------------------------------------------------------------------
    # Helper Functions
    # -------------------------------------------------------------------------

    def get_gateway():
        """Get gateway from app state."""
        return app.state.gateway

    def sensor_to_response(sensor: Sensor) -> SensorResponse:
        return SensorResponse(
            node_id=sensor.node_id,
            sensor_id=sensor.sensor_id,
            sensor_type=sensor.sensor_type.name if sensor.sensor_type is not None else None,
            description=sensor.description,
            invert_data=sensor.invert_data,
            remap_enabled=sensor.remap_enabled,
            remap_from_min=sensor.remap_from_min,
            remap_from_max=sensor.remap_from_max,
            remap_to_min=sensor.remap_to_min,
            remap_to_max=sensor.remap_to_max,
            store_history_enabled=sensor.store_history_enabled,
            store_history_every_change=sensor.store_history_every_change,
            store_history_with_interval=sensor.store_history_with_interval,
            data=[
                SensorDataResponse(
                    data_type=data.data_type.name,
                    state=data.state,
                    timestamp=data.timestamp,
                )
                for data in sensor.data.values()
            ],
        )

    def node_to_response(node: Node) -> NodeResponse:
        return NodeResponse(
            node_id=node.node_id,
            name=node.name,
            firmware_version=node.firmware_version,
            battery_level=node.battery_level,
            is_repeating_node=node.is_repeating_node,
            last_seen=node.last_seen,
            sensors=[sensor_to_response(s) for s in node.sensors.values()],
        )

    def message_to_response(message: Message) -> MessageResponse:
        return MessageResponse(
            node_id=message.node_id,
            sensor_id=message.sensor_id,
            message_type=message.message_type.name,
            ack=message.ack,
            sub_type=message.sub_type,
            sub_type_name=sub_type_name(message.message_type, message.sub_type),
            payload=message.payload,
            direction=message.direction.value,
            is_valid=message.is_valid,
            timestamp=message.timestamp,
        )

    def require_node(node_id: int) -> Node:
        node = get_gateway().get_node(node_id)
        if node is None:
            raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
        return node

    def parse_data_type(name: str) -> SensorDataType:
        try:
            if name.isdigit():
                return SensorDataType(int(name))
            return SensorDataType[name.upper()]
        except (KeyError, ValueError):
            valid = [t.name for t in SensorDataType]
            raise HTTPException(
                status_code=400,
                detail=f"Invalid data type: {name}. Valid types: {valid}"
            )

    def send_or_503(send, *args):
        try:
            send(*args)
        except NotConnectedError as e:
            logger.warning(f"Send rejected: {e}")
            raise HTTPException(status_code=503, detail=str(e))

    # -------------------------------------------------------------------------
    # Health / Gateway Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Check API and gateway health."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now().isoformat(),
            gateway_connected=get_gateway().is_connected(),
        )

    @app.get("/api/gateway", response_model=GatewayInfoResponse, tags=["Gateway"])
    async def get_gateway_info():
        """Get connection state and registry counts."""
        info = get_gateway().get_gateway_info()
        return GatewayInfoResponse(
            is_connected=info.is_connected,
            nodes_registered=info.nodes_registered,
            sensors_registered=info.sensors_registered,
        )

    # -------------------------------------------------------------------------
    # Node Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/nodes", response_model=List[NodeResponse], tags=["Nodes"])
    async def list_nodes():
        """List all known nodes with their sensors."""
        return [node_to_response(n) for n in get_gateway().get_nodes()]

    @app.get("/api/nodes/{node_id}", response_model=NodeResponse, tags=["Nodes"])
    async def get_node(node_id: int):
        """Get a single node."""
        return node_to_response(require_node(node_id))

    @app.delete("/api/nodes/{node_id}", response_model=CommandResponse, tags=["Nodes"])
    async def delete_node(node_id: int):
        """Forget a node and its sensors."""
        if not get_gateway().delete_node(node_id):
            raise HTTPException(status_code=404, detail=f"Node {node_id} not found")

        if app.state.storage is not None:
            app.state.storage.delete_node(node_id)

        return CommandResponse(success=True, message=f"Node {node_id} deleted")

    @app.delete("/api/nodes", response_model=CommandResponse, tags=["Nodes"])
    async def clear_nodes():
        """Forget every node."""
        get_gateway().clear_nodes()
        return CommandResponse(success=True, message="All nodes deleted")

    @app.put("/api/nodes/{node_id}/settings", response_model=NodeResponse, tags=["Nodes"])
    async def update_node_settings(node_id: int, request: NodeSettingsRequest):
        """
        Update the node name and sensor settings.

        Sensors not known to the gateway are ignored.
        """
        gateway = get_gateway()
        node = require_node(node_id)

        node.name = request.name
        for settings in request.sensors:
            sensor = node.get_sensor(settings.sensor_id)
            if sensor is None:
                continue
            for name, value in settings.model_dump(exclude={"sensor_id"}).items():
                setattr(sensor, name, value)

        gateway.update_node_settings(node)
        updated = require_node(node_id)

        if app.state.storage is not None:
            app.state.storage.save_node(updated)

        return node_to_response(updated)

    # -------------------------------------------------------------------------
    # Command Endpoints
    # -------------------------------------------------------------------------

    @app.post(
        "/api/nodes/{node_id}/sensors/{sensor_id}/state",
        response_model=CommandResponse,
        tags=["Commands"],
    )
    async def send_sensor_state(node_id: int, sensor_id: int, request: SensorStateRequest):
        """Send a value to a sensor (converted to sensor units if remapped)."""
        node = require_node(node_id)
        if node.get_sensor(sensor_id) is None:
            raise HTTPException(
                status_code=404,
                detail=f"Sensor {sensor_id} of node {node_id} not found"
            )

        data_type = parse_data_type(request.data_type)
        send_or_503(
            get_gateway().send_sensor_state,
            node_id,
            sensor_id,
            SensorData(data_type=data_type, state=request.state),
        )

        return CommandResponse(
            success=True,
            message=f"{data_type.name}={request.state} sent to {node_id}/{sensor_id}",
        )

    @app.post("/api/nodes/{node_id}/reboot", response_model=CommandResponse, tags=["Commands"])
    async def reboot_node(node_id: int):
        """Ask a node to reboot."""
        require_node(node_id)
        send_or_503(get_gateway().send_reboot, node_id)
        return CommandResponse(success=True, message=f"Reboot sent to {node_id}")

    @app.post("/api/broadcast/reboot", response_model=CommandResponse, tags=["Broadcast"])
    async def broadcast_reboot(
        pacing_ms: Optional[int] = Query(None, ge=0, description="Delay between messages"),
    ):
        """Send a reboot to every node id in the background."""
        gateway = get_gateway()
        if not gateway.is_connected():
            raise HTTPException(status_code=503, detail="Gateway is not connected")

        gateway.send_reboot_to_all_nodes(pacing_ms)
        return CommandResponse(
            success=True,
            message=f"Reboot broadcast to nodes {MIN_NODE_ID}-{MAX_NODE_ID} started",
        )

    # -------------------------------------------------------------------------
    # Message Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/messages", response_model=List[MessageResponse], tags=["Messages"])
    async def get_messages(
        limit: int = Query(100, ge=1, le=MAX_MESSAGES_PER_REQUEST, description="Max messages to return"),
    ):
        """Get the most recent logged messages, oldest first."""
        return [message_to_response(m) for m in get_gateway().get_messages(limit)]

    @app.post("/api/messages", response_model=CommandResponse, tags=["Messages"])
    async def send_message(request: MessageRequest):
        """Send a raw message to the bus."""
        message = Message(
            node_id=request.node_id,
            sensor_id=request.sensor_id,
            message_type=MessageType(request.message_type),
            ack=request.ack,
            sub_type=request.sub_type,
            payload=request.payload,
        )
        send_or_503(get_gateway().send_message, message)
        return CommandResponse(success=True, message=f"Sent {message}")

    return app


# =============================================================================
# Server Runner
# =============================================================================

def run_api_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
):
    """
    Run the API server (blocking).

    Args:
        app: FastAPI application instance.
        host: Host to bind to.
        port: Port to bind to.
        log_level: Logging level.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level=log_level)
