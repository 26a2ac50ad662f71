"""Pydantic models for the CoIoT inspection API.

Response schemas for devices, their live session state, the decoded
CoIoT schema and channel values.
"""

from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    """Live protocol session state of one device."""

    device_id: str
    ip: str
    state: str = Field(..., description="idle, description_requested, description_known or observing")
    coiot_device_id: str = Field(default="", description="type#mac#version from CoAP option 3332")
    last_serial: int = -1
    blocks: int = 0
    sensors: int = 0
    stats: dict[str, int] = Field(default_factory=dict)


class DeviceResponse(BaseModel):
    id: str
    name: str
    ip: str
    profile: dict[str, Any] = Field(default_factory=dict)
    online: bool = False
    last_seen: str | None = None
    created_at: str
    updated_at: str
    session: SessionInfo | None = None
    poll_requests: int = 0


# ---------------------------------------------------------------------------
# CoIoT schema
# ---------------------------------------------------------------------------


class BlockResponse(BaseModel):
    id: str
    label: str = ""
    type: str | None = None


class SensorResponse(BaseModel):
    id: str
    type: str
    kind: str
    label: str = ""
    range: str | None = None
    link: str = ""


class SchemaResponse(BaseModel):
    blocks: list[BlockResponse] = Field(default_factory=list)
    sensors: list[SensorResponse] = Field(default_factory=list)
    last_serial: int = -1


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class ChannelValueResponse(BaseModel):
    """One channel value; `value` is a string for on/off and datetime types."""

    id: str = Field(..., description="group#channel")
    group: str
    channel: str
    type: str = Field(..., description="onoff, quantity, decimal, string or datetime")
    value: Any = None
    unit: str | None = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    timestamp: float
    device_id: str
    ip: str = ""
    uri: str = ""
    serial: int = 0
    payload: str = ""
    outcome: str
    outcome_label: str = ""
    updates: list[str] = Field(default_factory=list)


class MessageHistory(BaseModel):
    messages: list[MessageResponse]
    count: int
    total_buffered: int
