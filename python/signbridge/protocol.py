"""
WebSocket protocol message types for SignBridge.

Defines all client and server message types using Pydantic models
for validation and serialization. Wire field names are camelCase
(``roomId``, ``userId``); Python attributes are snake_case.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Maximum lengths for string fields
MAX_ID_LENGTH = 256
MAX_TEXT_LENGTH = 4096
MAX_TIMESTAMP_LENGTH = 64

BROADCAST_TARGET = "broadcast"


# =============================================================================
# Errors
# =============================================================================


class RelayError(Exception):
    """Base class for relay errors."""


class ProtocolError(RelayError):
    """A frame could not be parsed or has an unknown type."""


class RoutingError(RelayError):
    """A direct message named a connection that is unknown or closed."""


class TransportError(RelayError):
    """Reading from or writing to a connection failed."""


# =============================================================================
# Client Message Types
# =============================================================================


class _ClientModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinMessage(_ClientModel):
    """Client asks to join a room."""

    type: Literal["join"] = "join"
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=MAX_ID_LENGTH)


class CaptionMessage(_ClientModel):
    """Client sends caption text to its room."""

    type: Literal["caption"] = "caption"
    room_id: Optional[str] = Field(None, alias="roomId", max_length=MAX_ID_LENGTH)
    text: str = Field(..., max_length=MAX_TEXT_LENGTH)
    timestamp: Optional[str] = Field(None, max_length=MAX_TIMESTAMP_LENGTH)


class SignalMessage(_ClientModel):
    """Client sends a WebRTC negotiation payload to its room or one peer."""

    type: Literal["signal"] = "signal"
    target: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    signal: Dict[str, Any]

    @property
    def is_broadcast(self) -> bool:
        return self.target == BROADCAST_TARGET


# Union of all client message types
ClientMessage = Union[
    JoinMessage,
    CaptionMessage,
    SignalMessage,
]


# =============================================================================
# Server Message Types
# =============================================================================


class _ServerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with wire (camelCase) field names."""
        return self.model_dump(by_alias=True)


class UserConnectedMessage(_ServerModel):
    """Server notifies that a peer joined the room."""

    type: Literal["user_connected"] = "user_connected"
    user_id: str = Field(..., alias="userId")


class UserDisconnectedMessage(_ServerModel):
    """Server notifies that a peer left the room."""

    type: Literal["user_disconnected"] = "user_disconnected"
    user_id: str = Field(..., alias="userId")


class CaptionBroadcast(_ServerModel):
    """Server relays a caption to room members."""

    type: Literal["caption"] = "caption"
    text: str
    timestamp: str
    sender: str


class SignalBroadcast(_ServerModel):
    """Server relays a negotiation payload."""

    type: Literal["signal"] = "signal"
    signal: Dict[str, Any]
    sender: str


# Union of all server message types
ServerMessage = Union[
    UserConnectedMessage,
    UserDisconnectedMessage,
    CaptionBroadcast,
    SignalBroadcast,
]


class StatusResponse(_ServerModel):
    """Body of the HTTP status endpoint."""

    status: Literal["Online"] = "Online"
    active_users: int = Field(..., alias="activeUsers")
    active_rooms: int = Field(..., alias="activeRooms")


# =============================================================================
# Message Parsing
# =============================================================================


_CLIENT_TYPES: Dict[str, type] = {
    "join": JoinMessage,
    "caption": CaptionMessage,
    "signal": SignalMessage,
}

_SERVER_TYPES: Dict[str, type] = {
    "user_connected": UserConnectedMessage,
    "user_disconnected": UserDisconnectedMessage,
    "caption": CaptionBroadcast,
    "signal": SignalBroadcast,
}


def decode_frame(raw: str) -> Dict[str, Any]:
    """
    Decode a raw text frame into a JSON object.

    Raises:
        ProtocolError: If the frame is not valid JSON or not an object.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_client_message(data: Dict[str, Any]) -> ClientMessage:
    """
    Parse a raw dictionary into a typed client message.

    Raises:
        ProtocolError: If the message type is unknown or invalid.
    """
    msg_type = data.get("type")

    model = _CLIENT_TYPES.get(msg_type) if isinstance(msg_type, str) else None
    if model is None:
        raise ProtocolError(f"Unknown message type: {msg_type!r}")

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {msg_type} message: {exc.error_count()} error(s)") from exc


def parse_server_message(data: Dict[str, Any]) -> ServerMessage:
    """
    Parse a raw dictionary into a typed server message.

    Used by clients and tests to read what the relay sends.

    Raises:
        ProtocolError: If the message type is unknown or invalid.
    """
    msg_type = data.get("type")

    model = _SERVER_TYPES.get(msg_type) if isinstance(msg_type, str) else None
    if model is None:
        raise ProtocolError(f"Unknown message type: {msg_type!r}")

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {msg_type} message: {exc.error_count()} error(s)") from exc


__all__ = [
    "BROADCAST_TARGET",
    # Errors
    "RelayError",
    "ProtocolError",
    "RoutingError",
    "TransportError",
    # Client messages
    "JoinMessage",
    "CaptionMessage",
    "SignalMessage",
    "ClientMessage",
    # Server messages
    "UserConnectedMessage",
    "UserDisconnectedMessage",
    "CaptionBroadcast",
    "SignalBroadcast",
    "ServerMessage",
    "StatusResponse",
    # Parsing functions
    "decode_frame",
    "parse_client_message",
    "parse_server_message",
]
