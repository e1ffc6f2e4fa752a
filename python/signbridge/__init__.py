"""
SignBridge - A signaling and caption relay for peer-to-peer video calls.
"""

# Protocol message types
from signbridge.protocol import (
    BROADCAST_TARGET,
    # Errors
    RelayError,
    ProtocolError,
    RoutingError,
    TransportError,
    # Client messages
    JoinMessage,
    CaptionMessage,
    SignalMessage,
    ClientMessage,
    # Server messages
    UserConnectedMessage,
    UserDisconnectedMessage,
    CaptionBroadcast,
    SignalBroadcast,
    ServerMessage,
    StatusResponse,
    decode_frame,
    parse_client_message,
    parse_server_message,
)

# Relay core
from signbridge.connection import Connection
from signbridge.state import ConnectionRegistry, RoomDirectory, RelayState
from signbridge.dispatcher import Dispatcher
from signbridge.router import MessageRouter
from signbridge.lifecycle import LifecycleManager

# Server
from signbridge.config import RelayConfig
from signbridge.server import SignBridgeServer, create_app

__version__ = "0.1.0"

__all__ = [
    "BROADCAST_TARGET",
    # Errors
    "RelayError",
    "ProtocolError",
    "RoutingError",
    "TransportError",
    # Protocol - Client messages
    "JoinMessage",
    "CaptionMessage",
    "SignalMessage",
    "ClientMessage",
    # Protocol - Server messages
    "UserConnectedMessage",
    "UserDisconnectedMessage",
    "CaptionBroadcast",
    "SignalBroadcast",
    "ServerMessage",
    "StatusResponse",
    "decode_frame",
    "parse_client_message",
    "parse_server_message",
    # Relay core
    "Connection",
    "ConnectionRegistry",
    "RoomDirectory",
    "RelayState",
    "Dispatcher",
    "MessageRouter",
    "LifecycleManager",
    # Server
    "RelayConfig",
    "SignBridgeServer",
    "create_app",
]
