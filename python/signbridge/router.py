"""
Inbound message routing for SignBridge.

Parses one frame at a time and dispatches it to the join, caption or
signal handler. Bad frames are logged and dropped; they never close the
connection that sent them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict

from .connection import Connection
from .dispatcher import Dispatcher
from .protocol import (
    CaptionBroadcast,
    CaptionMessage,
    ClientMessage,
    JoinMessage,
    ProtocolError,
    SignalBroadcast,
    SignalMessage,
    UserConnectedMessage,
    UserDisconnectedMessage,
    decode_frame,
    parse_client_message,
)
from .state import RelayState

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024  # 64KB; SDP offers stay well under this

Handler = Callable[[Connection, ClientMessage], Awaitable[None]]


def utc_timestamp() -> str:
    """Current time as ISO-8601 UTC with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MessageRouter:
    """Per-frame protocol dispatch."""

    def __init__(
        self,
        state: RelayState,
        dispatcher: Dispatcher,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ):
        self._state = state
        self._dispatcher = dispatcher
        self._max_message_size = max_message_size
        self._handlers: Dict[str, Handler] = {
            "join": self._handle_join,
            "caption": self._handle_caption,
            "signal": self._handle_signal,
        }

    async def handle_frame(self, connection: Connection, raw: str) -> None:
        """Parse a raw text frame and route it."""
        if len(raw) > self._max_message_size:
            logger.warning(
                f"Dropping oversized frame from {connection.id} ({len(raw)} > {self._max_message_size})"
            )
            return

        try:
            message = parse_client_message(decode_frame(raw))
        except ProtocolError as exc:
            logger.warning(f"Dropping frame from {connection.id}: {exc}")
            return

        await self.route(connection, message)

    async def route(self, connection: Connection, message: ClientMessage) -> None:
        """Dispatch an already-parsed message."""
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning(f"No handler for message type {message.type!r}")
            return
        await handler(connection, message)

    async def _handle_join(self, connection: Connection, message: JoinMessage) -> None:
        """Join a room, leaving the current one first."""
        room_id = message.room_id
        result = await self._state.join(connection, room_id)

        if not result.changed:
            logger.debug(f"Ignoring join of {room_id!r} from {connection.id}")
            return

        if result.previous_room_id is not None:
            logger.info(f"Client {connection.id} left room: {result.previous_room_id}")
            if not result.previous_room_pruned:
                await self._dispatcher.broadcast(
                    result.previous_room_id,
                    UserDisconnectedMessage(user_id=connection.id),
                    exclude=connection.id,
                )

        logger.info(f"Client {connection.id} joined room: {room_id}")
        await self._dispatcher.broadcast(
            room_id,
            UserConnectedMessage(user_id=connection.id),
            exclude=connection.id,
        )

    async def _handle_caption(self, connection: Connection, message: CaptionMessage) -> None:
        """Relay caption text to the rest of the sender's room."""
        current_room = connection.room_id
        if current_room is None:
            logger.warning(f"Dropping caption from {connection.id}: not in a room")
            return
        if message.room_id is not None and message.room_id != current_room:
            logger.warning(
                f"Dropping caption from {connection.id} for room {message.room_id!r}, "
                f"current room is {current_room!r}"
            )
            return

        logger.debug(f"Caption from {connection.id}: {message.text}")
        await self._dispatcher.broadcast(
            current_room,
            CaptionBroadcast(
                text=message.text,
                timestamp=message.timestamp or utc_timestamp(),
                sender=connection.id,
            ),
            exclude=connection.id,
        )

    async def _handle_signal(self, connection: Connection, message: SignalMessage) -> None:
        """Relay a negotiation payload to the room or to one peer."""
        relayed = SignalBroadcast(signal=message.signal, sender=connection.id)

        if message.is_broadcast:
            if connection.room_id is None:
                logger.debug(f"Dropping broadcast signal from {connection.id}: not in a room")
                return
            logger.debug(f"Signal from {connection.id} to room {connection.room_id}")
            await self._dispatcher.broadcast(connection.room_id, relayed, exclude=connection.id)
            return

        logger.debug(f"Signal from {connection.id} to {message.target}")
        self._dispatcher.send_to(message.target, relayed)


__all__ = ["DEFAULT_MAX_MESSAGE_SIZE", "MessageRouter", "utc_timestamp"]
