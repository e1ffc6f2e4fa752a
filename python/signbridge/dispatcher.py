"""
Outbound delivery for SignBridge.

Broadcast to a room minus one sender, or send directly to one connection.
Recipients are snapshotted under the state lock; frames are then queued on
each connection outside it.
"""

from __future__ import annotations

import logging
from typing import Optional

from .protocol import RoutingError, ServerMessage
from .state import RelayState

logger = logging.getLogger(__name__)


class Dispatcher:
    """Delivers server messages to room members or single connections."""

    def __init__(self, state: RelayState):
        self._state = state

    async def broadcast(
        self,
        room_id: str,
        message: ServerMessage,
        exclude: Optional[str] = None,
    ) -> int:
        """
        Queue a message for every member of a room except ``exclude``.

        Args:
            room_id: The target room. Unknown rooms are a no-op.
            message: The message to send.
            exclude: Optional connection id to skip (usually the sender).

        Returns:
            Number of connections the message was queued for.
        """
        recipients = await self._state.recipients(room_id, exclude=exclude)
        if not recipients:
            return 0

        data = message.to_wire()
        delivered = 0
        for connection in recipients:
            if connection.enqueue(data):
                delivered += 1
        return delivered

    def send_to(self, connection_id: str, message: ServerMessage, strict: bool = False) -> bool:
        """
        Queue a message for one connection.

        Args:
            connection_id: The recipient.
            message: The message to send.
            strict: Raise instead of returning False when the recipient is
                unknown or closed.

        Returns:
            True if the message was queued.

        Raises:
            RoutingError: If ``strict`` and the recipient is unavailable.
        """
        connection = self._state.lookup(connection_id)
        if connection is None or not connection.is_open:
            if strict:
                raise RoutingError(f"No open connection with id {connection_id!r}")
            logger.debug(f"Dropping direct message to unavailable connection {connection_id}")
            return False
        return connection.enqueue(message.to_wire())


__all__ = ["Dispatcher"]
