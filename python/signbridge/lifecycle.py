"""
Connection lifecycle for SignBridge.

Accepts new connections and tears them down exactly once, keeping the
registry and directory consistent and notifying the peers left behind.
"""

from __future__ import annotations

import logging
from typing import Any

from .connection import Connection
from .dispatcher import Dispatcher
from .protocol import UserDisconnectedMessage
from .state import RelayState

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Handles connect, disconnect and shutdown."""

    def __init__(self, state: RelayState, dispatcher: Dispatcher):
        self._state = state
        self._dispatcher = dispatcher

    async def connect(self, websocket: Any) -> Connection:
        """
        Accept a WebSocket and register it with no room.

        Args:
            websocket: The incoming WebSocket.

        Returns:
            The registered connection, with its writer running.
        """
        await websocket.accept()
        connection = await self._state.register(websocket)
        connection.start(on_failure=self.disconnect)
        logger.info(f"Client connected: {connection.id}")
        return connection

    async def disconnect(self, connection: Connection, code: int = 1000) -> bool:
        """
        Tear a connection down.

        Safe to call any number of times from the read loop, the writer
        or shutdown; only the first call has an effect.

        Returns:
            True if this call performed the teardown.
        """
        result = await self._state.teardown(connection)
        if result is None:
            return False

        if result.room_id is not None and not result.pruned:
            await self._dispatcher.broadcast(
                result.room_id,
                UserDisconnectedMessage(user_id=connection.id),
                exclude=connection.id,
            )

        await connection.close(code=code)
        logger.info(f"Client disconnected: {connection.id}")
        return True

    async def shutdown(self) -> int:
        """
        Close every live connection.

        Returns:
            Number of connections closed.
        """
        closed = 0
        for connection in self._state.connections():
            if await self.disconnect(connection, code=1001):
                closed += 1
        if closed:
            logger.info(f"Closed {closed} connection(s) on shutdown")
        return closed


__all__ = ["LifecycleManager"]
