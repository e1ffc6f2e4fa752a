"""
Connection registry and room directory for SignBridge.

ConnectionRegistry and RoomDirectory are plain containers with no locking
of their own. RelayState owns one of each and serializes every mutation
behind a single asyncio.Lock so the two maps cannot drift apart.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Set

from .connection import DEFAULT_QUEUE_SIZE, DEFAULT_SEND_TIMEOUT, Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps connection ids to live connections."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def register(self, connection: Connection) -> None:
        """Add a connection with no room."""
        if connection.id in self._connections:
            raise ValueError(f"Connection id already registered: {connection.id}")
        connection.room_id = None
        self._connections[connection.id] = connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove a connection. Unknown ids are ignored."""
        return self._connections.pop(connection_id, None)

    def lookup(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def set_room(self, connection_id: str, room_id: Optional[str]) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise KeyError(connection_id)
        connection.room_id = room_id


class RoomDirectory:
    """Maps room ids to member connection ids. Empty rooms are removed."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    @property
    def room_ids(self) -> List[str]:
        return list(self._rooms.keys())

    def join(self, room_id: str, connection_id: str) -> bool:
        """
        Add a member, creating the room on first join.

        Returns:
            True if the room was created by this call.
        """
        members = self._rooms.get(room_id)
        created = members is None
        if created:
            members = self._rooms[room_id] = set()
        members.add(connection_id)
        return created

    def leave(self, room_id: str, connection_id: str) -> FrozenSet[str]:
        """
        Remove a member, deleting the room once it is empty.

        Returns:
            The members that remain (empty if the room was deleted).
        """
        members = self._rooms.get(room_id)
        if members is None:
            return frozenset()
        members.discard(connection_id)
        if not members:
            del self._rooms[room_id]
            return frozenset()
        return frozenset(members)

    def members(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._rooms.get(room_id, ()))


@dataclass(frozen=True)
class JoinResult:
    """Outcome of moving a connection into a room."""

    room_id: str
    changed: bool
    created: bool = False
    previous_room_id: Optional[str] = None
    previous_room_pruned: bool = False


@dataclass(frozen=True)
class LeaveResult:
    """Outcome of removing a connection from its room."""

    room_id: Optional[str]
    pruned: bool = False


class RelayState:
    """
    Single owner of the registry and the directory.

    Every mutation runs under one lock. Reads that return a single
    snapshot (lookup, counts) do not need it on a single event loop.
    """

    def __init__(
        self,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.registry = ConnectionRegistry()
        self.directory = RoomDirectory()
        self._queue_size = queue_size
        self._send_timeout = send_timeout
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self.registry)

    @property
    def room_count(self) -> int:
        return len(self.directory)

    def connections(self) -> List[Connection]:
        """Snapshot of all live connections."""
        return list(self.registry)

    def lookup(self, connection_id: str) -> Optional[Connection]:
        return self.registry.lookup(connection_id)

    def members(self, room_id: str) -> FrozenSet[str]:
        return self.directory.members(room_id)

    def _new_connection_id(self) -> str:
        # uuid4 carries 122 random bits; the registry check covers the live set
        while True:
            connection_id = uuid.uuid4().hex
            if connection_id not in self.registry:
                return connection_id

    async def register(self, websocket: Any) -> Connection:
        """Create and register a connection for an accepted WebSocket."""
        async with self._lock:
            connection = Connection(
                self._new_connection_id(),
                websocket,
                queue_size=self._queue_size,
                send_timeout=self._send_timeout,
            )
            self.registry.register(connection)
        return connection

    async def join(self, connection: Connection, room_id: str) -> JoinResult:
        """
        Move a connection into a room.

        A connection already in another room leaves it first, within the
        same critical section. Joining the current room again changes nothing.
        """
        async with self._lock:
            if connection.torn_down or connection.id not in self.registry:
                return JoinResult(room_id=room_id, changed=False)

            previous = connection.room_id
            if previous == room_id:
                return JoinResult(room_id=room_id, changed=False)

            pruned = False
            if previous is not None:
                pruned = not self.directory.leave(previous, connection.id)

            created = self.directory.join(room_id, connection.id)
            self.registry.set_room(connection.id, room_id)

        return JoinResult(
            room_id=room_id,
            changed=True,
            created=created,
            previous_room_id=previous,
            previous_room_pruned=pruned,
        )

    async def teardown(self, connection: Connection) -> Optional[LeaveResult]:
        """
        Remove a connection from its room and from the registry.

        Returns:
            The leave outcome, or None if the connection was already torn down.
        """
        async with self._lock:
            if connection.torn_down:
                return None
            connection.torn_down = True

            room_id = connection.room_id
            pruned = False
            if room_id is not None:
                pruned = not self.directory.leave(room_id, connection.id)
                connection.room_id = None
            self.registry.unregister(connection.id)

        return LeaveResult(room_id=room_id, pruned=pruned)

    async def recipients(self, room_id: str, exclude: Optional[str] = None) -> List[Connection]:
        """Snapshot the connections in a room, minus one excluded id."""
        async with self._lock:
            result = []
            for member_id in self.directory.members(room_id):
                if member_id == exclude:
                    continue
                connection = self.registry.lookup(member_id)
                if connection is not None:
                    result.append(connection)
            return result


__all__ = [
    "ConnectionRegistry",
    "RoomDirectory",
    "JoinResult",
    "LeaveResult",
    "RelayState",
]
