"""
Per-connection session state for SignBridge.

A Connection wraps one accepted WebSocket. Outbound frames go through a
bounded queue drained by a dedicated writer task, so a slow recipient
never blocks the sender that produced the frame.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi.websockets import WebSocketState

from .protocol import TransportError

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256
DEFAULT_SEND_TIMEOUT = 10.0  # seconds

FailureCallback = Callable[["Connection"], Awaitable[Any]]


class Connection:
    """
    One live transport session.

    Attributes:
        id: Opaque unique connection identifier.
        websocket: The underlying WebSocket.
        room_id: The room this connection is in, if any.
    """

    def __init__(
        self,
        connection_id: str,
        websocket: Any,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.id = connection_id
        self.websocket = websocket
        self.room_id: Optional[str] = None

        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._send_timeout = send_timeout
        self._writer: Optional[asyncio.Task] = None
        self._failure_task: Optional[asyncio.Task] = None
        self._on_failure: Optional[FailureCallback] = None
        self._closed = False

        # Set by RelayState under its lock; guarantees single teardown
        self.torn_down = False

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, room_id={self.room_id!r})"

    @property
    def is_open(self) -> bool:
        """Whether frames can still be delivered to this connection."""
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def pending(self) -> int:
        """Number of frames waiting in the outbound queue."""
        return self._queue.qsize()

    def start(self, on_failure: Optional[FailureCallback] = None) -> None:
        """
        Start the outbound writer task.

        Args:
            on_failure: Called once if the connection stalls or a write fails.
        """
        self._on_failure = on_failure
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"writer-{self.id}")

    def enqueue(self, data: Dict[str, Any]) -> bool:
        """
        Queue a frame for delivery without blocking.

        A full queue means the peer is not keeping up; the connection is
        closed rather than letting the backlog grow.

        Returns:
            True if the frame was queued.
        """
        if not self.is_open:
            return False
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for {self.id}, closing connection")
            self._schedule_failure()
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        await self._queue.join()

    async def close(self, code: int = 1000) -> None:
        """Stop the writer and close the transport if it is still open."""
        self._closed = True

        writer = self._writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
            # wait() leaves the writer's own CancelledError in the task
            await asyncio.wait({writer})
        self._discard_pending()

        if (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        ):
            try:
                await asyncio.wait_for(self.websocket.close(code=code), timeout=self._send_timeout)
            except Exception:
                logger.debug(f"Failed to close WebSocket for {self.id}")

    async def _write_loop(self) -> None:
        """Deliver queued frames in FIFO order."""
        try:
            # Exits on the closed flag as well as on cancellation
            while not self._closed:
                data = await self._queue.get()
                try:
                    if not self._closed:
                        await self._send(data)
                finally:
                    self._queue.task_done()
        except TransportError as exc:
            logger.warning(str(exc))
            self._closed = True
            self._discard_pending()
            await self._notify_failure()

    async def _send(self, data: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(self.websocket.send_json(data), timeout=self._send_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Send to {self.id} timed out after {self._send_timeout}s") from exc
        except Exception as exc:
            raise TransportError(f"Send to {self.id} failed: {exc!r}") from exc

    def _schedule_failure(self) -> None:
        self._closed = True
        if self._failure_task is None:
            self._failure_task = asyncio.get_running_loop().create_task(self._notify_failure())
            self._failure_task.add_done_callback(self._log_failure_result)

    def _log_failure_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Failure handler for {self.id} raised", exc_info=exc)

    async def _notify_failure(self) -> None:
        if self._on_failure is not None:
            callback, self._on_failure = self._on_failure, None
            await callback(self)

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()


__all__ = [
    "DEFAULT_QUEUE_SIZE",
    "DEFAULT_SEND_TIMEOUT",
    "Connection",
    "FailureCallback",
]
