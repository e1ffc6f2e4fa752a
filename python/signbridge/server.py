"""
FastAPI WebSocket server for SignBridge.

Provides SignBridgeServer, which wires the relay state, router, dispatcher
and lifecycle manager to a WebSocket endpoint and a status endpoint.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRouter

from .config import DEFAULT_RATE_LIMIT, RelayConfig
from .dispatcher import Dispatcher
from .lifecycle import LifecycleManager
from .protocol import StatusResponse
from .router import MessageRouter
from .state import RelayState

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    tokens: float
    updated: float


class RateLimiter:
    """
    Per-connection token bucket.

    A rate of zero disables limiting. ``burst`` caps how many frames a
    connection can send back to back after being idle; it defaults to one
    second's worth of frames.
    """

    def __init__(self, rate: float = DEFAULT_RATE_LIMIT, burst: Optional[float] = None):
        self.rate = rate
        self.burst = burst if burst is not None else max(rate, 1.0)
        self._buckets: Dict[str, _Bucket] = {}

    @property
    def enabled(self) -> bool:
        return self.rate > 0

    def is_allowed(self, connection_id: str) -> bool:
        """Check if a frame is allowed and consume a token."""
        if not self.enabled:
            return True

        now = time.monotonic()
        bucket = self._buckets.get(connection_id)
        if bucket is None:
            bucket = self._buckets[connection_id] = _Bucket(tokens=self.burst, updated=now)
        else:
            bucket.tokens = min(self.burst, bucket.tokens + (now - bucket.updated) * self.rate)
            bucket.updated = now

        if bucket.tokens >= 1:
            bucket.tokens -= 1
            return True
        return False

    def cleanup(self, connection_id: str) -> None:
        """Clean up state for a closed connection."""
        self._buckets.pop(connection_id, None)


class SignBridgeServer:
    """
    FastAPI server for the signaling and caption relay.

    Handles:
    - WebSocket connections, one sequential read loop each
    - Room join/leave and peer notifications
    - Caption and signal relaying
    - Status reporting
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self._config = config or RelayConfig()
        self._state = RelayState(
            queue_size=self._config.outbound_queue_size,
            send_timeout=self._config.send_timeout,
        )
        self._dispatcher = Dispatcher(self._state)
        self._router = MessageRouter(
            self._state, self._dispatcher, max_message_size=self._config.max_message_size
        )
        self._lifecycle = LifecycleManager(self._state, self._dispatcher)
        self._rate_limiter = RateLimiter(rate=self._config.rate_limit)

        self._api = APIRouter()
        self._app: Optional[FastAPI] = None
        self._setup_routes()

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application with all routes configured."""
        if self._app is None:
            app = FastAPI(title="SignBridge Relay", lifespan=self._lifespan)
            app.add_middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["*"],
                allow_headers=["*"],
            )
            app.include_router(self._api)
            self._app = app
        return self._app

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def state(self) -> RelayState:
        """Get the relay state (registry and directory)."""
        return self._state

    @property
    def lifecycle(self) -> LifecycleManager:
        return self._lifecycle

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Lifespan handler for startup/shutdown events."""
        logger.info(f"SignBridge relay ready, WebSocket at / and {self._config.ws_path}")
        yield
        await self.shutdown()

    def _setup_routes(self) -> None:
        """Setup WebSocket and status routes."""
        paths = ["/"]
        if self._config.ws_path != "/":
            paths.append(self._config.ws_path)

        for path in paths:
            @self._api.websocket(path)
            async def websocket_endpoint(websocket: WebSocket):
                await self._handle_connection(websocket)

        @self._api.get("/api/status")
        async def status() -> dict:
            return self.status().to_wire()

    def status(self) -> StatusResponse:
        """Current connection and room counts."""
        return StatusResponse(
            active_users=self._state.connection_count,
            active_rooms=self._state.room_count,
        )

    async def _handle_connection(self, websocket: WebSocket) -> None:
        """Run the read loop for one WebSocket until it closes."""
        connection = await self._lifecycle.connect(websocket)

        try:
            while connection.is_open:
                raw = await self._receive(websocket)
                if raw is None:
                    break

                if not self._rate_limiter.is_allowed(connection.id):
                    logger.warning(f"Rate limit exceeded for {connection.id}, dropping frame")
                    continue

                await self._router.handle_frame(connection, raw)

        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception(f"WebSocket error for {connection.id}")
        finally:
            self._rate_limiter.cleanup(connection.id)
            await self._lifecycle.disconnect(connection)

    async def _receive(self, websocket: WebSocket) -> Optional[str]:
        """Read the next frame as text, or None once the client has gone."""
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None
        text = message.get("text")
        if text is not None:
            return text
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")

    async def shutdown(self) -> None:
        """Close all live connections through the normal teardown path."""
        await self._lifecycle.shutdown()


def create_app(config: Optional[RelayConfig] = None) -> FastAPI:
    """Build the FastAPI app from ``config`` or the environment."""
    return SignBridgeServer(config or RelayConfig.from_env()).app


__all__ = ["RateLimiter", "SignBridgeServer", "create_app"]
