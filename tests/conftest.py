import asyncio
import json

import pytest
from fastapi.websockets import WebSocketState

from signbridge.dispatcher import Dispatcher
from signbridge.lifecycle import LifecycleManager
from signbridge.router import MessageRouter
from signbridge.state import RelayState


class FakeWebSocket:
    """In-memory stand-in for a Starlette WebSocket."""

    def __init__(self, stall: bool = False, fail: bool = False):
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent = []
        self.close_code = None
        self.stall = stall
        self.fail = fail

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection reset by peer")
        if self.stall:
            await asyncio.Event().wait()
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.application_state = WebSocketState.DISCONNECTED
        self.close_code = code

    def peer_disconnect(self):
        self.client_state = WebSocketState.DISCONNECTED

    @property
    def closed(self) -> bool:
        return self.application_state == WebSocketState.DISCONNECTED

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


async def flush(*connections):
    """Wait until each connection's queued frames reach its fake socket."""
    for connection in connections:
        await connection.drain()


async def settle(rounds: int = 20):
    """Let background tasks (writers, failure handlers) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def state():
    return RelayState(queue_size=8, send_timeout=0.2)


@pytest.fixture
def dispatcher(state):
    return Dispatcher(state)


@pytest.fixture
def router(state, dispatcher):
    return MessageRouter(state, dispatcher, max_message_size=2048)


@pytest.fixture
def lifecycle(state, dispatcher):
    return LifecycleManager(state, dispatcher)


@pytest.fixture
async def connect(lifecycle):
    """Factory that accepts a FakeWebSocket through the lifecycle manager."""

    async def _connect(**kwargs):
        return await lifecycle.connect(FakeWebSocket(**kwargs))

    yield _connect
    await lifecycle.shutdown()


@pytest.fixture
def send(router):
    """Send a JSON-serializable frame from a connection through the router."""

    async def _send(connection, frame):
        raw = frame if isinstance(frame, str) else json.dumps(frame)
        await router.handle_frame(connection, raw)

    return _send


async def eventually(predicate, timeout: float = 1.0):
    """Poll ``predicate`` while background tasks run."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
