import time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import signbridge.server as server_module
from signbridge.config import RelayConfig
from signbridge.server import RateLimiter, SignBridgeServer


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


@pytest.fixture
def server():
    return SignBridgeServer(RelayConfig())


@pytest.fixture
def client(server):
    with TestClient(server.app) as client:
        yield client


def join(ws, server, room_id, expected_members):
    ws.send_json({"type": "join", "roomId": room_id})
    wait_until(lambda: len(server.state.members(room_id)) == expected_members)


def test_status_when_idle(client):
    response = client.get("/api/status")
    assert response.status_code == 200
    assert response.json() == {"status": "Online", "activeUsers": 0, "activeRooms": 0}


def test_status_counts_users_and_rooms(client, server):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        wait_until(lambda: server.state.connection_count == 2)
        join(a, server, "x", 1)

        assert client.get("/api/status").json() == {"status": "Online", "activeUsers": 2, "activeRooms": 1}

        b.send_json({"type": "join", "roomId": "y"})
        wait_until(lambda: server.state.room_count == 2)

    wait_until(lambda: server.state.connection_count == 0)
    assert client.get("/api/status").json() == {"status": "Online", "activeUsers": 0, "activeRooms": 0}


def test_three_clients_caption_scenario(client, server):
    with client.websocket_connect("/ws") as a:
        join(a, server, "x", 1)
        (a_id,) = server.state.members("x")

        with client.websocket_connect("/ws") as b:
            b.send_json({"type": "join", "roomId": "x"})
            b_id = a.receive_json()["userId"]

            with client.websocket_connect("/ws") as c:
                c.send_json({"type": "join", "roomId": "x"})
                c_joined = a.receive_json()
                assert c_joined["type"] == "user_connected"
                c_id = c_joined["userId"]
                assert b.receive_json() == {"type": "user_connected", "userId": c_id}
                assert len({a_id, b_id, c_id}) == 3

                a.send_json({"type": "caption", "roomId": "x", "text": "Hello"})
                for ws in (b, c):
                    message = ws.receive_json()
                    assert message["type"] == "caption"
                    assert message["text"] == "Hello"
                    assert message["sender"] == a_id
                    assert message["timestamp"]

                # A's own caption never came back: the next frame it sees is B's
                b.send_json({"type": "caption", "roomId": "x", "text": "Hi"})
                reply = a.receive_json()
                assert reply["text"] == "Hi"
                assert reply["sender"] == b_id


def test_disconnect_notifies_remaining_member(client, server):
    with client.websocket_connect("/") as a:
        join(a, server, "x", 1)
        with client.websocket_connect("/") as b:
            b.send_json({"type": "join", "roomId": "x"})
            b_id = a.receive_json()["userId"]

        assert a.receive_json() == {"type": "user_disconnected", "userId": b_id}
        wait_until(lambda: len(server.state.members("x")) == 1)
        assert server.state.room_count == 1


def test_last_member_leaving_removes_room(client, server):
    with client.websocket_connect("/ws") as a:
        join(a, server, "x", 1)

    wait_until(lambda: server.state.room_count == 0)
    assert server.state.members("x") == frozenset()
    assert client.get("/api/status").json()["activeRooms"] == 0


def test_signal_relay_broadcast_and_direct(client, server):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        join(a, server, "x", 1)
        (a_id,) = server.state.members("x")
        b.send_json({"type": "join", "roomId": "x"})
        b_id = a.receive_json()["userId"]

        offer = {"type": "offer", "sdp": "v=0"}
        b.send_json({"type": "signal", "target": a_id, "signal": offer})
        assert a.receive_json() == {"type": "signal", "signal": offer, "sender": b_id}

        candidate = {"candidate": "candidate:0 1 UDP 2122252543 10.0.0.2 5000 typ host", "sdpMLineIndex": 0}
        a.send_json({"type": "signal", "target": "broadcast", "signal": candidate})
        assert b.receive_json() == {"type": "signal", "signal": candidate, "sender": a_id}


def test_bad_frames_and_unknown_targets_do_not_close_connection(client, server):
    with client.websocket_connect("/ws") as a:
        join(a, server, "x", 1)

        a.send_text("this is not json")
        a.send_json({"type": "teleport"})
        a.send_json({"type": "signal", "target": "nobody-here", "signal": {"type": "offer"}})
        a.send_bytes(b'{"type": "caption", "text": "bytes frame"}')

        with client.websocket_connect("/ws") as b:
            b.send_json({"type": "join", "roomId": "x"})
            message = a.receive_json()
            assert message["type"] == "user_connected"
            b_id = message["userId"]

            b.send_json({"type": "caption", "text": "still alive"})
            assert a.receive_json()["sender"] == b_id


def test_rate_limiter_drops_excess_frames():
    limiter = RateLimiter(rate=3)

    allowed = [limiter.is_allowed("conn") for _ in range(5)]

    assert allowed[:3] == [True, True, True]
    assert allowed[3:] == [False, False]
    assert limiter.is_allowed("other")

    limiter.cleanup("conn")
    assert limiter.is_allowed("conn")


def test_rate_limiter_refills_over_time(monkeypatch):
    now = [100.0]
    monkeypatch.setattr(server_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
    limiter = RateLimiter(rate=2, burst=2)

    assert [limiter.is_allowed("conn") for _ in range(3)] == [True, True, False]

    now[0] += 0.5
    assert limiter.is_allowed("conn")
    assert not limiter.is_allowed("conn")

    now[0] += 10
    assert [limiter.is_allowed("conn") for _ in range(3)] == [True, True, False]


def test_rate_limiter_disabled_at_zero():
    limiter = RateLimiter(rate=0)

    assert not limiter.enabled
    assert all(limiter.is_allowed("conn") for _ in range(1000))


def test_default_config_relays_every_frame_of_a_burst(client, server):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        join(a, server, "x", 1)
        b.send_json({"type": "join", "roomId": "x"})
        assert a.receive_json()["type"] == "user_connected"

        for i in range(120):
            a.send_json({"type": "caption", "text": str(i)})

        assert [b.receive_json()["text"] for _ in range(120)] == [str(i) for i in range(120)]
