"""Tests for the UI WebSocket bridge message handling."""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from mkulimalink.network import LocalBridge
from mkulimalink.services.offline_client import OfflineAwareClient
from mkulimalink.services.sync_manager import SyncManager


@pytest.fixture
def bridge(db, monitor, api):
    manager = SyncManager(db, monitor, api)
    return LocalBridge(monitor, db, manager, OfflineAwareClient(db, monitor, manager))


@pytest.fixture
def websocket():
    return AsyncMock()


def _sent(websocket):
    return [json.loads(call.args[0]) for call in websocket.send.call_args_list]


def _handle(bridge, websocket, data):
    asyncio.run(bridge.handle_message(websocket, data))


def test_network_signal_switches_mode_and_broadcasts(bridge, websocket, monitor):
    bridge.clients.add(websocket)

    _handle(bridge, websocket, {"type": "network", "online": False})

    assert monitor.is_offline()
    status = _sent(websocket)[-1]
    assert status["type"] == "status"
    assert status["data"]["mode"] == "offline"


def test_queue_action_while_offline_acks_with_id(bridge, websocket, monitor, db):
    monitor.set_offline()

    _handle(bridge, websocket, {
        "type": "queue_action",
        "action_type": "CREATE_PRODUCT",
        "payload": {"name": "cassava"},
    })

    ack = _sent(websocket)[0]
    assert ack["type"] == "action_ack"
    assert ack["status"] == "queued"
    assert ack["action_id"] == db.list_pending()[0]["id"]


def test_queue_action_error_reported(bridge, websocket):
    _handle(bridge, websocket, {"type": "queue_action", "action_type": "NOPE", "payload": {}})

    error = _sent(websocket)[0]
    assert error["type"] == "action_error"
    assert error["code"] == "ValidationError"


def test_sync_request_returns_result(bridge, websocket, db):
    db.enqueue_action("CREATE_PRODUCT", {"name": "maize"})

    _handle(bridge, websocket, {"type": "sync"})

    result = _sent(websocket)[0]
    assert result["type"] == "sync_result"
    assert result["data"]["synced"] == 1


def test_get_pending(bridge, websocket, db):
    db.enqueue_action("CREATE_PRODUCT", {"name": "maize"})

    _handle(bridge, websocket, {"type": "get_pending"})

    assert _sent(websocket) == [{"type": "pending_info", "count": 1}]


def test_ping(bridge, websocket):
    _handle(bridge, websocket, {"type": "ping", "timestamp": 42})
    assert _sent(websocket) == [{"type": "pong", "timestamp": 42}]


def test_unknown_message_ignored(bridge, websocket):
    _handle(bridge, websocket, {"type": "reboot"})
    websocket.send.assert_not_called()


class FakeConnection:
    """Minimal server-side connection: yields queued messages, records sends."""

    remote_address = ("127.0.0.1", 50000)

    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message


def test_non_object_message_gets_error_and_connection_survives(bridge):
    connection = FakeConnection(["[1]", "42", '{"type": "ping", "timestamp": 7}'])

    asyncio.run(bridge.handler(connection))

    types = [message["type"] for message in connection.sent]
    assert types == ["status", "error", "error", "pong"]
    assert connection.sent[1]["error"] == "Message must be a JSON object"
    assert connection not in bridge.clients


def test_invalid_json_gets_error(bridge):
    connection = FakeConnection(["{not json"])

    asyncio.run(bridge.handler(connection))

    assert connection.sent[-1] == {"type": "error", "error": "Invalid JSON format"}


def test_stop_cancels_pending_broadcasts(bridge, monitor):
    async def flip_then_stop():
        bridge._schedule_broadcast(None, None, "test")
        assert len(bridge._tasks) == 1
        await bridge.stop()

    asyncio.run(flip_then_stop())

    assert bridge._tasks == set()
