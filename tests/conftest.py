"""Shared fixtures for the client sync and payment tests."""
from unittest.mock import MagicMock

import pytest

from mkulimalink.config import GatewayConfig
from mkulimalink.errors import TransportError
from mkulimalink.payments.order_service import OrderService
from mkulimalink.payments.order_store import OrderStore
from mkulimalink.services.local_db import LocalDatabase
from mkulimalink.services.offline_mode import ConnectivityMonitor

SECRET = "test-secret-key"


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeApi:
    """Records post/put calls; payloads whose "fail" key is set raise that error."""

    def __init__(self):
        self.calls = []

    async def _send(self, verb, path, payload):
        self.calls.append((verb, path, payload))
        error = payload.get("fail") if isinstance(payload, dict) else None
        if error == "transport":
            raise TransportError("connection reset")
        return {"ok": True, "path": path}

    async def post(self, path, payload=None):
        return await self._send("post", path, payload)

    async def put(self, path, payload=None):
        return await self._send("put", path, payload)

    async def get(self, path):
        self.calls.append(("get", path, None))
        return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path, clock):
    return LocalDatabase(tmp_path / "offline.db", clock=clock)


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initial_online=True)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def gateway_config():
    return GatewayConfig(client_id="client-1", api_key=SECRET, base_url="https://gateway.test")


@pytest.fixture
def order_store(tmp_path):
    return OrderStore(tmp_path / "orders.db")


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.initiate_payment.return_value = {"success": True, "transaction_id": "TXN-1", "status": "processing"}
    gw.process_refund.return_value = {"success": True, "refund_id": "RF-1", "status": "success"}
    return gw


@pytest.fixture
def order_service(order_store, gateway):
    return OrderService(order_store, gateway)
