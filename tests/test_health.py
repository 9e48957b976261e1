"""
test_health.py — Health check and root endpoints.
"""

from safemessage.core.errors import StoreUnavailable
from safemessage.core.kv import MemoryStore, store_client


class UnreachableStore(MemoryStore):
    async def ping(self) -> bool:
        raise StoreUnavailable("ping", "-", ConnectionError("connection refused"))


async def test_health_ok(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["store"] == "connected"
    assert data["backend"] == "memory"
    assert data["environment"] == "test"


async def test_health_reports_store_outage(client, monkeypatch):
    monkeypatch.setattr(store_client, "store", UnreachableStore())
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["store"] == "disconnected"


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["name"] == "SafeMessage API"
