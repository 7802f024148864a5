"""Device API: snapshots after every call and errors as notifications."""
import httpx
import pytest
import pytest_asyncio

import taproom.main as main_module
from taproom.main import app


@pytest_asyncio.fixture
async def client(controller):
    app.state.controller = controller
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://counter.test") as client:
        yield client
    del app.state.controller


@pytest.mark.asyncio
async def test_state_starts_in_setup(client):
    response = await client.get("/api/v1/counting/state")

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "setup"
    assert body["allowed_modes"] == ["list", "scan", "view_completed"]
    assert body["is_online"] is True
    assert body["session"] is None


@pytest.mark.asyncio
async def test_catalog(client):
    response = await client.get("/api/v1/counting/catalog")

    body = response.json()
    assert [z["name"] for z in body["zones"]] == ["Main Bar", "Walk-in Cooler"]
    assert {p["id"] for p in body["products"]} == {1, 2, 3, 10, 11}
    assert "bottle_size_ml" in body["products"][0]


@pytest.mark.asyncio
async def test_count_one_product(client, api):
    response = await client.post("/api/v1/counting/sessions", json={"zone_id": 1})
    assert response.status_code == 201
    body = response.json()
    assert body["mode"] == "list"
    assert body["session"]["zone_id"] == 1
    assert any(n["type"] == "session_active" for n in body["notifications"])

    body = (await client.post("/api/v1/counting/products/select", json={"product_id": 1})).json()
    assert body["mode"] == "input"
    assert body["draft"]["backup_count"] == 2
    assert body["can_save"] is True

    body = (await client.put("/api/v1/counting/input/partial", json={"partial_percent": 50})).json()
    assert body["total_units"] == pytest.approx(2.5)

    response = await client.post("/api/v1/counting/input/save")
    assert response.status_code == 200
    body = response.json()
    assert body["queued_offline"] is False
    assert body["count"]["total_units"] == pytest.approx(2.5)
    assert body["snapshot"]["mode"] == "list"
    assert body["snapshot"]["counted_product_ids"] == [1]
    assert api.saved[0].counted_partial_ml == pytest.approx(375)


@pytest.mark.asyncio
async def test_errors_keep_the_mode(client):
    response = await client.post("/api/v1/counting/products/select", json={"product_id": 1})

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "NO_ACTIVE_SESSION"
    assert body["mode"] == "setup"
    assert body["error"]


@pytest.mark.asyncio
async def test_out_of_range_slider_is_rejected(client):
    await client.post("/api/v1/counting/sessions", json={"zone_id": 1})
    await client.post("/api/v1/counting/products/select", json={"product_id": 1})

    response = await client.put("/api/v1/counting/input/partial", json={"partial_percent": 120})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_search(client):
    await client.post("/api/v1/counting/sessions", json={"zone_id": 1})

    response = await client.get("/api/v1/counting/products/search", params={"q": "lager"})

    assert [p["name"] for p in response.json()] == ["Craft Lager Can"]


@pytest.mark.asyncio
async def test_offline_save_is_queued(client, api):
    await client.post("/api/v1/counting/sessions", json={"zone_id": 1})

    status = (await client.post("/api/v1/connectivity/offline")).json()
    assert status["is_online"] is False

    await client.post("/api/v1/counting/products/select", json={"product_id": 3})
    await client.put("/api/v1/counting/input/partial", json={"partial_percent": 20})
    body = (await client.post("/api/v1/counting/input/save")).json()
    assert body["queued_offline"] is True
    assert body["snapshot"]["pending_offline_count"] == 1

    queue = (await client.get("/api/v1/connectivity/queue")).json()
    assert [q["product_id"] for q in queue] == [3]
    assert queue[0]["status"] == "PENDING"

    status = (await client.post("/api/v1/connectivity/online")).json()
    assert status["is_online"] is True
    assert status["pending_count"] == 0
    assert api.saved[-1].counted_partial_ml == pytest.approx(150)


@pytest.mark.asyncio
async def test_manual_sync_and_failed_queue(client, api):
    status = (await client.get("/api/v1/connectivity")).json()
    assert status == {"is_online": True, "pending_count": 0, "failed_count": 0, "is_syncing": False}

    result = (await client.post("/api/v1/connectivity/sync")).json()
    assert result["attempted"] == 0

    failed = (await client.get("/api/v1/connectivity/queue", params={"status": "FAILED"})).json()
    assert failed == []

    result = (await client.post("/api/v1/connectivity/queue/retry-failed")).json()
    assert result["synced"] == 0


@pytest.mark.asyncio
async def test_missing_controller_is_503():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://counter.test") as client:
        response = await client.get("/api/v1/counting/state")

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_health(client, session_factory, monkeypatch):
    monkeypatch.setattr(main_module, "async_session_factory", session_factory)

    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["checks"]["local_store"] == "connected"
    assert body["checks"]["inventory_api"] == "online"
