"""Inventory backend client against a mocked transport."""
import json

import httpx
import pytest

from taproom.core.errors import CollaboratorUnavailableError, InventoryApiError
from taproom.schemas.inventory_session import SaveCountRequest, SessionStatus
from taproom.services.inventory_api_client import InventoryApiClient

SESSION = {"id": 7, "zoneId": 2, "status": "in_progress", "startedAt": "2024-05-01T18:00:00Z"}


def make_client(handler, token="secret"):
    return InventoryApiClient(
        base_url="http://backend.test/",
        api_token=token,
        timeout=2,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_requests_carry_bearer_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"id": 1, "name": "Main Bar"}])

    zones = await make_client(handler).fetch_zones()

    assert zones[0].name == "Main Bar"
    assert seen[0].url == "http://backend.test/api/zones"
    assert seen[0].headers["authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_no_token_no_authorization_header():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    await make_client(handler, token="").fetch_products()

    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_start_session_created():
    def handler(request):
        assert request.method == "POST"
        assert json.loads(request.content) == {"zoneId": 2}
        return httpx.Response(201, json=SESSION)

    result = await make_client(handler).start_session(2)

    assert result.reused is False
    assert result.session.id == 7
    assert result.session.zone_id == 2
    assert result.session.is_active


@pytest.mark.asyncio
async def test_start_session_returns_existing_session():
    def handler(request):
        return httpx.Response(400, json={"error": "Session already active", "session": SESSION})

    result = await make_client(handler).start_session(2)

    assert result.reused is True
    assert result.session.id == 7


@pytest.mark.asyncio
async def test_start_session_plain_400_is_an_error():
    def handler(request):
        return httpx.Response(400, json={"error": "zoneId required"})

    with pytest.raises(InventoryApiError) as exc_info:
        await make_client(handler).start_session(2)

    assert exc_info.value.status_code == 400
    assert "zoneId required" in exc_info.value.message


@pytest.mark.asyncio
async def test_active_session_null():
    def handler(request):
        return httpx.Response(200, json=None)

    assert await make_client(handler).get_active_session() is None


@pytest.mark.asyncio
async def test_session_counts():
    def handler(request):
        assert request.url.path == "/api/inventory/sessions/7"
        return httpx.Response(200, json={
            "session": {**SESSION, "status": "completed"},
            "counts": [{"sessionId": 7, "productId": 1, "countedBottles": 2, "countedPartialOz": 150}],
        })

    completed = await make_client(handler).get_session_counts(7)

    assert completed.session.status == SessionStatus.COMPLETED
    assert completed.counts[0].counted_partial_oz == 150


@pytest.mark.asyncio
async def test_finish_and_cancel_patch_status():
    bodies = []

    def handler(request):
        assert request.method == "PATCH"
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(200, json={**SESSION, **body})

    client = make_client(handler)
    finished = await client.finish_session(7)
    cancelled = await client.cancel_session(7)

    assert bodies == [{"status": "completed"}, {"status": "cancelled"}]
    assert finished.status == SessionStatus.COMPLETED
    assert cancelled.status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_save_count_uses_backend_field_names():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"id": 99})

    request = SaveCountRequest(
        session_id=7, product_id=1, counted_bottles=2, counted_partial_ml=150,
        is_manual_estimate=False, scale_weight_grams=650,
    )
    result = await make_client(handler).save_count(request)

    assert result == {"id": 99}
    assert bodies[0]["countedPartialOz"] == 150
    assert bodies[0]["sessionId"] == 7
    assert bodies[0]["isManualEstimate"] is False
    assert bodies[0]["isKeg"] is False


@pytest.mark.asyncio
async def test_keg_summary():
    def handler(request):
        return httpx.Response(200, json={
            "tapped": [{"kegId": 1, "tapNumber": 4, "remainingPercent": 0.4}],
            "onDeckCount": 3,
            "totalKegEquivalent": 3.4,
        })

    summary = await make_client(handler).fetch_keg_summary(10)

    assert summary.on_deck_count == 3
    assert summary.tap_numbers == [4]


@pytest.mark.asyncio
async def test_lookup_unknown_code_is_none():
    def handler(request):
        return httpx.Response(404, json={"error": "not found"})

    assert await make_client(handler).lookup_product_by_code("999") is None


@pytest.mark.asyncio
async def test_lookup_known_code():
    def handler(request):
        assert request.url.path == "/api/products/lookup/0002"
        return httpx.Response(200, json={"id": 2, "name": "Craft Lager Can", "upc": "0002", "bottleSizeMl": 355})

    product = await make_client(handler).lookup_product_by_code("0002")

    assert product.id == 2
    assert product.bottle_size_ml == 355
    assert product.is_keg is False


@pytest.mark.asyncio
async def test_server_error_raises_inventory_api_error():
    def handler(request):
        return httpx.Response(500, json={"message": "database busy"})

    with pytest.raises(InventoryApiError) as exc_info:
        await make_client(handler).fetch_zones()

    assert exc_info.value.status_code == 500
    assert exc_info.value.payload == {"message": "database busy"}


@pytest.mark.asyncio
async def test_transport_failure_is_collaborator_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CollaboratorUnavailableError):
        await make_client(handler).fetch_products()


@pytest.mark.asyncio
async def test_timeout_is_collaborator_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(CollaboratorUnavailableError):
        await make_client(handler).get_active_session()


@pytest.mark.asyncio
async def test_ping():
    def up(request):
        return httpx.Response(200, json={"status": "ok"})

    def down(request):
        raise httpx.ConnectError("no route", request=request)

    def failing(request):
        return httpx.Response(502, text="bad gateway")

    assert await make_client(up).ping() is True
    assert await make_client(down).ping() is False
    assert await make_client(failing).ping() is False
