"""
Integration tests for the FastAPI surface.

The racing service is swapped for one backed by the scripted fake source
through app.dependency_overrides.
"""

import asyncio

import httpx
import pytest

from paddock.exceptions import HttpError, UnauthorizedError
from paddock.main import app, get_racing_service


@pytest.fixture
async def client(service):
    app.dependency_overrides[get_racing_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_root_and_health(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "operational"

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["api_key_configured"] is True


@pytest.mark.asyncio
async def test_list_races(client, fake_source):
    fake_source.failing_horses.add("b2")

    response = await client.get("/api/races")

    assert response.status_code == 200
    races = response.json()
    assert [r["id"] for r in races] == ["r1", "r2", "r3"]
    assert races[1]["is_degraded"] is True
    assert len(races[1]["entries"]) == 4
    assert races[2]["surface"] == "Synthetic"


@pytest.mark.asyncio
async def test_get_race_and_not_found(client):
    response = await client.get("/api/races/r1")
    assert response.status_code == 200
    assert [e["post_position"] for e in response.json()["entries"]] == [1, 2, 3]

    response = await client.get("/api/races/missing")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_results(client):
    response = await client.get("/api/results")
    assert response.status_code == 200
    entries = response.json()[0]["entries"]
    assert [e["finish_position"] for e in entries] == [1, 2]


@pytest.mark.asyncio
async def test_search_horses(client):
    response = await client.get("/api/horses", params={"q": "horse b", "limit": 2})
    assert response.status_code == 200
    assert [h["id"] for h in response.json()] == ["b1", "b2"]


@pytest.mark.asyncio
async def test_search_horses_rejects_bad_limit(client):
    response = await client.get("/api/horses", params={"limit": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_horse_details(client):
    response = await client.get("/api/horses/c1")
    assert response.status_code == 200
    assert response.json()["name"] == "Horse c1"

    response = await client.get("/api/horses/nobody")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_upstream_failure_is_standard_error(client, fake_source):
    fake_source.list_error = HttpError(500)

    response = await client.get("/api/races")

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "HTTP_ERROR"
    assert error["details"]["upstream_status"] == 500


@pytest.mark.asyncio
async def test_unauthorized_clears_key(client, fake_source):
    fake_source.list_error = UnauthorizedError()

    response = await client.get("/api/races")
    assert response.status_code == 401

    status = (await client.get("/api/status")).json()
    assert status["api_key_configured"] is False
    races_state = next(s for s in status["states"] if s["kind"] == "races")
    assert "expired" in races_state["error_message"]


@pytest.mark.asyncio
async def test_update_credentials(client, service):
    response = await client.put("/api/credentials", json={"api_key": "short"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    response = await client.put("/api/credentials", json={"api_key": "k" * 32})
    assert response.status_code == 200
    assert service.api_key_configured


@pytest.mark.asyncio
async def test_clear_cache(client, fake_source):
    await client.get("/api/races")
    response = await client.post("/api/cache/clear")
    assert response.status_code == 200
    await client.get("/api/races")
    assert fake_source.calls["list_racecards"] == 2


@pytest.mark.asyncio
async def test_concurrent_horse_details_requests(client, fake_source):
    fake_source.latencies["a1"] = 0.02

    first, second = await asyncio.gather(
        client.get("/api/horses/a1"), client.get("/api/horses/b1")
    )

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["id"] == "a1"
    assert second.json()["id"] == "b1"
