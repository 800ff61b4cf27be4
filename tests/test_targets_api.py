"""Tests for the /api/targets endpoints."""

import pytest
from httpx import AsyncClient

from fakes import SOLD_OUT_HTML, StubSite

URL = "https://example.com/us/products/1739/Space-Molly-Figure"


async def _add(client: AsyncClient, headers: dict, url: str = URL, **extra):
    return await client.post("/api/targets", headers=headers, json={"url": url, **extra})


@pytest.mark.asyncio
async def test_add_target(client: AsyncClient, owner_headers: dict, notifier):
    response = await _add(client, owner_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["target"]["product_id"] == "1739"
    assert data["target"]["name"] == "Space Molly Figure"
    assert data["target"]["owner_id"] == "user-1"
    assert data["target"]["last_known_available"] is True
    assert data["check"]["available"] is True
    assert data["check"]["changed"] is True
    assert len(notifier.notified) == 1


@pytest.mark.asyncio
async def test_add_requires_owner_header(client: AsyncClient):
    response = await client.post("/api/targets", json={"url": URL})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_add_duplicate(client: AsyncClient, owner_headers: dict):
    await _add(client, owner_headers)
    response = await _add(client, {"X-Owner-Id": "user-2"})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_add_invalid_url(client: AsyncClient, owner_headers: dict):
    response = await _add(client, owner_headers, url="https://example.com/us/collections/all")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_add_without_product_id(client: AsyncClient, owner_headers: dict):
    response = await _add(client, owner_headers, url="https://example.com/us/products/not-a-number")
    assert response.status_code == 400
    assert "product ID" in response.json()["detail"]


@pytest.mark.asyncio
async def test_list_targets(client: AsyncClient, owner_headers: dict):
    await _add(client, owner_headers)
    await _add(client, {"X-Owner-Id": "user-2"}, url="https://example.com/us/products/42/Labubu")

    everything = await client.get("/api/targets")
    assert everything.status_code == 200
    assert len(everything.json()) == 2

    mine = await client.get("/api/targets", params={"mine": "true"}, headers=owner_headers)
    assert [t["product_id"] for t in mine.json()] == ["1739"]


@pytest.mark.asyncio
async def test_remove_target(client: AsyncClient, owner_headers: dict):
    await _add(client, owner_headers)

    forbidden = await client.delete("/api/targets/1739", headers={"X-Owner-Id": "user-2"})
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "You can only remove products you added"

    response = await client.delete("/api/targets/1739", headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["active"] is False

    again = await client.delete("/api/targets/1739", headers=owner_headers)
    assert again.status_code == 409

    listed = await client.get("/api/targets")
    assert listed.json() == []


@pytest.mark.asyncio
async def test_remove_unknown(client: AsyncClient, owner_headers: dict):
    response = await client.delete("/api/targets/9999", headers=owner_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_check_and_history(client: AsyncClient, owner_headers: dict):
    await _add(client, owner_headers)

    response = await client.post("/api/targets/1739/check", headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["check"]["available"] is True

    history = await client.get("/api/targets/1739/checks")
    assert history.status_code == 200
    assert len(history.json()) == 2


@pytest.mark.asyncio
async def test_manual_check_other_owner(client: AsyncClient, owner_headers: dict):
    await _add(client, owner_headers)
    response = await client.post("/api/targets/1739/check", headers={"X-Owner-Id": "user-2"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, owner_headers: dict, site: StubSite):
    await _add(client, owner_headers)
    site.html = SOLD_OUT_HTML
    await _add(client, owner_headers, url="https://example.com/us/products/42/Labubu")

    response = await client.get("/api/targets/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["total_targets"] == 2
    assert data["in_stock"] == 1
    assert data["out_of_stock"] == 1
    assert data["tiers"] == {"high": 1, "medium": 1, "low": 0, "cold": 0}


@pytest.mark.asyncio
async def test_test_url_does_not_persist(client: AsyncClient):
    response = await client.post("/api/targets/test", json={"url": URL + "?utm=1"})
    assert response.status_code == 200
    data = response.json()
    assert data["url"] == URL
    assert data["product_id"] == "1739"
    assert data["available"] is True
    assert data["error"] is None

    listed = await client.get("/api/targets")
    assert listed.json() == []


@pytest.mark.asyncio
async def test_test_url_reports_unreachable(client: AsyncClient, prober):
    prober.reachable = False
    response = await client.post("/api/targets/test", json={"url": URL})
    assert response.status_code == 200
    assert response.json()["available"] is False
    assert response.json()["error"] == "unreachable"


@pytest.mark.asyncio
async def test_benchmark(client: AsyncClient):
    response = await client.post("/api/targets/benchmark", json={"url": URL, "iterations": 1})
    assert response.status_code == 200
    data = response.json()
    assert data["iterations"] == 1
    assert data["success_count"] == 1
    assert data["success_rate"] == 100.0


@pytest.mark.asyncio
async def test_benchmark_rejects_too_many_iterations(client: AsyncClient):
    response = await client.post("/api/targets/benchmark", json={"url": URL, "iterations": 500})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
