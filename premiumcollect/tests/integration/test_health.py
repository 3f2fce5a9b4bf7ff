from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health_is_public_and_enveloped(client) -> None:
    response = await client.get("/v1/health")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "ok"
    assert data["live_sessions"] == 0
    assert set(data["db_pool"]) == {"size", "checked_out", "checked_in", "overflow"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client) -> None:
    response = await client.get("/v1/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_meta_echoes_request_id(client) -> None:
    ok = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})
    assert ok.json()["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert ok.headers["X-Request-Id"] == "req-123"

    missing = await client.get("/v1/does-not-exist", headers={"X-Request-Id": "req-456"})
    body = missing.json()
    assert body["meta"]["request_id"] == "req-456"
    assert "details" not in body["error"]
