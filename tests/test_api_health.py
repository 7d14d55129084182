"""Tests for the root and /api/health endpoints."""

from unittest.mock import AsyncMock

from mundapdari.routers import health


class TestRoot:
    async def test_welcome(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["health"] == "/api/health"
        assert data["version"]

    async def test_unknown_route(self, client):
        resp = await client.get("/api/does-not-exist")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["message"] == "Route GET /api/does-not-exist not found"

    async def test_request_id_header(self, client):
        resp = await client.get("/", headers={"X-Request-ID": "abc123"})
        assert resp.headers["x-request-id"] == "abc123"


class TestHealth:
    async def test_health_without_redis(self, client, monkeypatch):
        monkeypatch.setattr(health, "get_redis", AsyncMock(return_value=None))
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"database": "ok", "redis": "unavailable"}
        assert body["environment"] == "test"

    async def test_health_with_redis(self, client, monkeypatch):
        redis = AsyncMock()
        monkeypatch.setattr(health, "get_redis", AsyncMock(return_value=redis))
        resp = await client.get("/api/health")
        assert resp.json()["services"]["redis"] == "ok"
        redis.ping.assert_awaited_once()

    async def test_health_redis_error_is_unhealthy(self, client, monkeypatch):
        redis = AsyncMock()
        redis.ping.side_effect = ConnectionError("boom")
        monkeypatch.setattr(health, "get_redis", AsyncMock(return_value=redis))
        resp = await client.get("/api/health")
        assert resp.status_code == 503
        assert resp.json()["services"]["redis"] == "error"

    async def test_detailed(self, client, monkeypatch):
        monkeypatch.setattr(health, "get_redis", AsyncMock(return_value=None))
        resp = await client.get("/api/health/detailed")
        assert resp.status_code == 200
        body = resp.json()
        assert [c["name"] for c in body["checks"]] == ["database", "redis"]
        assert body["notifications"]["mode"] == "development"
        assert body["scheduler"]["running"] is False

    async def test_ready(self, client):
        resp = await client.get("/api/health/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"

    async def test_live(self, client):
        resp = await client.get("/api/health/live")
        assert resp.json()["status"] == "alive"

    async def test_metrics(self, client):
        resp = await client.get("/api/health/metrics")
        process = resp.json()["process"]
        assert process["pid"] > 0
        assert process["max_rss_kb"] > 0
