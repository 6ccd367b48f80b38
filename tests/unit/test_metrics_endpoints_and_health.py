"""
Tests de los endpoints de metricas y del health check.
"""
import pytest

from practice_sync.shared.utils.datetime_utils import utc_now


class TestMetricsEndpoints:
    """GET /api/v1/metrics/hourly y /daily"""

    @pytest.mark.asyncio
    async def test_hourly_reflects_recorded_events(self, client, engine):
        await engine.metrics.record_event("matters.full")
        await engine.metrics.record_error("matters.full", "RATE_LIMIT_EXCEEDED")
        now = utc_now()

        response = await client.get(
            "/api/v1/metrics/hourly",
            params={"date": now.date().isoformat(), "hour": now.hour},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["events"] == {"matters.full": 1}
        assert data["errors"] == {"matters.full": {"RATE_LIMIT_EXCEEDED": 1}}
        assert data["error_rates"] == {"matters.full": 0.5}

    @pytest.mark.asyncio
    async def test_daily(self, client, engine):
        await engine.metrics.record_duration("contacts.single", 50)

        response = await client.get("/api/v1/metrics/daily")

        assert response.status_code == 200
        assert response.json()["hour"] is None
        assert response.json()["durations"]["contacts.single"]["avg_ms"] == 50.0

    @pytest.mark.asyncio
    async def test_invalid_hour(self, client):
        response = await client.get("/api/v1/metrics/hourly", params={"hour": 24})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_metrics_store_down(self, client, fake_redis):
        fake_redis.fail = True

        response = await client.get("/api/v1/metrics/daily")

        assert response.status_code == 503
        assert response.json()["error"] == "METRICS_UNAVAILABLE"


class TestHealth:
    """GET /health"""

    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"database": "up", "cache": "up"}
        assert data["workers"] == "stopped"

    @pytest.mark.asyncio
    async def test_degraded_when_cache_down(self, client, fake_redis):
        fake_redis.fail = True

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["services"]["cache"] == "down"
