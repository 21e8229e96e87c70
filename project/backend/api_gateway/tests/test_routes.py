"""
Tests for API Gateway routes.

Tests endpoints with FastAPI TestClient and dependency overrides.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from api_gateway.dependencies import get_media_tool, get_redis, get_store
from api_gateway.main import app
from shared.errors import PersistenceError, RetryableError
from shared.models.composite import ClipStatus, CompositeStatus

SCRIPT = "I love this product. It changed my life. Try it today!"
ACTOR = {
    "image_url": "https://cdn.example.com/actors/anna.png",
    "gender": "female",
    "voice_style": "friendly",
}


@pytest.fixture
def media_tool():
    mock_tool = MagicMock()
    mock_tool.is_available = AsyncMock(return_value=True)
    return mock_tool


@pytest.fixture
def client(store, mock_redis_client, media_tool):
    """Create test client backed by an in-memory store and a Redis double."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_redis] = lambda: mock_redis_client
    app.dependency_overrides[get_media_tool] = lambda: media_tool
    yield TestClient(app)
    app.dependency_overrides.clear()


def _body(**overrides):
    body = {"script": SCRIPT, "actor": ACTOR, "target_duration_seconds": 15}
    body.update(overrides)
    return body


def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Composite Video API"
    assert "X-Request-ID" in response.headers


class TestSubmit:
    """Test POST /composites."""

    def test_submit_accepted(self, client, store, mock_redis_client):
        response = client.post("/api/v1/composites", json=_body(), headers={"X-Caller-ID": "caller-1"})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["clip_count"] == 3
        assert data["estimated_time"] == 180
        assert data["estimated_cost"] == 2.25

        # Enqueued for the worker
        mock_redis_client.push.assert_awaited_once_with("composite_generation", {"composite_id": data["job_id"]})
        # Rate limited per caller
        assert mock_redis_client.client.zcard.call_args[0][0] == "rate_limit:caller-1"

    def test_submit_invalid_script(self, client, mock_redis_client):
        response = client.post("/api/v1/composites", json=_body(script="Buy it"))

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["retryable"] is False
        assert not mock_redis_client.push.called

    def test_submit_invalid_image_url(self, client):
        actor = dict(ACTOR, image_url="ftp://cdn.example.com/anna.png")

        response = client.post("/api/v1/composites", json=_body(actor=actor))

        assert response.status_code == 400

    def test_submit_malformed_body(self, client):
        response = client.post("/api/v1/composites", json={"script": SCRIPT})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "actor" in response.json()["error"]

    def test_submit_rate_limited(self, client, mock_redis_client):
        mock_redis_client.client.zcard = AsyncMock(return_value=1000)

        response = client.post("/api/v1/composites", json=_body())

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert "Retry-After" in response.headers
        assert not mock_redis_client.push.called

    def test_submit_queue_down(self, client, mock_redis_client):
        mock_redis_client.push = AsyncMock(side_effect=RetryableError("Redis push failed"))

        response = client.post("/api/v1/composites", json=_body())

        assert response.status_code == 500
        assert response.json()["retryable"] is True


class TestStatus:
    """Test GET /composites/{job_id} and listing."""

    @pytest.mark.asyncio
    async def test_status_from_store(self, client, store, composite, mock_redis_client):
        await store.create(composite)

        response = client.get("/api/v1/composites/job-1")

        assert response.status_code == 200
        data = response.json()
        assert data["job_id"] == "job-1"
        assert data["status"] == "pending"
        assert len(data["clips"]) == 3
        # Running jobs are never cached
        assert not mock_redis_client.set_json.called

    @pytest.mark.asyncio
    async def test_finished_status_cached(self, client, store, composite_factory, mock_redis_client):
        await store.create(composite_factory(status=CompositeStatus.FAILED, error_message="Clip 1 failed: boom"))

        response = client.get("/api/v1/composites/job-1")

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        mock_redis_client.set_json.assert_awaited_once()
        assert mock_redis_client.set_json.call_args[0][0] == "job_status:job-1"

    def test_status_from_cache(self, client, mock_redis_client):
        mock_redis_client.get_json = AsyncMock(return_value={"job_id": "job-1", "status": "stitching"})

        response = client.get("/api/v1/composites/job-1")

        assert response.status_code == 200
        assert response.json()["status"] == "stitching"
        assert not mock_redis_client.set_json.called

    @pytest.mark.asyncio
    async def test_status_cache_down(self, client, store, composite, mock_redis_client):
        await store.create(composite)
        mock_redis_client.get_json = AsyncMock(side_effect=RetryableError("Redis get failed"))
        mock_redis_client.set_json = AsyncMock(side_effect=RetryableError("Redis set failed"))

        response = client.get("/api/v1/composites/job-1")

        assert response.status_code == 200

    def test_status_not_found(self, client):
        response = client.get("/api/v1/composites/missing")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_status_store_down(self, client, store):
        store.get = AsyncMock(side_effect=PersistenceError("database unavailable"))

        response = client.get("/api/v1/composites/job-1")

        assert response.status_code == 500
        assert response.json()["retryable"] is False

    @pytest.mark.asyncio
    async def test_list_composites(self, client, store, composite_factory):
        await store.create(composite_factory(job_id="job-1"))
        await store.create(composite_factory(job_id="job-2", status=CompositeStatus.FAILED))

        response = client.get("/api/v1/composites", params={"status": "failed"})

        assert response.status_code == 200
        assert [job["job_id"] for job in response.json()["jobs"]] == ["job-2"]


class TestCancel:
    """Test POST /composites/{job_id}/cancel."""

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, client, store, composite_factory, mock_redis_client):
        await store.create(composite_factory(status=CompositeStatus.GENERATING_CLIPS))

        response = client.post("/api/v1/composites/job-1/cancel")

        assert response.status_code == 202
        assert response.json()["message"] == "Cancellation requested"
        mock_redis_client.set.assert_awaited_once_with("job_cancel:job-1", "1", ex=3600)

    @pytest.mark.asyncio
    async def test_cancel_finished_job(self, client, store, composite_factory, mock_redis_client):
        await store.create(composite_factory(status=CompositeStatus.COMPLETED))

        response = client.post("/api/v1/composites/job-1/cancel")

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"
        assert not mock_redis_client.set.called


class TestRetry:
    """Test POST /composites/{job_id}/retry."""

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, client, store, composite, mock_redis_client):
        clips = list(composite.clips)
        clips[0] = clips[0].model_copy(update={
            "status": ClipStatus.COMPLETED,
            "video_url": "https://fal.media/clip1.mp4",
            "duration_seconds": 4.0,
        })
        await store.create(composite.model_copy(update={"status": CompositeStatus.FAILED, "clips": clips}))

        response = client.post("/api/v1/composites/job-1/retry")

        assert response.status_code == 202
        data = response.json()
        assert data["retry_of"] == "job-1"
        assert data["job_id"] != "job-1"
        # Only the two clips left to generate are estimated
        assert data["estimated_time"] == 120
        mock_redis_client.push.assert_awaited_once_with("composite_generation", {"composite_id": data["job_id"]})

    @pytest.mark.asyncio
    async def test_retry_running_job(self, client, store, composite_factory):
        await store.create(composite_factory(status=CompositeStatus.GENERATING_CLIPS))

        response = client.post("/api/v1/composites/job-1/retry")

        assert response.status_code == 409


class TestHealth:
    """Test GET /health."""

    def test_healthy(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["redis"] == "connected"
        assert data["queue"] == {"size": 0, "healthy": True}
        assert data["media_tool"] == "available"
        assert "issues" not in data

    def test_media_tool_missing_is_degraded(self, client, media_tool):
        media_tool.is_available = AsyncMock(return_value=False)

        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["issues"] == ["media tool not available"]

    def test_redis_down(self, client, mock_redis_client):
        mock_redis_client.health_check = AsyncMock(return_value=False)
        mock_redis_client.queue_length = AsyncMock(side_effect=RetryableError("Redis llen failed"))

        response = client.get("/api/v1/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["queue"]["healthy"] is False
        assert "redis connection failed" in data["issues"]

    def test_database_down(self, client, store):
        with patch.object(store, "health_check", AsyncMock(return_value=False)):
            response = client.get("/api/v1/health")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
