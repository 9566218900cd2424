from conftest import EchoProcessor
from httpx import AsyncClient


class TestHealthCheck:
    """Health endpoint with database and queue status."""

    async def test_health_check_success(self, async_client: AsyncClient):
        response = await async_client.get("/v1/healthz")

        assert response.status_code == 200

        data = response.json()
        assert data["ok"] is True

        health_data = data["data"]
        assert health_data["ok"] is True
        assert health_data["version"] == "1.0.0"
        assert health_data["environment"] == "development"
        assert health_data["database"]["connected"] is True
        assert health_data["database"]["response_time_ms"] is not None

    async def test_queue_section(self, async_client: AsyncClient, job_queue):
        job_queue.register_processor("echo", EchoProcessor())
        await job_queue.add_job("echo", {})

        response = await async_client.get("/v1/healthz")

        queue = response.json()["data"]["queue"]
        assert queue["available"] is True
        assert queue["worker_id"] == "test-worker"
        assert queue["worker_running"] is False
        assert queue["job_types"] == ["echo"]
        assert queue["waiting"] == 1

    async def test_health_check_response_structure(self, async_client: AsyncClient):
        response = await async_client.get("/v1/healthz")

        data = response.json()

        # Check response envelope structure
        required_keys = ["ok", "data", "message", "request_id"]
        for key in required_keys:
            assert key in data

        # Check that request ID is present in headers
        assert "X-Request-ID" in response.headers

    async def test_database_down(self, app, async_client: AsyncClient):
        class DownDatabase:
            async def ping(self):
                raise ConnectionError("connection refused")

        app.state.database = DownDatabase()

        response = await async_client.get("/v1/healthz")

        assert response.status_code == 200
        health_data = response.json()["data"]
        assert health_data["ok"] is False
        assert health_data["database"]["connected"] is False
        assert "connection refused" in health_data["database"]["error"]
