"""API Endpoint Wrappers - Typed job API calls"""

from typing import Any

from .base import APIClient, JobServiceError
from ..utils.config_manager import config

__all__ = ["JobServiceClient", "JobServiceError"]


class JobServiceClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def submit_job(
        self,
        type: str,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
        max_attempts: int | None = None,
        delay_ms: int | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Submit a job; only the options given are sent"""
        options = {
            key: value
            for key, value in {
                "priority": priority,
                "max_attempts": max_attempts,
                "delay_ms": delay_ms,
                "timeout_ms": timeout_ms,
            }.items()
            if value is not None
        }
        data: dict[str, Any] = {"type": type, "payload": payload or {}}
        if options:
            data["options"] = options
        return self.api.post("/jobs", data)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get job state by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def list_jobs(
        self,
        status: str | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a queued or processing job"""
        return self.api.delete(f"/jobs/{job_id}")

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics"""
        return self.api.get("/jobs/stats")

    def get_metrics(self, type: str | None = None) -> dict[str, Any]:
        """Get processing metrics of the serving process"""
        return self.api.get("/jobs/metrics", {"type": type} if type else None)

    def cleanup(self, older_than_ms: int) -> dict[str, Any]:
        """Purge old terminal jobs"""
        return self.api.post("/jobs/cleanup", params={"older_than_ms": older_than_ms})
