"""API Endpoint Wrappers for job administration"""

from typing import Any

from .base import APIClient, TaskQueueError
from ..utils.config_manager import config

__all__ = ["TaskQueueClient", "TaskQueueError"]


class TaskQueueClient:
    """High-level client with one method per admin endpoint"""

    def __init__(self, base_url: str | None = None, **client_options: Any):
        api_config = config.load_config().get("api", {})

        self.api = APIClient(
            base_url=base_url or api_config.get("base_url", "http://localhost:8000"),
            timeout=api_config.get("timeout", 30),
            headers=api_config.get("headers", {}),
            **client_options,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    def list_jobs(
        self,
        state: list[str] | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if state:
            params["state"] = state
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/jobs/{job_id}")

    def stats(self) -> dict[str, Any]:
        return self.api.get("/jobs/stats")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/{job_id}/retry")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/{job_id}/cancel")
