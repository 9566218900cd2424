"""
External collaborators used by the reference processors.

Processors depend on the two protocols below; the HTTP implementations are
wired in only when their base URLs are configured.
"""

from typing import Any, Protocol

import httpx

from api.config.logging import get_logger
from api.config.settings import Settings

logger = get_logger(__name__)


class AnalysisClient(Protocol):
    """Analyzes a single repository."""

    async def analyze(self, owner: str, repo: str) -> dict[str, Any]:
        ...


class ExportDataSource(Protocol):
    """Supplies the rows of an export."""

    async def fetch_rows(
        self,
        export_type: str,
        user_id: str | None,
        filters: dict[str, Any],
    ) -> list[dict[str, Any]]:
        ...


class _HttpCollaborator:
    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout_s
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpAnalysisClient(_HttpCollaborator):
    """Calls ``POST {base_url}/analyses`` for each repository."""

    async def analyze(self, owner: str, repo: str) -> dict[str, Any]:
        response = await self._client.post(
            "/analyses", json={"owner": owner, "repo": repo}
        )
        if response.status_code == 404:
            raise LookupError(f"Repository {owner}/{repo} not found")
        response.raise_for_status()
        return response.json()


class HttpExportDataSource(_HttpCollaborator):
    """Reads rows from ``GET {base_url}/exports/{export_type}``."""

    async def fetch_rows(
        self,
        export_type: str,
        user_id: str | None,
        filters: dict[str, Any],
    ) -> list[dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        if user_id:
            params["user_id"] = user_id

        response = await self._client.get(f"/exports/{export_type}", params=params)
        response.raise_for_status()

        body = response.json()
        rows = body.get("data", body) if isinstance(body, dict) else body
        if not isinstance(rows, list):
            raise ValueError(f"Export source returned {type(rows).__name__}, expected a list")
        return rows


def build_analysis_client(settings: Settings) -> HttpAnalysisClient | None:
    if not settings.analysis_service_url:
        logger.info("No analysis service configured; batch-analysis disabled")
        return None
    return HttpAnalysisClient(settings.analysis_service_url)


def build_export_source(settings: Settings) -> HttpExportDataSource | None:
    if not settings.export_source_url:
        logger.info("No export source configured; export disabled")
        return None
    return HttpExportDataSource(settings.export_source_url)
