"""HTTP client for the upstream capture service.

The capture service records developer sessions and feeds the extraction
queue. It is optional context: every call degrades to None or [] when the
service is down, and nothing is retried.
"""

from typing import Any

import httpx

from knowledge_sorter.log_config import get_logger

log = get_logger("siblings")


class CaptureClient:
    """Failure-tolerant async client for the capture service.

    Args:
        base_url: Service root, e.g. http://localhost:5401
        timeout: Per-request timeout in seconds
    """

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str, params: dict | None = None) -> Any:
        """GET path and decode JSON; None on any failure."""
        client = await self._get_client()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            log.warning(f"Capture service {path} returned {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            log.warning(f"Capture service {path} unreachable: {e}")
        return None

    async def get_health(self) -> dict[str, Any] | None:
        return await self._get_json("/health")

    async def is_available(self) -> bool:
        health = await self.get_health()
        return bool(health) and health.get("status") in ("ok", "healthy")

    async def get_active_sessions(self) -> list[dict[str, Any]]:
        data = await self._get_json("/api/sessions")
        return data if isinstance(data, list) else []

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        data = await self._get_json(f"/api/sessions/{session_id}")
        return data if isinstance(data, dict) else None

    async def get_session_messages(self, session_id: str) -> list[dict[str, Any]]:
        data = await self._get_json(f"/api/sessions/{session_id}/messages")
        return data if isinstance(data, list) else []

    async def get_recent(self, limit: int = 20, project: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if project:
            params["project"] = project
        data = await self._get_json("/api/recent", params=params)
        return data if isinstance(data, list) else []

    async def get_session_project_path(self, session_id: str) -> str | None:
        """Project path the capture service recorded for a session."""
        session = await self.get_session(session_id)
        if not session:
            return None
        return session.get("project_path") or session.get("projectPath")
