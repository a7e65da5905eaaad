"""Tests for the capture service client."""

import httpx
import pytest
import pytest_asyncio
import respx
from httpx import Response

from knowledge_sorter.siblings import CaptureClient

BASE_URL = "http://capture.test"


@pytest_asyncio.fixture
async def client():
    capture = CaptureClient(BASE_URL, timeout=1.0)
    yield capture
    await capture.close()


class TestCaptureClient:
    """Tests for CaptureClient."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_session_project_path(self, client):
        respx.get(f"{BASE_URL}/api/sessions/s1").mock(
            return_value=Response(200, json={"id": "s1", "project_path": "/srv/app"})
        )

        assert await client.get_session_project_path("s1") == "/srv/app"

    @pytest.mark.asyncio
    @respx.mock
    async def test_camel_case_project_path(self, client):
        respx.get(f"{BASE_URL}/api/sessions/s2").mock(
            return_value=Response(200, json={"id": "s2", "projectPath": "/srv/other"})
        )

        assert await client.get_session_project_path("s2") == "/srv/other"

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_degrades_to_none(self, client):
        respx.get(f"{BASE_URL}/api/sessions/s1").mock(return_value=Response(500))

        assert await client.get_session("s1") is None
        assert await client.get_session_project_path("s1") is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error_degrades(self, client):
        respx.get(f"{BASE_URL}/api/sessions").mock(side_effect=httpx.ConnectError("refused"))
        respx.get(f"{BASE_URL}/health").mock(side_effect=httpx.ConnectError("refused"))

        assert await client.get_active_sessions() == []
        assert await client.is_available() is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json_degrades(self, client):
        respx.get(f"{BASE_URL}/api/sessions/s1/messages").mock(
            return_value=Response(200, content=b"not json")
        )

        assert await client.get_session_messages("s1") == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_recent_passes_params(self, client):
        route = respx.get(f"{BASE_URL}/api/recent").mock(
            return_value=Response(200, json=[{"id": "m1"}])
        )

        assert await client.get_recent(limit=5, project="app") == [{"id": "m1"}]
        request = route.calls.last.request
        assert request.url.params["limit"] == "5"
        assert request.url.params["project"] == "app"

    @pytest.mark.asyncio
    @respx.mock
    async def test_is_available(self, client):
        respx.get(f"{BASE_URL}/health").mock(return_value=Response(200, json={"status": "healthy"}))

        assert await client.is_available() is True

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        capture = CaptureClient(BASE_URL + "/")
        assert capture.base_url == BASE_URL
        await capture.close()
        await capture.close()
