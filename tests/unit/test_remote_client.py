"""
Unit tests for the remote data client.
"""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from httpx import Request, Response

from src.core.models import Course, EntityKind
from src.sync.remote_client import RemoteDataClient, RemoteDataError, RemoteDataSource

BASE_URL = "http://localhost:54321"


@pytest_asyncio.fixture
async def remote():
    """Remote client with an open httpx client."""
    client = RemoteDataClient(base_url=BASE_URL, api_key="anon-key", access_token="user-token", timeout=5)
    await client._ensure_client()
    yield client
    await client.close()


class TestRemoteDataClient:
    """Test suite for RemoteDataClient."""

    def test_satisfies_protocol(self):
        assert isinstance(RemoteDataClient(base_url=BASE_URL), RemoteDataSource)

    @pytest.mark.asyncio
    async def test_headers(self, remote):
        headers = remote._client.headers
        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_fetch_all_parses_records(self, remote, monkeypatch):
        course_id = uuid4()
        calls = {}

        async def mock_get(path, params=None, **kwargs):
            calls["path"] = path
            calls["params"] = params
            return Response(
                200,
                json=[{"id": str(course_id), "title": "Biology", "updated_at": "2025-03-01T12:00:00+00:00"}],
                request=Request("GET", f"{BASE_URL}{path}"),
            )

        monkeypatch.setattr(remote._client, "get", mock_get)

        courses = await remote.fetch_all(EntityKind.COURSE)

        assert calls["path"] == "/rest/v1/courses"
        assert calls["params"] == {"select": "*"}
        assert courses == [Course(id=course_id, title="Biology", updated_at="2025-03-01T12:00:00+00:00")]

    @pytest.mark.asyncio
    async def test_fetch_all_http_error(self, remote, monkeypatch):
        async def mock_get(path, params=None, **kwargs):
            return Response(
                401,
                json={"message": "JWT expired"},
                request=Request("GET", f"{BASE_URL}{path}"),
            )

        monkeypatch.setattr(remote._client, "get", mock_get)

        with pytest.raises(RemoteDataError) as exc_info:
            await remote.fetch_all(EntityKind.GRADE)

        assert exc_info.value.status_code == 401
        assert "JWT expired" in str(exc_info.value)
        assert exc_info.value.kind is EntityKind.GRADE

    @pytest.mark.asyncio
    async def test_fetch_all_connection_error(self, remote, monkeypatch):
        async def mock_get(path, params=None, **kwargs):
            raise httpx.ConnectError("Connection refused")

        monkeypatch.setattr(remote._client, "get", mock_get)

        with pytest.raises(RemoteDataError, match="connection error"):
            await remote.fetch_all(EntityKind.ASSIGNMENT)

    @pytest.mark.asyncio
    async def test_fetch_all_invalid_payload(self, remote, monkeypatch):
        async def mock_get(path, params=None, **kwargs):
            return Response(200, json=[{"id": "not-a-uuid"}], request=Request("GET", f"{BASE_URL}{path}"))

        monkeypatch.setattr(remote._client, "get", mock_get)

        with pytest.raises(RemoteDataError, match="invalid payload"):
            await remote.fetch_all(EntityKind.COURSE)

    @pytest.mark.asyncio
    async def test_update_success(self, remote, monkeypatch):
        entity_id = uuid4()
        calls = {}

        async def mock_patch(path, params=None, json=None, headers=None, **kwargs):
            calls.update(path=path, params=params, json=json)
            return Response(204, request=Request("PATCH", f"{BASE_URL}{path}"))

        monkeypatch.setattr(remote._client, "patch", mock_patch)

        result = await remote.update(EntityKind.PROFILE, entity_id, {"coppa_consent": "granted"})

        assert result.success
        assert calls["path"] == "/rest/v1/profiles"
        assert calls["params"] == {"id": f"eq.{entity_id}"}
        assert calls["json"] == {"coppa_consent": "granted"}

    @pytest.mark.asyncio
    async def test_update_failure_is_returned(self, remote, monkeypatch):
        async def mock_patch(path, params=None, json=None, headers=None, **kwargs):
            return Response(500, text="boom", request=Request("PATCH", f"{BASE_URL}{path}"))

        monkeypatch.setattr(remote._client, "patch", mock_patch)

        result = await remote.update(EntityKind.ASSIGNMENT, uuid4(), {"submission": "x"})

        assert not result.success
        assert result.status_code == 500
        assert result.error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_update_connection_error(self, remote, monkeypatch):
        async def mock_patch(path, params=None, json=None, headers=None, **kwargs):
            raise httpx.ConnectTimeout("timed out")

        monkeypatch.setattr(remote._client, "patch", mock_patch)

        result = await remote.update(EntityKind.ASSIGNMENT, uuid4(), {"submission": "x"})

        assert not result.success
        assert "timed out" in result.error
