"""
Remote Data Client

Async HTTP client for the LMS backend (PostgREST over httpx). Row-level
authorization happens on the server; this client only lists rows visible to
the signed-in user and patches individual rows.

Usage:
    async with RemoteDataClient.from_settings(get_settings()) as remote:
        courses = await remote.fetch_all(EntityKind.COURSE)
        result = await remote.update(EntityKind.ASSIGNMENT, assignment.id, {"submission": "..."})
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

import httpx
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from src.core.models import EntityKind, Record

KIND_TABLES: dict[EntityKind, str] = {
    EntityKind.COURSE: "courses",
    EntityKind.ASSIGNMENT: "assignments",
    EntityKind.GRADE: "grades",
    EntityKind.PROFILE: "profiles",
    EntityKind.CONVERSATION: "conversations",
}

REST_PREFIX = "/rest/v1"


class RemoteDataError(Exception):
    """A fetch against the remote backend failed (transport, HTTP or payload)."""

    def __init__(self, kind: EntityKind, message: str, status_code: int | None = None):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.status_code = status_code


@dataclass
class RemoteResult:
    """Result of a remote write."""

    success: bool
    error: str | None = None
    status_code: int | None = None


@runtime_checkable
class RemoteDataSource(Protocol):
    """What the sync layer needs from a backend."""

    async def fetch_all(self, kind: EntityKind) -> list[Record]: ...

    async def update(self, kind: EntityKind, entity_id: UUID | str, fields: dict[str, Any]) -> RemoteResult: ...


class RemoteDataClient:
    """
    PostgREST client for the cached entity tables.

    Supports:
    - API key + bearer session authentication
    - Listing every visible row of a table
    - Patching a single row by id
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings) -> RemoteDataClient:
        return cls(
            base_url=settings.api_base_url,
            api_key=settings.api_key,
            access_token=settings.api_access_token,
            timeout=settings.api_timeout_seconds,
        )

    async def __aenter__(self) -> RemoteDataClient:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json", "Accept": "application/json"}
            if self.api_key:
                headers["apikey"] = self.api_key
            token = self.access_token or self.api_key
            if token:
                headers["Authorization"] = f"Bearer {token}"

            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_all(self, kind: EntityKind) -> list[Record]:
        """
        All rows of the kind's table visible to the current session.

        Raises:
            RemoteDataError: on connection failure, non-2xx status or a
                payload that does not validate as the kind's record type
        """
        client = await self._ensure_client()
        path = f"{REST_PREFIX}/{KIND_TABLES[kind]}"

        try:
            response = await client.get(path, params={"select": "*"})
        except httpx.RequestError as e:
            logger.warning(f"Connection error fetching {kind.value}: {e}")
            raise RemoteDataError(kind, f"connection error: {e}") from e

        if response.status_code != 200:
            raise RemoteDataError(kind, _error_detail(response), response.status_code)

        try:
            records = TypeAdapter(list[kind.record_type]).validate_json(response.content)
        except ValidationError as e:
            raise RemoteDataError(kind, f"invalid payload: {e.error_count()} errors") from e

        logger.debug(f"Fetched {len(records)} {kind.value} rows")
        return records

    # =========================================================================
    # Writes
    # =========================================================================

    async def update(self, kind: EntityKind, entity_id: UUID | str, fields: dict[str, Any]) -> RemoteResult:
        """Patch the given columns of one row."""
        client = await self._ensure_client()
        path = f"{REST_PREFIX}/{KIND_TABLES[kind]}"

        try:
            response = await client.patch(
                path,
                params={"id": f"eq.{entity_id}"},
                json=fields,
                headers={"Prefer": "return=minimal"},
            )
        except httpx.RequestError as e:
            logger.warning(f"Connection error updating {kind.value} {entity_id}: {e}")
            return RemoteResult(success=False, error=str(e))

        if response.status_code in (200, 204):
            return RemoteResult(success=True, status_code=response.status_code)

        error = _error_detail(response)
        logger.warning(f"Update of {kind.value} {entity_id} failed: {error}")
        return RemoteResult(success=False, error=error, status_code=response.status_code)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("hint")
        if message:
            return f"HTTP {response.status_code}: {message}"
    return f"HTTP {response.status_code}"
