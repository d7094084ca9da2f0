"""
Offline Store - per-user keyed blob storage.

Every call takes an explicit StorageContext naming the user whose namespace is
read or written; a None context means "no active user" and turns saves into
no-ops and loads into empty results.

Writes are fire-and-forget: `write()` hands the serialized payload to a single
writer thread and returns a Future resolving to a StorageResult. A single
writer keeps writes in submission order, so two saves of the same key always
end with the later one (full-set replace, last write wins). Callers that need
durability await the returned future or `flush()`.

Reads are synchronous and never raise; anything unreadable is reported as
absent.

Database location: configured via LMS_DATABASE_URL (default ~/.lms_offline/offline_cache.db)
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import SQLAlchemyError

from src.db.database import build_engine, make_session_factory, session_scope
from src.db.models import ComplianceFlag, OfflineCacheBlob


class OfflineError(Exception):
    """Base error for the offline layer."""


class StorageError(OfflineError):
    """A read or write against the local store failed."""


@dataclass(frozen=True)
class StorageContext:
    """Names the user namespace a storage call operates on."""

    user_id: str

    @classmethod
    def for_user(cls, user_id: UUID | str) -> StorageContext:
        user_id = str(user_id).strip()
        if not user_id:
            raise ValueError("user_id must not be empty")
        return cls(user_id=user_id)


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a save or clear. `written` is False for no-op calls."""

    key: str
    success: bool = True
    written: bool = True
    error: StorageError | None = None

    @classmethod
    def noop(cls, key: str) -> StorageResult:
        return cls(key=key, written=False)

    @classmethod
    def failed(cls, key: str, error: Exception) -> StorageResult:
        wrapped = error if isinstance(error, StorageError) else StorageError(str(error))
        return cls(key=key, success=False, written=False, error=wrapped)


class OfflineStore:
    """
    SQLAlchemy-backed key/blob store addressable by (user_id, cache_key).

    Handles:
    - Full-set replacement writes on a single ordered writer thread
    - Per-user deletes that never touch other namespaces
    - Size accounting per user
    - Durable compliance flags, kept out of cache clears
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if database_url is None:
                from config import get_settings

                database_url = get_settings().get_database_url()
            engine = build_engine(database_url)
        self.engine = engine
        self._sessions = make_session_factory(engine)
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="offline-writer")
        self._pending: set[Future[StorageResult]] = set()
        self._pending_lock = threading.Lock()

        logger.info(f"OfflineStore initialized at {engine.url}")

    # =========================================================================
    # Writes
    # =========================================================================

    def write(self, ctx: StorageContext | None, key: str, payload: str) -> Future[StorageResult]:
        """Queue a full replacement of `key` for the context's user."""
        if ctx is None:
            return _completed(StorageResult.noop(key))
        return self._submit(self._write_now, ctx.user_id, key, payload)

    def write_now(self, ctx: StorageContext | None, key: str, payload: str) -> StorageResult:
        """Synchronous variant of write() for small settings-like values."""
        if ctx is None:
            return StorageResult.noop(key)
        return self._write_now(ctx.user_id, key, payload)

    def delete(self, ctx: StorageContext | None, key: str) -> Future[StorageResult]:
        """Queue removal of a single key."""
        if ctx is None:
            return _completed(StorageResult.noop(key))
        return self._submit(self._delete_now, ctx.user_id, key)

    def clear(self, ctx: StorageContext | None) -> StorageResult:
        """
        Delete every cached key of the context's user.

        Waits for queued writes first so a save issued before the clear cannot
        resurrect data afterwards. Compliance flags are kept.
        """
        if ctx is None:
            return StorageResult.noop("*")
        self.wait_pending()
        return self._clear_now(ctx.user_id)

    async def clear_async(self, ctx: StorageContext | None) -> StorageResult:
        """clear() for event-loop callers: awaits queued writes, then clears on the writer thread."""
        if ctx is None:
            return StorageResult.noop("*")
        await self.flush()
        return await asyncio.wrap_future(self._submit(self._clear_now, ctx.user_id))

    def _clear_now(self, user_id: str) -> StorageResult:
        try:
            with session_scope(self._sessions) as session:
                session.execute(delete(OfflineCacheBlob).where(OfflineCacheBlob.user_id == user_id))
            logger.info(f"Cleared offline cache for user {user_id}")
            return StorageResult(key="*")
        except SQLAlchemyError as e:
            logger.warning(f"Failed to clear offline cache for user {user_id}: {e}")
            return StorageResult.failed("*", e)

    def _submit(self, fn, *args) -> Future[StorageResult]:
        future = self._writer.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future[StorageResult]) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _write_now(self, user_id: str, key: str, payload: str) -> StorageResult:
        try:
            with session_scope(self._sessions) as session:
                row = session.get(OfflineCacheBlob, (user_id, key))
                if row is None:
                    session.add(OfflineCacheBlob(user_id=user_id, cache_key=key, payload=payload))
                else:
                    row.payload = payload
            return StorageResult(key=key)
        except SQLAlchemyError as e:
            logger.debug(f"Failed to save {key} for user {user_id}: {e}")
            return StorageResult.failed(key, e)

    def _delete_now(self, user_id: str, key: str) -> StorageResult:
        try:
            with session_scope(self._sessions) as session:
                session.execute(
                    delete(OfflineCacheBlob).where(
                        OfflineCacheBlob.user_id == user_id,
                        OfflineCacheBlob.cache_key == key,
                    )
                )
            return StorageResult(key=key)
        except SQLAlchemyError as e:
            logger.debug(f"Failed to delete {key} for user {user_id}: {e}")
            return StorageResult.failed(key, e)

    # =========================================================================
    # Pending Writes
    # =========================================================================

    async def flush(self) -> list[StorageResult]:
        """Await every write queued so far."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return []
        return list(await asyncio.gather(*(asyncio.wrap_future(f) for f in pending)))

    def wait_pending(self, timeout: float | None = None) -> None:
        """Blocking counterpart of flush() for synchronous callers."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait_futures(pending, timeout=timeout)

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    # =========================================================================
    # Reads
    # =========================================================================

    def read(self, ctx: StorageContext | None, key: str) -> str | None:
        """Payload stored under key, or None when absent, inactive or unreadable."""
        if ctx is None:
            return None
        try:
            with session_scope(self._sessions) as session:
                row = session.get(OfflineCacheBlob, (ctx.user_id, key))
                return row.payload if row is not None else None
        except SQLAlchemyError as e:
            logger.debug(f"Failed to load {key} for user {ctx.user_id}: {e}")
            return None

    def keys(self, ctx: StorageContext | None) -> list[str]:
        return list(self.sizes(ctx))

    def sizes(self, ctx: StorageContext | None, keys: Iterable[str] | None = None) -> dict[str, int]:
        """Byte size of each stored payload for the user."""
        if ctx is None:
            return {}
        stmt = select(OfflineCacheBlob.cache_key, OfflineCacheBlob.payload).where(
            OfflineCacheBlob.user_id == ctx.user_id
        )
        if keys is not None:
            stmt = stmt.where(OfflineCacheBlob.cache_key.in_(list(keys)))
        try:
            with session_scope(self._sessions) as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.debug(f"Failed to measure cache for user {ctx.user_id}: {e}")
            return {}
        return {key: len(payload.encode("utf-8")) for key, payload in rows}

    def size(self, ctx: StorageContext | None) -> int:
        return sum(self.sizes(ctx).values())

    # =========================================================================
    # Compliance Flags
    # =========================================================================
    # Synchronous and raising: a lost flag would silently drop a legally
    # required retry.

    def set_flag(self, user_id: UUID | str, name: str, value: str) -> None:
        uid = str(user_id)
        try:
            with session_scope(self._sessions) as session:
                row = session.get(ComplianceFlag, (uid, name))
                if row is None:
                    session.add(ComplianceFlag(user_id=uid, name=name, value=value))
                else:
                    row.value = value
        except SQLAlchemyError as e:
            raise StorageError(f"could not persist flag {name} for user {uid}: {e}") from e

    def get_flag(self, user_id: UUID | str, name: str) -> str | None:
        uid = str(user_id)
        try:
            with session_scope(self._sessions) as session:
                row = session.get(ComplianceFlag, (uid, name))
                return row.value if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"could not read flag {name} for user {uid}: {e}") from e

    def clear_flag(self, user_id: UUID | str, name: str) -> None:
        uid = str(user_id)
        try:
            with session_scope(self._sessions) as session:
                session.execute(
                    delete(ComplianceFlag).where(
                        ComplianceFlag.user_id == uid,
                        ComplianceFlag.name == name,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"could not clear flag {name} for user {uid}: {e}") from e

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Drain the writer and release connections."""
        self._writer.shutdown(wait=True)
        self.engine.dispose()


def _completed(result: StorageResult) -> Future[StorageResult]:
    future: Future[StorageResult] = Future()
    future.set_result(result)
    return future
