"""
Offline Storage Service - caller-facing cache API.

Wraps OfflineStore with a current-user switch and typed save/load pairs for
every cached entity kind. The current user only selects the StorageContext
that is passed down; the store itself holds no ambient user state.

Usage:
    storage = OfflineStorageService()
    storage.set_current_user(user_id)
    storage.save_courses(courses)
    await storage.flush()
    courses = storage.load_courses()
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future
from datetime import datetime
from functools import lru_cache
from typing import Any
from uuid import UUID

from loguru import logger
from pydantic import TypeAdapter, ValidationError
from rich.filesize import decimal

from src.core.grading import GradeWeights
from src.core.models import (
    Assignment,
    CachedEntity,
    CachedItemMetadata,
    Conversation,
    Course,
    EntityKind,
    GradeEntry,
    Record,
    SyncConflict,
    SyncResult,
    UserProfile,
    utcnow,
)
from src.offline.storage import OfflineStore, StorageContext, StorageResult

METADATA_KEY = "metadata"
CONFLICT_HISTORY_KEY = "conflict_history"
SYNC_RESULT_KEY = "last_sync_result"
LAST_SYNC_DATE_KEY = "last_sync_date"
GRADE_WEIGHTS_PREFIX = "grade_weights:"

# Labels for the storage breakdown, in display order
BREAKDOWN_LABELS: tuple[tuple[str, str], ...] = (
    ("Courses", EntityKind.COURSE.storage_key),
    ("Assignments", EntityKind.ASSIGNMENT.storage_key),
    ("Grades", EntityKind.GRADE.storage_key),
    ("Conversations", EntityKind.CONVERSATION.storage_key),
    ("User Profile", EntityKind.PROFILE.storage_key),
    ("Sync Metadata", METADATA_KEY),
    ("Conflict History", CONFLICT_HISTORY_KEY),
)


@lru_cache(maxsize=None)
def _adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


class OfflineStorageService:
    """Per-user offline cache for courses, assignments, grades, profile and conversations."""

    def __init__(self, store: OfflineStore | None = None) -> None:
        self.store = store or OfflineStore()
        self._context: StorageContext | None = None

    # =========================================================================
    # Current User
    # =========================================================================

    @property
    def context(self) -> StorageContext | None:
        return self._context

    @property
    def current_user_id(self) -> str | None:
        return self._context.user_id if self._context else None

    def set_current_user(self, user_id: UUID | str) -> None:
        """Scope all subsequent saves and loads to this user."""
        ctx = StorageContext.for_user(user_id)
        if ctx != self._context:
            logger.debug(f"Offline storage switched to user {ctx.user_id}")
        self._context = ctx

    def clear_current_user(self) -> None:
        """Deactivate the namespace (logout). Loads return empty, saves are no-ops."""
        self._context = None

    # =========================================================================
    # Generic Helpers
    # =========================================================================

    def _save(self, key: str, value: Any, tp: Any) -> Future[StorageResult]:
        if self._context is None:
            return self.store.write(None, key, "")
        payload = _adapter(tp).dump_json(value).decode("utf-8")
        return self.store.write(self._context, key, payload)

    def _load(self, key: str, tp: Any) -> Any | None:
        raw = self.store.read(self._context, key)
        if raw is None:
            return None
        try:
            return _adapter(tp).validate_json(raw)
        except ValidationError as e:
            logger.debug(f"Discarding unreadable cache entry {key}: {e}")
            return None

    def save_records(self, kind: EntityKind, records: Sequence[Record]) -> Future[StorageResult]:
        """Replace the cached set for an entity kind."""
        return self._save(kind.storage_key, list(records), list[kind.record_type])

    def load_records(self, kind: EntityKind) -> list[Record]:
        return self._load(kind.storage_key, list[kind.record_type]) or []

    # =========================================================================
    # Entity Kinds
    # =========================================================================

    def save_courses(self, courses: Sequence[Course]) -> Future[StorageResult]:
        return self.save_records(EntityKind.COURSE, courses)

    def load_courses(self) -> list[Course]:
        return self.load_records(EntityKind.COURSE)

    def save_assignments(self, assignments: Sequence[Assignment]) -> Future[StorageResult]:
        return self.save_records(EntityKind.ASSIGNMENT, assignments)

    def load_assignments(self) -> list[Assignment]:
        return self.load_records(EntityKind.ASSIGNMENT)

    def save_grades(self, grades: Sequence[GradeEntry]) -> Future[StorageResult]:
        return self.save_records(EntityKind.GRADE, grades)

    def load_grades(self) -> list[GradeEntry]:
        return self.load_records(EntityKind.GRADE)

    def save_conversations(self, conversations: Sequence[Conversation]) -> Future[StorageResult]:
        return self.save_records(EntityKind.CONVERSATION, conversations)

    def load_conversations(self) -> list[Conversation]:
        return self.load_records(EntityKind.CONVERSATION)

    def save_profile(self, profile: UserProfile) -> Future[StorageResult]:
        return self.save_records(EntityKind.PROFILE, [profile])

    def load_profile(self) -> UserProfile | None:
        profiles = self.load_records(EntityKind.PROFILE)
        return profiles[0] if profiles else None

    # =========================================================================
    # Sync Bookkeeping
    # =========================================================================

    def save_metadata(self, metadata: Sequence[CachedItemMetadata]) -> Future[StorageResult]:
        return self._save(METADATA_KEY, list(metadata), list[CachedItemMetadata])

    def load_metadata(self) -> list[CachedItemMetadata]:
        return self._load(METADATA_KEY, list[CachedItemMetadata]) or []

    def save_conflict_history(self, history: Sequence[SyncConflict]) -> Future[StorageResult]:
        return self._save(CONFLICT_HISTORY_KEY, list(history), list[SyncConflict])

    def load_conflict_history(self) -> list[SyncConflict]:
        return self._load(CONFLICT_HISTORY_KEY, list[SyncConflict]) or []

    def save_sync_result(self, result: SyncResult) -> Future[StorageResult]:
        return self._save(SYNC_RESULT_KEY, result, SyncResult)

    def load_sync_result(self) -> SyncResult | None:
        return self._load(SYNC_RESULT_KEY, SyncResult)

    @property
    def last_sync_date(self) -> datetime | None:
        return self._load(LAST_SYNC_DATE_KEY, datetime)

    @last_sync_date.setter
    def last_sync_date(self, value: datetime | None) -> None:
        if self._context is None:
            return
        if value is None:
            self.store.delete(self._context, LAST_SYNC_DATE_KEY).result()
            return
        payload = _adapter(datetime).dump_json(value).decode("utf-8")
        self.store.write_now(self._context, LAST_SYNC_DATE_KEY, payload)

    # =========================================================================
    # Grade Weights (per course)
    # =========================================================================

    def save_grade_weights(self, course_id: UUID, weights: GradeWeights) -> Future[StorageResult]:
        return self._save(f"{GRADE_WEIGHTS_PREFIX}{course_id}", weights, GradeWeights)

    def load_grade_weights(self, course_id: UUID, default: GradeWeights | None = None) -> GradeWeights:
        stored = self._load(f"{GRADE_WEIGHTS_PREFIX}{course_id}", GradeWeights)
        return stored or default or GradeWeights()

    # =========================================================================
    # Local Edits
    # =========================================================================

    def load_cached(self, kind: EntityKind) -> list[CachedEntity]:
        """Cached records of a kind joined with their modification metadata."""
        meta = {m.id: m for m in self.load_metadata() if m.entity_type == kind}
        entities = []
        for record in self.load_records(kind):
            entry = meta.get(record.id)
            entities.append(
                CachedEntity[kind.record_type](
                    id=record.id,
                    payload=record,
                    modified_at=entry.modified_at if entry else None,
                    is_locally_modified=entry.is_locally_modified if entry else False,
                )
            )
        return entities

    def record_local_edit(self, kind: EntityKind, record: Record) -> list[Future[StorageResult]]:
        """
        Store an edit made on the device and flag it for conflict checks.

        The record replaces the cached one with the same id (or is appended).
        """
        if self._context is None:
            return []
        self.store.wait_pending()

        records = [r for r in self.load_records(kind) if r.id != record.id]
        records.append(record)
        saves = [self.save_records(kind, records)]

        metadata = self.load_metadata()
        saves.append(self.save_metadata(_flag_modified(metadata, kind, record.id, record.display_name)))
        return saves

    def mark_locally_modified(self, kind: EntityKind, entity_id: UUID) -> Future[StorageResult] | None:
        """Flag an already cached entity as edited offline. None if it is not cached."""
        if self._context is None:
            return None
        self.store.wait_pending()
        metadata = self.load_metadata()
        if not any(m.id == entity_id and m.entity_type == kind for m in metadata):
            return None
        return self.save_metadata(_flag_modified(metadata, kind, entity_id, None))

    # =========================================================================
    # Clear / Size
    # =========================================================================

    def clear_all_data(self) -> StorageResult:
        """Delete every cached item of the current user (no-op without a user)."""
        return self.store.clear(self._context)

    async def clear_all_data_async(self) -> StorageResult:
        """clear_all_data() without blocking the event loop on queued saves."""
        return await self.store.clear_async(self._context)

    @property
    def has_offline_data(self) -> bool:
        keys = set(self.store.keys(self._context))
        return EntityKind.COURSE.storage_key in keys or EntityKind.ASSIGNMENT.storage_key in keys

    @property
    def cached_data_size(self) -> int:
        """Total bytes cached for the current user."""
        return self.store.size(self._context)

    @property
    def formatted_cache_size(self) -> str:
        return decimal(self.cached_data_size)

    @property
    def storage_breakdown(self) -> list[tuple[str, int]]:
        """(label, bytes) for each cached set that exists."""
        sizes = self.store.sizes(self._context)
        return [(label, sizes[key]) for label, key in BREAKDOWN_LABELS if key in sizes]

    async def flush(self) -> list[StorageResult]:
        return await self.store.flush()


def _flag_modified(
    metadata: list[CachedItemMetadata],
    kind: EntityKind,
    entity_id: UUID,
    name: str | None,
) -> list[CachedItemMetadata]:
    now = utcnow()
    updated = []
    found = False
    for entry in metadata:
        if entry.id == entity_id and entry.entity_type == kind:
            found = True
            entry = entry.model_copy(
                update={
                    "modified_at": now,
                    "is_locally_modified": True,
                    "entity_name": name or entry.entity_name,
                }
            )
        updated.append(entry)
    if not found:
        updated.append(
            CachedItemMetadata(
                id=entity_id,
                entity_type=kind,
                entity_name=name or str(entity_id),
                modified_at=now,
                is_locally_modified=True,
            )
        )
    return updated
