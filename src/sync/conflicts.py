"""
Conflict Detection & Resolution.

Each locally edited entity is compared against its server counterpart when a
sync pass runs:

    UNMODIFIED ──edit──> LOCALLY_MODIFIED ──sync──> NO_CONFLICT
                                              └──> CONFLICT ──> SERVER_WINS
                                                            ├─> LOCAL_WINS
                                                            └─> MERGED

The server is unchanged since the last sync when its updated_at is missing or
not newer than the updated_at recorded at that sync. Without a recorded
baseline the server version is compared against the local edit time instead.
A row that is cached locally but missing on the server is a conflict.

Resolution policy is per entity kind. Courses, grades and the profile are
server-authoritative. Assignments and conversations merge: the server row wins
except for the fields composed on the device (submission drafts and unsent
messages), which are kept and pushed.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from src.core.models import (
    CachedItemMetadata,
    ConflictResolution,
    EntityKind,
    Record,
    SyncConflict,
    utcnow,
)

DEFAULT_POLICY: dict[EntityKind, ConflictResolution] = {
    EntityKind.COURSE: ConflictResolution.SERVER_WINS,
    EntityKind.GRADE: ConflictResolution.SERVER_WINS,
    EntityKind.PROFILE: ConflictResolution.SERVER_WINS,
    EntityKind.ASSIGNMENT: ConflictResolution.MERGED,
    EntityKind.CONVERSATION: ConflictResolution.MERGED,
}

# Fields owned by the device for merged kinds
LOCAL_FIELDS: dict[EntityKind, frozenset[str]] = {
    EntityKind.ASSIGNMENT: frozenset({"submission", "attachment_urls"}),
    EntityKind.CONVERSATION: frozenset({"draft_message"}),
}

# Never sent back to the server
_READ_ONLY_FIELDS = frozenset({"id", "updated_at"})


class ComparisonState(str, Enum):
    UNMODIFIED = "unmodified"
    NO_CONFLICT = "no_conflict"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Comparison:
    """Outcome of comparing one cached entity against the server."""

    state: ComparisonState
    local_modified_at: datetime | None = None
    server_modified_at: datetime | None = None
    server_deleted: bool = False


@dataclass(frozen=True)
class Resolution:
    """
    What to keep for one entity.

    `record` is the version to cache (None drops it), `push_fields` what to
    send to the server (empty when nothing needs pushing) and `conflict` the
    audit entry when a conflict was resolved.
    """

    record: Record | None
    push_fields: dict[str, Any] = field(default_factory=dict)
    conflict: SyncConflict | None = None

    @property
    def needs_push(self) -> bool:
        return bool(self.push_fields)


class ConflictDetector:
    """Stateless comparison of cached metadata against a server row."""

    def compare(self, meta: CachedItemMetadata | None, server: Record | None) -> Comparison:
        if meta is None or not meta.is_locally_modified:
            return Comparison(state=ComparisonState.UNMODIFIED)

        if server is None:
            return Comparison(
                state=ComparisonState.CONFLICT,
                local_modified_at=meta.modified_at,
                server_deleted=True,
            )

        server_ts = server.updated_at
        if server_ts is None:
            unchanged = True
        elif meta.server_modified_at is not None:
            unchanged = server_ts <= meta.server_modified_at
        else:
            unchanged = server_ts <= meta.modified_at

        return Comparison(
            state=ComparisonState.NO_CONFLICT if unchanged else ComparisonState.CONFLICT,
            local_modified_at=meta.modified_at,
            server_modified_at=server_ts,
        )


class ConflictPolicy:
    """Per-kind resolution table with optional overrides."""

    def __init__(self, overrides: Mapping[EntityKind | str, ConflictResolution | str] | None = None) -> None:
        self._table = dict(DEFAULT_POLICY)
        for kind, resolution in (overrides or {}).items():
            self._table[EntityKind(kind)] = ConflictResolution(resolution)

    @classmethod
    def from_settings(cls, settings) -> ConflictPolicy:
        return cls(settings.conflict_policy_overrides)

    def for_kind(self, kind: EntityKind) -> ConflictResolution:
        return self._table.get(kind, ConflictResolution.SERVER_WINS)

    def local_fields(self, kind: EntityKind) -> frozenset[str]:
        return LOCAL_FIELDS.get(kind, frozenset())


class ConflictResolver:
    """
    Applies the policy to one comparison.

    Usage:
        resolver = ConflictResolver(ConflictPolicy())
        resolution = resolver.resolve(EntityKind.ASSIGNMENT, meta, local, server)
    """

    def __init__(self, policy: ConflictPolicy | None = None, detector: ConflictDetector | None = None) -> None:
        self.policy = policy or ConflictPolicy()
        self.detector = detector or ConflictDetector()

    def resolve(
        self,
        kind: EntityKind,
        meta: CachedItemMetadata | None,
        local: Record | None,
        server: Record | None,
    ) -> Resolution:
        comparison = self.detector.compare(meta, server)

        if comparison.state is ComparisonState.UNMODIFIED or local is None:
            return Resolution(record=server)

        if comparison.state is ComparisonState.NO_CONFLICT:
            # local edit applies cleanly on top of an unchanged server row
            return Resolution(record=local, push_fields=self._push_fields(kind, local))

        resolution = self.policy.for_kind(kind)
        record, push = self._apply(kind, resolution, local, server)
        conflict = SyncConflict(
            entity_type=kind,
            entity_id=str(local.id),
            entity_name=(server or local).display_name,
            local_modified_at=comparison.local_modified_at or utcnow(),
            server_modified_at=comparison.server_modified_at,
            resolution=resolution,
        )
        logger.info(
            f"Conflict on {kind.value} {local.id} ({conflict.entity_name}): "
            f"{resolution.value}{' (deleted on server)' if comparison.server_deleted else ''}"
        )
        return Resolution(record=record, push_fields=push, conflict=conflict)

    def _apply(
        self,
        kind: EntityKind,
        resolution: ConflictResolution,
        local: Record,
        server: Record | None,
    ) -> tuple[Record | None, dict[str, Any]]:
        if resolution is ConflictResolution.SERVER_WINS:
            return server, {}

        if resolution is ConflictResolution.LOCAL_WINS:
            return local, self._push_fields(kind, local)

        # MERGED: nothing to merge into once the server row is gone
        if server is None:
            return None, {}
        local_fields = self.policy.local_fields(kind)
        overlay = {name: getattr(local, name) for name in local_fields}
        merged = server.model_copy(update=overlay)
        return merged, {k: _jsonable(v) for k, v in overlay.items()}

    def _push_fields(self, kind: EntityKind, local: Record) -> dict[str, Any]:
        if self.policy.for_kind(kind) is ConflictResolution.MERGED:
            names = self.policy.local_fields(kind)
            return {name: _jsonable(getattr(local, name)) for name in names}
        data = local.model_dump(mode="json")
        return {k: v for k, v in data.items() if k not in _READ_ONLY_FIELDS}


def _jsonable(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    return value


class ConflictHistory:
    """
    Append-only conflict log.

    Entries are immutable and never pruned here; retention belongs to the
    caller.
    """

    def __init__(self, entries: Sequence[SyncConflict] = ()) -> None:
        self._entries: list[SyncConflict] = list(entries)

    def append(self, conflicts: Sequence[SyncConflict]) -> None:
        known = {c.id for c in self._entries}
        self._entries.extend(c for c in conflicts if c.id not in known)

    @property
    def entries(self) -> list[SyncConflict]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
