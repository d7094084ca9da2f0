"""
Sync Service - Orchestrates server → offline cache synchronization.

Core responsibilities:
- Fetch every tracked entity kind from the remote backend
- Compare locally edited cache rows against the server and resolve conflicts
- Push local winners back to the server
- Replace the cached set per kind and rebuild sync metadata
- Stamp the last sync date and persist a SyncResult summary
- Retry a pending COPPA consent write on launch and reconnect

A failure in one kind never aborts the others: fetch, push and storage
failures are collected as SyncResult.errors (partial success).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field

import httpx
from loguru import logger

from src.core.models import (
    CachedItemMetadata,
    EntityKind,
    Record,
    SyncConflict,
    SyncResult,
    utcnow,
)
from src.offline.service import OfflineStorageService
from src.offline.storage import StorageError, StorageResult
from src.sync.conflicts import ConflictHistory, ConflictPolicy, ConflictResolver
from src.sync.consent import ConsentSyncService
from src.sync.remote_client import RemoteDataError, RemoteDataSource, RemoteResult

TRACKED_KINDS: tuple[EntityKind, ...] = (
    EntityKind.COURSE,
    EntityKind.ASSIGNMENT,
    EntityKind.GRADE,
    EntityKind.CONVERSATION,
    EntityKind.PROFILE,
)

MetadataKey = tuple[EntityKind, object]


@dataclass
class KindOutcome:
    """Merged state of one entity kind after a pass."""

    records: list[Record] = field(default_factory=list)
    metadata: list[CachedItemMetadata] = field(default_factory=list)
    conflicts_found: int = 0
    resolved: list[SyncConflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SyncService:
    """
    Orchestrates a full offline sync pass for the active user.

    Features:
    - Partial success (per-kind failure isolation)
    - Per-kind conflict policy (server wins, local wins, merged)
    - Failed pushes stay locally modified and are retried next pass
    - Progress callbacks (for CLI)
    """

    def __init__(
        self,
        storage: OfflineStorageService,
        remote: RemoteDataSource,
        policy: ConflictPolicy | None = None,
        consent: ConsentSyncService | None = None,
        kinds: tuple[EntityKind, ...] = TRACKED_KINDS,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> None:
        """
        Initialize sync service.

        Args:
            storage: Offline cache facade (its current user is synced)
            remote: Backend implementing fetch_all/update
            policy: Conflict policy (defaults per entity kind)
            consent: Consent service for pending COPPA retries
            kinds: Entity kinds to sync, in order
            progress_callback: Optional callback(kind_label, current, total)
        """
        self.storage = storage
        self.remote = remote
        self.resolver = ConflictResolver(policy or ConflictPolicy())
        self.consent = consent
        self.kinds = kinds
        self._progress_callback = progress_callback

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def sync_for_offline_use(self) -> SyncResult:
        """Run one sync pass and return (and persist) its summary."""
        result = SyncResult()
        if self.storage.context is None:
            result.errors.append("No active user; nothing to sync")
            logger.warning("Sync skipped: no active user")
            return result

        # local edits queued before the pass must be visible to it
        await self.storage.flush()

        previous = {(m.entity_type, m.id): m for m in self.storage.load_metadata()}
        metadata = dict(previous)
        saves: list[Future[StorageResult]] = []
        resolved: list[SyncConflict] = []
        synced_kinds = 0

        logger.info(f"Starting offline sync for user {self.storage.current_user_id}")

        for index, kind in enumerate(self.kinds, start=1):
            if self._progress_callback:
                self._progress_callback(kind.label, index, len(self.kinds))

            try:
                server_records = await self.remote.fetch_all(kind)
            except RemoteDataError as e:
                logger.warning(f"Skipping {kind.value}: {e}")
                result.errors.append(f"Failed to fetch {kind.label.lower()}: {e}")
                continue

            outcome = await self._sync_kind(kind, server_records, previous)
            synced_kinds += 1

            # metadata of this kind is rebuilt, other kinds keep theirs
            metadata = {key: m for key, m in metadata.items() if key[0] != kind}
            metadata.update({(m.entity_type, m.id): m for m in outcome.metadata})

            saves.append(self.storage.save_records(kind, outcome.records))
            result.items_synced += len(outcome.records)
            result.conflicts_found += outcome.conflicts_found
            result.conflicts_resolved += len(outcome.resolved)
            result.errors.extend(outcome.errors)
            resolved.extend(outcome.resolved)

        if synced_kinds:
            saves.append(self.storage.save_metadata(list(metadata.values())))
        if resolved:
            history = ConflictHistory(self.storage.load_conflict_history())
            history.append(resolved)
            saves.append(self.storage.save_conflict_history(history.entries))

        result.errors.extend(await self._await_saves(saves))

        if synced_kinds:
            self.storage.last_sync_date = utcnow()

        result.errors.extend(await self._await_saves([self.storage.save_sync_result(result)]))

        logger.info(f"Offline sync finished: {result.to_dict()}")
        return result

    async def handle_connectivity_change(self, is_online: bool) -> SyncResult | None:
        """Retry pending consent and run a sync pass when the device comes online."""
        if not is_online:
            logger.info("Device offline, serving cached data")
            return None

        consent_error = await self._retry_consent()
        result = await self.sync_for_offline_use()
        if consent_error:
            result.errors.append(consent_error)
        return result

    async def on_launch(self) -> bool | None:
        """
        Launch hook: retry a consent write left pending by a previous run.

        Returns None when nothing was pending.
        """
        if self.consent is None or self.storage.current_user_id is None:
            return None
        return await self.consent.retry_pending(self.storage.current_user_id)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _sync_kind(
        self,
        kind: EntityKind,
        server_records: list[Record],
        previous: dict[MetadataKey, CachedItemMetadata],
    ) -> KindOutcome:
        outcome = KindOutcome()
        local = {r.id: r for r in self.storage.load_records(kind)}

        if kind is EntityKind.PROFILE:
            server_records = self._own_profile(server_records)
        server = {r.id: r for r in server_records}

        # server order first, then local edits the server no longer has
        ids = list(server)
        ids.extend(
            rid
            for rid in local
            if rid not in server and (m := previous.get((kind, rid))) is not None and m.is_locally_modified
        )

        for rid in ids:
            meta = previous.get((kind, rid))
            server_record = server.get(rid)
            resolution = self.resolver.resolve(kind, meta, local.get(rid), server_record)

            if resolution.conflict is not None:
                outcome.conflicts_found += 1

            push_failed = False
            if resolution.needs_push:
                try:
                    push = await self.remote.update(kind, rid, resolution.push_fields)
                except (RemoteDataError, httpx.HTTPError) as e:
                    push = RemoteResult(success=False, error=str(e))
                if not push.success:
                    outcome.errors.append(f"Failed to push {kind.value} {rid}: {push.error}")
                    if _is_permanent_rejection(push):
                        # 4xx is final, fall back to the server row
                        logger.warning(f"Server rejected {kind.value} {rid}, discarding local edit")
                        if server_record is not None:
                            outcome.records.append(server_record)
                            outcome.metadata.append(self._metadata_for(kind, server_record, meta, server_record, False))
                        continue
                    push_failed = True

            if resolution.conflict is not None and not push_failed:
                outcome.resolved.append(resolution.conflict)

            record = resolution.record
            if record is None:
                continue
            outcome.records.append(record)
            outcome.metadata.append(self._metadata_for(kind, record, meta, server_record, push_failed))

        logger.debug(
            f"{kind.value}: {len(outcome.records)} cached, "
            f"{outcome.conflicts_found} conflicts, {len(outcome.errors)} errors"
        )
        return outcome

    def _metadata_for(
        self,
        kind: EntityKind,
        record: Record,
        meta: CachedItemMetadata | None,
        server_record: Record | None,
        still_modified: bool,
    ) -> CachedItemMetadata:
        now = utcnow()
        if still_modified and meta is not None:
            modified_at = meta.modified_at
        else:
            modified_at = record.updated_at or (meta.modified_at if meta else now)
        return CachedItemMetadata(
            id=record.id,
            entity_type=kind,
            entity_name=record.display_name,
            cached_at=now,
            modified_at=modified_at,
            is_locally_modified=still_modified,
            server_modified_at=server_record.updated_at if server_record else None,
        )

    def _own_profile(self, profiles: list[Record]) -> list[Record]:
        user_id = self.storage.current_user_id
        # never cache another user's profile as ours
        return [p for p in profiles if str(p.id) == user_id]

    async def _await_saves(self, saves: list[Future[StorageResult]]) -> list[str]:
        if not saves:
            return []
        results = await asyncio.gather(*(asyncio.wrap_future(f) for f in saves))
        return [f"Failed to save {r.key}: {r.error}" for r in results if not r.success]

    async def _retry_consent(self) -> str | None:
        try:
            retried = await self.on_launch()
        except StorageError as e:
            logger.error(f"Consent retry flag unavailable: {e}")
            return f"Consent retry failed: {e}"
        if retried is False:
            return "COPPA consent sync still pending"
        return None


def _is_permanent_rejection(push: RemoteResult) -> bool:
    """4xx other than timeout/rate limit: the server will refuse the same payload again."""
    code = push.status_code
    return code is not None and 400 <= code < 500 and code not in (408, 429)
