"""
COPPA Consent Sync.

The server profile is the source of truth for parental consent. Unlike the
generic sync pass a failed consent write is never dropped: the payload is
kept in a durable per-user flag and re-sent on the next launch or
connectivity change until the server accepts it. The flag lives outside the
offline cache, so clearing cached data does not lose it.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from uuid import UUID

import httpx
from loguru import logger

from src.core.models import EntityKind, utcnow
from src.offline.storage import OfflineStore
from src.sync.remote_client import RemoteDataError, RemoteDataSource, RemoteResult

CONSENT_PENDING_FLAG = "coppa_consent_sync_pending"
CONSENT_CACHE_FLAG = "coppa_consent"

CONSENT_AGE = 13
MINIMUM_AGE = 5


# =============================================================================
# Age Gate
# =============================================================================


def age_from(date_of_birth: date, today: date | None = None) -> int:
    """Whole years between date_of_birth and today."""
    if isinstance(date_of_birth, datetime):
        date_of_birth = date_of_birth.date()
    today = today or date.today()
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return max(0, years)


def requires_parental_consent(date_of_birth: date, today: date | None = None) -> bool:
    return age_from(date_of_birth, today) < CONSENT_AGE


def meets_minimum_age(date_of_birth: date, today: date | None = None) -> bool:
    return age_from(date_of_birth, today) >= MINIMUM_AGE


# =============================================================================
# Consent Sync
# =============================================================================


class ConsentSyncService:
    """
    Pushes consent decisions to the server profile.

    Usage:
        consent = ConsentSyncService(store, remote)
        await consent.sync_consent(user_id, has_parental_consent=True, parent_email="p@example.com")
        if consent.is_consent_sync_pending(user_id):
            await consent.retry_pending(user_id)
    """

    def __init__(self, store: OfflineStore, remote: RemoteDataSource):
        self.store = store
        self.remote = remote

    async def sync_consent(
        self,
        user_id: UUID | str,
        has_parental_consent: bool,
        parent_email: str | None = None,
        date_of_birth: date | None = None,
    ) -> bool:
        """
        Write the consent status to the user's profile.

        Returns True when the server accepted it. On failure the payload is
        kept for retry. Raises StorageError if the retry flag itself cannot be
        persisted.
        """
        fields = {
            "coppa_consent": "granted" if has_parental_consent else "pending",
            "coppa_parent_email": parent_email or "",
            "coppa_consent_date": utcnow().isoformat(),
        }
        if date_of_birth is not None:
            logger.debug(f"Consent for user {user_id} recorded with age {age_from(date_of_birth)}")

        synced = await self._push(user_id, fields)

        # local cache for offline reads, the server value stays authoritative
        self.store.set_flag(user_id, CONSENT_CACHE_FLAG, "true" if has_parental_consent else "false")
        return synced

    async def _push(self, user_id: UUID | str, fields: dict[str, str]) -> bool:
        try:
            result = await self.remote.update(EntityKind.PROFILE, user_id, fields)
        except (RemoteDataError, httpx.HTTPError) as e:
            result = RemoteResult(success=False, error=str(e))
        if result.success:
            self.store.clear_flag(user_id, CONSENT_PENDING_FLAG)
            logger.info(f"COPPA consent synced for user {user_id}")
            return True

        self.store.set_flag(user_id, CONSENT_PENDING_FLAG, json.dumps(fields))
        logger.error(f"COPPA consent sync failed for user {user_id}: {result.error}")
        return False

    def is_consent_sync_pending(self, user_id: UUID | str) -> bool:
        return self.store.get_flag(user_id, CONSENT_PENDING_FLAG) is not None

    async def retry_pending(self, user_id: UUID | str) -> bool | None:
        """
        Re-send a previously failed consent write.

        Returns None when nothing is pending, otherwise whether the retry
        succeeded.
        """
        raw = self.store.get_flag(user_id, CONSENT_PENDING_FLAG)
        if raw is None:
            return None
        try:
            fields = json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Pending consent payload for user {user_id} is unreadable, rebuilding from cache")
            fields = {
                "coppa_consent": "granted" if self.cached_consent_status(user_id) else "pending",
                "coppa_parent_email": "",
                "coppa_consent_date": utcnow().isoformat(),
            }
        logger.info(f"Retrying COPPA consent sync for user {user_id}")
        return await self._push(user_id, fields)

    def cached_consent_status(self, user_id: UUID | str) -> bool:
        """Locally cached consent. A cache only; the server value is the source of truth."""
        return self.store.get_flag(user_id, CONSENT_CACHE_FLAG) == "true"
