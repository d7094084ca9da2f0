"""
Sync Engine.

Keeps the offline cache consistent with the LMS backend.

Components:
- remote_client: PostgREST client (fetch_all / update)
- conflicts: Conflict detection, per-kind policy and resolution
- sync_service: Sync pass orchestration
- consent: COPPA consent sync with durable retry flag
"""


# Lazy imports so the grade engine can be used without the HTTP stack
def get_sync_service(storage=None, remote=None):
    """Get a sync service wired from settings (lazy load)."""
    from config import get_settings
    from src.offline.service import OfflineStorageService
    from src.sync.consent import ConsentSyncService
    from src.sync.conflicts import ConflictPolicy
    from src.sync.remote_client import RemoteDataClient
    from src.sync.sync_service import SyncService

    settings = get_settings()
    storage = storage or OfflineStorageService()
    remote = remote or RemoteDataClient.from_settings(settings)
    return SyncService(
        storage,
        remote,
        policy=ConflictPolicy.from_settings(settings),
        consent=ConsentSyncService(storage.store, remote),
    )


def get_remote_client():
    """Get the backend client (lazy load)."""
    from config import get_settings
    from src.sync.remote_client import RemoteDataClient

    return RemoteDataClient.from_settings(get_settings())
