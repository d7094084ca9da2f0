"""
Offline Module - per-user local cache.

Components:
- storage: OfflineStore (SQLAlchemy blob store, ordered writer thread)
- service: OfflineStorageService (typed save/load per entity kind)
"""

from src.offline.service import OfflineStorageService
from src.offline.storage import (
    OfflineError,
    OfflineStore,
    StorageContext,
    StorageError,
    StorageResult,
)

__all__ = [
    "OfflineStorageService",
    "OfflineStore",
    "StorageContext",
    "StorageResult",
    "OfflineError",
    "StorageError",
]
