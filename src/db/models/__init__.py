# SQLAlchemy models
from .base import Base
from .cache import ComplianceFlag, OfflineCacheBlob

__all__ = [
    "Base",
    "OfflineCacheBlob",
    "ComplianceFlag",
]
