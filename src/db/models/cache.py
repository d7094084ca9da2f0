"""
Offline cache tables.

Every row is namespaced by user_id. `offline_cache` holds the serialized
full-replacement set per cache key; `compliance_flags` holds durable per-user
flags that outlive cache clears.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class OfflineCacheBlob(Base):
    """One cached set (courses, grades, metadata, ...) for one user."""

    __tablename__ = "offline_cache"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    cache_key: Mapped[str] = mapped_column(Text, primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )


class ComplianceFlag(Base):
    """Durable per-user flag (e.g. a consent write awaiting retry)."""

    __tablename__ = "compliance_flags"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )
