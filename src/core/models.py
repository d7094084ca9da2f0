"""
Core Domain Models.

Canonical records cached for offline use and the bookkeeping types used by
the sync layer. Records are immutable pydantic models so a cached payload can
never be edited in place; local edits produce a new copy.

Design:
- Record: base for every domain record (id, updated_at, display_name)
- EntityKind: the record families that are cached and synced as a unit
- CachedEntity: a record plus its local-modification state
- CachedItemMetadata: side table driving conflict detection
- SyncConflict / SyncResult: audit trail and per-run summary
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes so comparisons never mix naive and aware values."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class _AwareModel(BaseModel):
    """Base model normalizing every datetime field to UTC-aware."""

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value


# =============================================================================
# Domain Records
# =============================================================================


class Record(_AwareModel):
    """Base for all cached domain records."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: UUID
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return str(self.id)


class Course(Record):
    title: str
    description: str = ""
    teacher_name: str = ""
    icon_system_name: str = "book.fill"
    color_name: str = "blue"
    credits: float | None = None

    @property
    def display_name(self) -> str:
        return self.title


class Assignment(Record):
    """
    An assignment as seen by the student.

    `submission` and `attachment_urls` hold in-progress work composed on the
    device; everything else is defined by the teacher on the server.
    """

    title: str
    course_id: UUID
    course_name: str = ""
    instructions: str = ""
    due_date: datetime | None = None
    points: int = 0
    is_submitted: bool = False
    submission: str | None = None
    attachment_urls: list[str] = Field(default_factory=list)
    grade: float | None = None
    feedback: str | None = None

    @property
    def display_name(self) -> str:
        return self.title

    @property
    def is_overdue(self) -> bool:
        return not self.is_submitted and self.due_date is not None and self.due_date < utcnow()


class AssignmentGrade(_AwareModel):
    """A single scored item inside a course grade entry."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: UUID = Field(default_factory=uuid4)
    title: str = ""
    score: float
    max_score: float
    date: datetime
    type: str = "assignment"


class GradeEntry(Record):
    course_id: UUID
    course_name: str
    letter_grade: str = ""
    numeric_grade: float = 0.0
    assignment_grades: list[AssignmentGrade] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.course_name


class Conversation(Record):
    """A message thread. `draft_message` is an unsent message composed locally."""

    title: str
    last_message: str = ""
    last_message_date: datetime | None = None
    unread_count: int = 0
    participant_names: list[str] = Field(default_factory=list)
    draft_message: str | None = None

    @property
    def display_name(self) -> str:
        return self.title


class UserProfile(Record):
    full_name: str
    email: str | None = None
    role: str = "student"
    date_of_birth: date | None = None
    coppa_consent: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name


# =============================================================================
# Entity Kinds
# =============================================================================


class EntityKind(str, Enum):
    """Record families persisted and synced as a unit."""

    COURSE = "course"
    ASSIGNMENT = "assignment"
    GRADE = "grade"
    PROFILE = "profile"
    CONVERSATION = "conversation"

    @property
    def record_type(self) -> type[Record]:
        return _RECORD_TYPES[self]

    @property
    def storage_key(self) -> str:
        """Cache key of the full replacement set for this kind."""
        return _STORAGE_KEYS[self]

    @property
    def label(self) -> str:
        return self.storage_key.replace("_", " ").title()


_RECORD_TYPES: dict[EntityKind, type[Record]] = {
    EntityKind.COURSE: Course,
    EntityKind.ASSIGNMENT: Assignment,
    EntityKind.GRADE: GradeEntry,
    EntityKind.PROFILE: UserProfile,
    EntityKind.CONVERSATION: Conversation,
}

_STORAGE_KEYS: dict[EntityKind, str] = {
    EntityKind.COURSE: "courses",
    EntityKind.ASSIGNMENT: "assignments",
    EntityKind.GRADE: "grades",
    EntityKind.PROFILE: "user_profile",
    EntityKind.CONVERSATION: "conversations",
}


# =============================================================================
# Cache Bookkeeping
# =============================================================================

RecordT = TypeVar("RecordT", bound=Record)


class CachedEntity(_AwareModel, Generic[RecordT]):
    """A cached record together with its pending-edit state."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    payload: RecordT
    modified_at: datetime | None = None
    is_locally_modified: bool = False

    @model_validator(mode="after")
    def _modified_requires_timestamp(self) -> CachedEntity[RecordT]:
        if self.is_locally_modified and self.modified_at is None:
            raise ValueError("a locally modified entity must carry modified_at")
        return self


class CachedItemMetadata(_AwareModel):
    """
    Lightweight per-entity metadata stored beside the cached sets.

    `modified_at` is the last local (or last synced) modification time,
    `server_modified_at` the server's updated_at observed at the last sync,
    which is the baseline for "server unchanged since last sync".
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    entity_type: EntityKind
    entity_name: str
    cached_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime
    is_locally_modified: bool = False
    server_modified_at: datetime | None = None


class ConflictResolution(str, Enum):
    """Terminal outcome of a detected conflict."""

    SERVER_WINS = "server_wins"
    LOCAL_WINS = "local_wins"
    MERGED = "merged"


class SyncConflict(_AwareModel):
    """Immutable audit record of one resolved conflict."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    entity_type: EntityKind
    entity_id: str
    entity_name: str
    local_modified_at: datetime
    server_modified_at: datetime | None = None  # None: deleted on the server
    resolution: ConflictResolution
    resolved_at: datetime = Field(default_factory=utcnow)


class SyncResult(_AwareModel):
    """Summary of a single synchronization pass."""

    synced_at: datetime = Field(default_factory=utcnow)
    items_synced: int = 0
    conflicts_found: int = 0
    conflicts_resolved: int = 0
    errors: list[str] = Field(default_factory=list)

    SUMMARY_ERROR_LIMIT: ClassVar[int] = 10

    @property
    def is_success(self) -> bool:
        """True when the pass completed without errors."""
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/CLI output."""
        return {
            "items_synced": self.items_synced,
            "conflicts_found": self.conflicts_found,
            "conflicts_resolved": self.conflicts_resolved,
            "errors": self.errors[: self.SUMMARY_ERROR_LIMIT],
            "success": self.is_success,
        }
