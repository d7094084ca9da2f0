"""
Unit tests for core domain models.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError

from src.core.models import (
    Assignment,
    CachedEntity,
    CachedItemMetadata,
    Course,
    EntityKind,
    SyncConflict,
    SyncResult,
    utcnow,
)


class TestCachedEntity:
    def test_locally_modified_requires_timestamp(self, course):
        with pytest.raises(ValidationError):
            CachedEntity[Course](id=course.id, payload=course, is_locally_modified=True)

    def test_pristine_entity_needs_no_timestamp(self, course):
        entity = CachedEntity[Course](id=course.id, payload=course)
        assert entity.modified_at is None
        assert not entity.is_locally_modified

    def test_modified_entity(self, course):
        now = utcnow()
        entity = CachedEntity[Course](id=course.id, payload=course, modified_at=now, is_locally_modified=True)
        assert entity.modified_at == now


class TestRecords:
    def test_records_are_immutable(self, course):
        with pytest.raises(ValidationError):
            course.title = "Chemistry"

    def test_naive_datetimes_become_utc(self, course):
        naive = datetime(2025, 1, 1, 8, 30)
        updated = Course(id=course.id, title="Bio", updated_at=naive)
        assert updated.updated_at.tzinfo is not None
        assert updated.updated_at.utcoffset() == timedelta(0)

    def test_unknown_server_columns_are_ignored(self):
        course = Course.model_validate({"id": str(uuid4()), "title": "Bio", "tenant_id": "x"})
        assert course.title == "Bio"

    def test_display_names(self, course, assignment, conversation, profile, grade_entry):
        assert course.display_name == "Biology"
        assert assignment.display_name == "Cell Structure Lab"
        assert conversation.display_name == "Lab partners"
        assert profile.display_name == "Sam Student"
        assert grade_entry.display_name == "Biology"

    def test_overdue(self, course):
        past = Assignment(id=uuid4(), title="Old", course_id=course.id, due_date=utcnow() - timedelta(days=1))
        assert past.is_overdue
        assert not past.model_copy(update={"is_submitted": True}).is_overdue


class TestEntityKind:
    def test_every_kind_has_type_and_key(self):
        keys = {kind.storage_key for kind in EntityKind}
        assert len(keys) == len(EntityKind)
        assert EntityKind.COURSE.record_type is Course
        assert EntityKind.PROFILE.storage_key == "user_profile"


class TestSyncBookkeeping:
    def test_sync_result_success_derived_from_errors(self):
        result = SyncResult()
        assert result.is_success
        result.errors.append("Failed to fetch grades")
        assert not result.is_success

    def test_to_dict_limits_errors(self):
        result = SyncResult(errors=[f"error {i}" for i in range(25)])
        summary = result.to_dict()
        assert len(summary["errors"]) == SyncResult.SUMMARY_ERROR_LIMIT
        assert summary["success"] is False

    def test_conflict_is_frozen(self):
        conflict = SyncConflict(
            entity_type=EntityKind.ASSIGNMENT,
            entity_id=str(uuid4()),
            entity_name="Lab",
            local_modified_at=utcnow(),
            resolution="merged",
        )
        with pytest.raises(ValidationError):
            conflict.resolution = "server_wins"

    def test_metadata_json_round_trip(self):
        meta = CachedItemMetadata(
            id=uuid4(),
            entity_type=EntityKind.CONVERSATION,
            entity_name="Lab partners",
            modified_at=utcnow(),
            is_locally_modified=True,
        )
        assert CachedItemMetadata.model_validate_json(meta.model_dump_json()) == meta
