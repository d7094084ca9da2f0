"""
Unit tests for conflict detection and resolution.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from src.core.models import CachedItemMetadata, ConflictResolution, EntityKind, SyncConflict, utcnow
from src.sync.conflicts import (
    ComparisonState,
    ConflictDetector,
    ConflictHistory,
    ConflictPolicy,
    ConflictResolver,
)


def _meta(record, kind, modified_at, baseline=None, modified=True):
    return CachedItemMetadata(
        id=record.id,
        entity_type=kind,
        entity_name=record.display_name,
        modified_at=modified_at,
        is_locally_modified=modified,
        server_modified_at=baseline,
    )


class TestConflictDetector:
    """Server-unchanged rule and its fallbacks."""

    @pytest.fixture
    def detector(self):
        return ConflictDetector()

    def test_unmodified_entities_are_not_compared(self, detector, course, t0):
        meta = _meta(course, EntityKind.COURSE, t0, modified=False)
        assert detector.compare(meta, course).state is ComparisonState.UNMODIFIED
        assert detector.compare(None, course).state is ComparisonState.UNMODIFIED

    def test_server_unchanged_since_baseline(self, detector, course, t0):
        meta = _meta(course, EntityKind.COURSE, t0 + timedelta(hours=1), baseline=t0)
        assert detector.compare(meta, course).state is ComparisonState.NO_CONFLICT

    def test_server_changed_after_baseline(self, detector, course, t0):
        server = course.model_copy(update={"updated_at": t0 + timedelta(minutes=5)})
        meta = _meta(course, EntityKind.COURSE, t0 + timedelta(hours=1), baseline=t0)
        comparison = detector.compare(meta, server)
        assert comparison.state is ComparisonState.CONFLICT
        assert comparison.server_modified_at == t0 + timedelta(minutes=5)

    def test_without_baseline_compares_local_edit_time(self, detector, course, t0):
        before = _meta(course, EntityKind.COURSE, t0 + timedelta(hours=1))
        after = _meta(course, EntityKind.COURSE, t0 - timedelta(hours=1))
        assert detector.compare(before, course).state is ComparisonState.NO_CONFLICT
        assert detector.compare(after, course).state is ComparisonState.CONFLICT

    def test_missing_server_timestamp_means_unchanged(self, detector, course, t0):
        server = course.model_copy(update={"updated_at": None})
        meta = _meta(course, EntityKind.COURSE, t0, baseline=t0)
        assert detector.compare(meta, server).state is ComparisonState.NO_CONFLICT

    def test_server_deleted_is_conflict(self, detector, course, t0):
        comparison = detector.compare(_meta(course, EntityKind.COURSE, t0), None)
        assert comparison.state is ComparisonState.CONFLICT
        assert comparison.server_deleted


class TestConflictResolver:
    def test_server_wins_for_courses(self, course, t0):
        local = course.model_copy(update={"title": "Local title"})
        server = course.model_copy(update={"title": "Server title", "updated_at": t0 + timedelta(days=1)})
        meta = _meta(course, EntityKind.COURSE, t0 + timedelta(hours=2), baseline=t0)

        resolution = ConflictResolver().resolve(EntityKind.COURSE, meta, local, server)

        assert resolution.record == server
        assert not resolution.needs_push
        assert resolution.conflict.resolution is ConflictResolution.SERVER_WINS
        assert resolution.conflict.entity_name == "Server title"
        assert resolution.conflict.entity_id == str(course.id)

    def test_merged_keeps_local_submission(self, assignment, t0):
        local = assignment.model_copy(update={"submission": "My answer", "attachment_urls": ["file://a.png"]})
        server = assignment.model_copy(update={"instructions": "Updated rubric", "updated_at": t0 + timedelta(days=1)})
        meta = _meta(assignment, EntityKind.ASSIGNMENT, t0 + timedelta(hours=1), baseline=t0)

        resolution = ConflictResolver().resolve(EntityKind.ASSIGNMENT, meta, local, server)

        assert resolution.record.instructions == "Updated rubric"
        assert resolution.record.submission == "My answer"
        assert resolution.record.attachment_urls == ["file://a.png"]
        assert resolution.push_fields == {"submission": "My answer", "attachment_urls": ["file://a.png"]}
        assert resolution.conflict.resolution is ConflictResolution.MERGED

    def test_merged_keeps_conversation_draft(self, conversation, t0):
        local = conversation.model_copy(update={"draft_message": "On my way"})
        server = conversation.model_copy(update={"last_message": "Where are you?", "updated_at": t0 + timedelta(days=1)})
        meta = _meta(conversation, EntityKind.CONVERSATION, t0 + timedelta(hours=1), baseline=t0)

        resolution = ConflictResolver().resolve(EntityKind.CONVERSATION, meta, local, server)

        assert resolution.record.last_message == "Where are you?"
        assert resolution.record.draft_message == "On my way"

    def test_local_wins_override(self, course, t0):
        policy = ConflictPolicy({"course": "local_wins"})
        local = course.model_copy(update={"title": "Renamed"})
        server = course.model_copy(update={"updated_at": t0 + timedelta(days=1)})
        meta = _meta(course, EntityKind.COURSE, t0 + timedelta(hours=1), baseline=t0)

        resolution = ConflictResolver(policy).resolve(EntityKind.COURSE, meta, local, server)

        assert resolution.record == local
        assert resolution.push_fields["title"] == "Renamed"
        assert "id" not in resolution.push_fields
        assert resolution.conflict.resolution is ConflictResolution.LOCAL_WINS

    def test_clean_local_edit_is_pushed_without_conflict(self, assignment, t0):
        local = assignment.model_copy(update={"submission": "Draft 2"})
        meta = _meta(assignment, EntityKind.ASSIGNMENT, t0 + timedelta(hours=1), baseline=t0)

        resolution = ConflictResolver().resolve(EntityKind.ASSIGNMENT, meta, local, assignment)

        assert resolution.conflict is None
        assert resolution.record == local
        assert resolution.push_fields["submission"] == "Draft 2"

    def test_server_deleted_drops_merged_entity(self, assignment, t0):
        meta = _meta(assignment, EntityKind.ASSIGNMENT, t0)

        resolution = ConflictResolver().resolve(EntityKind.ASSIGNMENT, meta, assignment, None)

        assert resolution.record is None
        assert resolution.conflict.server_modified_at is None

    def test_unmodified_takes_server(self, course, t0):
        server = course.model_copy(update={"title": "New", "updated_at": t0 + timedelta(days=1)})
        resolution = ConflictResolver().resolve(EntityKind.COURSE, None, course, server)
        assert resolution.record == server
        assert resolution.conflict is None


class TestConflictHistory:
    def test_append_only(self, course):
        first = SyncConflict(
            entity_type=EntityKind.COURSE,
            entity_id=str(course.id),
            entity_name=course.title,
            local_modified_at=utcnow(),
            resolution="server_wins",
        )
        history = ConflictHistory([first])
        second = first.model_copy(update={"id": uuid4()})

        history.append([first, second])

        assert history.entries == [first, second]
        assert len(history) == 2

    def test_never_pruned(self, course):
        conflicts = [
            SyncConflict(
                entity_type=EntityKind.COURSE,
                entity_id=str(course.id),
                entity_name=course.title,
                local_modified_at=utcnow(),
                resolution="server_wins",
            )
            for _ in range(120)
        ]
        history = ConflictHistory()
        history.append(conflicts)
        assert len(history) == 120
