"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.core.models import Assignment, Conversation, Course, GradeEntry, UserProfile  # noqa: E402
from src.offline.service import OfflineStorageService  # noqa: E402
from src.offline.storage import OfflineStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (sync pass against a fake backend)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def db_url(tmp_path):
    """File-backed sqlite cache in a temp dir."""
    return f"sqlite:///{tmp_path / 'offline_cache.db'}"


@pytest.fixture
def store(db_url):
    """OfflineStore on a fresh database."""
    store = OfflineStore(database_url=db_url)
    yield store
    store.close()


@pytest.fixture
def storage(store):
    """OfflineStorageService with no active user."""
    return OfflineStorageService(store=store)


@pytest.fixture
def user_id() -> UUID:
    return UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def other_user_id() -> UUID:
    return UUID("22222222-2222-2222-2222-222222222222")


@pytest.fixture
def t0() -> datetime:
    """Reference server timestamp."""
    return datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def course(t0):
    return Course(id=uuid4(), title="Biology", teacher_name="Ms. Rivera", updated_at=t0)


@pytest.fixture
def assignment(course, t0):
    return Assignment(
        id=uuid4(),
        title="Cell Structure Lab",
        course_id=course.id,
        course_name=course.title,
        due_date=t0 + timedelta(days=7),
        points=100,
        updated_at=t0,
    )


@pytest.fixture
def conversation(t0):
    return Conversation(
        id=uuid4(),
        title="Lab partners",
        last_message="See you Monday",
        participant_names=["Ana", "Ben"],
        updated_at=t0,
    )


@pytest.fixture
def profile(user_id, t0):
    return UserProfile(id=user_id, full_name="Sam Student", email="sam@example.com", updated_at=t0)


@pytest.fixture
def grade_entry(course, t0):
    return GradeEntry(id=uuid4(), course_id=course.id, course_name=course.title, updated_at=t0)
