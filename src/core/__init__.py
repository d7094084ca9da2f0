"""
Core Module - Shared domain models and the grade engine.

Components:
- models: Cached domain records, entity kinds and sync bookkeeping types
- grading: Pure grade calculation (letters, GPA, weighted breakdowns, trends)

Design Principle:
Storage (src/offline/) and sync (src/sync/) import their record types from
src/core/ rather than defining their own.
"""

from src.core.grading import (
    CourseGradeResult,
    GradeBreakdown,
    GradeCalculator,
    GradeCategory,
    GradeColor,
    GradeTrend,
    GradeWeights,
    calculate_course_grade,
    calculate_gpa,
    calculate_trend,
    categorize,
    grade_color,
    grade_points,
    letter_grade,
    percentage_needed,
)
from src.core.models import (
    Assignment,
    AssignmentGrade,
    CachedEntity,
    CachedItemMetadata,
    ConflictResolution,
    Conversation,
    Course,
    EntityKind,
    GradeEntry,
    Record,
    SyncConflict,
    SyncResult,
    UserProfile,
)

__all__ = [
    # Models
    "Record",
    "Course",
    "Assignment",
    "AssignmentGrade",
    "GradeEntry",
    "Conversation",
    "UserProfile",
    "EntityKind",
    "CachedEntity",
    "CachedItemMetadata",
    "ConflictResolution",
    "SyncConflict",
    "SyncResult",
    # Grading
    "GradeCategory",
    "GradeWeights",
    "GradeTrend",
    "GradeColor",
    "GradeBreakdown",
    "CourseGradeResult",
    "GradeCalculator",
    "letter_grade",
    "grade_points",
    "grade_color",
    "calculate_gpa",
    "categorize",
    "calculate_course_grade",
    "calculate_trend",
    "percentage_needed",
]
