"""
Grade Calculation Engine.

Pure, deterministic functions over in-memory grade records. Nothing here
performs I/O or raises on odd input: empty collections, zero maximum scores
and out-of-range percentages all resolve to defined defaults.

Scale (percentage -> letter -> points):
    >= 97  A+ 4.0    93  A  4.0    90  A- 3.7
       87  B+ 3.3    83  B  3.0    80  B- 2.7
       77  C+ 2.3    73  C  2.0    70  C- 1.7
       67  D+ 1.3    63  D  1.0    60  D- 0.7
     < 60  F  0.0
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from src.core.models import AssignmentGrade, GradeEntry

# (lower bound, letter, points), highest first
GRADE_SCALE: tuple[tuple[float, str, float], ...] = (
    (97.0, "A+", 4.0),
    (93.0, "A", 4.0),
    (90.0, "A-", 3.7),
    (87.0, "B+", 3.3),
    (83.0, "B", 3.0),
    (80.0, "B-", 2.7),
    (77.0, "C+", 2.3),
    (73.0, "C", 2.0),
    (70.0, "C-", 1.7),
    (67.0, "D+", 1.3),
    (63.0, "D", 1.0),
    (60.0, "D-", 0.7),
)
FAILING_LETTER = "F"

DEFAULT_TREND_MIN_RECORDS = 2
DEFAULT_TREND_TOLERANCE = 2.0
WEIGHT_SUM_TOLERANCE = 0.001


# =============================================================================
# Categories & Weights
# =============================================================================


class GradeCategory(str, Enum):
    """Weighted grade buckets."""

    ASSIGNMENT = "assignment"
    QUIZ = "quiz"
    PARTICIPATION = "participation"
    ATTENDANCE = "attendance"

    @property
    def display_name(self) -> str:
        return {
            GradeCategory.ASSIGNMENT: "Assignments",
            GradeCategory.QUIZ: "Quizzes",
            GradeCategory.PARTICIPATION: "Participation",
            GradeCategory.ATTENDANCE: "Attendance",
        }[self]


class GradeWeights(BaseModel):
    """Category weights; valid when they sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    assignments: float = 0.40
    quizzes: float = 0.30
    participation: float = 0.20
    attendance: float = 0.10

    @property
    def total(self) -> float:
        return self.assignments + self.quizzes + self.participation + self.attendance

    @property
    def is_valid(self) -> bool:
        values = (self.assignments, self.quizzes, self.participation, self.attendance)
        return all(v >= 0 for v in values) and abs(self.total - 1.0) < WEIGHT_SUM_TOLERANCE

    def weight_for(self, category: GradeCategory) -> float:
        return getattr(self, _WEIGHT_FIELDS[category])

    def setting(self, category: GradeCategory, value: float) -> GradeWeights:
        """Copy with one category changed. The others are left as they are."""
        return self.model_copy(update={_WEIGHT_FIELDS[category]: value})


_WEIGHT_FIELDS: dict[GradeCategory, str] = {
    GradeCategory.ASSIGNMENT: "assignments",
    GradeCategory.QUIZ: "quizzes",
    GradeCategory.PARTICIPATION: "participation",
    GradeCategory.ATTENDANCE: "attendance",
}


class GradeTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"

    @property
    def display_name(self) -> str:
        return self.value.title()

    @property
    def arrow(self) -> str:
        return {
            GradeTrend.IMPROVING: "↗",
            GradeTrend.DECLINING: "↘",
            GradeTrend.STABLE: "→",
        }[self]


class GradeColor(str, Enum):
    """Presentation band for a percentage. Not used for comparisons."""

    GREEN = "green"
    BLUE = "blue"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class GradeBreakdown:
    """Per-category slice of a course grade."""

    category: GradeCategory
    weight: float
    earned_points: float
    total_points: float
    percentage: float
    weighted_contribution: float

    @property
    def is_active(self) -> bool:
        return self.total_points > 0


@dataclass(frozen=True)
class CourseGradeResult:
    course_id: UUID
    course_name: str
    overall_percentage: float
    letter_grade: str
    grade_points: float
    breakdowns: list[GradeBreakdown] = field(default_factory=list)
    trend: GradeTrend = GradeTrend.STABLE


# =============================================================================
# Scale Mapping
# =============================================================================


def letter_grade(percentage: float) -> str:
    """Map a percentage to a letter. Extra credit stays A+, negatives are F."""
    for lower, letter, _ in GRADE_SCALE:
        if percentage >= lower:
            return letter
    return FAILING_LETTER


def grade_points(percentage: float) -> float:
    """Map a percentage to the 4.0 scale."""
    for lower, _, points in GRADE_SCALE:
        if percentage >= lower:
            return points
    return 0.0


def grade_color(percentage: float) -> GradeColor:
    if percentage >= 90:
        return GradeColor.GREEN
    if percentage >= 80:
        return GradeColor.BLUE
    if percentage >= 70:
        return GradeColor.YELLOW
    if percentage >= 60:
        return GradeColor.ORANGE
    return GradeColor.RED


def calculate_gpa(course_results: Sequence[CourseGradeResult]) -> float:
    """Mean grade points across courses; 0.0 for no courses."""
    if not course_results:
        return 0.0
    return sum(r.grade_points for r in course_results) / len(course_results)


def categorize(raw_type: str) -> GradeCategory:
    """
    Classify a free-text grade type.

    Case-insensitive substring rules, first match wins:
    "quiz" -> quiz, "attend" -> attendance, "particip" -> participation,
    anything else -> assignment.
    """
    lowered = (raw_type or "").lower()
    if "quiz" in lowered:
        return GradeCategory.QUIZ
    if "attend" in lowered:
        return GradeCategory.ATTENDANCE
    if "particip" in lowered:
        return GradeCategory.PARTICIPATION
    return GradeCategory.ASSIGNMENT


# =============================================================================
# Course Grades
# =============================================================================


def calculate_course_grade(
    grades: Iterable[GradeEntry],
    weights: GradeWeights,
    course_id: UUID,
    course_name: str,
    *,
    trend_min_records: int = DEFAULT_TREND_MIN_RECORDS,
    trend_tolerance: float = DEFAULT_TREND_TOLERANCE,
) -> CourseGradeResult:
    """
    Weighted course grade with renormalization over active categories.

    A category is active when its records have a positive total max score.
    Inactive categories are still listed in the breakdown with 0%.
    """
    records = [
        record
        for entry in grades
        if entry.course_id == course_id
        for record in entry.assignment_grades
    ]

    buckets: dict[GradeCategory, list[AssignmentGrade]] = {c: [] for c in GradeCategory}
    for record in records:
        buckets[categorize(record.type)].append(record)

    breakdowns: list[GradeBreakdown] = []
    for category in GradeCategory:
        contributing = [r for r in buckets[category] if r.max_score > 0]
        earned = sum(r.score for r in contributing)
        total = sum(r.max_score for r in contributing)
        percentage = earned / total * 100.0 if total > 0 else 0.0
        weight = weights.weight_for(category)
        breakdowns.append(
            GradeBreakdown(
                category=category,
                weight=weight,
                earned_points=earned,
                total_points=total,
                percentage=percentage,
                weighted_contribution=percentage * weight,
            )
        )

    active = [b for b in breakdowns if b.is_active]
    active_weight = sum(b.weight for b in active)
    if active_weight > 0:
        overall = sum(b.weighted_contribution for b in active) / active_weight
    else:
        overall = 0.0

    return CourseGradeResult(
        course_id=course_id,
        course_name=course_name,
        overall_percentage=overall,
        letter_grade=letter_grade(overall),
        grade_points=grade_points(overall),
        breakdowns=breakdowns,
        trend=_trend_from_records(records, trend_min_records, trend_tolerance),
    )


def calculate_trend(
    grades: Iterable[GradeEntry],
    min_records: int = DEFAULT_TREND_MIN_RECORDS,
    tolerance: float = DEFAULT_TREND_TOLERANCE,
) -> GradeTrend:
    """Trend across every dated score in the given entries."""
    records = [record for entry in grades for record in entry.assignment_grades]
    return _trend_from_records(records, min_records, tolerance)


def _trend_from_records(
    records: Sequence[AssignmentGrade],
    min_records: int,
    tolerance: float,
) -> GradeTrend:
    # zero-max records carry no ratio
    ordered = sorted((r for r in records if r.max_score > 0), key=lambda r: r.date)
    if len(ordered) < max(min_records, 2):
        return GradeTrend.STABLE

    ratios = [r.score / r.max_score * 100.0 for r in ordered]
    half = len(ratios) // 2
    earliest = ratios[:half]
    latest = ratios[-half:]
    delta = sum(latest) / len(latest) - sum(earliest) / len(earliest)

    if delta > tolerance:
        return GradeTrend.IMPROVING
    if delta < -tolerance:
        return GradeTrend.DECLINING
    return GradeTrend.STABLE


def percentage_needed(
    current_earned: float,
    current_total: float,
    remaining_total: float,
    target_percentage: float,
) -> float | None:
    """
    Percentage of the remaining points needed to finish at the target.

    Returns None when nothing remains or the target is out of reach; a target
    that is already met returns 0.0.
    """
    if remaining_total <= 0:
        return None
    required = target_percentage / 100.0 * (current_total + remaining_total) - current_earned
    needed = required / remaining_total * 100.0
    if needed > 100.0:
        return None
    return max(0.0, needed)


# =============================================================================
# Calculator
# =============================================================================


class GradeCalculator:
    """
    Grade engine bound to configured trend settings.

    Usage:
        calc = GradeCalculator.from_settings(get_settings())
        result = calc.course_grade(grades, weights, course_id, "Biology")
    """

    def __init__(
        self,
        trend_min_records: int = DEFAULT_TREND_MIN_RECORDS,
        trend_tolerance: float = DEFAULT_TREND_TOLERANCE,
    ) -> None:
        self.trend_min_records = trend_min_records
        self.trend_tolerance = trend_tolerance

    @classmethod
    def from_settings(cls, settings) -> GradeCalculator:
        return cls(
            trend_min_records=settings.trend_min_records,
            trend_tolerance=settings.trend_tolerance,
        )

    def course_grade(
        self,
        grades: Iterable[GradeEntry],
        weights: GradeWeights,
        course_id: UUID,
        course_name: str,
    ) -> CourseGradeResult:
        return calculate_course_grade(
            grades,
            weights,
            course_id,
            course_name,
            trend_min_records=self.trend_min_records,
            trend_tolerance=self.trend_tolerance,
        )

    def trend(self, grades: Iterable[GradeEntry]) -> GradeTrend:
        return calculate_trend(grades, self.trend_min_records, self.trend_tolerance)

    def report_card(
        self,
        grades: Sequence[GradeEntry],
        weights_by_course: dict[UUID, GradeWeights] | None = None,
        default_weights: GradeWeights | None = None,
    ) -> tuple[list[CourseGradeResult], float]:
        """Course results (one per distinct course, first-seen order) and the GPA."""
        weights_by_course = weights_by_course or {}
        fallback = default_weights or GradeWeights()

        courses: dict[UUID, str] = {}
        for entry in grades:
            courses.setdefault(entry.course_id, entry.course_name)

        results = [
            self.course_grade(grades, weights_by_course.get(cid, fallback), cid, name)
            for cid, name in courses.items()
        ]
        return results, calculate_gpa(results)
