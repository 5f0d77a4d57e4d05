"""
grading.py - Course Grade Calculation
Pure functions that turn a student's graded work into a course percentage
and letter grade.

Nothing here touches the database: callers fetch the rows and pass plain
dicts in, so the same inputs always give the same GradeResult.

Input shapes:
    course        {"grading_weights": {"Homework": 0.4, ...} or None,
                   "grading_scale": [{"label": "A", "min_percentage": 90}, ...] or None}
    assignments   [{"id": 1, "max_points": 100, "grade_category": "Homework"}]
    quizzes       [{"id": 7, "grade_category": "Exams"}]
    quiz_max_points {7: 10}
    submissions   [{"assignment_id": 1, "grade": 85}]      (one student's)
    attempts      [{"quiz_id": 7, "points_earned": 9}]     (one student's)
"""

import math
from collections import namedtuple
from numbers import Real


NOT_AVAILABLE = 'N/A'


class GradeResult(namedtuple('GradeResult', ['percentage', 'letter_grade', 'is_weighted'])):
    """Computed course grade. Derived on demand, never stored."""

    __slots__ = ()

    def to_dict(self):
        return {
            'percentage': self.percentage,
            'letter_grade': self.letter_grade,
            'is_weighted': self.is_weighted,
        }


def round_percentage(value):
    """Round half-up to one decimal place (86.65 -> 86.7); NaN and infinity give 0"""
    if not math.isfinite(value):
        return 0
    return math.floor(value * 10 + 0.5) / 10


def best_attempt(attempts):
    """
    Pick the attempt that counts toward the grade

    The highest points_earned wins; a missing value counts as 0 and on
    a tie the later attempt is kept.

    Returns:
        dict or None if there are no attempts
    """
    best = None
    for attempt in attempts:
        if best is None or not ((best.get('points_earned') or 0) > (attempt.get('points_earned') or 0)):
            best = attempt
    return best


def resolve_letter_grade(percentage, scale):
    """
    Map a percentage onto a grading scale

    Args:
        percentage: Course percentage (0-100)
        scale: [{"label": "A", "min_percentage": 90}, ...] in any order

    Returns:
        str: Label of the highest band whose threshold the percentage
        reaches. Below every band -> lowest band. No scale -> "N/A".
    """
    if not scale:
        return NOT_AVAILABLE

    ordered = sorted(scale, key=lambda band: band['min_percentage'], reverse=True)
    for band in ordered:
        if percentage >= band['min_percentage']:
            return band['label']

    return ordered[-1]['label']


def _graded_points(assignments, quizzes, quiz_max_points, submissions, attempts):
    """
    Yield (grade_category, earned, possible) for every item the student
    has a graded result on. Items without one are left out entirely, and
    so are items whose points are NaN or infinite.
    """
    for category, earned, possible in _raw_points(assignments, quizzes, quiz_max_points, submissions, attempts):
        if math.isfinite(earned) and math.isfinite(possible):
            yield category, earned, possible


def _raw_points(assignments, quizzes, quiz_max_points, submissions, attempts):
    for assignment in assignments:
        submission = next(
            (s for s in submissions if s['assignment_id'] == assignment['id']),
            None
        )
        if submission is not None and submission.get('grade') is not None:
            yield assignment.get('grade_category'), submission['grade'], assignment['max_points']

    for quiz in quizzes:
        quiz_attempts = [a for a in attempts if a['quiz_id'] == quiz['id']]
        if quiz_attempts:
            best = best_attempt(quiz_attempts)
            yield (
                quiz.get('grade_category'),
                best.get('points_earned') or 0,
                quiz_max_points.get(quiz['id']) or 0,
            )


def compute_grade(course, assignments, quizzes, quiz_max_points, submissions, attempts):
    """
    Compute one student's grade for a course

    With grading weights, each weighted category contributes its own
    earned/possible percentage times its weight, and the total is divided
    by the sum of weights of the categories that had graded work.
    Categories with nothing graded yet are skipped, not scored as 0.
    Without weights, points are summed across every graded item.

    Returns:
        GradeResult
    """
    weights = course.get('grading_weights') or None
    scale = course.get('grading_scale')

    graded = list(_graded_points(assignments, quizzes, quiz_max_points, submissions, attempts))
    percentage = 0

    if weights:
        total_weighted = 0
        total_weight = 0

        for category, weight in weights.items():
            earned = sum(e for c, e, _ in graded if c == category)
            possible = sum(p for c, _, p in graded if c == category)

            if possible > 0:
                total_weighted += (earned / possible * 100) * weight
                total_weight += weight

        if total_weight > 0:
            percentage = total_weighted / total_weight
    else:
        earned = sum(e for _, e, _ in graded)
        possible = sum(p for _, _, p in graded)
        if possible > 0:
            percentage = earned / possible * 100

    return GradeResult(
        percentage=round_percentage(percentage),
        letter_grade=resolve_letter_grade(percentage, scale),
        is_weighted=bool(weights),
    )


def is_number(value):
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_grading_weights(weights):
    """
    Validate a category -> weight mapping

    Weights are fractions between 0 and 1. They do not have to add up
    to 1 since the calculation normalises by the weights in use.

    Returns:
        dict or None when no weights are given

    Raises:
        ValueError: If a category or weight is invalid
    """
    if weights is None:
        return None
    if not isinstance(weights, dict):
        raise ValueError("Grading weights must be a mapping of category to weight")
    if not weights:
        return None

    cleaned = {}
    seen = set()
    for category, weight in weights.items():
        if not isinstance(category, str) or not category.strip():
            raise ValueError("Each grading category must have a name")
        name = category.strip()
        if name.lower() in seen:
            raise ValueError(f"Duplicate grading category '{name}'")
        if not is_number(weight):
            raise ValueError(f"Weight for '{name}' must be a number")
        if weight < 0 or weight > 1:
            raise ValueError(f"Weight for '{name}' must be between 0 and 1, got {weight}")
        seen.add(name.lower())
        cleaned[name] = float(weight)

    return cleaned


def validate_grading_scale(scale):
    """
    Validate a grading scale

    Returns:
        list sorted by min_percentage (highest first), or None

    Raises:
        ValueError: If a band is malformed or duplicated
    """
    if scale is None:
        return None
    if not isinstance(scale, list):
        raise ValueError("Grading scale must be a list of bands")
    if not scale:
        return None

    cleaned = []
    labels = set()
    thresholds = set()
    for band in scale:
        if not isinstance(band, dict):
            raise ValueError("Each grading band must have a label and min_percentage")
        label = band.get('label')
        minimum = band.get('min_percentage')
        if not isinstance(label, str) or not label.strip():
            raise ValueError("Each grading band must have a label")
        label = label.strip()
        if not is_number(minimum):
            raise ValueError(f"Minimum percentage for '{label}' must be a number")
        if minimum < 0 or minimum > 100:
            raise ValueError(f"Minimum percentage for '{label}' must be between 0 and 100")
        if label in labels:
            raise ValueError(f"Duplicate grade label '{label}'")
        if minimum in thresholds:
            raise ValueError(f"Two grade bands share the threshold {minimum}")
        labels.add(label)
        thresholds.add(minimum)
        cleaned.append({'label': label, 'min_percentage': minimum})

    return sorted(cleaned, key=lambda band: band['min_percentage'], reverse=True)
