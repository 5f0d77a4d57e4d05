"""
services.py - Gradebook Service
Database-facing side of grading: loads a course's gradable work and a
student's results, hands them to grading.compute_grade, and applies
grade changes with an audit trail.

A GradebookService is built per request around the session it should use:
    service = GradebookService(db.session)
"""

import csv
import io
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from grading import compute_grade, best_attempt, is_number, round_percentage
from logging_config import get_logger
from models import (
    Course, Student, Enrollment, Assignment, AssignmentSubmission,
    Quiz, QuizQuestion, QuizAttempt, RubricScore, GradeAuditLog,
)

logger = get_logger(__name__)


class GradebookServiceError(Exception):
    """Base exception for gradebook service errors."""

    pass


class CourseNotFoundError(GradebookServiceError):
    """Raised when course is not found."""

    pass


class StudentNotFoundError(GradebookServiceError):
    """Raised when student is not found."""

    pass


class AssignmentNotFoundError(GradebookServiceError):
    """Raised when assignment is not found."""

    pass


class SubmissionNotFoundError(GradebookServiceError):
    """Raised when a submission is missing or belongs to another assignment."""

    pass


class RubricNotConfiguredError(GradebookServiceError):
    """Raised when rubric grading is requested for an assignment without one."""

    pass


class InvalidGradeDataError(GradebookServiceError):
    """Raised when submitted grade data fails validation."""

    pass


def _format_grade(value):
    """Audit log text for a grade value (85.0 -> '85', 72.5 -> '72.5')"""
    if value is None:
        return None
    return f"{value:g}"


class GradebookService:
    """
    Service for reading and changing course grades

    Attributes:
        session: SQLAlchemy session for the current request
    """

    def __init__(self, session):
        self.session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_course(self, course_id):
        course = self.session.get(Course, course_id)
        if course is None:
            raise CourseNotFoundError(f"Course {course_id} not found")
        return course

    def get_assignment(self, assignment_id):
        assignment = self.session.get(Assignment, assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
        return assignment

    def get_student(self, student_id):
        student = self.session.get(Student, student_id)
        if student is None:
            raise StudentNotFoundError(f"Student {student_id} not found")
        return student

    def _course_assignments(self, course_id):
        return (
            self.session.query(Assignment)
            .filter(Assignment.course_id == course_id)
            .order_by(Assignment.due_date, Assignment.id)
            .all()
        )

    def _published_quizzes(self, course_id):
        return (
            self.session.query(Quiz)
            .filter(Quiz.course_id == course_id, Quiz.is_published.is_(True))
            .order_by(Quiz.created_at, Quiz.id)
            .all()
        )

    def _quiz_max_points(self, quiz_ids):
        """Sum of question points per quiz, in one grouped query"""
        if not quiz_ids:
            return {}
        rows = (
            self.session.query(QuizQuestion.quiz_id, func.sum(QuizQuestion.points))
            .filter(QuizQuestion.quiz_id.in_(quiz_ids))
            .group_by(QuizQuestion.quiz_id)
            .all()
        )
        return {quiz_id: total or 0 for quiz_id, total in rows}

    # ------------------------------------------------------------------
    # Grade calculation
    # ------------------------------------------------------------------

    def calculate_student_grade(self, student_id, course_id):
        """
        Calculate a student's current grade for a course

        Only graded submissions and published quizzes are considered.

        Returns:
            GradeResult

        Raises:
            CourseNotFoundError: If course not found
            StudentNotFoundError: If student not found
        """
        course = self.get_course(course_id)
        self.get_student(student_id)

        assignments = self._course_assignments(course.id)
        quizzes = self._published_quizzes(course.id)
        assignment_ids = [a.id for a in assignments]
        quiz_ids = [q.id for q in quizzes]

        submissions = []
        if assignment_ids:
            submissions = (
                self.session.query(AssignmentSubmission)
                .filter(
                    AssignmentSubmission.student_id == student_id,
                    AssignmentSubmission.assignment_id.in_(assignment_ids),
                    AssignmentSubmission.status == 'graded',
                )
                .all()
            )

        attempts = []
        if quiz_ids:
            attempts = (
                self.session.query(QuizAttempt)
                .filter(
                    QuizAttempt.student_id == student_id,
                    QuizAttempt.quiz_id.in_(quiz_ids),
                )
                .order_by(QuizAttempt.started_at, QuizAttempt.id)
                .all()
            )

        return compute_grade(
            course.get_grading_config(),
            [a.to_grade_input() for a in assignments],
            [q.to_grade_input() for q in quizzes],
            self._quiz_max_points(quiz_ids),
            [s.to_grade_input() for s in submissions],
            [a.to_grade_input() for a in attempts],
        )

    def student_course_grades(self, student_id):
        """
        Current grade in every course the student is enrolled in

        Returns:
            list of dicts, one per course, ordered by course code
        """
        self.get_student(student_id)

        courses = (
            self.session.query(Course)
            .join(Enrollment, Enrollment.course_id == Course.id)
            .filter(
                Enrollment.student_id == student_id,
                Enrollment.status == 'enrolled',
                Course.is_active.is_(True),
            )
            .order_by(Course.code)
            .all()
        )

        results = []
        for course in courses:
            grade = self.calculate_student_grade(student_id, course.id)
            results.append({
                'course_id': course.id,
                'course_code': course.code,
                'course_title': course.title,
                **grade.to_dict(),
            })
        return results

    # ------------------------------------------------------------------
    # Gradebook
    # ------------------------------------------------------------------

    def build_gradebook(self, course_id):
        """
        Gradebook for every enrolled student of a course

        Returns:
            dict: {
                'course': {...},
                'columns': [{'id', 'title', 'type', 'max_points', ...}],
                'rows': [{'student': {...}, 'grades': {...}, 'summary': {...}}],
                'analytics': {'total_students', 'course_average', 'grade_distribution'}
            }

        Raises:
            CourseNotFoundError: If course not found
        """
        course = self.get_course(course_id)
        grading_config = course.get_grading_config()

        assignments = self._course_assignments(course.id)
        quizzes = self._published_quizzes(course.id)
        quiz_max_points = self._quiz_max_points([q.id for q in quizzes])

        enrollments = (
            self.session.query(Enrollment)
            .filter(Enrollment.course_id == course.id, Enrollment.status == 'enrolled')
            .order_by(Enrollment.id)
            .all()
        )
        student_ids = [e.student_id for e in enrollments]

        submissions_by_student = {}
        attempts_by_student = {}
        if student_ids and assignments:
            for submission in (
                self.session.query(AssignmentSubmission)
                .filter(
                    AssignmentSubmission.assignment_id.in_([a.id for a in assignments]),
                    AssignmentSubmission.student_id.in_(student_ids),
                )
                .all()
            ):
                submissions_by_student.setdefault(submission.student_id, []).append(submission)
        if student_ids and quizzes:
            for attempt in (
                self.session.query(QuizAttempt)
                .filter(
                    QuizAttempt.quiz_id.in_([q.id for q in quizzes]),
                    QuizAttempt.student_id.in_(student_ids),
                )
                .order_by(QuizAttempt.started_at, QuizAttempt.id)
                .all()
            ):
                attempts_by_student.setdefault(attempt.student_id, []).append(attempt)

        columns = [
            {
                'id': a.id,
                'title': a.title,
                'type': 'assignment',
                'max_points': a.max_points,
                'grade_category': a.grade_category,
                'due_date': a.due_date.isoformat() if a.due_date else None,
            }
            for a in assignments
        ] + [
            {
                'id': q.id,
                'title': q.title,
                'type': 'quiz',
                'max_points': quiz_max_points.get(q.id, 0),
                'grade_category': q.grade_category,
            }
            for q in quizzes
        ]

        rows = []
        for enrollment in enrollments:
            student = enrollment.student
            submissions = submissions_by_student.get(student.id, [])
            attempts = attempts_by_student.get(student.id, [])

            grades = {}
            for assignment in assignments:
                submission = next((s for s in submissions if s.assignment_id == assignment.id), None)
                key = f"assignment-{assignment.id}"
                if submission is None:
                    grades[key] = {'score': None, 'status': 'missing'}
                else:
                    grades[key] = {
                        'score': submission.grade,
                        'status': submission.status,
                        'submission_id': submission.id,
                    }

            attempt_inputs = [a.to_grade_input() for a in attempts]
            for quiz in quizzes:
                key = f"quiz-{quiz.id}"
                best = best_attempt([a for a in attempt_inputs if a['quiz_id'] == quiz.id])
                if best is None:
                    grades[key] = {'score': None, 'status': 'not_attempted'}
                else:
                    grades[key] = {
                        'score': best['points_earned'] or 0,
                        'status': 'completed',
                        'attempt_id': best['id'],
                    }

            summary = compute_grade(
                grading_config,
                [a.to_grade_input() for a in assignments],
                [q.to_grade_input() for q in quizzes],
                quiz_max_points,
                [s.to_grade_input() for s in submissions if s.status == 'graded'],
                attempt_inputs,
            )

            rows.append({
                'student': {
                    'id': student.id,
                    'user_id': student.user_id,
                    'student_number': student.student_number,
                    'name': student.get_full_name(),
                    'email': student.user.email,
                },
                'grades': grades,
                'summary': summary.to_dict(),
            })

        distribution = {}
        for row in rows:
            letter = row['summary']['letter_grade']
            distribution[letter] = distribution.get(letter, 0) + 1

        course_average = 0
        if rows:
            course_average = round_percentage(sum(r['summary']['percentage'] for r in rows) / len(rows))

        return {
            'course': {
                'id': course.id,
                'code': course.code,
                'title': course.title,
                'enrolled_count': course.get_enrolled_count(),
                **grading_config,
            },
            'columns': columns,
            'rows': rows,
            'analytics': {
                'total_students': len(rows),
                'course_average': course_average,
                'grade_distribution': distribution,
            },
        }

    def export_gradebook_csv(self, course_id):
        """
        Export the gradebook as CSV text

        Returns:
            tuple: (filename, csv_text)
        """
        gradebook = self.build_gradebook(course_id)
        columns = gradebook['columns']

        output = io.StringIO()
        writer = csv.writer(output)

        headers = ['Student Name', 'Email']
        for column in columns:
            prefix = '[A]' if column['type'] == 'assignment' else '[Q]'
            headers.append(f"{prefix} {column['title']}")
        headers += ['Percentage', 'Letter Grade']
        writer.writerow(headers)

        for row in gradebook['rows']:
            cells = [row['student']['name'], row['student']['email']]
            for column in columns:
                cell = row['grades'][f"{column['type']}-{column['id']}"]
                graded = cell['status'] in ('graded', 'completed')
                cells.append(f"{cell['score']:g}" if graded and cell['score'] is not None else '')
            cells.append(f"{row['summary']['percentage']:.1f}")
            cells.append(row['summary']['letter_grade'])
            writer.writerow(cells)

        prefix = current_app.config.get('GRADEBOOK_EXPORT_PREFIX', 'gradebook')
        filename = f"{prefix}-{gradebook['course']['code']}.csv"
        return filename, output.getvalue()

    # ------------------------------------------------------------------
    # Grade changes
    # ------------------------------------------------------------------

    def _parse_grade_updates(self, course, grades):
        """
        Validate a {student_id: {assignment_id: grade}} payload

        Returns:
            list of (student_id, Assignment, grade) tuples

        Raises:
            InvalidGradeDataError: On the first invalid entry
        """
        if not isinstance(grades, dict) or not grades:
            raise InvalidGradeDataError("Invalid grades data")

        assignments = {a.id: a for a in self._course_assignments(course.id)}
        updates = []

        for raw_student_id, assignment_grades in grades.items():
            try:
                student_id = int(raw_student_id)
            except (TypeError, ValueError):
                raise InvalidGradeDataError(f"Invalid student id '{raw_student_id}'")
            if self.session.get(Student, student_id) is None:
                raise InvalidGradeDataError(f"Student {student_id} not found")
            if not isinstance(assignment_grades, dict):
                raise InvalidGradeDataError(f"Grades for student {student_id} must be a mapping")

            for raw_assignment_id, new_grade in assignment_grades.items():
                try:
                    assignment_id = int(raw_assignment_id)
                except (TypeError, ValueError):
                    raise InvalidGradeDataError(f"Invalid assignment id '{raw_assignment_id}'")

                assignment = assignments.get(assignment_id)
                if assignment is None:
                    raise InvalidGradeDataError(
                        f"Assignment {assignment_id} does not belong to course {course.code}"
                    )

                if new_grade is not None:
                    if not is_number(new_grade):
                        raise InvalidGradeDataError(f"Grade for assignment {assignment_id} must be a number")
                    if new_grade < 0:
                        raise InvalidGradeDataError("Grade cannot be negative")
                    if new_grade > assignment.max_points:
                        raise InvalidGradeDataError(
                            f"Grade ({new_grade}) cannot exceed max points ({assignment.max_points:g})"
                        )
                    new_grade = float(new_grade)

                updates.append((student_id, assignment, new_grade))

        return updates

    def update_grades(self, course_id, grades, changed_by, ip_address=None, user_agent=None):
        """
        Apply a batch of assignment grades in one transaction

        Every changed value gets a GradeAuditLog row. Unchanged values and
        clearing a grade that was never given are no-ops.

        Args:
            course_id: Course identifier
            grades: {student_id: {assignment_id: grade or None}}
            changed_by: User id of the grader
            ip_address: Client address for the audit log
            user_agent: Client user agent for the audit log

        Returns:
            int: Number of grades changed

        Raises:
            CourseNotFoundError: If course not found
            InvalidGradeDataError: If any entry is invalid (nothing is written)
        """
        course = self.get_course(course_id)
        updates = self._parse_grade_updates(course, grades)
        now = datetime.utcnow()
        changes = 0

        try:
            for student_id, assignment, new_grade in updates:
                submission = (
                    self.session.query(AssignmentSubmission)
                    .filter_by(assignment_id=assignment.id, student_id=student_id)
                    .first()
                )

                if submission is not None:
                    if submission.grade == new_grade:
                        continue
                    old_grade = submission.grade
                    submission.grade = new_grade
                    if new_grade is not None:
                        submission.status = 'graded'
                        submission.graded_at = now
                    submission.graded_by = changed_by
                elif new_grade is not None:
                    old_grade = None
                    submission = AssignmentSubmission(
                        assignment_id=assignment.id,
                        student_id=student_id,
                        grade=new_grade,
                        status='graded',
                        graded_at=now,
                        graded_by=changed_by,
                    )
                    self.session.add(submission)
                    self.session.flush()
                else:
                    continue

                self.session.add(GradeAuditLog(
                    submission_id=submission.id,
                    student_id=student_id,
                    course_id=course.id,
                    field_changed='grade',
                    old_value=_format_grade(old_grade),
                    new_value=_format_grade(new_grade),
                    changed_by=changed_by,
                    ip_address=ip_address,
                    user_agent=(user_agent or '')[:255] or None,
                ))
                changes += 1

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("grades_updated", course_id=course.id, changes=changes, changed_by=changed_by)
        return changes

    def submit_rubric_grade(self, assignment_id, submission_id, scores, feedback=None):
        """
        Score a submission against its assignment's rubric

        Each criterion score is clamped to [0, criterion max]; the
        submission grade becomes the sum of the clamped scores.

        Args:
            scores: [{'criterion_id': 1, 'score': 8, 'comment': '...'}]

        Returns:
            float: Total score written to the submission

        Raises:
            SubmissionNotFoundError: If the submission does not belong to the assignment
            RubricNotConfiguredError: If the assignment has no rubric
            InvalidGradeDataError: If scores are missing
        """
        if not submission_id:
            raise InvalidGradeDataError("Submission ID is required")
        if not isinstance(scores, list) or not scores:
            raise InvalidGradeDataError("Scores are required")

        submission = self.session.get(AssignmentSubmission, submission_id)
        if submission is None or submission.assignment_id != assignment_id:
            raise SubmissionNotFoundError("Submission not found")

        rubric = submission.assignment.rubric
        if rubric is None:
            raise RubricNotConfiguredError("Assignment does not have a rubric")

        criteria = {c.id: c for c in rubric.criteria}
        total = 0

        try:
            for entry in scores:
                if not isinstance(entry, dict):
                    continue
                criterion = criteria.get(entry.get('criterion_id'))
                if criterion is None:
                    continue

                try:
                    raw_score = float(entry.get('score') or 0)
                except (TypeError, ValueError):
                    raise InvalidGradeDataError(f"Score for criterion {criterion.id} must be a number")
                if not is_number(raw_score):
                    raise InvalidGradeDataError(f"Score for criterion {criterion.id} must be a number")
                clamped = min(max(0, raw_score), criterion.max_points)
                total += clamped

                rubric_score = submission.rubric_scores.filter_by(criterion_id=criterion.id).first()
                if rubric_score is None:
                    self.session.add(RubricScore(
                        criterion_id=criterion.id,
                        submission_id=submission.id,
                        score=clamped,
                        comment=entry.get('comment') or None,
                    ))
                else:
                    rubric_score.score = clamped
                    rubric_score.comment = entry.get('comment') or None

            submission.grade = total
            submission.status = 'graded'
            submission.graded_at = datetime.utcnow()
            if feedback:
                submission.feedback = feedback

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("rubric_graded", assignment_id=assignment_id, submission_id=submission.id, total=total)
        return total

    # ------------------------------------------------------------------
    # Course grading configuration
    # ------------------------------------------------------------------

    def update_grading_settings(self, course_id, weights=None, scale=None):
        """
        Replace a course's grading weights and scale

        Raises:
            CourseNotFoundError: If course not found
            ValueError: If the settings are invalid or the new weights would
                leave existing assignments/quizzes in an unknown category
        """
        course = self.get_course(course_id)

        try:
            course.set_grading_weights(weights)
            course.set_grading_scale(scale)

            categories = course.get_grade_categories()
            if categories:
                orphaned = sorted({
                    item.grade_category
                    for item in list(course.assignments) + list(course.quizzes)
                    if item.grade_category and item.grade_category not in categories
                })
                if orphaned:
                    raise ValueError(
                        f"Existing work uses categories missing from the weights: {', '.join(orphaned)}"
                    )

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("grading_settings_updated", course_id=course.id, weighted=course.has_grading_weights())
        return course.get_grading_config()

    def create_assignment(self, course_id, data):
        """
        Create an assignment; its grade category must match the course weights

        Raises:
            CourseNotFoundError: If course not found
            ValueError: If title, points or category are invalid
        """
        course = self.get_course(course_id)

        title = (data.get('title') or '').strip()
        if not title:
            raise ValueError("Title is required")

        max_points = data.get('max_points', 100)
        if not is_number(max_points) or max_points <= 0:
            raise ValueError("Max points must be greater than 0")

        due_date = data.get('due_date')
        if due_date:
            try:
                due_date = datetime.fromisoformat(due_date)
            except (TypeError, ValueError):
                raise ValueError("Due date must be an ISO 8601 date")

        assignment = Assignment(
            course_id=course.id,
            title=title,
            description=data.get('description'),
            due_date=due_date or None,
            max_points=float(max_points),
            grade_category=course.normalize_grade_category(data.get('grade_category')),
            rubric_id=data.get('rubric_id'),
        )
        self.session.add(assignment)
        self.session.commit()

        logger.info("assignment_created", course_id=course.id, assignment_id=assignment.id,
                    grade_category=assignment.grade_category)
        return assignment

    def create_quiz(self, course_id, data):
        """
        Create a quiz with its questions

        Raises:
            CourseNotFoundError: If course not found
            ValueError: If title, questions or category are invalid
        """
        course = self.get_course(course_id)

        title = (data.get('title') or '').strip()
        if not title:
            raise ValueError("Title is required")

        questions = []
        for position, question in enumerate(data.get('questions') or []):
            points = question.get('points', 1)
            if not is_number(points) or points < 0:
                raise ValueError("Question points must be a non-negative number")
            prompt = (question.get('prompt') or '').strip()
            if not prompt:
                raise ValueError("Each question needs a prompt")
            questions.append({'prompt': prompt, 'points': float(points), 'position': position})

        quiz = Quiz(
            course_id=course.id,
            title=title,
            grade_category=course.normalize_grade_category(data.get('grade_category')),
            is_published=bool(data.get('is_published', False)),
        )
        self.session.add(quiz)
        for question in questions:
            self.session.add(QuizQuestion(quiz=quiz, **question))
        self.session.commit()

        logger.info("quiz_created", course_id=course.id, quiz_id=quiz.id, grade_category=quiz.grade_category)
        return quiz
