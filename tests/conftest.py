"""Pytest configuration and shared fixtures.

Every test gets a fresh app on the testing config (in-memory SQLite)
with all tables created, plus small factories for the gradebook models.
"""

import pytest

from app import create_app
from extensions import db, bcrypt
from models import (
    User, Student, Course, Enrollment, Assignment, AssignmentSubmission,
    Quiz, QuizQuestion, QuizAttempt,
)

PASSWORD = 'correct-horse-battery'


@pytest.fixture
def app():
    """Application with an active app context and empty tables."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cli_runner(app):
    return app.test_cli_runner()


@pytest.fixture
def make_user(app):
    """Create a user: make_user('teacher', email='t@x.edu')."""
    counter = {'n': 0}

    def _make_user(role, email=None, first_name='Test', last_name='User'):
        counter['n'] += 1
        user = User(
            email=email or f'{role}{counter["n"]}@gradebook.edu',
            password=bcrypt.generate_password_hash(PASSWORD).decode('utf-8'),
            role=role,
            first_name=first_name,
            last_name=last_name,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_student(make_user):
    counter = {'n': 0}

    def _make_student(first_name='Ana', last_name='Reyes', course=None):
        counter['n'] += 1
        user = make_user('student', first_name=first_name, last_name=last_name)
        student = Student(user_id=user.id, student_number=f'S-{counter["n"]:04d}')
        db.session.add(student)
        db.session.commit()
        if course is not None:
            db.session.add(Enrollment(student_id=student.id, course_id=course.id))
            db.session.commit()
        return student

    return _make_student


@pytest.fixture
def make_course(app):
    counter = {'n': 0}

    def _make_course(instructor=None, weights=None, scale=None, code=None):
        counter['n'] += 1
        course = Course(
            code=code or f'CRS-{counter["n"]}',
            title=f'Course {counter["n"]}',
            instructor_id=instructor.id if instructor else None,
        )
        course.set_grading_weights(weights)
        course.set_grading_scale(scale)
        db.session.add(course)
        db.session.commit()
        return course

    return _make_course


@pytest.fixture
def add_assignment(app):
    def _add_assignment(course, max_points=100, grade_category=None, title=None):
        assignment = Assignment(
            course_id=course.id,
            title=title or f'Assignment {course.assignments.count() + 1}',
            max_points=max_points,
            grade_category=grade_category,
        )
        db.session.add(assignment)
        db.session.commit()
        return assignment

    return _add_assignment


@pytest.fixture
def add_submission(app):
    def _add_submission(assignment, student, grade=None, status=None):
        submission = AssignmentSubmission(
            assignment_id=assignment.id,
            student_id=student.id,
            grade=grade,
            status=status or ('graded' if grade is not None else 'submitted'),
        )
        db.session.add(submission)
        db.session.commit()
        return submission

    return _add_submission


@pytest.fixture
def add_quiz(app):
    def _add_quiz(course, question_points=(5, 5), grade_category=None, is_published=True, title='Quiz'):
        quiz = Quiz(course_id=course.id, title=title, grade_category=grade_category,
                    is_published=is_published)
        db.session.add(quiz)
        for position, points in enumerate(question_points):
            db.session.add(QuizQuestion(quiz=quiz, prompt=f'Q{position + 1}', points=points,
                                        position=position))
        db.session.commit()
        return quiz

    return _add_quiz


@pytest.fixture
def add_attempt(app):
    def _add_attempt(quiz, student, points_earned):
        attempt = QuizAttempt(quiz_id=quiz.id, student_id=student.id, points_earned=points_earned)
        db.session.add(attempt)
        db.session.commit()
        return attempt

    return _add_attempt


@pytest.fixture
def login(client):
    """Log a user in through the API and return the response."""
    def _login(user):
        if user.role == 'student':
            return client.post('/auth/student-login', json={
                'student_number': user.student_profile.student_number,
                'password': PASSWORD,
            })
        return client.post('/auth/login', json={'email': user.email, 'password': PASSWORD})

    return _login
