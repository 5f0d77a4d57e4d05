"""
commands.py - Flask CLI Commands
    flask create-admin --email admin@school.edu --password ...
    flask seed-demo
"""

from datetime import datetime, timedelta

import click
from flask.cli import with_appcontext

from extensions import db, bcrypt
from logging_config import get_logger
from models import (
    User, Student, Course, Enrollment, Assignment, AssignmentSubmission,
    Quiz, QuizQuestion, QuizAttempt,
)

logger = get_logger(__name__)


def _hash_password(password):
    return bcrypt.generate_password_hash(password).decode('utf-8')


@click.command('create-admin')
@click.option('--email', default='admin@gradebook.edu', show_default=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin_command(email, password):
    """Create an admin account"""
    email = email.strip().lower()

    existing = User.query.filter_by(email=email).first()
    if existing:
        raise click.ClickException(f"User {email} already exists ({existing.role})")

    if len(password) < 8:
        raise click.ClickException("Password must be at least 8 characters")

    admin = User(email=email, password=_hash_password(password), role='admin',
                 first_name='System', last_name='Administrator')
    db.session.add(admin)
    db.session.commit()

    logger.info("admin_created", email=email)
    click.echo(f"Admin account created: {email}")


DEMO_STUDENTS = [
    ('Ana', 'Reyes', 'S-0001'),
    ('Ben', 'Okafor', 'S-0002'),
    ('Chloe', 'Nguyen', 'S-0003'),
]


@click.command('seed-demo')
@click.option('--password', default='demo-pass-123', show_default=True,
              help='Password for every demo account')
@with_appcontext
def seed_demo_command(password):
    """Create a demo course with graded work"""
    if Course.query.filter_by(code='DEMO-101').first():
        raise click.ClickException("Demo data already exists (course DEMO-101)")

    hashed = _hash_password(password)

    instructor = User(email='teacher@gradebook.edu', password=hashed, role='teacher',
                      first_name='Maria', last_name='Santos')
    db.session.add(instructor)
    db.session.flush()

    course = Course(code='DEMO-101', title='Introduction to Algebra', instructor_id=instructor.id)
    course.set_grading_weights({'Homework': 0.4, 'Exams': 0.6})
    course.set_grading_scale([
        {'label': 'A', 'min_percentage': 90},
        {'label': 'B', 'min_percentage': 80},
        {'label': 'C', 'min_percentage': 70},
        {'label': 'D', 'min_percentage': 60},
        {'label': 'F', 'min_percentage': 0},
    ])
    db.session.add(course)
    db.session.flush()

    start = datetime.utcnow()
    homework = [
        Assignment(course_id=course.id, title=f'Homework {n}', max_points=20,
                   grade_category='Homework', due_date=start + timedelta(weeks=n))
        for n in (1, 2, 3)
    ]
    midterm = Assignment(course_id=course.id, title='Midterm Exam', max_points=100,
                         grade_category='Exams', due_date=start + timedelta(weeks=6))
    db.session.add_all(homework + [midterm])

    quiz = Quiz(course_id=course.id, title='Unit 1 Quiz', grade_category='Exams', is_published=True)
    db.session.add(quiz)
    for position, points in enumerate([2, 3, 5]):
        db.session.add(QuizQuestion(quiz=quiz, prompt=f'Question {position + 1}',
                                    points=points, position=position))
    db.session.flush()

    # (homework grades, midterm grade or None, quiz attempts)
    results = [
        ([18, 20, 19], 92, [7, 10]),
        ([15, 12, None], 74, [6]),
        ([10, None, None], None, []),
    ]

    for (first, last, number), (hw_grades, midterm_grade, attempts) in zip(DEMO_STUDENTS, results):
        user = User(email=f'{first.lower()}@gradebook.edu', password=hashed, role='student',
                    first_name=first, last_name=last)
        student = Student(user=user, student_number=number)
        db.session.add(student)
        db.session.flush()
        db.session.add(Enrollment(student_id=student.id, course_id=course.id))

        for assignment, grade in zip(homework + [midterm], hw_grades + [midterm_grade]):
            if grade is None:
                continue
            db.session.add(AssignmentSubmission(
                assignment_id=assignment.id, student_id=student.id,
                grade=grade, status='graded', graded_at=start, graded_by=instructor.id,
            ))

        for points in attempts:
            db.session.add(QuizAttempt(
                quiz_id=quiz.id, student_id=student.id,
                points_earned=points, score=points / 10 * 100, completed_at=start,
            ))

    db.session.commit()

    logger.info("demo_seeded", course_id=course.id, students=len(DEMO_STUDENTS))
    click.echo(f"Demo course {course.code} created with {len(DEMO_STUDENTS)} students")
