"""
models.py - Database Models for the Course Gradebook
Courses, gradable work (assignments and quizzes), student results and
the audit trail for grade changes.
"""

from extensions import db
from flask_login import UserMixin
from datetime import datetime
import json

from grading import validate_grading_weights, validate_grading_scale


class User(UserMixin, db.Model):
    """
    Base User Model - Authentication for all users
    """
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # 'admin', 'teacher', 'student'
    first_name = db.Column(db.String(100), nullable=False, default='')
    last_name = db.Column(db.String(100), nullable=False, default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    student_profile = db.relationship('Student', backref='user', uselist=False, cascade='all, delete-orphan')
    courses_taught = db.relationship('Course', backref='instructor', lazy='dynamic')

    def __repr__(self):
        return f'<User {self.email} ({self.role})>'

    def get_full_name(self):
        """Return full name"""
        return f"{self.first_name} {self.last_name}".strip()

    def is_admin(self):
        return self.role == 'admin'

    def is_teacher(self):
        return self.role == 'teacher'

    def is_student(self):
        return self.role == 'student'

    def can_manage_course(self, course):
        """Admins manage every course, teachers only the ones they teach"""
        return self.is_admin() or (self.is_teacher() and course.instructor_id == self.id)


class Student(db.Model):
    """
    Student Profile - Extended student information
    """
    __tablename__ = 'student'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)
    student_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    enrollments = db.relationship('Enrollment', backref='student', lazy='dynamic', cascade='all, delete-orphan')
    submissions = db.relationship('AssignmentSubmission', backref='student', lazy='dynamic', cascade='all, delete-orphan')
    quiz_attempts = db.relationship('QuizAttempt', backref='student', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Student {self.student_number} - {self.get_full_name()}>'

    def get_full_name(self):
        """Return full name"""
        return self.user.get_full_name() if self.user else ''

    def is_enrolled_in(self, course_id):
        return self.enrollments.filter_by(course_id=course_id, status='enrolled').count() > 0


class Course(db.Model):
    """
    Course - Owns the grading configuration for all its gradable work
    """
    __tablename__ = 'course'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), unique=True, nullable=False, index=True)  # "ALG-101"
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    instructor_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    # === GRADING CONFIGURATION (JSON) ===
    # grading_weights: {"Homework": 0.4, "Exams": 0.6}
    #   Absent -> every graded point counts equally (flat average)
    # grading_scale: [{"label": "A", "min_percentage": 90}, ...]
    #   Absent -> letter grade is reported as "N/A"
    grading_weights = db.Column(db.Text, nullable=True)
    grading_scale = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # === RELATIONSHIPS ===
    enrollments = db.relationship('Enrollment', backref='course', lazy='dynamic', cascade='all, delete-orphan')
    assignments = db.relationship('Assignment', backref='course', lazy='dynamic', cascade='all, delete-orphan')
    quizzes = db.relationship('Quiz', backref='course', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Course {self.code} - {self.title}>'

    # === GRADING CONFIGURATION METHODS ===

    def get_grading_weights(self):
        """Parse and return grading weights, None when not configured"""
        if self.grading_weights:
            try:
                return json.loads(self.grading_weights) or None
            except json.JSONDecodeError:
                return None
        return None

    def set_grading_weights(self, weights):
        """
        Set grading weights from a dict

        Raises:
            ValueError: If a category or weight is invalid
        """
        cleaned = validate_grading_weights(weights)
        self.grading_weights = json.dumps(cleaned) if cleaned else None

    def get_grading_scale(self):
        """Parse and return grading scale, None when not configured"""
        if self.grading_scale:
            try:
                return json.loads(self.grading_scale) or None
            except json.JSONDecodeError:
                return None
        return None

    def set_grading_scale(self, scale):
        """
        Set grading scale from a list of bands

        Raises:
            ValueError: If a band is invalid
        """
        cleaned = validate_grading_scale(scale)
        self.grading_scale = json.dumps(cleaned) if cleaned else None

    def has_grading_weights(self):
        return self.get_grading_weights() is not None

    def get_grade_categories(self):
        """Category names from the weights, in configured order"""
        return list((self.get_grading_weights() or {}).keys())

    def normalize_grade_category(self, category):
        """
        Resolve a grade category against this course's weights

        When weights are configured the category must name one of them;
        matching ignores case and surrounding spaces and returns the
        stored spelling. Without weights any label is kept as typed.

        Returns:
            str or None for a blank category

        Raises:
            ValueError: If the category is not one of the weighted categories
        """
        if category is None or not str(category).strip():
            return None

        name = str(category).strip()
        categories = self.get_grade_categories()
        if not categories:
            return name

        for known in categories:
            if known.lower() == name.lower():
                return known

        raise ValueError(
            f"Unknown grade category '{name}'. Expected one of: {', '.join(categories)}"
        )

    def get_grading_config(self):
        """Course settings in the shape grading.compute_grade expects"""
        return {
            'grading_weights': self.get_grading_weights(),
            'grading_scale': self.get_grading_scale(),
        }

    def get_enrolled_count(self):
        """Get number of enrolled students"""
        return self.enrollments.filter_by(status='enrolled').count()


class Enrollment(db.Model):
    """
    Enrollment - Links students to courses
    """
    __tablename__ = 'enrollment'
    __table_args__ = (db.UniqueConstraint('student_id', 'course_id', name='uq_enrollment_student_course'),)

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False, index=True)

    enrolled_at = db.Column(db.DateTime, default=datetime.utcnow)
    status = db.Column(db.String(20), default='enrolled')  # 'enrolled', 'dropped', 'completed'

    def __repr__(self):
        return f'<Enrollment Student:{self.student_id} Course:{self.course_id} ({self.status})>'


class Rubric(db.Model):
    """
    Rubric - Reusable set of scoring criteria for assignments
    """
    __tablename__ = 'rubric'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    criteria = db.relationship('RubricCriterion', backref='rubric', lazy='select',
                               cascade='all, delete-orphan', order_by='RubricCriterion.position')

    def __repr__(self):
        return f'<Rubric {self.title}>'

    def get_max_points(self):
        return sum(c.max_points for c in self.criteria)


class RubricCriterion(db.Model):
    __tablename__ = 'rubric_criterion'

    id = db.Column(db.Integer, primary_key=True)
    rubric_id = db.Column(db.Integer, db.ForeignKey('rubric.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    max_points = db.Column(db.Float, nullable=False, default=10)
    position = db.Column(db.Integer, default=0)

    def __repr__(self):
        return f'<RubricCriterion {self.title} ({self.max_points})>'


class Assignment(db.Model):
    """
    Assignment - Gradable work with a fixed point value
    """
    __tablename__ = 'assignment'

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime, nullable=True)
    max_points = db.Column(db.Float, nullable=False, default=100)

    # Must name one of the course's weighted categories when weights exist
    # (resolved through Course.normalize_grade_category)
    grade_category = db.Column(db.String(100), nullable=True)

    rubric_id = db.Column(db.Integer, db.ForeignKey('rubric.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    submissions = db.relationship('AssignmentSubmission', backref='assignment', lazy='dynamic', cascade='all, delete-orphan')
    rubric = db.relationship('Rubric')

    def __repr__(self):
        return f'<Assignment {self.title} - Course:{self.course_id}>'

    def to_grade_input(self):
        return {
            'id': self.id,
            'max_points': self.max_points,
            'grade_category': self.grade_category,
        }


class AssignmentSubmission(db.Model):
    """
    Submission - One per (assignment, student)
    grade stays NULL until the work is graded
    """
    __tablename__ = 'assignment_submission'
    __table_args__ = (db.UniqueConstraint('assignment_id', 'student_id', name='uq_submission_assignment_student'),)

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey('assignment.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False, index=True)

    content = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='submitted')  # 'submitted', 'graded', 'returned'
    grade = db.Column(db.Float, nullable=True)
    feedback = db.Column(db.Text, nullable=True)

    submitted_at = db.Column(db.DateTime, default=datetime.utcnow)
    graded_at = db.Column(db.DateTime, nullable=True)
    graded_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    rubric_scores = db.relationship('RubricScore', backref='submission', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Submission Student:{self.student_id} Assignment:{self.assignment_id} Grade:{self.grade}>'

    def to_grade_input(self):
        return {'assignment_id': self.assignment_id, 'grade': self.grade}


class RubricScore(db.Model):
    __tablename__ = 'rubric_score'
    __table_args__ = (db.UniqueConstraint('criterion_id', 'submission_id', name='uq_rubric_score_criterion_submission'),)

    id = db.Column(db.Integer, primary_key=True)
    criterion_id = db.Column(db.Integer, db.ForeignKey('rubric_criterion.id'), nullable=False)
    submission_id = db.Column(db.Integer, db.ForeignKey('assignment_submission.id'), nullable=False, index=True)
    score = db.Column(db.Float, nullable=False)
    comment = db.Column(db.Text, nullable=True)

    criterion = db.relationship('RubricCriterion')


class Quiz(db.Model):
    """
    Quiz - Gradable work worth the sum of its question points
    """
    __tablename__ = 'quiz'

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    grade_category = db.Column(db.String(100), nullable=True)
    is_published = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    questions = db.relationship('QuizQuestion', backref='quiz', lazy='dynamic', cascade='all, delete-orphan')
    attempts = db.relationship('QuizAttempt', backref='quiz', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Quiz {self.title} - Course:{self.course_id}>'

    def get_max_points(self):
        return sum(q.points for q in self.questions)

    def to_grade_input(self):
        return {'id': self.id, 'grade_category': self.grade_category}


class QuizQuestion(db.Model):
    __tablename__ = 'quiz_question'

    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    prompt = db.Column(db.Text, nullable=False)
    points = db.Column(db.Float, nullable=False, default=1)
    position = db.Column(db.Integer, default=0)


class QuizAttempt(db.Model):
    """
    Quiz Attempt - A student may attempt a quiz several times;
    only the best points_earned counts toward the course grade
    """
    __tablename__ = 'quiz_attempt'

    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False, index=True)

    score = db.Column(db.Float, nullable=True)  # Percentage (0-100)
    points_earned = db.Column(db.Float, nullable=True)

    started_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<QuizAttempt Student:{self.student_id} Quiz:{self.quiz_id} Points:{self.points_earned}>'

    def to_grade_input(self):
        return {'id': self.id, 'quiz_id': self.quiz_id, 'points_earned': self.points_earned}


class GradeAuditLog(db.Model):
    """
    Grade Audit Log - One row per changed grade value
    """
    __tablename__ = 'grade_audit_log'

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey('assignment_submission.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False, index=True)

    field_changed = db.Column(db.String(50), nullable=False, default='grade')
    old_value = db.Column(db.String(50), nullable=True)
    new_value = db.Column(db.String(50), nullable=True)

    changed_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<GradeAuditLog Submission:{self.submission_id} {self.old_value} -> {self.new_value}>'
