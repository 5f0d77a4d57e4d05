"""
blueprints/teacher/routes.py - Teacher Blueprint
Handles instructor routes: grading settings, batch grade entry,
rubric scoring and creation of gradable work.
Admins may use every route; teachers only for courses they teach.
"""

from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from extensions import db
from models import Course
from services import (
    GradebookService,
    AssignmentNotFoundError,
    CourseNotFoundError,
    StudentNotFoundError,
    SubmissionNotFoundError,
    RubricNotConfiguredError,
    InvalidGradeDataError,
)

# Initialize the blueprint for teacher-related routes
teacher_bp = Blueprint('teacher', __name__)


# Decorator to check if current user is a teacher (or admin)
def teacher_required(f):
    """
    Decorator to ensure only teachers and admins can access the route
    """
    from functools import wraps

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role not in ('teacher', 'admin'):
            return jsonify({'success': False, 'error': 'Access denied. Teachers only.'}), 403
        return f(*args, **kwargs)
    return decorated_function


def _managed_course_or_error(course_id):
    """
    Load a course the current user may manage

    Returns:
        tuple: (course, None) or (None, error response)
    """
    course = db.session.get(Course, course_id)
    if course is None:
        return None, (jsonify({'success': False, 'error': f'Course {course_id} not found'}), 404)
    if not current_user.can_manage_course(course):
        return None, (jsonify({'success': False, 'error': 'You do not teach this course'}), 403)
    return course, None


def _client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.headers.get('X-Real-IP') or request.remote_addr or 'unknown'


@teacher_bp.route('/courses/<int:course_id>/grading', methods=['GET'])
@teacher_required
def view_grading_settings(course_id):
    """
    API endpoint to get grading weights and scale for a course
    """
    course, error = _managed_course_or_error(course_id)
    if error:
        return error

    return jsonify({
        'success': True,
        **course.get_grading_config(),
        'suggested_scale': current_app.config['DEFAULT_GRADING_SCALE']
    })


@teacher_bp.route('/courses/<int:course_id>/grading', methods=['PUT'])
@teacher_required
def update_grading_settings(course_id):
    """
    API endpoint to replace grading weights and scale for a course
    Body: {"grading_weights": {...} | null, "grading_scale": [...] | null}
    """
    course, error = _managed_course_or_error(course_id)
    if error:
        return error

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'Invalid grading settings'}), 400

    service = GradebookService(db.session)
    try:
        settings = service.update_grading_settings(
            course.id,
            weights=data.get('grading_weights'),
            scale=data.get('grading_scale'),
        )
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({'success': True, **settings})


@teacher_bp.route('/courses/<int:course_id>/grades', methods=['PATCH'])
@teacher_required
def update_grades(course_id):
    """
    API endpoint to batch-update assignment grades with audit logging
    Body: {"grades": {"<student_id>": {"<assignment_id>": 85 | null}}}
    """
    course, error = _managed_course_or_error(course_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    service = GradebookService(db.session)

    try:
        changes = service.update_grades(
            course.id,
            data.get('grades'),
            changed_by=current_user.id,
            ip_address=_client_ip(),
            user_agent=request.headers.get('User-Agent', 'unknown'),
        )
    except InvalidGradeDataError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({'success': True, 'changes': changes})


@teacher_bp.route('/courses/<int:course_id>/assignments', methods=['POST'])
@teacher_required
def create_assignment(course_id):
    """
    API endpoint to create an assignment in a course
    """
    course, error = _managed_course_or_error(course_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    service = GradebookService(db.session)

    try:
        assignment = service.create_assignment(course.id, data)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({
        'success': True,
        'assignment': {
            'id': assignment.id,
            'title': assignment.title,
            'max_points': assignment.max_points,
            'grade_category': assignment.grade_category,
        }
    }), 201


@teacher_bp.route('/courses/<int:course_id>/quizzes', methods=['POST'])
@teacher_required
def create_quiz(course_id):
    """
    API endpoint to create a quiz (with questions) in a course
    """
    course, error = _managed_course_or_error(course_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    service = GradebookService(db.session)

    try:
        quiz = service.create_quiz(course.id, data)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({
        'success': True,
        'quiz': {
            'id': quiz.id,
            'title': quiz.title,
            'max_points': quiz.get_max_points(),
            'grade_category': quiz.grade_category,
            'is_published': quiz.is_published,
        }
    }), 201


@teacher_bp.route('/assignments/<int:assignment_id>/rubric-grade', methods=['POST'])
@teacher_required
def rubric_grade(assignment_id):
    """
    API endpoint to submit rubric scores for a submission
    Body: {"submission_id": 1, "scores": [{"criterion_id": 1, "score": 8}], "feedback": "..."}
    """
    service = GradebookService(db.session)
    try:
        assignment = service.get_assignment(assignment_id)
    except AssignmentNotFoundError as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    if not current_user.can_manage_course(assignment.course):
        return jsonify({'success': False, 'error': 'You do not teach this course'}), 403

    data = request.get_json(silent=True) or {}

    try:
        total = service.submit_rubric_grade(
            assignment.id,
            data.get('submission_id'),
            data.get('scores'),
            feedback=data.get('feedback'),
        )
    except SubmissionNotFoundError as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except (RubricNotConfiguredError, InvalidGradeDataError) as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({'success': True, 'total_score': total})


@teacher_bp.route('/courses/<int:course_id>/students/<int:student_id>/grade', methods=['GET'])
@teacher_required
def student_grade(course_id, student_id):
    """
    API endpoint to get a student's current grade in a course
    """
    course, error = _managed_course_or_error(course_id)
    if error:
        return error

    service = GradebookService(db.session)
    try:
        grade = service.calculate_student_grade(student_id, course.id)
    except (CourseNotFoundError, StudentNotFoundError) as e:
        return jsonify({'success': False, 'error': str(e)}), 404

    return jsonify({
        'success': True,
        'student_id': student_id,
        'course_id': course.id,
        'grade': grade.to_dict()
    })
