"""
blueprints/student/routes.py - Student Blueprint
Handles student-specific routes: current grades per course.
"""

from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from extensions import db
from services import GradebookService, CourseNotFoundError

# Initialize the blueprint for student-related routes
student_bp = Blueprint('student', __name__)


# Decorator to check if current user is a student
def student_required(f):
    """
    Decorator to ensure only students can access the route
    """
    from functools import wraps

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role != 'student' or current_user.student_profile is None:
            return jsonify({'success': False, 'error': 'Access denied. Students only.'}), 403
        return f(*args, **kwargs)
    return decorated_function


@student_bp.route('/grades')
@student_required
def grades():
    """
    Current grade in every enrolled course
    """
    student = current_user.student_profile
    service = GradebookService(db.session)

    return jsonify({
        'success': True,
        'courses': service.student_course_grades(student.id)
    })


@student_bp.route('/courses/<int:course_id>/grade')
@student_required
def course_grade(course_id):
    """
    Current grade for a single course
    """
    student = current_user.student_profile
    service = GradebookService(db.session)

    try:
        course = service.get_course(course_id)
    except CourseNotFoundError as e:
        return jsonify({'success': False, 'error': str(e)}), 404

    if not student.is_enrolled_in(course.id):
        return jsonify({'success': False, 'error': 'You are not enrolled in this course'}), 403

    grade = service.calculate_student_grade(student.id, course.id)

    return jsonify({
        'success': True,
        'course_id': course.id,
        'course_code': course.code,
        'grade': grade.to_dict()
    })
