"""
blueprints/admin/routes.py - Admin Blueprint
Course-wide gradebook views and CSV export.
"""

from flask import Blueprint, jsonify, make_response
from flask_login import login_required, current_user
from functools import wraps

from extensions import db
from services import GradebookService, CourseNotFoundError

admin_bp = Blueprint('admin', __name__)


def admin_required(f):
    """Ensure only admins can access the route"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role != 'admin':
            return jsonify({'success': False, 'error': 'Access denied. Admins only.'}), 403
        return f(*args, **kwargs)
    return decorated_function


@admin_bp.route('/courses/<int:course_id>/gradebook')
@admin_required
def gradebook(course_id):
    """
    Aggregated gradebook: one column per assignment/quiz,
    one row per enrolled student with their computed course grade
    """
    service = GradebookService(db.session)

    try:
        data = service.build_gradebook(course_id)
    except CourseNotFoundError as e:
        return jsonify({'success': False, 'error': str(e)}), 404

    return jsonify({'success': True, **data})


@admin_bp.route('/courses/<int:course_id>/gradebook/export')
@admin_required
def export_gradebook(course_id):
    """Export the gradebook to CSV"""
    service = GradebookService(db.session)

    try:
        filename, content = service.export_gradebook_csv(course_id)
    except CourseNotFoundError as e:
        return jsonify({'success': False, 'error': str(e)}), 404

    response = make_response(content)
    response.headers['Content-Disposition'] = f'attachment; filename="{filename}"'
    response.headers['Content-Type'] = 'text/csv; charset=utf-8'
    return response
