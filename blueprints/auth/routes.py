"""
blueprints/auth/routes.py - Authentication Blueprint
Handles user login and logout for the JSON API.
"""

from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from extensions import bcrypt
from logging_config import get_logger
from models import User, Student

# Create blueprint
auth_bp = Blueprint('auth', __name__)

logger = get_logger(__name__)


def _user_payload(user):
    payload = {
        'id': user.id,
        'email': user.email,
        'role': user.role,
        'name': user.get_full_name(),
    }
    if user.is_student() and user.student_profile:
        payload['student_id'] = user.student_profile.id
        payload['student_number'] = user.student_profile.student_number
    return payload


@auth_bp.route('/student-login', methods=['POST'])
def student_login():
    """
    Student login
    Uses student number instead of email
    """
    data = request.get_json(silent=True) or {}
    student_number = str(data.get('student_number', '')).strip()
    password = data.get('password', '')

    # Validate input
    if not student_number or not password:
        return jsonify({'success': False, 'error': 'Please enter both Student ID and password.'}), 400

    student = Student.query.filter_by(student_number=student_number).first()
    user = student.user if student else None

    if user is None or user.role != 'student' or not bcrypt.check_password_hash(user.password, password):
        logger.info("login_failed", student_number=student_number)
        return jsonify({'success': False, 'error': 'Invalid Student ID or password.'}), 401

    login_user(user, remember=True)
    logger.info("login", user_id=user.id, role=user.role)
    return jsonify({'success': True, 'user': _user_payload(user)})


@auth_bp.route('/login', methods=['POST'])
def staff_login():
    """
    Teacher and Admin login
    Uses email for authentication
    """
    data = request.get_json(silent=True) or {}
    email = str(data.get('email', '')).strip().lower()
    password = data.get('password', '')

    # Validate input
    if not email or not password:
        return jsonify({'success': False, 'error': 'Please enter both email and password.'}), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not bcrypt.check_password_hash(user.password, password):
        logger.info("login_failed", email=email)
        return jsonify({'success': False, 'error': 'Invalid email or password.'}), 401

    # Check if user is staff (teacher or admin)
    if user.role not in ['teacher', 'admin']:
        return jsonify({'success': False, 'error': 'This login is for faculty and staff only.'}), 403

    login_user(user, remember=True)
    logger.info("login", user_id=user.id, role=user.role)
    return jsonify({'success': True, 'user': _user_payload(user)})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """
    Logout current user
    """
    user_id = current_user.id
    logout_user()
    logger.info("logout", user_id=user_id)
    return jsonify({'success': True})


@auth_bp.route('/me')
@login_required
def me():
    """Currently logged-in user"""
    return jsonify({'success': True, 'user': _user_payload(current_user)})
