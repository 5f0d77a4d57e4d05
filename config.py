"""
config.py - Gradebook Settings
One class per environment; create_app() picks one by name from `config`.
"""

import os
from datetime import timedelta

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """
    Settings shared by every environment
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'gradebook-dev-key'

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Login sessions (Flask-Login stores the user id in the signed cookie)
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    REMEMBER_COOKIE_DURATION = timedelta(days=14)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = _env_flag('SESSION_COOKIE_SECURE')

    # structlog output, see logging_config.py
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_JSON = _env_flag('LOG_JSON')

    # ========================================
    # GRADEBOOK
    # ========================================

    # Offered to instructors as a starting point in the grading settings.
    # A course without its own scale reports "N/A" as its letter grade.
    DEFAULT_GRADING_SCALE = [
        {"label": "A", "min_percentage": 90},
        {"label": "B", "min_percentage": 80},
        {"label": "C", "min_percentage": 70},
        {"label": "D", "min_percentage": 60},
        {"label": "F", "min_percentage": 0},
    ]

    # Exported gradebooks are named <prefix>-<course code>.csv
    GRADEBOOK_EXPORT_PREFIX = os.environ.get('GRADEBOOK_EXPORT_PREFIX', 'gradebook')

    @classmethod
    def init_app(cls, app):
        pass


class DevelopmentConfig(Config):
    """Local SQLite file, debug on, console logs"""
    DEBUG = True

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        'sqlite:///' + os.path.join(BASE_DIR, 'gradebook_dev.db')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """PostgreSQL, secure cookies, JSON logs"""
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'postgresql://localhost/gradebook'
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    }

    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    LOG_JSON = True

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # The development fallback key must never sign production sessions
        if not os.environ.get('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production!")


class TestingConfig(Config):
    """In-memory database, fast hashing, quiet logs"""
    TESTING = True

    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'WARNING'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
