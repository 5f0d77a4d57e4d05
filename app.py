"""
app.py - Gradebook API
Builds the Flask app: extensions, role blueprints, JSON errors and CLI commands.
"""

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import config
from extensions import db, migrate, login_manager, bcrypt
from logging_config import setup_logging, get_logger

logger = get_logger(__name__)


def create_app(config_name='development'):
    """
    Build the gradebook app for one of the environments in config.py

    Args:
        config_name (str): 'development', 'production' or 'testing'
    """
    app = Flask(__name__)

    config_class = config[config_name]
    app.config.from_object(config_class)
    config_class.init_app(app)

    setup_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    bcrypt.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        """Load user by ID for Flask-Login session management"""
        from models import User
        return db.session.get(User, int(user_id))

    # API clients get a JSON 401 instead of a login redirect
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'error': 'Authentication required'}), 401

    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    # Flask-Migrate autogenerate needs every model imported
    with app.app_context():
        import models  # noqa: F401

    logger.debug("app_created", config=config_name)
    return app


def register_blueprints(app):
    """
    Mount one blueprint per role, plus the health check
    """
    from blueprints.auth.routes import auth_bp
    from blueprints.student.routes import student_bp
    from blueprints.teacher.routes import teacher_bp
    from blueprints.admin.routes import admin_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(student_bp, url_prefix='/student')
    app.register_blueprint(teacher_bp, url_prefix='/teacher')
    app.register_blueprint(admin_bp, url_prefix='/admin')

    @app.route('/health')
    def health():
        """Liveness check"""
        return jsonify({'success': True, 'status': 'ok'})


def register_error_handlers(app):
    """
    Register JSON error handlers for common HTTP errors
    """
    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'success': False, 'error': error.description}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()  # Rollback any failed database transactions
        logger.error("unhandled_error", error=str(getattr(error, 'original_exception', error)))
        return jsonify({'success': False, 'error': 'Internal server error'}), 500


def register_commands(app):
    """
    Register Flask CLI commands (flask create-admin, flask seed-demo)
    """
    from commands import create_admin_command, seed_demo_command

    app.cli.add_command(create_admin_command)
    app.cli.add_command(seed_demo_command)


if __name__ == '__main__':
    app = create_app('development')

    app.run(
        host='0.0.0.0',
        port=5000,
        debug=True
    )
