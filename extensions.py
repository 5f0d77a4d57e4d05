"""
extensions.py - Flask Extensions
Initialize Flask extensions here to avoid circular imports.
Extensions are created here but initialized in app.py with init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_bcrypt import Bcrypt

# Database ORM
# Route handlers never query through this directly for grading work:
# they hand db.session to a GradebookService (see services.py)
db = SQLAlchemy()

# Database Migration Tool
# Usage: flask db init, flask db migrate, flask db upgrade
migrate = Migrate()

# User Session Management
login_manager = LoginManager()

# Password Hashing
bcrypt = Bcrypt()
