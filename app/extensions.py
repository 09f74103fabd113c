"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit: we apply per-route
    storage_uri="memory://",
)


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID from session. Imports lazily to avoid circular deps."""
    from app.models.user import User

    return db.session.get(User, user_id)


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401: every protected route in this app is an API endpoint."""
    from flask import jsonify

    return jsonify({"error": "Authentication required"}), 401


def get_notifier():
    """Notification collaborator built by create_app()."""
    return current_app.extensions["notifier"]


def get_stripe_gateway():
    """Stripe client/capability built by create_app()."""
    return current_app.extensions["stripe_gateway"]
