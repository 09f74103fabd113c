"""
Custom route decorators for access control and request validation.

- admin_required: ensures user is logged in AND has is_admin=True.
- require_json_fields: rejects a request whose JSON body is missing
  (or has blank) required fields, before the view runs.
"""

from functools import wraps

from flask import jsonify, request
from flask_login import current_user, login_required


def admin_required(f):
    """Require login + is_admin flag."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated


def require_json_fields(*names):
    """400 unless every named field is present and non-blank in the JSON body.

    Usage:
        @admin_bp.route("/entitlements/grant", methods=["POST"])
        @admin_required
        @require_json_fields("user_id", "product_id", "reason")
        def entitlement_grant(): ...
    """

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                payload = {}
            missing = [n for n in names if not str(payload.get(n) or "").strip()]
            if missing:
                return jsonify(
                    {"error": f"Missing required fields: {', '.join(missing)}"}
                ), 400
            return f(*args, **kwargs)

        return decorated

    return decorator
