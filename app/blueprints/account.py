"""Account blueprint: /account/*

Read-only access checks for the logged-in user, consumed by the pages
that render or deliver paid content.

Routes:
- GET /account/entitlements             : active entitlements + product summary
- GET /account/access/<product_id>      : single check (self-heals expiry)
- GET /account/access?product_id=a&...  : bulk check (read-only)
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.extensions import limiter
from app.services.entitlement_service import (
    has_access,
    has_access_bulk,
    list_active_entitlements,
)

logger = logging.getLogger(__name__)

account_bp = Blueprint("account", __name__, url_prefix="/account")


def _isoformat(value):
    return value.isoformat() if value else None


def serialize_entitlement(entitlement):
    product = entitlement.product
    return {
        "id": entitlement.id,
        "user_id": entitlement.user_id,
        "product_id": entitlement.product_id,
        "order_id": entitlement.order_id,
        "active": entitlement.active,
        "expires_at": _isoformat(entitlement.expires_at),
        "revoked_at": _isoformat(entitlement.revoked_at),
        "revoke_reason": entitlement.revoke_reason,
        "created_at": _isoformat(entitlement.created_at),
        "product": {
            "id": product.id,
            "slug": product.slug,
            "title": product.title,
        } if product else None,
    }


@account_bp.route("/entitlements")
@login_required
@limiter.limit("60 per minute")
def entitlements():
    rows = list_active_entitlements(current_user.id)
    return jsonify({"entitlements": [serialize_entitlement(e) for e in rows]})


@account_bp.route("/access/<product_id>")
@login_required
@limiter.limit("120 per minute")
def access(product_id):
    return jsonify({
        "product_id": product_id,
        "has_access": has_access(current_user.id, product_id),
    })


@account_bp.route("/access")
@login_required
@limiter.limit("60 per minute")
def access_bulk():
    product_ids = request.args.getlist("product_id")
    if not product_ids:
        return jsonify({"error": "product_id is required"}), 400
    return jsonify({"access": has_access_bulk(current_user.id, product_ids)})
