"""Admin blueprint: /admin/*

Support tooling for manual corrections. JSON in, JSON out.
All routes protected by @admin_required decorator.

Route Map:
  GET  /admin/entitlements                     : Entitlement list + stats
  POST /admin/entitlements/grant               : Grant (or re-grant) access
  POST /admin/entitlements/revoke              : Revoke access
  GET  /admin/orders/<id>                      : Order with line items + entitlements
  GET  /admin/events/failed                    : Dead-lettered webhook events
  POST /admin/events/<provider_event_id>/retry : Reprocess a stored event
"""

import logging
from datetime import datetime, timezone

import bleach
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from app.blueprints.account import serialize_entitlement
from app.decorators import admin_required, require_json_fields
from app.exceptions import EventAlreadyProcessedError, EventNotFoundError
from app.extensions import db, get_notifier
from app.models.entitlement import Entitlement
from app.models.order import Order
from app.models.product import Product
from app.models.user import User
from app.services import event_ledger
from app.services.entitlement_service import (
    entitlement_stats,
    grant_entitlement,
    revoke_entitlement,
)
from app.services.stripe_service import retry_failed_event

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _isoformat(value):
    return value.isoformat() if value else None


def _parse_expires_at(raw):
    """ISO-8601 string -> UTC datetime (naive input is taken as UTC)."""
    if not raw:
        return None
    value = datetime.fromisoformat(str(raw))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    # SQLite drops the offset on write and reads the wall time back as UTC
    return value.astimezone(timezone.utc)


def _sanitize(text):
    """Strip all HTML tags from admin input."""
    return bleach.clean(str(text), tags=[], strip=True).strip()


# ══════════════════════════════════════════════
#  ENTITLEMENTS
# ══════════════════════════════════════════════

@admin_bp.route("/entitlements")
@admin_required
def entitlement_list():
    """List entitlements, optionally filtered by ?status=active|revoked."""
    status = request.args.get("status")
    query = Entitlement.query
    if status == "active":
        query = query.filter(Entitlement.active.is_(True))
    elif status == "revoked":
        query = query.filter(Entitlement.revoked_at.isnot(None))

    rows = query.order_by(Entitlement.created_at.desc()).limit(100).all()
    return jsonify({
        "stats": entitlement_stats(),
        "entitlements": [serialize_entitlement(e) for e in rows],
    })


@admin_bp.route("/entitlements/grant", methods=["POST"])
@admin_required
@require_json_fields("user_id", "product_id", "reason")
def entitlement_grant():
    """Grant access through the same upsert-by-pair path as fulfillment."""
    payload = request.get_json()

    user_id = str(payload["user_id"]).strip()
    product_id = str(payload["product_id"]).strip()

    if db.session.get(User, user_id) is None:
        return jsonify({"error": f"User {user_id} not found"}), 404
    if db.session.get(Product, product_id) is None:
        return jsonify({"error": f"Product {product_id} not found"}), 404

    try:
        expires_at = _parse_expires_at(payload.get("expires_at"))
    except ValueError:
        return jsonify({"error": "expires_at must be an ISO-8601 timestamp"}), 400

    entitlement = grant_entitlement(
        user_id,
        product_id,
        reason=_sanitize(payload["reason"]),
        order_id=payload.get("order_id") or None,
        expires_at=expires_at,
        actor_user_id=current_user.id,
    )
    return jsonify({"entitlement": serialize_entitlement(entitlement)}), 200


@admin_bp.route("/entitlements/revoke", methods=["POST"])
@admin_required
@require_json_fields("user_id", "product_id", "reason")
def entitlement_revoke():
    """Revoke access. The row stays, stamped with the reason."""
    payload = request.get_json()

    revoked = revoke_entitlement(
        str(payload["user_id"]).strip(),
        str(payload["product_id"]).strip(),
        reason=_sanitize(payload["reason"]),
        actor_user_id=current_user.id,
    )
    if not revoked:
        return jsonify({"error": "No active entitlement found"}), 404
    return jsonify({"revoked": True}), 200


# ══════════════════════════════════════════════
#  ORDERS
# ══════════════════════════════════════════════

@admin_bp.route("/orders/<order_id>")
@admin_required
def order_detail(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"error": "Order not found"}), 404

    return jsonify({
        "id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "total": order.total,
        "currency": order.currency,
        "provider_session_id": order.provider_session_id,
        "provider_payment_id": order.provider_payment_id,
        "customer_email": order.customer_email,
        "customer_name": order.customer_name,
        "fulfilled_at": _isoformat(order.fulfilled_at),
        "refunded_at": _isoformat(order.refunded_at),
        "line_items": [
            {
                "product_id": item.product_id,
                "product_name": item.product_name_snapshot,
                "amount": item.amount,
                "currency": item.currency,
            }
            for item in order.line_items
        ],
        "entitlements": [serialize_entitlement(e) for e in order.entitlements],
    })


# ══════════════════════════════════════════════
#  WEBHOOK EVENTS (dead letters)
# ══════════════════════════════════════════════

@admin_bp.route("/events/failed")
@admin_required
def failed_events():
    limit = request.args.get("limit", type=int) or current_app.config["FAILED_EVENTS_LIMIT"]
    events = event_ledger.list_failed_events(limit=limit)
    return jsonify({
        "events": [
            {
                "provider_event_id": e.provider_event_id,
                "event_type": e.event_type,
                "processing_error": e.processing_error,
                "attempt_count": e.attempt_count,
                "received_at": _isoformat(e.received_at),
            }
            for e in events
        ]
    })


@admin_bp.route("/events/<provider_event_id>/retry", methods=["POST"])
@admin_required
def retry_event(provider_event_id):
    try:
        success, message = retry_failed_event(provider_event_id, notifier=get_notifier())
    except EventNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except EventAlreadyProcessedError as e:
        return jsonify({"error": str(e)}), 409

    logger.info(f"Admin {current_user.id} retried event {provider_event_id}: {message}")
    return jsonify({"success": success, "status": message}), 200 if success else 500
