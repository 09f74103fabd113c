"""Entitlement service: access checks and the grant/revoke write paths.

Responsible for:
- Answering "does user U currently have access to product P" (single and bulk)
- Lazily revoking expired entitlements on the single-item path
- Listing a user's active entitlements with product summaries
- The one upsert-by-pair write used by fulfillment AND admin grants
- The deactivation writes used by refunds, expiry AND admin revokes

upsert_entitlement and deactivate_order_entitlements only flush: the
calling pipeline owns the transaction. grant_entitlement,
revoke_entitlement and has_access commit.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import joinedload

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.entitlement import Entitlement

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _now():
    return datetime.now(timezone.utc)


def get_entitlement(user_id, product_id):
    return Entitlement.query.filter_by(
        user_id=user_id, product_id=product_id
    ).first()


def _not_expired(now):
    return or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now)


# ──────────────────────────────────────────────
# Write helpers (caller commits)
# ──────────────────────────────────────────────

def upsert_entitlement(user_id, product_id, order_id=None, expires_at=None):
    """Find-or-create-or-reactivate the entitlement for (user, product).

    Executed as a single INSERT ... ON CONFLICT (user_id, product_id)
    DO UPDATE so two fulfillments racing on the same pair can't both
    insert. The existing row, if any, is reactivated in place: active=True,
    order_id replaced, expires_at replaced, revocation fields cleared.

    Flushes only. Returns the (refreshed) Entitlement.
    """
    db.session.flush()

    insert = _UPSERT_INSERTS.get(db.engine.dialect.name)
    if insert is None:
        return _upsert_entitlement_fallback(user_id, product_id, order_id, expires_at)

    stmt = insert(Entitlement.__table__).values(
        id=str(uuid.uuid4()),
        user_id=user_id,
        product_id=product_id,
        order_id=order_id,
        active=True,
        expires_at=expires_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "product_id"],
        set_={
            "active": True,
            "order_id": stmt.excluded.order_id,
            "expires_at": stmt.excluded.expires_at,
            "revoked_at": None,
            "revoke_reason": None,
            "updated_at": func.now(),
        },
    )
    db.session.execute(stmt)

    return (
        Entitlement.query
        .filter_by(user_id=user_id, product_id=product_id)
        .populate_existing()
        .one()
    )


def _upsert_entitlement_fallback(user_id, product_id, order_id, expires_at):
    entitlement = get_entitlement(user_id, product_id)
    if entitlement is None:
        entitlement = Entitlement(
            user_id=user_id,
            product_id=product_id,
            order_id=order_id,
            active=True,
            expires_at=expires_at,
        )
        db.session.add(entitlement)
    else:
        entitlement.active = True
        entitlement.order_id = order_id
        entitlement.expires_at = expires_at
        entitlement.revoked_at = None
        entitlement.revoke_reason = None
    db.session.flush()
    return entitlement


def deactivate_order_entitlements(order_id, reason, now=None):
    """Deactivate active entitlements currently justified by order_id.

    One conditional UPDATE: a row whose order_id has since moved to a later
    order (repurchase after an earlier refund) doesn't match and keeps its
    access. Flushes only. Returns the number of rows deactivated.
    """
    now = now or _now()
    return (
        Entitlement.query
        .filter(
            Entitlement.order_id == order_id,
            Entitlement.active.is_(True),
        )
        .update(
            {
                "active": False,
                "revoked_at": now,
                "revoke_reason": reason,
            },
            synchronize_session="fetch",
        )
    )


def _deactivate_pair(user_id, product_id, reason, now=None):
    """Deactivate the (user, product) entitlement if it is active. Flushes only."""
    now = now or _now()
    return (
        Entitlement.query
        .filter(
            Entitlement.user_id == user_id,
            Entitlement.product_id == product_id,
            Entitlement.active.is_(True),
        )
        .update(
            {
                "active": False,
                "revoked_at": now,
                "revoke_reason": reason,
            },
            synchronize_session="fetch",
        )
    )


# ──────────────────────────────────────────────
# Access checks
# ──────────────────────────────────────────────

def has_access(user_id, product_id):
    """True if the user holds an active, unexpired entitlement.

    This is the path that gates actual content delivery, so it self-heals:
    an active entitlement found past its expires_at is revoked right here
    (reason "expired") before returning False.
    """
    entitlement = get_entitlement(user_id, product_id)

    if entitlement is None:
        return False

    if not entitlement.active:
        return False

    if entitlement.is_expired:
        revoked = _deactivate_pair(user_id, product_id, "expired")
        db.session.commit()
        if revoked:
            logger.info(f"Lazily revoked expired entitlement {entitlement.id}")
        return False

    return True


def has_access_bulk(user_id, product_ids):
    """Map each product_id to whether the user has access.

    One query, read-only: expired-but-still-active rows count as no access
    but are NOT revoked here. Used for rendering, where a stale row until
    the next single check is acceptable.
    """
    product_ids = list(product_ids)
    if not product_ids:
        return {}

    rows = (
        db.session.query(Entitlement.product_id)
        .filter(
            Entitlement.user_id == user_id,
            Entitlement.product_id.in_(product_ids),
            Entitlement.active.is_(True),
            _not_expired(_now()),
        )
        .all()
    )
    granted = {row.product_id for row in rows}
    return {product_id: product_id in granted for product_id in product_ids}


def list_active_entitlements(user_id):
    """Active, unexpired entitlements for a user, product joined, newest first."""
    return (
        Entitlement.query
        .options(joinedload(Entitlement.product))
        .filter(
            Entitlement.user_id == user_id,
            Entitlement.active.is_(True),
            _not_expired(_now()),
        )
        .order_by(Entitlement.created_at.desc())
        .all()
    )


# ──────────────────────────────────────────────
# Admin entry points
# ──────────────────────────────────────────────

def grant_entitlement(user_id, product_id, reason, order_id=None,
                      expires_at=None, actor_user_id=None):
    """Manually grant (or re-grant) access. Same upsert as fulfillment.

    Returns the Entitlement (committed).
    """
    entitlement = upsert_entitlement(
        user_id, product_id, order_id=order_id, expires_at=expires_at
    )
    db.session.add(AuditEvent(
        actor_user_id=actor_user_id,
        action="entitlement.granted",
        entity="entitlement",
        entity_id=entitlement.id,
        metadata_={
            "user_id": user_id,
            "product_id": product_id,
            "order_id": order_id,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "reason": reason,
        },
    ))
    db.session.commit()
    logger.info(f"Granted entitlement {user_id}/{product_id} ({reason})")
    return entitlement


def revoke_entitlement(user_id, product_id, reason, actor_user_id=None):
    """Manually revoke access. The row is kept for the audit trail.

    Returns True if an active entitlement was deactivated.
    """
    revoked = _deactivate_pair(user_id, product_id, reason)
    if not revoked:
        db.session.rollback()
        logger.info(f"No active entitlement to revoke for {user_id}/{product_id}")
        return False

    entitlement = get_entitlement(user_id, product_id)
    db.session.add(AuditEvent(
        actor_user_id=actor_user_id,
        action="entitlement.revoked",
        entity="entitlement",
        entity_id=entitlement.id,
        metadata_={
            "user_id": user_id,
            "product_id": product_id,
            "order_id": entitlement.order_id,
            "reason": reason,
        },
    ))
    db.session.commit()
    logger.info(f"Revoked entitlement {user_id}/{product_id} ({reason})")
    return True


def entitlement_stats():
    """Counts for the admin overview: total / active / revoked / expired."""
    now = _now()
    query = Entitlement.query
    return {
        "total": query.count(),
        "active": query.filter(
            Entitlement.active.is_(True), _not_expired(now)
        ).count(),
        "revoked": query.filter(Entitlement.revoked_at.isnot(None)).count(),
        "expired": query.filter(
            Entitlement.expires_at.isnot(None), Entitlement.expires_at <= now
        ).count(),
    }
