"""Reversal service: refund (charge or payment intent) -> Order refunded + access removed.

Refunds can arrive before the fulfillment they reverse (Stripe gives no
ordering guarantee) and can be redelivered any number of times, so:
- no matching order: log and return, never raise
- order already refunded: return, no writes
- the order transition is conditional, so two workers racing on the same
  refund produce one transition and one audit row
- only entitlements whose order_id is this order are deactivated; an
  entitlement reactivated by a later order keeps its access
"""

import logging
from datetime import datetime, timezone

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.entitlement import Entitlement
from app.models.order import Order
from app.services.entitlement_service import deactivate_order_entitlements
from app.services.notification_service import notify, refund_confirmation

logger = logging.getLogger(__name__)

REFUND_REASON = "refund"


def _log_superseded(order):
    """Log entitlements for this order's products now owned by a later order."""
    if not order.user_id:
        return
    product_ids = [item.product_id for item in order.line_items]
    if not product_ids:
        return
    superseded = (
        Entitlement.query
        .filter(
            Entitlement.user_id == order.user_id,
            Entitlement.product_id.in_(product_ids),
            Entitlement.order_id != order.id,
        )
        .all()
    )
    for entitlement in superseded:
        logger.info(
            f"Refund of order {order.id} leaves entitlement {entitlement.id} alone: "
            f"now justified by order {entitlement.order_id}"
        )


def reverse(refund, notifier=None):
    """Apply a refund to the order it pays for.

    Args:
        refund: RefundNotice payload.
        notifier: collaborator with dispatch(NotificationRequest); None skips
                  the refund notice.

    Returns the Order, or None if there is nothing to reverse.
    """
    if not refund.payment_id:
        logger.info(f"Charge {refund.charge_id} has no payment intent, skipping")
        return None

    order = Order.query.filter_by(provider_payment_id=refund.payment_id).first()
    if order is None:
        logger.warning(f"No order found for refunded payment {refund.payment_id}")
        return None

    if order.status == "refunded":
        logger.info(f"Order {order.id} already refunded, skipping")
        return order

    logger.info(f"Processing refund for order {order.id} (payment {refund.payment_id})")
    now = datetime.now(timezone.utc)
    order_id = order.id

    try:
        transitioned = (
            Order.query
            .filter(Order.id == order_id, Order.status != "refunded")
            .update(
                {"status": "refunded", "refunded_at": now},
                synchronize_session="fetch",
            )
        )
        if not transitioned:
            db.session.rollback()
            logger.info(f"Order {order_id} refunded concurrently, skipping")
            return db.session.get(Order, order_id)

        revoked = deactivate_order_entitlements(order_id, REFUND_REASON, now=now)
        _log_superseded(order)

        db.session.add(AuditEvent(
            actor_user_id=None,
            action="order.refunded",
            entity="order",
            entity_id=order_id,
            metadata_={
                "user_id": order.user_id,
                "charge_id": refund.charge_id,
                "payment_id": refund.payment_id,
                "refund_amount": refund.amount_refunded,
                "currency": refund.currency or order.currency,
                "entitlements_revoked": revoked,
            },
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to process refund for order {order_id}: {e}")
        raise

    logger.info(f"Refunded order {order_id}, revoked {revoked} entitlement(s)")

    # --- Post-commit: refund notice (never rolls back the refund) ---
    order = db.session.get(Order, order_id, populate_existing=True)
    notify(notifier, refund_confirmation(order, refund))

    return order
