"""Fulfillment service: completed checkout session -> Order + Entitlements.

Flow:
1. Validate the session (metadata + customer email): non-retryable if bad
2. Order-level idempotency: an Order with this provider_session_id means
   the session was already fulfilled; return it, write nothing
3. One transaction: Order, one OrderLineItem per product (title/price
   snapshot), one upserted Entitlement per product
4. After commit: purchase confirmation, best-effort

A failure inside step 3 rolls the whole unit back and propagates, so the
webhook layer leaves the ledger row unprocessed and Stripe redelivers.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.exceptions import (
    MalformedEventError,
    ProductNotFoundError,
    ProductUnavailableError,
    UserNotFoundError,
)
from app.extensions import db
from app.models.order import Order, OrderLineItem
from app.models.product import Product
from app.models.user import User
from app.services.entitlement_service import upsert_entitlement
from app.services.notification_service import notify, purchase_confirmation

logger = logging.getLogger(__name__)


def _validate(checkout):
    if not checkout.user_id or not checkout.product_ids:
        raise MalformedEventError(
            f"Missing required metadata (userId/productId) in checkout session {checkout.session_id}"
        )
    if not checkout.customer_email:
        raise MalformedEventError(
            f"Missing customer email in checkout session {checkout.session_id}"
        )


def get_order_for_session(session_id):
    return Order.query.filter_by(provider_session_id=session_id).first()


def _load_products(product_ids):
    products = []
    for product_id in product_ids:
        product = db.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.is_active:
            raise ProductUnavailableError(product_id)
        products.append(product)
    return products


def fulfill(checkout, notifier=None):
    """Fulfill a completed checkout session exactly once.

    Args:
        checkout: CheckoutCompleted payload.
        notifier: collaborator with dispatch(NotificationRequest); None skips
                  the confirmation.

    Returns the Order (new or pre-existing).
    Raises MalformedEventError, ProductNotFoundError, ProductUnavailableError
    or UserNotFoundError (non-retryable), or any database error (retryable).
    """
    try:
        _validate(checkout)
    except MalformedEventError as e:
        logger.error(f"Refusing to fulfill: {e}")
        raise

    existing = get_order_for_session(checkout.session_id)
    if existing:
        logger.info(
            f"Order {existing.id} already exists for session {checkout.session_id}, skipping fulfillment"
        )
        return existing

    logger.info(f"Fulfilling checkout session {checkout.session_id} for user {checkout.user_id}")

    currency = checkout.currency or current_app.config.get("DEFAULT_CURRENCY", "USD")
    now = datetime.now(timezone.utc)

    try:
        products = _load_products(checkout.product_ids)
        if db.session.get(User, checkout.user_id) is None:
            raise UserNotFoundError(checkout.user_id)

        order = Order(
            user_id=checkout.user_id,
            status="completed",
            total=checkout.amount_total,
            currency=currency,
            provider_session_id=checkout.session_id,
            provider_payment_id=checkout.payment_id,
            customer_email=checkout.customer_email,
            customer_name=checkout.customer_name,
            fulfilled_at=now,
        )
        db.session.add(order)
        db.session.flush()

        for product in products:
            db.session.add(OrderLineItem(
                order_id=order.id,
                product_id=product.id,
                amount=product.price_in_cents,
                currency=product.currency,
                product_name_snapshot=product.title,
            ))
            # One-time purchases are lifetime grants
            upsert_entitlement(
                checkout.user_id, product.id, order_id=order.id, expires_at=None
            )

        db.session.commit()
        order_id = order.id
    except IntegrityError:
        db.session.rollback()
        # A concurrent delivery committed the same session first
        winner = get_order_for_session(checkout.session_id)
        if winner:
            logger.info(
                f"Session {checkout.session_id} fulfilled concurrently as order {winner.id}"
            )
            return winner
        logger.error(
            f"Failed to fulfill checkout session {checkout.session_id}", exc_info=True
        )
        raise
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to fulfill checkout session {checkout.session_id}: {e}")
        raise

    logger.info(f"Fulfilled order {order_id} for session {checkout.session_id}")

    # --- Post-commit: confirmation email (never rolls back fulfillment) ---
    order = db.session.get(Order, order_id, populate_existing=True)
    notify(notifier, purchase_confirmation(order))

    return order
