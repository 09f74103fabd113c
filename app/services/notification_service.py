"""Notification service: purchase and refund confirmation emails.

The pipelines hand a NotificationRequest to a notifier after their
transaction has committed. EmailNotifier renders/sends it and writes one
EmailLog row per attempt. A failed send is logged and re-raised; the
pipelines catch it, so a mail outage never touches order or entitlement
state.
"""

import logging
from dataclasses import dataclass, field

from flask import current_app

from app.extensions import db
from app.models.email_log import EmailLog
from app.services.email_service import EmailNotConfigured, send_email

logger = logging.getLogger(__name__)

PURCHASE_CONFIRMATION = "purchase_confirmation"
REFUND_CONFIRMATION = "refund_confirmation"

# kind -> (subject format, template)
KIND_TEMPLATES = {
    PURCHASE_CONFIRMATION: (
        "Purchase Confirmation - {product_names}",
        "emails/purchase_confirmation.html",
    ),
    REFUND_CONFIRMATION: (
        "Refund Processed - Order {order_id}",
        "emails/refund_confirmation.html",
    ),
}


@dataclass(frozen=True)
class NotificationRequest:
    to: str
    kind: str
    template_data: dict = field(default_factory=dict)


def format_money(amount, currency):
    """Minor units -> "AUD 39.00". Zero-decimal currencies aren't special-cased."""
    return f"{(currency or '').upper()} {(amount or 0) / 100:,.2f}".strip()


def _customer_name(order):
    if order.customer_name:
        return order.customer_name
    if order.user is not None:
        return order.user.display_name
    return "Customer"


def _library_url():
    base_url = current_app.config.get("APP_BASE_URL") or ""
    return f"{base_url.rstrip('/')}/account/entitlements"


def purchase_confirmation(order):
    """Build the confirmation request for a freshly fulfilled order."""
    product_names = [item.product_name_snapshot for item in order.line_items]
    return NotificationRequest(
        to=order.customer_email,
        kind=PURCHASE_CONFIRMATION,
        template_data={
            "customer_name": _customer_name(order),
            "order_id": order.id,
            "product_names": ", ".join(product_names),
            "products": product_names,
            "amount_paid": format_money(order.total, order.currency),
            "entitlement_ids": [e.id for e in order.entitlements],
            "library_url": _library_url(),
        },
    )


def refund_confirmation(order, refund):
    """Build the refund notice for an order the reversal pipeline just refunded."""
    return NotificationRequest(
        to=order.customer_email,
        kind=REFUND_CONFIRMATION,
        template_data={
            "customer_name": _customer_name(order),
            "order_id": order.id,
            "refund_amount": format_money(
                refund.amount_refunded, refund.currency or order.currency
            ),
        },
    )


class EmailNotifier:
    """Delivers NotificationRequests by email and records each attempt."""

    provider = "smtp"

    def __init__(self, sender=None):
        self._send = sender

    def dispatch(self, request):
        subject_format, template = KIND_TEMPLATES[request.kind]
        subject = subject_format.format(**request.template_data)
        context = dict(request.template_data)

        send = self._send or send_email
        try:
            message_id = send(
                to=request.to,
                subject=subject,
                template=template,
                context=context,
            )
        except EmailNotConfigured as e:
            logger.warning(f"Email not sent: {e}")
            self._log(request, subject, "skipped", error=str(e))
            return None
        except Exception as e:
            self._log(request, subject, "failed", error=str(e))
            raise

        self._log(request, subject, "sent", message_id=message_id)
        return message_id

    def _log(self, request, subject, status, message_id=None, error=None):
        db.session.add(EmailLog(
            to_address=request.to,
            subject=subject,
            kind=request.kind,
            status=status,
            provider=self.provider,
            message_id=message_id,
            error=error,
        ))
        db.session.commit()


def notify(notifier, request):
    """Best-effort dispatch: log and swallow any failure."""
    if notifier is None:
        logger.info(f"No notifier configured, skipping {request.kind} to {request.to}")
        return False
    try:
        notifier.dispatch(request)
        return True
    except Exception as e:
        # A failed EmailLog commit leaves the session needing a rollback
        db.session.rollback()
        logger.error(f"Failed to send {request.kind} to {request.to}: {e}")
        return False
