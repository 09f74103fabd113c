"""Inbound event envelope: Stripe event dicts mapped to typed payloads.

Stripe event types are closed over EventKind: every type we act on maps to
exactly one kind, everything else is EventKind.UNHANDLED. The dispatch
table in stripe_service has one handler per EventKind member.
"""

import enum
from dataclasses import dataclass


class EventKind(enum.Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    REFUND = "refund"
    UNHANDLED = "unhandled"


STRIPE_EVENT_KINDS = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    # Delayed payment methods complete the session unpaid, then send this
    "checkout.session.async_payment_succeeded": EventKind.CHECKOUT_COMPLETED,
    "charge.refunded": EventKind.REFUND,
    "payment_intent.refunded": EventKind.REFUND,
}

# Session payment_status values that mean the money is in.
PAID_STATUSES = ("paid", "no_payment_required")


def classify(event_type):
    return STRIPE_EVENT_KINDS.get(event_type, EventKind.UNHANDLED)


@dataclass(frozen=True)
class CheckoutCompleted:
    """A completed Stripe Checkout Session, reduced to what fulfillment needs."""

    session_id: str
    payment_id: str | None
    amount_total: int
    currency: str | None
    customer_email: str | None
    customer_name: str | None
    user_id: str | None
    product_ids: tuple
    payment_status: str | None = None

    @property
    def is_paid(self):
        return self.payment_status is None or self.payment_status in PAID_STATUSES

    @classmethod
    def from_session(cls, session):
        metadata = session.get("metadata") or {}
        details = session.get("customer_details") or {}
        raw_products = metadata.get("productId") or ""
        # Comma-separated ids grant several products from one session
        product_ids = tuple(dict.fromkeys(
            p.strip() for p in str(raw_products).split(",") if p.strip()
        ))
        currency = session.get("currency")
        return cls(
            session_id=session.get("id"),
            payment_id=session.get("payment_intent"),
            amount_total=session.get("amount_total") or 0,
            currency=currency.upper() if currency else None,
            customer_email=session.get("customer_email") or details.get("email"),
            customer_name=details.get("name"),
            user_id=metadata.get("userId") or None,
            product_ids=product_ids,
            payment_status=session.get("payment_status"),
        )


@dataclass(frozen=True)
class RefundNotice:
    """A refund, read from a Charge or a PaymentIntent object."""

    payment_id: str | None
    charge_id: str | None
    amount_refunded: int
    currency: str | None

    @classmethod
    def from_charge(cls, charge):
        currency = charge.get("currency")
        return cls(
            payment_id=charge.get("payment_intent"),
            charge_id=charge.get("id"),
            amount_refunded=charge.get("amount_refunded") or 0,
            currency=currency.upper() if currency else None,
        )

    @classmethod
    def from_payment_intent(cls, intent):
        currency = intent.get("currency")
        return cls(
            payment_id=intent.get("id"),
            charge_id=intent.get("latest_charge"),
            amount_refunded=(
                intent.get("amount_refunded") or intent.get("amount_received") or 0
            ),
            currency=currency.upper() if currency else None,
        )


@dataclass(frozen=True)
class InboundEnvelope:
    event_id: str
    event_type: str
    kind: EventKind
    data_object: dict

    @classmethod
    def from_event(cls, event):
        event_type = event["type"]
        data = event.get("data") or {}
        return cls(
            event_id=event["id"],
            event_type=event_type,
            kind=classify(event_type),
            data_object=data.get("object") or {},
        )

    def checkout(self):
        return CheckoutCompleted.from_session(self.data_object)

    def refund(self):
        if self.data_object.get("object") == "payment_intent":
            return RefundNotice.from_payment_intent(self.data_object)
        return RefundNotice.from_charge(self.data_object)
