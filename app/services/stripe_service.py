"""Stripe service: webhook verification, idempotent dispatch, replay.

Responsible for:
- Verifying webhook signatures
- Recording every event in the idempotency ledger before processing
- Dispatching by EventKind to the fulfillment / reversal pipelines
- Marking the ledger processed or failed
- Retrying dead-lettered events and replaying checkout sessions by hand

The Stripe client is never configured globally: create_app() builds one
StripeGateway and stores it in app.extensions, and callers pass it (and
the notifier) in explicitly.
"""

import json
import logging

import stripe
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import (
    EventAlreadyProcessedError,
    EventNotFoundError,
    NonRetryableEventError,
)
from app.extensions import db
from app.services import event_ledger
from app.services.events import CheckoutCompleted, EventKind, InboundEnvelope
from app.services.fulfillment_service import fulfill
from app.services.reversal_service import reverse

logger = logging.getLogger(__name__)


class StripeGateway:
    """The engine's handle on Stripe: one API key, one webhook secret.

    The StripeClient is created on first use so an app without a secret key
    (local dev, tests) can still boot.
    """

    def __init__(self, api_key, webhook_secret, client=None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("STRIPE_SECRET_KEY is not configured")
            self._client = stripe.StripeClient(self.api_key)
        return self._client

    def verify_webhook_signature(self, payload, sig_header):
        """Verify a webhook signature and construct the event.

        Raises stripe.error.SignatureVerificationError on invalid signature.
        """
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)

    def retrieve_checkout_session(self, session_id):
        return self.client.checkout.sessions.retrieve(session_id)


def _to_plain(obj):
    """StripeObject (or dict) -> JSON-safe dict for the ledger's raw_payload."""
    return json.loads(json.dumps(obj, default=str))


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(envelope, notifier):
    checkout = envelope.checkout()
    if not checkout.is_paid:
        # Delayed payment methods: async_payment_succeeded will follow
        logger.info(
            f"Skipping fulfillment for session {checkout.session_id}, "
            f"payment status: {checkout.payment_status}"
        )
        return
    fulfill(checkout, notifier=notifier)


def _handle_refund(envelope, notifier):
    reverse(envelope.refund(), notifier=notifier)


def _handle_unhandled(envelope, notifier):
    logger.info(f"Unhandled event type: {envelope.event_type}")


HANDLERS = {
    EventKind.CHECKOUT_COMPLETED: _handle_checkout_completed,
    EventKind.REFUND: _handle_refund,
    EventKind.UNHANDLED: _handle_unhandled,
}


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def handle_webhook_event(event, notifier=None):
    """Process a verified Stripe webhook event.

    Idempotency: the ledger is consulted (and written) before any handler
    runs; an already-processed event returns immediately.

    Returns (success: bool, message: str):
        (True,  "processed")          handler committed, ledger marked
        (True,  "already_processed")  duplicate delivery, nothing done
        (True,  "rejected")           non-retryable payload, dead-lettered
        (False, <error>)              retryable failure, Stripe should retry
    """
    envelope = InboundEnvelope.from_event(event)
    logger.info(f"Received webhook event: {envelope.event_type} ({envelope.event_id})")

    try:
        if event_ledger.record_and_check(
            envelope.event_id, envelope.event_type, _to_plain(event)
        ):
            return True, "already_processed"
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to record event {envelope.event_id}: {e}")
        return False, "ledger unavailable"

    handler = HANDLERS[envelope.kind]
    try:
        handler(envelope, notifier)
    except NonRetryableEventError as e:
        db.session.rollback()
        logger.error(f"Rejected {envelope.event_type} {envelope.event_id}: {e}")
        _record_failure(envelope.event_id, e)
        return True, "rejected"
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error handling {envelope.event_type}: {e}", exc_info=True)
        _record_failure(envelope.event_id, e)
        return False, str(e)

    event_ledger.mark_processed(envelope.event_id)
    logger.info(f"Successfully processed event {envelope.event_id}")
    return True, "processed"


def _record_failure(provider_event_id, error):
    try:
        event_ledger.mark_failed(provider_event_id, error)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to record error for event {provider_event_id}: {e}")


def retry_failed_event(provider_event_id, notifier=None):
    """Reprocess a stored event that never completed (manual intervention).

    Raises EventNotFoundError / EventAlreadyProcessedError.
    Returns the (success, message) tuple from handle_webhook_event.
    """
    stored = event_ledger.get_event(provider_event_id)
    if stored is None:
        raise EventNotFoundError(provider_event_id)
    if stored.processed:
        raise EventAlreadyProcessedError(provider_event_id)

    event = stored.raw_payload or {}
    if not event.get("id"):
        event = {"id": stored.provider_event_id, "type": stored.event_type, "data": {}}
    logger.info(f"Retrying event {provider_event_id} ({stored.event_type})")
    return handle_webhook_event(event, notifier=notifier)


def replay_checkout_session(gateway, session_id, notifier=None):
    """Fetch a checkout session from Stripe and fulfill it directly.

    Bypasses the ledger (there may be no event at all); the order-level
    guard on provider_session_id keeps this safe to run repeatedly.
    """
    session = gateway.retrieve_checkout_session(session_id)
    checkout = CheckoutCompleted.from_session(_to_plain(session))
    if not checkout.is_paid:
        logger.warning(
            f"Session {session_id} is not paid (status: {checkout.payment_status}), not fulfilling"
        )
        return None
    return fulfill(checkout, notifier=notifier)
