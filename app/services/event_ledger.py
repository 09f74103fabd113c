"""Idempotency ledger: inbound_events table.

Every webhook event is recorded here before its handler runs, and marked
processed only after the handler's transaction commits. Each function in
this module commits its own short transaction; none of them share a
transaction with the fulfillment/reversal pipelines.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models.inbound_event import InboundEvent

logger = logging.getLogger(__name__)

# processing_error is Text, but there's no point storing a whole traceback
MAX_ERROR_LENGTH = 2000


def get_event(provider_event_id):
    return InboundEvent.query.filter_by(
        provider_event_id=provider_event_id
    ).first()


def record_and_check(provider_event_id, event_type, payload):
    """Record an inbound event and report whether it was already processed.

    - No row: insert with processed=False, return False.
    - Row with processed=True: return True: caller must do no work.
    - Row with processed=False (earlier attempt failed or crashed): refresh
      payload, clear the error, return False so the event is reprocessed.

    Two deliveries of the same event racing each other both try the
    insert; the loser hits the unique constraint and falls through to the
    existing-row path.
    """
    existing = get_event(provider_event_id)

    if existing is None:
        row = InboundEvent(
            provider_event_id=provider_event_id,
            event_type=event_type,
            raw_payload=payload,
            processed=False,
            attempt_count=1,
        )
        db.session.add(row)
        try:
            db.session.commit()
            return False
        except IntegrityError:
            db.session.rollback()
            logger.info(f"Concurrent delivery of {provider_event_id}, using existing row")
            existing = get_event(provider_event_id)

    if existing.processed:
        logger.info(
            f"Event {provider_event_id} already processed at {existing.processed_at}, skipping"
        )
        return True

    if existing.processing_error:
        logger.info(
            f"Reprocessing {provider_event_id} after earlier failure: {existing.processing_error}"
        )
    existing.event_type = event_type
    existing.raw_payload = payload
    existing.processing_error = None
    existing.attempt_count = (existing.attempt_count or 0) + 1
    db.session.commit()
    return False


def mark_processed(provider_event_id):
    """Mark an event processed. Call only after the handler committed."""
    event = get_event(provider_event_id)
    if event is None:
        logger.warning(f"mark_processed: no ledger row for {provider_event_id}")
        return
    event.processed = True
    event.processed_at = datetime.now(timezone.utc)
    event.processing_error = None
    db.session.commit()


def mark_failed(provider_event_id, error_detail):
    """Store the failure detail. processed stays False so a retry is allowed."""
    event = get_event(provider_event_id)
    if event is None:
        logger.warning(f"mark_failed: no ledger row for {provider_event_id}")
        return
    event.processing_error = str(error_detail)[:MAX_ERROR_LENGTH]
    db.session.commit()


def list_failed_events(limit=50):
    """Unprocessed events with a recorded error, newest first (dead letters)."""
    return (
        InboundEvent.query
        .filter(
            InboundEvent.processed.is_(False),
            InboundEvent.processing_error.isnot(None),
        )
        .order_by(InboundEvent.received_at.desc())
        .limit(limit)
        .all()
    )
