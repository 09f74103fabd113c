"""Inbound event model (idempotency ledger).

Every webhook event is recorded by its provider event ID before any
processing starts. A row with processed=True means the event's side effects
are committed and redeliveries return immediately. A row with
processed=False means a previous attempt failed (or crashed) and the event
may be reprocessed: the pipelines themselves are idempotent.
"""

import uuid

from app.extensions import db


class InboundEvent(db.Model):
    __tablename__ = "inbound_events"
    __table_args__ = (
        db.Index("ix_inbound_events_processed_received_at", "processed", "received_at"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    provider_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    raw_payload = db.Column(db.JSON, default=dict)  # verbatim envelope, for replay
    processed = db.Column(db.Boolean, default=False, nullable=False)
    processing_error = db.Column(db.Text, nullable=True)  # last failure detail
    attempt_count = db.Column(db.Integer, default=0, nullable=False)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        state = "processed" if self.processed else "pending"
        return f"<InboundEvent {self.provider_event_id} ({self.event_type}, {state})>"
