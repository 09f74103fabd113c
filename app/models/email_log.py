"""Email delivery log.

One row per notification attempt. Delivery failures land here instead of
surfacing to the payment flow.
"""

import uuid

from app.extensions import db


class EmailLog(db.Model):
    __tablename__ = "email_logs"

    STATUSES = ["sent", "failed", "skipped"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    to_address = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(500), nullable=False)
    kind = db.Column(
        db.String(50), nullable=False
    )  # purchase_confirmation | refund_confirmation
    status = db.Column(db.String(20), nullable=False)  # sent | failed | skipped
    provider = db.Column(db.String(50), default="smtp")
    message_id = db.Column(db.String(255), nullable=True)
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<EmailLog {self.kind} -> {self.to_address} ({self.status})>"
