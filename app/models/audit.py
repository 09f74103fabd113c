"""Audit event model.

Logs significant state changes (refunds, manual entitlement grants and
revocations) as a permanent trail for support and debugging.
"""

import uuid

from app.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for system-initiated (webhook) actions
    action = db.Column(db.String(255), nullable=False)  # e.g. "order.refunded"
    entity = db.Column(db.String(50), nullable=True)  # e.g. "order"
    entity_id = db.Column(db.String(36), nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action} {self.entity}:{self.entity_id}>"
