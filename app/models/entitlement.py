"""Entitlement model.

At most one row per (user, product), ever. The row is the permanent record
of a user's relationship to a product: repurchase reactivates it, refunds
and expiry deactivate it, nothing deletes it.

entitlements.active (plus expires_at) is the source of truth for access
gating: see app.services.entitlement_service.
"""

import uuid
from datetime import datetime, timezone

from app.extensions import db


class Entitlement(db.Model):
    __tablename__ = "entitlements"
    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "product_id", name="uq_entitlements_user_product"
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id"), nullable=False
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True, index=True
    )  # the order currently justifying the grant; None for manual grants
    active = db.Column(db.Boolean, default=True, nullable=False)
    expires_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # None = lifetime
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoke_reason = db.Column(
        db.String(255), nullable=True
    )  # refund | expired | <admin reason>
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="entitlements")
    product = db.relationship("Product", back_populates="entitlements")
    order = db.relationship("Order", back_populates="entitlements")

    @property
    def is_expired(self):
        if self.expires_at is None:
            return False
        expires = self.expires_at
        # SQLite returns naive datetimes; treat them as UTC
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < datetime.now(timezone.utc)

    def __repr__(self):
        state = "active" if self.active else f"revoked:{self.revoke_reason}"
        return f"<Entitlement {self.user_id}/{self.product_id} ({state})>"
