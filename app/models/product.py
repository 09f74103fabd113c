"""Product model.

The catalog entry a checkout session pays for. Fulfillment snapshots
title and price into OrderLineItem, so editing a product never rewrites
historical orders.
"""

import uuid

from app.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    slug = db.Column(db.String(255), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    price_in_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), default="USD", nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    entitlements = db.relationship(
        "Entitlement", back_populates="product", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Product {self.slug}>"
