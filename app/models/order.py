"""Order models.

- Order: one per fulfilled checkout session. Created in status "completed"
  by the fulfillment pipeline (there is no intermediate processing row),
  flipped once to "refunded" by the reversal pipeline. Never deleted.
- OrderLineItem: what was bought. product_name_snapshot and amount are
  copied from the product at fulfillment time and never re-read.
"""

import uuid

from app.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    # -- Valid statuses --
    STATUSES = ["pending", "completed", "refunded", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # nullable: guest checkouts
    status = db.Column(
        db.String(20), default="completed", nullable=False
    )  # pending | completed | refunded | failed
    total = db.Column(db.Integer, nullable=False)  # minor currency units
    currency = db.Column(db.String(3), nullable=False)
    provider_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_...": secondary idempotency key
    provider_payment_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "pi_...": refunds are matched on this
    customer_email = db.Column(db.String(255), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)
    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="orders")
    line_items = db.relationship(
        "OrderLineItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    entitlements = db.relationship("Entitlement", back_populates="order")

    @property
    def is_refunded(self):
        return self.status == "refunded"

    def __repr__(self):
        return f"<Order {self.id} ({self.status})>"


class OrderLineItem(db.Model):
    __tablename__ = "order_line_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id"), nullable=False
    )
    amount = db.Column(db.Integer, nullable=False)  # price at time of purchase
    currency = db.Column(db.String(3), nullable=False)
    product_name_snapshot = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    order = db.relationship("Order", back_populates="line_items")
    product = db.relationship("Product")

    def __repr__(self):
        return f"<OrderLineItem {self.product_name_snapshot} {self.amount} {self.currency}>"
