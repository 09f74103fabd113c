"""Shared test fixtures for the fulfillment engine test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: admin user, customer user "u1", products "p1" and "p2"
- notifier: stand-in notification collaborator (records dispatches)
- checkout_event / refund_event: Stripe event dict builders
- session_payload / charge_payload: bare data.object builders
- login: put a user id in the Flask-Login session
"""

from unittest.mock import MagicMock

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from app.extensions import db as _db
from app.models.product import Product
from app.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(db_session):
    """Seed an admin, a customer and two products.

    Returns plain IDs so tests don't depend on object session state.
    """
    admin = User(
        id="admin-1",
        email="admin@riqle.local",
        password_hash=generate_password_hash("admin123"),
        full_name="Admin User",
        is_admin=True,
    )
    customer = User(
        id="u1",
        email="jane@example.com",
        password_hash=generate_password_hash("jane123"),
        full_name="Jane Doe",
    )
    essay = Product(
        id="p1",
        slug="band-6-essay",
        title="Band 6 Essay",
        price_in_cents=3900,
        currency="AUD",
    )
    guide = Product(
        id="p2",
        slug="exam-guide",
        title="Exam Guide",
        price_in_cents=2500,
        currency="AUD",
    )
    _db.session.add_all([admin, customer, essay, guide])
    _db.session.commit()

    return {
        "admin_id": admin.id,
        "user_id": customer.id,
        "user_email": customer.email,
        "product_id": essay.id,
        "other_product_id": guide.id,
    }


@pytest.fixture
def notifier():
    """Records NotificationRequests instead of sending email."""
    return MagicMock()


@pytest.fixture
def login(client):
    """Log a user in by writing the Flask-Login session keys directly."""

    def _login(user_id):
        with client.session_transaction() as sess:
            sess["_user_id"] = user_id
            sess["_fresh"] = True

    return _login


# ──────────────────────────────────────────────
# Stripe event builders
# ──────────────────────────────────────────────

def make_event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def make_session(session_id="cs_test_1", payment_id="pi_test_1", user_id="u1",
                 product_id="p1", amount_total=3900, currency="aud",
                 email="jane@example.com", name="Jane Doe", payment_status="paid"):
    metadata = {}
    if user_id is not None:
        metadata["userId"] = user_id
    if product_id is not None:
        metadata["productId"] = product_id
    return {
        "id": session_id,
        "object": "checkout.session",
        "payment_intent": payment_id,
        "amount_total": amount_total,
        "currency": currency,
        "customer_email": email,
        "customer_details": {"email": email, "name": name},
        "metadata": metadata,
        "payment_status": payment_status,
    }


def make_charge(payment_id="pi_test_1", charge_id="ch_test_1",
                amount_refunded=3900, currency="aud"):
    return {
        "id": charge_id,
        "object": "charge",
        "payment_intent": payment_id,
        "amount_refunded": amount_refunded,
        "currency": currency,
        "refunded": True,
    }


@pytest.fixture
def checkout_event():
    def _build(event_id="evt_checkout_1", **session_kwargs):
        return make_event(
            event_id, "checkout.session.completed", make_session(**session_kwargs)
        )

    return _build


@pytest.fixture
def refund_event():
    def _build(event_id="evt_refund_1", **charge_kwargs):
        return make_event(event_id, "charge.refunded", make_charge(**charge_kwargs))

    return _build


@pytest.fixture
def session_payload():
    """Builder for checkout.session objects (the event's data.object)."""
    return make_session


@pytest.fixture
def charge_payload():
    """Builder for charge objects (the event's data.object)."""
    return make_charge
