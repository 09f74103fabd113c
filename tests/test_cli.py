"""Tests for the Flask CLI commands registered in create_app()."""

from unittest.mock import patch

from app.extensions import db
from app.models.inbound_event import InboundEvent
from app.models.order import Order
from app.models.product import Product
from app.models.user import User


def _dead_letter(event):
    db.session.add(InboundEvent(
        provider_event_id=event["id"],
        event_type=event["type"],
        raw_payload=event,
        processed=False,
        processing_error="Product p1 not found",
        attempt_count=1,
    ))
    db.session.commit()


class TestSeedAdmin:

    def test_creates_admin_and_product(self, app):
        result = app.test_cli_runner().invoke(
            args=["seed-admin", "--email", "ops@riqle.local", "--password", "pw"]
        )

        assert result.exit_code == 0, result.output
        assert "Created admin user: ops@riqle.local" in result.output
        assert User.query.filter_by(email="ops@riqle.local").one().is_admin is True
        assert Product.query.filter_by(slug="demo-essay").count() == 1

    def test_is_rerunnable(self, app):
        runner = app.test_cli_runner()
        runner.invoke(args=["seed-admin"])
        result = runner.invoke(args=["seed-admin"])

        assert result.exit_code == 0, result.output
        assert "already exists" in result.output
        assert User.query.count() == 1
        assert Product.query.count() == 1


class TestFailedEvents:

    def test_no_failures(self, app):
        result = app.test_cli_runner().invoke(args=["failed-events"])
        assert "No failed events." in result.output

    def test_lists_failures(self, app, checkout_event):
        _dead_letter(checkout_event())

        result = app.test_cli_runner().invoke(args=["failed-events", "--limit", "5"])

        assert result.exit_code == 0, result.output
        assert "evt_checkout_1" in result.output
        assert "Product p1 not found" in result.output


class TestRetryEvent:

    def test_retry_succeeds(self, app, seed_data, checkout_event):
        _dead_letter(checkout_event())

        result = app.test_cli_runner().invoke(args=["retry-event", "evt_checkout_1"])

        assert result.exit_code == 0, result.output
        assert "evt_checkout_1: processed" in result.output
        assert Order.query.count() == 1

    def test_unknown_event(self, app):
        result = app.test_cli_runner().invoke(args=["retry-event", "evt_nope"])

        assert result.exit_code != 0
        assert "Event not found: evt_nope" in result.output


class TestReplaySession:

    def test_replay_fulfills(self, app, seed_data, session_payload):
        gateway = app.extensions["stripe_gateway"]
        with patch.object(
            gateway, "retrieve_checkout_session", return_value=session_payload()
        ) as mock_retrieve:
            result = app.test_cli_runner().invoke(args=["replay-session", "cs_test_1"])

        assert result.exit_code == 0, result.output
        mock_retrieve.assert_called_once_with("cs_test_1")
        assert Order.query.filter_by(provider_session_id="cs_test_1").count() == 1

    def test_replay_unpaid_session(self, app, seed_data, session_payload):
        gateway = app.extensions["stripe_gateway"]
        with patch.object(
            gateway,
            "retrieve_checkout_session",
            return_value=session_payload(payment_status="unpaid"),
        ):
            result = app.test_cli_runner().invoke(args=["replay-session", "cs_test_1"])

        assert result.exit_code != 0
        assert "was not fulfilled" in result.output
        assert Order.query.count() == 0
