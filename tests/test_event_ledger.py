"""Tests for the idempotency ledger (app.services.event_ledger)."""

from app.extensions import db
from app.models.inbound_event import InboundEvent
from app.services import event_ledger


def _record(event_id="evt_1", payload=None):
    return event_ledger.record_and_check(
        event_id, "checkout.session.completed", payload or {"id": event_id}
    )


class TestRecordAndCheck:

    def test_first_delivery_is_recorded(self):
        assert _record() is False

        evt = InboundEvent.query.one()
        assert evt.provider_event_id == "evt_1"
        assert evt.event_type == "checkout.session.completed"
        assert evt.raw_payload == {"id": "evt_1"}
        assert evt.processed is False
        assert evt.attempt_count == 1

    def test_processed_event_short_circuits(self):
        _record()
        event_ledger.mark_processed("evt_1")

        assert _record() is True
        assert InboundEvent.query.one().attempt_count == 1

    def test_unprocessed_event_is_reprocessed(self):
        _record()
        event_ledger.mark_failed("evt_1", "boom")

        assert _record(payload={"id": "evt_1", "retry": True}) is False

        evt = InboundEvent.query.one()
        assert evt.processing_error is None
        assert evt.attempt_count == 2
        assert evt.raw_payload == {"id": "evt_1", "retry": True}

    def test_crashed_attempt_without_error_is_reprocessed(self):
        _record()
        assert _record() is False
        assert InboundEvent.query.count() == 1


class TestMarking:

    def test_mark_processed(self):
        _record()
        event_ledger.mark_processed("evt_1")

        evt = InboundEvent.query.one()
        assert evt.processed is True
        assert evt.processed_at is not None

    def test_mark_failed_truncates(self):
        _record()
        event_ledger.mark_failed("evt_1", "x" * 5000)

        evt = InboundEvent.query.one()
        assert evt.processed is False
        assert len(evt.processing_error) == event_ledger.MAX_ERROR_LENGTH

    def test_marking_unknown_event_is_harmless(self):
        event_ledger.mark_processed("evt_missing")
        event_ledger.mark_failed("evt_missing", "boom")
        assert InboundEvent.query.count() == 0


class TestFailedEvents:

    def test_lists_only_unprocessed_with_error(self):
        _record("evt_ok")
        event_ledger.mark_processed("evt_ok")
        _record("evt_pending")
        _record("evt_bad")
        event_ledger.mark_failed("evt_bad", "Product p9 not found")

        failed = event_ledger.list_failed_events()
        assert [e.provider_event_id for e in failed] == ["evt_bad"]

    def test_limit(self):
        for i in range(5):
            _record(f"evt_{i}")
            event_ledger.mark_failed(f"evt_{i}", "boom")
        db.session.expire_all()

        assert len(event_ledger.list_failed_events(limit=3)) == 3
