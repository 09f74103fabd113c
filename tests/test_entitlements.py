"""Tests for the entitlement access oracle and manual grant/revoke paths."""

from datetime import datetime, timedelta, timezone

import pytest

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.entitlement import Entitlement
from app.services.entitlement_service import (
    entitlement_stats,
    grant_entitlement,
    has_access,
    has_access_bulk,
    list_active_entitlements,
    revoke_entitlement,
    upsert_entitlement,
)


def _add(product_id="p1", active=True, expires_at=None, user_id="u1"):
    entitlement = Entitlement(
        user_id=user_id,
        product_id=product_id,
        active=active,
        expires_at=expires_at,
    )
    db.session.add(entitlement)
    db.session.commit()
    return entitlement.id


def _past():
    return datetime.now(timezone.utc) - timedelta(hours=1)


def _future():
    return datetime.now(timezone.utc) + timedelta(days=30)


class TestHasAccess:

    def test_no_entitlement(self, seed_data):
        assert has_access("u1", "p1") is False

    def test_active_lifetime_entitlement(self, seed_data):
        _add()
        assert has_access("u1", "p1") is True

    def test_active_unexpired_entitlement(self, seed_data):
        _add(expires_at=_future())
        assert has_access("u1", "p1") is True

    def test_inactive_entitlement(self, seed_data):
        _add(active=False)
        assert has_access("u1", "p1") is False

    def test_other_users_entitlement_does_not_count(self, seed_data):
        _add(user_id="admin-1")
        assert has_access("u1", "p1") is False

    def test_expired_entitlement_is_revoked_on_check(self, seed_data):
        entitlement_id = _add(expires_at=_past())

        assert has_access("u1", "p1") is False

        db.session.expire_all()
        entitlement = db.session.get(Entitlement, entitlement_id)
        assert entitlement.active is False
        assert entitlement.revoke_reason == "expired"
        assert entitlement.revoked_at is not None


class TestHasAccessBulk:

    def test_empty_input(self, seed_data):
        assert has_access_bulk("u1", []) == {}

    def test_maps_every_requested_id(self, seed_data):
        _add("p1")
        result = has_access_bulk("u1", ["p1", "p2", "p_unknown"])
        assert result == {"p1": True, "p2": False, "p_unknown": False}

    def test_expired_counts_as_no_access_without_revoking(self, seed_data):
        entitlement_id = _add(expires_at=_past())

        assert has_access_bulk("u1", ["p1"]) == {"p1": False}

        db.session.expire_all()
        entitlement = db.session.get(Entitlement, entitlement_id)
        assert entitlement.active is True
        assert entitlement.revoked_at is None


class TestListActive:

    def test_lists_only_active_unexpired(self, seed_data):
        _add("p1")
        _add("p2", expires_at=_past())

        rows = list_active_entitlements("u1")
        assert [e.product_id for e in rows] == ["p1"]
        assert rows[0].product.title == "Band 6 Essay"

    def test_empty_for_user_without_entitlements(self, seed_data):
        assert list_active_entitlements("u1") == []


class TestUpsert:

    def test_one_row_per_pair(self, seed_data):
        first = upsert_entitlement("u1", "p1")
        db.session.commit()
        second = upsert_entitlement("u1", "p1")
        db.session.commit()

        assert first.id == second.id
        assert Entitlement.query.count() == 1

    def test_reactivates_revoked_row(self, seed_data):
        entitlement_id = _add(active=False)
        row = db.session.get(Entitlement, entitlement_id)
        row.revoked_at = _past()
        row.revoke_reason = "refund"
        db.session.commit()

        upsert_entitlement("u1", "p1", expires_at=_future())
        db.session.commit()

        db.session.expire_all()
        row = db.session.get(Entitlement, entitlement_id)
        assert row.active is True
        assert row.revoked_at is None
        assert row.revoke_reason is None
        assert row.expires_at is not None


class TestGrantRevoke:

    def test_grant_creates_entitlement_and_audit(self, seed_data):
        entitlement = grant_entitlement(
            "u1", "p1", reason="goodwill", actor_user_id="admin-1"
        )

        assert entitlement.active is True
        assert entitlement.order_id is None
        assert has_access("u1", "p1") is True

        audit = AuditEvent.query.filter_by(action="entitlement.granted").one()
        assert audit.actor_user_id == "admin-1"
        assert audit.entity_id == entitlement.id
        assert audit.metadata_["reason"] == "goodwill"

    def test_grant_with_expiry(self, seed_data):
        grant_entitlement("u1", "p1", reason="trial", expires_at=_future())
        assert Entitlement.query.one().expires_at is not None

    def test_revoke_active(self, seed_data):
        _add()

        assert revoke_entitlement("u1", "p1", reason="chargeback", actor_user_id="admin-1")

        db.session.expire_all()
        entitlement = Entitlement.query.one()
        assert entitlement.active is False
        assert entitlement.revoke_reason == "chargeback"
        assert AuditEvent.query.filter_by(action="entitlement.revoked").count() == 1

    @pytest.mark.parametrize("active", [False, None])
    def test_revoke_without_active_entitlement(self, seed_data, active):
        if active is not None:
            _add(active=active)

        assert revoke_entitlement("u1", "p1", reason="chargeback") is False
        assert AuditEvent.query.count() == 0


class TestStats:

    def test_counts(self, seed_data):
        _add("p1")
        _add("p2", expires_at=_past())
        _add("p1", user_id="admin-1", active=False)
        row = Entitlement.query.filter_by(user_id="admin-1").one()
        row.revoked_at = _past()
        db.session.commit()

        assert entitlement_stats() == {
            "total": 3,
            "active": 1,
            "revoked": 1,
            "expired": 1,
        }
