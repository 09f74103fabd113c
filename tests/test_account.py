"""Tests for the account blueprint (the access oracle over HTTP)."""

import json
from datetime import datetime, timedelta, timezone

from app.extensions import db
from app.models.entitlement import Entitlement


def _grant(product_id, **kwargs):
    db.session.add(Entitlement(user_id="u1", product_id=product_id, active=True, **kwargs))
    db.session.commit()


class TestAuthRequired:

    def test_entitlements_requires_login(self, client, seed_data):
        assert client.get("/account/entitlements").status_code == 401

    def test_access_requires_login(self, client, seed_data):
        assert client.get("/account/access/p1").status_code == 401


class TestEntitlements:

    def test_lists_active_with_product(self, client, seed_data, login):
        _grant("p1")
        login("u1")

        data = json.loads(client.get("/account/entitlements").data)

        [entitlement] = data["entitlements"]
        assert entitlement["product_id"] == "p1"
        assert entitlement["product"] == {
            "id": "p1", "slug": "band-6-essay", "title": "Band 6 Essay",
        }

    def test_other_users_entitlements_hidden(self, client, seed_data, login):
        _grant("p1")
        login("admin-1")

        data = json.loads(client.get("/account/entitlements").data)
        assert data["entitlements"] == []


class TestAccess:

    def test_single_check(self, client, seed_data, login):
        _grant("p1")
        login("u1")

        data = json.loads(client.get("/account/access/p1").data)
        assert data == {"product_id": "p1", "has_access": True}

    def test_single_check_revokes_expired(self, client, seed_data, login):
        _grant("p1", expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
        login("u1")

        data = json.loads(client.get("/account/access/p1").data)

        assert data["has_access"] is False
        db.session.expire_all()
        assert Entitlement.query.one().revoke_reason == "expired"

    def test_bulk_check(self, client, seed_data, login):
        _grant("p1")
        login("u1")

        resp = client.get("/account/access?product_id=p1&product_id=p2")

        assert resp.status_code == 200
        assert json.loads(resp.data) == {"access": {"p1": True, "p2": False}}

    def test_bulk_check_requires_ids(self, client, seed_data, login):
        login("u1")
        assert client.get("/account/access").status_code == 400
