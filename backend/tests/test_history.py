"""
Purchase history tests.

Verifies:
- History lists only the caller's receipts, newest first
- Receipts keep the name/price snapshot taken at checkout time
- Receipts cannot be updated or deleted
"""

import pytest

from shelfpos.models import Transaction, TransactionLine
from shelfpos.models.sales import ImmutableRecordError


def _checkout(client, headers, product_id, quantity=1, paid=100):
    resp = client.post(
        "/api/checkout",
        json={"items": [{"productId": product_id, "quantity": quantity}], "amountPaid": paid},
        headers=headers,
    )
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


# =============================================================================
# LISTING
# =============================================================================


class TestHistory:
    """GET /api/history."""

    def test_requires_auth(self, client, db_session):
        assert client.get("/api/history").status_code == 401

    def test_empty(self, client, owner_headers, db_session):
        resp = client.get("/api/history", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"] == []

    def test_newest_first(self, client, owner, owner_headers, make_product):
        p = make_product(owner, quantity=10)
        first = _checkout(client, owner_headers, p.id)
        second = _checkout(client, owner_headers, p.id, quantity=2)

        resp = client.get("/api/history", headers=owner_headers)
        ids = [r["transactionId"] for r in resp.get_json()["data"]]
        assert ids == [second["transactionId"], first["transactionId"]]

    def test_projection(self, client, owner, owner_headers, make_product):
        p = make_product(owner, quantity=10)
        _checkout(client, owner_headers, p.id)

        receipt = client.get("/api/history", headers=owner_headers).get_json()["data"][0]
        assert set(receipt) == {
            "transactionId", "type", "username", "email", "role",
            "items", "totals", "payment", "createdAt",
        }
        assert receipt["type"] == "checkout"

    def test_scoped_to_caller(self, client, owner, other_owner, owner_headers, other_headers, make_product):
        p = make_product(owner, quantity=10)
        mine = _checkout(client, owner_headers, p.id)

        assert client.get("/api/history", headers=other_headers).get_json()["data"] == []

        resp = client.get(f"/api/history/{mine['transactionId']}", headers=other_headers)
        assert resp.status_code == 404

    def test_get_single_receipt(self, client, owner, owner_headers, make_product):
        p = make_product(owner, quantity=10)
        receipt = _checkout(client, owner_headers, p.id)

        resp = client.get(f"/api/history/{receipt['transactionId']}", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["items"] == receipt["items"]

    def test_limit(self, app, client, owner, owner_headers, make_product, monkeypatch):
        p = make_product(owner, quantity=10)
        for _ in range(3):
            _checkout(client, owner_headers, p.id)

        monkeypatch.setitem(app.config, "HISTORY_LIMIT", 2)
        resp = client.get("/api/history", headers=owner_headers)
        assert resp.get_json()["count"] == 2


# =============================================================================
# IMMUTABILITY
# =============================================================================


class TestReceiptImmutability:
    """Receipts are historical facts."""

    def test_product_edit_does_not_change_receipt(self, client, owner, owner_headers, make_product):
        p = make_product(owner, name="Old Name", quantity=10, price_cents=1000)
        receipt = _checkout(client, owner_headers, p.id)

        client.put(f"/api/products/{p.id}", json={"name": "New Name", "price": 99}, headers=owner_headers)

        resp = client.get(f"/api/history/{receipt['transactionId']}", headers=owner_headers)
        line = resp.get_json()["data"]["items"][0]
        assert line["name"] == "Old Name"
        assert line["unitPrice"] == 10.0

    def test_update_rejected(self, client, owner, owner_headers, make_product, db_session):
        p = make_product(owner, quantity=10)
        receipt = _checkout(client, owner_headers, p.id)

        tx = db_session.get(Transaction, receipt["transactionId"])
        tx.total_cents = 1
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()

    def test_line_delete_rejected(self, client, owner, owner_headers, make_product, db_session):
        p = make_product(owner, quantity=10)
        _checkout(client, owner_headers, p.id)

        line = db_session.query(TransactionLine).first()
        db_session.delete(line)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()
