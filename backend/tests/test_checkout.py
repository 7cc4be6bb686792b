"""
Checkout tests.

Verifies:
- A successful checkout decrements stock, records one receipt and
  returns the receipt with the updated products
- Every rejection (input, stock, payment) leaves stock and history untouched
- Payment is checked before any stock is written
- A failed receipt write after the stock commit is reported as
  Inconsistent with an incident reference
- Idempotency keys replay the original receipt instead of selling twice
"""

from decimal import Decimal

import pytest

from shelfpos.models import CheckoutAttempt, Product, Transaction, RecentActivity
from shelfpos.models.inventory import STATUS_IN_STOCK, STATUS_OUT_OF_STOCK, STATUS_DISCONTINUED
from shelfpos.services import checkout_service, transaction_service
from shelfpos.services.checkout_service import (
    Checkout,
    InconsistentStateError,
    parse_checkout_request,
    STATE_COMPLETE,
    STATE_INCONSISTENT,
    STATE_REJECTED,
)
from shelfpos.services.transaction_service import PersistenceError
from shelfpos.validation import ApiError, ValidationError


def _cart(*lines, paid):
    return {
        "items": [{"productId": pid, "quantity": qty} for pid, qty in lines],
        "amountPaid": paid,
    }


# =============================================================================
# REQUEST PARSING
# =============================================================================


class TestParseCheckoutRequest:
    """Shape checks before any DB access."""

    @pytest.mark.parametrize(
        "payload,code",
        [
            (None, "InvalidRequest"),
            ({"amountPaid": 10}, "EmptyCart"),
            ({"items": [], "amountPaid": 10}, "EmptyCart"),
            ({"items": "abc", "amountPaid": 10}, "InvalidRequest"),
            ({"items": ["abc"], "amountPaid": 10}, "InvalidLineItem"),
            ({"items": [{"quantity": 1}], "amountPaid": 10}, "InvalidLineItem"),
            ({"items": [{"productId": "a" * 24, "quantity": 0}], "amountPaid": 10}, "InvalidQuantity"),
            ({"items": [{"productId": "a" * 24, "quantity": 1.5}], "amountPaid": 10}, "InvalidQuantity"),
            ({"items": [{"productId": "a" * 24, "quantity": True}], "amountPaid": 10}, "InvalidQuantity"),
            ({"items": [{"productId": "a" * 24, "quantity": 1}]}, "InvalidPayment"),
            ({"items": [{"productId": "a" * 24, "quantity": 1}], "amountPaid": "ten"}, "InvalidPayment"),
            ({"items": [{"productId": "a" * 24, "quantity": 1}], "amountPaid": 10, "idempotencyKey": "k" * 65},
             "InvalidRequest"),
        ],
    )
    def test_rejects(self, payload, code):
        with pytest.raises(ValidationError) as exc:
            parse_checkout_request(payload)
        assert exc.value.code == code

    def test_accepts_integral_quantities(self):
        request = parse_checkout_request({
            "items": [
                {"productId": " " + "a" * 24 + " ", "quantity": 2},
                {"productId": "b" * 24, "quantity": 3.0},
                {"productId": "c" * 24, "quantity": "4"},
            ],
            "amountPaid": "100.00",
            "idempotencyKey": " order-1 ",
        })
        assert [(l.product_id, l.quantity) for l in request.lines] == [
            ("a" * 24, 2),
            ("b" * 24, 3),
            ("c" * 24, 4),
        ]
        assert request.amount_paid == Decimal("100.00")
        assert request.idempotency_key == "order-1"


# =============================================================================
# ORCHESTRATION (SERVICE LEVEL)
# =============================================================================


class TestCheckoutStates:
    """State flow of one checkout run."""

    def test_complete_flow(self, db_session, owner, make_product):
        p = make_product(owner, quantity=5, price_cents=1000)
        run = Checkout(actor=owner, currency="PHP")

        result = run.run(_cart((p.id, 2), paid=25))

        assert run.state == STATE_COMPLETE
        assert run.history == [
            "Validating", "Reconciling", "Computing", "PaymentCheck",
            "Committing", "Recording", "Complete",
        ]
        assert result.receipt["totals"] == {"quantity": 2, "amount": 20.0}
        assert result.receipt["payment"] == {"amountPaid": 25.0, "change": 5.0, "currency": "PHP"}
        assert result.products == [{"id": p.id, "quantity": 3, "status": STATUS_IN_STOCK, "sold": 2}]
        assert result.replayed is False

    def test_payment_checked_before_stock(self, db_session, owner, make_product, reload):
        p = make_product(owner, quantity=5, price_cents=1000)
        run = Checkout(actor=owner, currency="PHP")

        with pytest.raises(ApiError) as exc:
            run.run(_cart((p.id, 2), paid=15))

        assert exc.value.code == "InsufficientPayment"
        assert run.state == STATE_REJECTED
        assert "Committing" not in run.history
        assert reload(Product, p.id).quantity == 5

    def test_receipt_failure_is_inconsistent(self, db_session, owner, make_product, reload, monkeypatch):
        p = make_product(owner, quantity=5, price_cents=1000)

        def failing_record(**kwargs):
            raise PersistenceError("Failed to record transaction")

        monkeypatch.setattr(transaction_service, "record_transaction", failing_record)
        run = Checkout(actor=owner, currency="PHP")

        with pytest.raises(InconsistentStateError) as exc:
            run.run(_cart((p.id, 2), paid=20))

        err = exc.value
        assert run.state == STATE_INCONSISTENT
        assert err.status_code == 500
        assert err.details == {"incident": err.incident, "retrySafe": False}
        assert err.committed == [
            {"productId": p.id, "quantity": 2, "previousQuantity": 5, "newQuantity": 3},
        ]
        # Stock stays committed; no receipt exists
        assert reload(Product, p.id).quantity == 3
        assert db_session.query(Transaction).count() == 0

    def test_idempotent_replay(self, db_session, owner, make_product, reload):
        p = make_product(owner, quantity=5, price_cents=1000)
        payload = {**_cart((p.id, 2), paid=20), "idempotencyKey": "register-1-0001"}

        first = checkout_service.checkout(payload, actor=owner, currency="PHP")
        second = checkout_service.checkout(payload, actor=owner, currency="PHP")

        assert second.replayed is True
        assert second.receipt["transactionId"] == first.receipt["transactionId"]
        assert reload(Product, p.id).quantity == 3
        assert db_session.query(Transaction).count() == 1

    def test_idempotency_key_is_per_account(self, db_session, owner, other_owner, make_product):
        mine = make_product(owner, quantity=5)
        theirs = make_product(other_owner, quantity=5)

        a = checkout_service.checkout(
            {**_cart((mine.id, 1), paid=10), "idempotencyKey": "k1"}, actor=owner, currency="PHP"
        )
        b = checkout_service.checkout(
            {**_cart((theirs.id, 1), paid=10), "idempotencyKey": "k1"}, actor=other_owner, currency="PHP"
        )
        assert b.replayed is False
        assert a.receipt["transactionId"] != b.receipt["transactionId"]


class TestRetryAfterInconsistent:
    """A keyed checkout that ended Inconsistent is finished by retrying the same key."""

    def _fail_next_record(self, monkeypatch):
        real_record = transaction_service.record_transaction
        calls = {"n": 0}

        def flaky_record(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise PersistenceError("Failed to record transaction")
            return real_record(**kwargs)

        monkeypatch.setattr(transaction_service, "record_transaction", flaky_record)

    def test_retry_records_receipt_without_taking_stock_again(
        self, db_session, owner, make_product, reload, monkeypatch
    ):
        p = make_product(owner, quantity=5, price_cents=1000)
        payload = {**_cart((p.id, 2), paid=25), "idempotencyKey": "K1"}
        self._fail_next_record(monkeypatch)

        with pytest.raises(InconsistentStateError) as exc:
            checkout_service.checkout(payload, actor=owner, currency="PHP")
        assert exc.value.details["retrySafe"] is True
        assert reload(Product, p.id).quantity == 3

        run = Checkout(actor=owner, currency="PHP")
        result = run.run(payload)

        assert run.history == ["Validating", "Recording", "Complete"]
        assert result.resumed is True
        assert result.replayed is False
        assert result.receipt["totals"] == {"quantity": 2, "amount": 20.0}
        assert result.receipt["payment"] == {"amountPaid": 25.0, "change": 5.0, "currency": "PHP"}
        assert result.products == [{"id": p.id, "quantity": 3, "status": STATUS_IN_STOCK, "sold": 2}]

        fresh = reload(Product, p.id)
        assert fresh.quantity == 3
        assert fresh.sold == 2
        assert db_session.query(Transaction).count() == 1
        attempt = db_session.query(CheckoutAttempt).one()
        assert attempt.status == "recorded"
        assert attempt.transaction_id == result.receipt["transactionId"]

    def test_third_call_replays(self, db_session, owner, make_product, reload, monkeypatch):
        p = make_product(owner, quantity=5, price_cents=1000)
        payload = {**_cart((p.id, 1), paid=10), "idempotencyKey": "K2"}
        self._fail_next_record(monkeypatch)

        with pytest.raises(InconsistentStateError):
            checkout_service.checkout(payload, actor=owner, currency="PHP")
        resumed = checkout_service.checkout(payload, actor=owner, currency="PHP")
        replayed = checkout_service.checkout(payload, actor=owner, currency="PHP")

        assert replayed.replayed is True
        assert replayed.receipt["transactionId"] == resumed.receipt["transactionId"]
        assert reload(Product, p.id).quantity == 4

    def test_retry_uses_committed_snapshot(self, db_session, owner, make_product, reload, monkeypatch):
        p = make_product(owner, name="Rice", quantity=5, price_cents=1000)
        payload = {**_cart((p.id, 2), paid=20), "idempotencyKey": "K3"}
        self._fail_next_record(monkeypatch)

        with pytest.raises(InconsistentStateError):
            checkout_service.checkout(payload, actor=owner, currency="PHP")

        # Product edited between the failure and the retry
        fresh = reload(Product, p.id)
        fresh.name = "Premium Rice"
        fresh.price_cents = 9900
        db_session.commit()

        result = checkout_service.checkout(payload, actor=owner, currency="PHP")
        assert result.receipt["items"][0]["name"] == "Rice"
        assert result.receipt["totals"]["amount"] == 20.0
        assert reload(Product, p.id).quantity == 3

    def test_unkeyed_inconsistent_is_not_retry_safe(self, db_session, owner, make_product, monkeypatch):
        p = make_product(owner, quantity=5)
        self._fail_next_record(monkeypatch)

        with pytest.raises(InconsistentStateError) as exc:
            checkout_service.checkout(_cart((p.id, 1), paid=10), actor=owner, currency="PHP")
        assert exc.value.retry_safe is False
        assert db_session.query(CheckoutAttempt).count() == 0


class TestRecordTransaction:
    """Storage failures surface as PersistenceError."""

    def test_duplicate_idempotency_key_raises_persistence_error(self, db_session, owner, make_product):
        p = make_product(owner, quantity=5, price_cents=1000)
        checkout_service.checkout(
            {**_cart((p.id, 1), paid=10), "idempotencyKey": "dup"}, actor=owner, currency="PHP"
        )

        from shelfpos.services.payment_service import PaymentResult
        from shelfpos.services.pricing_service import PricedLine, Totals

        with pytest.raises(PersistenceError):
            transaction_service.record_transaction(
                actor=owner,
                lines=[PricedLine(p.id, p.name, 1000, 1, 1000)],
                totals=Totals(quantity=1, amount_cents=1000),
                payment=PaymentResult(amount_paid_cents=1000, change_cents=0, currency="PHP"),
                idempotency_key="dup",
            )
        assert db_session.query(Transaction).count() == 1


# =============================================================================
# API SCENARIOS
# =============================================================================


class TestCheckoutApi:
    """POST /api/checkout."""

    def test_requires_auth(self, client, db_session):
        resp = client.post("/api/checkout", json={"items": [], "amountPaid": 0})
        assert resp.status_code == 401

    def test_successful_checkout(self, client, owner, owner_headers, make_product, reload, db_session):
        a = make_product(owner, name="Soap", quantity=5, price_cents=1000)
        b = make_product(owner, name="Bread", quantity=1, price_cents=4550)

        resp = client.post("/api/checkout", json=_cart((a.id, 2), (b.id, 1), paid=100), headers=owner_headers)

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["items"] == [
            {"productId": a.id, "name": "Soap", "unitPrice": 10.0, "quantity": 2, "subtotal": 20.0},
            {"productId": b.id, "name": "Bread", "unitPrice": 45.5, "quantity": 1, "subtotal": 45.5},
        ]
        assert data["totals"] == {"quantity": 3, "amount": 65.5}
        assert data["payment"] == {"amountPaid": 100.0, "change": 34.5, "currency": "PHP"}
        assert data["username"] == owner.username
        assert data["email"] == owner.email
        assert data["createdAt"].endswith("Z")
        statuses = {row["id"]: row["status"] for row in data["products"]}
        assert statuses == {a.id: STATUS_IN_STOCK, b.id: STATUS_OUT_OF_STOCK}

        assert reload(Product, a.id).quantity == 3
        assert reload(Product, b.id).quantity == 0

        actions = [r.action for r in db_session.query(RecentActivity).all()]
        assert actions == ["Checkout"]

    def test_patch_is_accepted(self, client, owner, owner_headers, make_product):
        p = make_product(owner, quantity=5)
        resp = client.patch("/api/checkout", json=_cart((p.id, 1), paid=10), headers=owner_headers)
        assert resp.status_code == 200

    def test_insufficient_stock_writes_nothing(self, client, owner, owner_headers, make_product, reload, db_session):
        a = make_product(owner, name="Plenty", quantity=5)
        b = make_product(owner, name="Scarce", quantity=1)

        resp = client.post("/api/checkout", json=_cart((a.id, 1), (b.id, 2), paid=100), headers=owner_headers)

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"] == "InsufficientStock"
        assert body["details"]["items"][0]["name"] == "Scarce"
        assert reload(Product, a.id).quantity == 5
        assert reload(Product, b.id).quantity == 1
        assert db_session.query(Transaction).count() == 0

    def test_insufficient_payment_writes_nothing(self, client, owner, owner_headers, make_product, reload, db_session):
        p = make_product(owner, quantity=5, price_cents=1000)

        resp = client.post("/api/checkout", json=_cart((p.id, 3), paid=29.99), headers=owner_headers)

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"] == "InsufficientPayment"
        assert body["details"]["shortfall"] == 0.01
        assert reload(Product, p.id).quantity == 5
        assert db_session.query(Transaction).count() == 0

    def test_discontinued_product_rejected(self, client, owner, owner_headers, make_product):
        p = make_product(owner, status=STATUS_DISCONTINUED)
        resp = client.post("/api/checkout", json=_cart((p.id, 1), paid=100), headers=owner_headers)
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "ProductUnavailable"

    def test_foreign_product_is_404(self, client, other_owner, owner_headers, make_product, reload):
        theirs = make_product(other_owner, quantity=5)
        resp = client.post("/api/checkout", json=_cart((theirs.id, 1), paid=100), headers=owner_headers)
        assert resp.status_code == 404
        assert reload(Product, theirs.id).quantity == 5

    def test_empty_cart(self, client, owner_headers, db_session):
        resp = client.post("/api/checkout", json={"items": [], "amountPaid": 10}, headers=owner_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "EmptyCart"

    def test_selling_the_last_unit_twice(self, client, owner, owner_headers, make_product, reload):
        p = make_product(owner, quantity=1, price_cents=1000)

        first = client.post("/api/checkout", json=_cart((p.id, 1), paid=10), headers=owner_headers)
        second = client.post("/api/checkout", json=_cart((p.id, 1), paid=10), headers=owner_headers)

        assert first.status_code == 200
        assert second.status_code == 409
        fresh = reload(Product, p.id)
        assert fresh.quantity == 0
        assert fresh.status == STATUS_OUT_OF_STOCK

    def test_inconsistent_state_returns_incident(self, client, owner, owner_headers, make_product, monkeypatch):
        p = make_product(owner, quantity=5)

        def failing_record(**kwargs):
            raise PersistenceError("Failed to record transaction")

        monkeypatch.setattr(transaction_service, "record_transaction", failing_record)

        resp = client.post("/api/checkout", json=_cart((p.id, 1), paid=10), headers=owner_headers)

        assert resp.status_code == 500
        body = resp.get_json()
        assert body["error"] == "Inconsistent"
        assert len(body["details"]["incident"]) == 32
        assert "committed" not in body["details"]
