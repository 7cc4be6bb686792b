# Overview: Checkout orchestration; composes stock, pricing, payment and receipt recording.

"""
Checkout Orchestrator

States (in order):
    Validating -> Reconciling -> Computing -> PaymentCheck -> Committing -> Recording -> Complete
Terminal failures:
    Rejected      no side effects (input, stock, payment or stock-commit failure)
    Inconsistent  stock committed, receipt not recorded

Payment is checked BEFORE stock is written, so a payment shortfall never
leaves decremented stock behind. Stock validation and the stock commit are
separate steps; the commit re-checks availability atomically per product
(see stock_service), so a race lost between the two is still a clean Rejected.

Nothing is retried here. Inconsistent is logged with an incident reference
and the committed decrements. With an idempotency key the stock commit also
wrote a pending CheckoutAttempt, so a retry with the same key goes straight
to Recording and never takes stock twice:
    Validating -> Recording -> Complete
Without a key, Inconsistent needs manual reconciliation.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User
from ..validation import ApiError, ValidationError
from . import stock_service, pricing_service, payment_service, transaction_service
from .stock_service import CartLine
from .transaction_service import PersistenceError


STATE_VALIDATING = "Validating"
STATE_RECONCILING = "Reconciling"
STATE_COMPUTING = "Computing"
STATE_PAYMENT_CHECK = "PaymentCheck"
STATE_COMMITTING = "Committing"
STATE_RECORDING = "Recording"
STATE_COMPLETE = "Complete"
STATE_REJECTED = "Rejected"
STATE_INCONSISTENT = "Inconsistent"

MAX_IDEMPOTENCY_KEY_LENGTH = 64


class InconsistentStateError(ApiError):
    """
    Stock was decremented but the receipt could not be recorded.

    Carries the committed decrements for the operator; clients only see the
    incident reference.
    """
    status_code = 500
    default_code = "Inconsistent"

    def __init__(self, message: str, *, incident: str, committed: list[dict], retry_safe: bool = False):
        super().__init__(message, details={"incident": incident, "retrySafe": retry_safe})
        self.incident = incident
        self.committed = committed
        self.retry_safe = retry_safe


@dataclass(frozen=True)
class CheckoutRequest:
    lines: list[CartLine]
    amount_paid: Decimal
    idempotency_key: str | None = None


@dataclass
class CheckoutResult:
    receipt: dict
    products: list[dict] = field(default_factory=list)
    replayed: bool = False
    resumed: bool = False

    def to_dict(self) -> dict:
        data = dict(self.receipt)
        data["products"] = self.products
        data["replayed"] = self.replayed
        data["resumed"] = self.resumed
        return data


def _parse_quantity(raw, product_id: str) -> int:
    if isinstance(raw, bool):
        raw = None
    elif isinstance(raw, float) and math.isfinite(raw) and raw.is_integer():
        raw = int(raw)
    elif isinstance(raw, str) and raw.strip().isdigit():
        raw = int(raw.strip())

    if not stock_service.is_positive_int(raw):
        raise ValidationError(
            "Quantity must be a positive integer",
            code="InvalidQuantity",
            details={"productId": product_id, "quantity": raw},
        )
    return raw


def parse_checkout_request(payload) -> CheckoutRequest:
    """
    Validating step: shape checks only, no DB access.

    Raises:
        ValidationError: EmptyCart, InvalidLineItem, InvalidQuantity,
            InvalidPayment or InvalidRequest
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload", code="InvalidRequest")

    raw_items = payload.get("items")
    if raw_items is None or raw_items == []:
        raise ValidationError("No items to checkout", code="EmptyCart")
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list", code="InvalidRequest")

    lines = []
    for index, item in enumerate(raw_items):
        if not isinstance(item, dict):
            raise ValidationError(
                "Each item must be an object", code="InvalidLineItem", details={"index": index}
            )
        product_id = item.get("productId")
        if not isinstance(product_id, str) or not product_id.strip():
            raise ValidationError(
                "productId is required", code="InvalidLineItem", details={"index": index}
            )
        product_id = product_id.strip()
        lines.append(CartLine(product_id=product_id, quantity=_parse_quantity(item.get("quantity"), product_id)))

    amount_paid = payment_service.parse_tendered(payload.get("amountPaid"))

    key = payload.get("idempotencyKey")
    if key is not None:
        if not isinstance(key, str) or not key.strip() or len(key.strip()) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(
                f"idempotencyKey must be a non-empty string of at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters",
                code="InvalidRequest",
            )
        key = key.strip()

    return CheckoutRequest(lines=lines, amount_paid=amount_paid, idempotency_key=key)


class Checkout:
    """
    One request-scoped checkout run. Holds no state beyond this request.

    Usage:
        result = Checkout(actor=g.current_user, currency="PHP").run(payload)
    """

    def __init__(self, *, actor: User, currency: str):
        self.actor = actor
        self.currency = currency
        self.state = STATE_VALIDATING
        self.history: list[str] = [STATE_VALIDATING]

    def _enter(self, state: str) -> None:
        self.state = state
        self.history.append(state)

    def _reject(self, exc: Exception) -> None:
        db.session.rollback()
        self._enter(STATE_REJECTED)
        current_app.logger.info(
            "Checkout rejected user_id=%s error=%s", self.actor.id, getattr(exc, "code", type(exc).__name__)
        )

    def _inconsistent(self, exc: Exception, committed: list[dict], idempotency_key: str | None):
        db.session.rollback()
        self._enter(STATE_INCONSISTENT)
        incident = uuid.uuid4().hex
        current_app.logger.error(
            "Checkout inconsistent incident=%s user_id=%s idempotency_key=%s committed=%s cause=%r",
            incident, self.actor.id, idempotency_key, committed, exc.__cause__ or exc,
        )
        if idempotency_key:
            message = "Checkout could not be completed. Retry with the same idempotencyKey to finish it."
        else:
            message = "Checkout could not be completed. Contact support with the incident reference."
        return InconsistentStateError(
            message,
            incident=incident,
            committed=committed,
            retry_safe=bool(idempotency_key),
        )

    def _record(self, *, lines, totals, payment, idempotency_key, attempt, committed) -> dict:
        self._enter(STATE_RECORDING)
        try:
            tx = transaction_service.record_transaction(
                actor=self.actor,
                lines=lines,
                totals=totals,
                payment=payment,
                idempotency_key=idempotency_key,
                attempt=attempt,
            )
        except PersistenceError as exc:
            raise self._inconsistent(exc, committed, idempotency_key) from exc

        self._enter(STATE_COMPLETE)
        receipt = tx.to_dict()
        current_app.logger.info(
            "Checkout complete transaction_id=%s user_id=%s quantity=%s total_cents=%s",
            receipt["transactionId"], self.actor.id, totals.quantity, totals.amount_cents,
        )
        return receipt

    def _resume(self, attempt, idempotency_key: str) -> CheckoutResult:
        """Stock for this key is already committed; only the receipt is missing."""
        committed = list(attempt.committed)
        current_app.logger.info(
            "Checkout resuming user_id=%s idempotency_key=%s", self.actor.id, idempotency_key
        )
        try:
            lines, totals, payment = transaction_service.attempt_inputs(attempt)
            products = stock_service.product_records([c["productId"] for c in committed], self.actor.id)
        except SQLAlchemyError as exc:
            raise self._inconsistent(exc, committed, idempotency_key) from exc

        receipt = self._record(
            lines=lines,
            totals=totals,
            payment=payment,
            idempotency_key=idempotency_key,
            attempt=attempt,
            committed=committed,
        )
        return CheckoutResult(receipt=receipt, products=products, resumed=True)

    def run(self, payload) -> CheckoutResult:
        try:
            request = parse_checkout_request(payload)
        except ApiError as exc:
            self._reject(exc)
            raise

        key = request.idempotency_key
        if key:
            existing = transaction_service.find_by_idempotency_key(self.actor.id, key)
            if existing is not None:
                self._enter(STATE_COMPLETE)
                return CheckoutResult(receipt=existing.to_dict(), replayed=True)

            pending = transaction_service.find_pending_attempt(self.actor.id, key)
            if pending is not None:
                return self._resume(pending, key)

        self._enter(STATE_RECONCILING)
        try:
            plan = stock_service.reserve_stock(request.lines, self.actor.id)
        except ApiError as exc:
            self._reject(exc)
            raise

        self._enter(STATE_COMPUTING)
        priced = pricing_service.price_lines(plan.lines)
        totals = pricing_service.compute_totals(priced)

        self._enter(STATE_PAYMENT_CHECK)
        try:
            payment = payment_service.validate_payment(totals.amount_cents, request.amount_paid, self.currency)
        except ApiError as exc:
            self._reject(exc)
            raise

        committed = [c.to_dict() for c in plan.changes]
        attempt = None
        if key:
            attempt = transaction_service.new_attempt(
                actor=self.actor,
                idempotency_key=key,
                lines=priced,
                totals=totals,
                payment=payment,
                committed=committed,
            )

        self._enter(STATE_COMMITTING)
        try:
            products = stock_service.commit_stock(plan, self.actor.id, marker=attempt)
        except ApiError as exc:
            self._reject(exc)
            raise
        except SQLAlchemyError as exc:
            self._reject(exc)
            incident = uuid.uuid4().hex
            current_app.logger.exception("Stock commit failed incident=%s user_id=%s", incident, self.actor.id)
            raise PersistenceError("Failed to update stock", details={"incident": incident}) from exc

        receipt = self._record(
            lines=priced,
            totals=totals,
            payment=payment,
            idempotency_key=key,
            attempt=attempt,
            committed=committed,
        )
        return CheckoutResult(receipt=receipt, products=products)


def checkout(payload, *, actor: User, currency: str) -> CheckoutResult:
    """Run one checkout for actor. See Checkout for states and failure semantics."""
    return Checkout(actor=actor, currency=currency).run(payload)
