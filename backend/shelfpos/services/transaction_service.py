# Overview: Transaction Recorder and purchase history queries.

"""
Receipts are written exactly once per successful checkout and never edited.
A receipt and its "Checkout" activity row are committed together.

Keyed checkouts also leave a CheckoutAttempt row, written with the stock
decrements and marked recorded with the receipt, so a retry after a failed
receipt write can finish the checkout without touching stock again.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..identifiers import is_record_id
from ..models import CheckoutAttempt, Transaction, TransactionLine, User
from ..models.activity import ACTION_CHECKOUT
from ..models.sales import ATTEMPT_PENDING, ATTEMPT_RECORDED, TRANSACTION_TYPE_CHECKOUT
from ..time_utils import utcnow
from ..validation import ApiError, NotFoundError
from .activity_service import append_activity
from .payment_service import PaymentResult
from .pricing_service import PricedLine, Totals


class PersistenceError(ApiError):
    """Storage write failed. Internal cause is logged, never sent to clients."""
    status_code = 500
    default_code = "PersistenceError"


def record_transaction(
    *,
    actor: User,
    lines: list[PricedLine],
    totals: Totals,
    payment: PaymentResult,
    idempotency_key: str | None = None,
    attempt: CheckoutAttempt | None = None,
) -> Transaction:
    """
    Persist one immutable receipt.

    attempt, if given, is marked recorded in the same commit.

    Returns the committed Transaction (id and created_at populated).

    Raises:
        PersistenceError: the write could not be committed (session rolled back)
    """
    try:
        tx = Transaction(
            user_id=actor.id,
            username=actor.username,
            email=actor.email,
            role=actor.role,
            type=TRANSACTION_TYPE_CHECKOUT,
            total_quantity=totals.quantity,
            total_cents=totals.amount_cents,
            amount_paid_cents=payment.amount_paid_cents,
            change_cents=payment.change_cents,
            currency=payment.currency,
            idempotency_key=idempotency_key,
            created_at=utcnow(),
        )
        db.session.add(tx)
        db.session.flush()

        for position, line in enumerate(lines, start=1):
            db.session.add(TransactionLine(
                transaction_id=tx.id,
                position=position,
                product_id=line.product_id,
                name=line.name,
                unit_price_cents=line.unit_price_cents,
                quantity=line.quantity,
                subtotal_cents=line.subtotal_cents,
            ))

        append_activity(action=ACTION_CHECKOUT, actor=actor, entity_id=tx.id)

        if attempt is not None:
            attempt.status = ATTEMPT_RECORDED
            attempt.transaction_id = tx.id
            attempt.recorded_at = utcnow()

        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to record transaction") from exc

    return tx


def find_by_idempotency_key(user_id: int, key: str) -> Transaction | None:
    return (
        db.session.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.idempotency_key == key)
        .first()
    )


def new_attempt(
    *,
    actor: User,
    idempotency_key: str,
    lines: list[PricedLine],
    totals: Totals,
    payment: PaymentResult,
    committed: list[dict],
) -> CheckoutAttempt:
    """Unsaved PENDING attempt; stock_service.commit_stock inserts it with the decrements."""
    return CheckoutAttempt(
        user_id=actor.id,
        idempotency_key=idempotency_key,
        status=ATTEMPT_PENDING,
        lines=[
            {
                "productId": line.product_id,
                "name": line.name,
                "unitPriceCents": line.unit_price_cents,
                "quantity": line.quantity,
                "subtotalCents": line.subtotal_cents,
            }
            for line in lines
        ],
        committed=committed,
        total_quantity=totals.quantity,
        total_cents=totals.amount_cents,
        amount_paid_cents=payment.amount_paid_cents,
        change_cents=payment.change_cents,
        currency=payment.currency,
        created_at=utcnow(),
    )


def find_pending_attempt(user_id: int, key: str) -> CheckoutAttempt | None:
    return (
        db.session.query(CheckoutAttempt)
        .filter(
            CheckoutAttempt.user_id == user_id,
            CheckoutAttempt.idempotency_key == key,
            CheckoutAttempt.status == ATTEMPT_PENDING,
        )
        .first()
    )


def attempt_inputs(attempt: CheckoutAttempt) -> tuple[list[PricedLine], Totals, PaymentResult]:
    """Rebuild the recorder inputs from a pending attempt's snapshot."""
    lines = [
        PricedLine(
            product_id=row["productId"],
            name=row["name"],
            unit_price_cents=row["unitPriceCents"],
            quantity=row["quantity"],
            subtotal_cents=row["subtotalCents"],
        )
        for row in attempt.lines
    ]
    totals = Totals(quantity=attempt.total_quantity, amount_cents=attempt.total_cents)
    payment = PaymentResult(
        amount_paid_cents=attempt.amount_paid_cents,
        change_cents=attempt.change_cents,
        currency=attempt.currency,
    )
    return lines, totals, payment


def list_history(user_id: int, limit: int) -> list[dict]:
    """Caller's receipts, newest first, capped at limit."""
    rows = (
        db.session.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .all()
    )
    return [tx.to_dict() for tx in rows]


def get_transaction(user_id: int, transaction_id: str) -> dict:
    """
    Raises:
        NotFoundError: unknown id or receipt of another account
    """
    tx = None
    if is_record_id(transaction_id):
        tx = (
            db.session.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
            .first()
        )
    if tx is None:
        raise NotFoundError("Transaction not found", details={"transactionId": transaction_id})
    return tx.to_dict()
