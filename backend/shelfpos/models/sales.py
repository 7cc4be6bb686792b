from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..identifiers import new_record_id, RECORD_ID_LENGTH
from ..time_utils import to_utc_z


TRANSACTION_TYPE_CHECKOUT = "checkout"


def _amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return round(cents / 100, 2)


class Transaction(db.Model):
    """
    Receipt for one completed checkout.

    IMMUTABLE: a receipt is a historical fact. Rows are inserted once by
    transaction_service.record_transaction and never updated or deleted
    (enforced by the mapper event guards at the bottom of this module).

    Line names and unit prices are snapshots taken at checkout time, so later
    product edits do not alter past receipts.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("user_id", "idempotency_key", name="uq_transactions_user_idempotency_key"),
        db.Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(RECORD_ID_LENGTH), primary_key=True, default=new_record_id)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Actor snapshot (account details may change later)
    username = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=True)

    type = db.Column(db.String(16), nullable=False, default=TRANSACTION_TYPE_CHECKOUT)

    # Totals and payment (all amounts in cents)
    total_quantity = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False)

    idempotency_key = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        order_by="TransactionLine.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} user_id={self.user_id} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        """Receipt projection returned to clients (no internal columns)."""
        return {
            "transactionId": self.id,
            "type": self.type,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "items": [line.to_dict() for line in self.lines],
            "totals": {
                "quantity": self.total_quantity,
                "amount": _amount(self.total_cents),
            },
            "payment": {
                "amountPaid": _amount(self.amount_paid_cents),
                "change": _amount(self.change_cents),
                "currency": self.currency,
            },
            "createdAt": to_utc_z(self.created_at),
        }


class TransactionLine(db.Model):
    """One finalized line on a receipt."""
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "position", name="uq_transaction_lines_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.String(RECORD_ID_LENGTH), db.ForeignKey("transactions.id"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False)

    # Not a foreign key: the receipt outlives any later change to the product
    product_id = db.Column(db.String(RECORD_ID_LENGTH), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "unitPrice": _amount(self.unit_price_cents),
            "quantity": self.quantity,
            "subtotal": _amount(self.subtotal_cents),
        }


ATTEMPT_PENDING = "pending"
ATTEMPT_RECORDED = "recorded"


class CheckoutAttempt(db.Model):
    """
    Stock-commit marker for a checkout that carries an idempotency key.

    Inserted in the same DB transaction as the stock decrements. If the receipt
    write then fails, a retry with the same key finds this row PENDING and
    records the receipt from the snapshot here instead of taking stock again.
    Marked RECORDED in the same commit as the receipt.
    """
    __tablename__ = "checkout_attempts"
    __table_args__ = (
        db.UniqueConstraint("user_id", "idempotency_key", name="uq_checkout_attempts_user_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    idempotency_key = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ATTEMPT_PENDING)

    # Priced line snapshots: [{productId, name, unitPriceCents, quantity, subtotalCents}]
    lines = db.Column(db.JSON, nullable=False)
    # Stock decrements committed with this row (StockChange.to_dict)
    committed = db.Column(db.JSON, nullable=False)

    total_quantity = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False)

    transaction_id = db.Column(db.String(RECORD_ID_LENGTH), db.ForeignKey("transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<CheckoutAttempt user_id={self.user_id} key={self.idempotency_key!r} status={self.status}>"


class ImmutableRecordError(Exception):
    """Raised when code tries to change or delete a recorded receipt."""


@event.listens_for(Transaction, "before_update")
@event.listens_for(TransactionLine, "before_update")
def _reject_receipt_update(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are immutable once recorded")


@event.listens_for(Transaction, "before_delete")
@event.listens_for(TransactionLine, "before_delete")
def _reject_receipt_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows cannot be deleted")
