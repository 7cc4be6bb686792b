# Overview: Stock reconciliation for checkout; validates a cart against the Product Store and commits the decrements.

"""
Stock Reconciler

Invariants:
- All lines are validated before any write (all-or-nothing).
- Each product's decrement is ONE conditional UPDATE:
      quantity = quantity - n  WHERE quantity >= n AND status != DISCONTINUED
  never a read-then-write pair. An UPDATE matching no row means another checkout won
  the race; the whole DB transaction is rolled back and nothing is written.
- Status after a decrement is derived in the same statement:
  OUT_OF_STOCK when the new quantity is 0, IN_STOCK otherwise.
- Repeated product ids in one cart are checked against their combined quantity.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.inventory import STATUS_DISCONTINUED, STATUS_IN_STOCK, STATUS_OUT_OF_STOCK
from ..identifiers import is_record_id
from ..validation import ConflictError, NotFoundError, ValidationError
from .products_service import derive_status


@dataclass(frozen=True)
class CartLine:
    """One requested (product, quantity) pair. Request-scoped, never persisted."""
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ReservedLine:
    """A validated cart line with the name/price snapshot taken at validation time."""
    product_id: str
    name: str
    unit_price_cents: int
    quantity: int


@dataclass(frozen=True)
class StockChange:
    """Planned change for one distinct product."""
    product_id: str
    quantity: int
    previous_quantity: int
    new_quantity: int
    new_status: str

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "previousQuantity": self.previous_quantity,
            "newQuantity": self.new_quantity,
        }


@dataclass(frozen=True)
class ReconciliationPlan:
    lines: list[ReservedLine]
    changes: list[StockChange]


def is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _requested_by_product(lines: list[CartLine]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def reserve_stock(lines: list[CartLine], owner_id: int) -> ReconciliationPlan:
    """
    Validate every line against current stock. Performs no writes.

    Raises:
        ValidationError(InvalidQuantity): a quantity is not a positive integer
        NotFoundError: a product is unknown or belongs to another account
        ConflictError(ProductUnavailable): a product is DISCONTINUED
        ConflictError(InsufficientStock): requested exceeds on-hand
    """
    if not lines:
        raise ValidationError("Cart is empty", code="EmptyCart")

    for line in lines:
        if not is_positive_int(line.quantity):
            raise ValidationError(
                "Quantity must be a positive integer",
                code="InvalidQuantity",
                details={"productId": line.product_id, "quantity": line.quantity},
            )

    requested = _requested_by_product(lines)

    ids = [pid for pid in requested if is_record_id(pid)]
    products = {
        p.id: p
        for p in db.session.query(Product)
        .filter(Product.id.in_(ids), Product.owner_id == owner_id)
        .all()
    } if ids else {}

    for product_id in requested:
        if product_id not in products:
            raise NotFoundError("Product not found", details={"productId": product_id})

    for product_id in requested:
        p = products[product_id]
        if p.status == STATUS_DISCONTINUED:
            raise ConflictError(
                f"{p.name} is discontinued and cannot be sold",
                code="ProductUnavailable",
                details={"productId": p.id, "name": p.name},
            )

    insufficient = []
    for product_id, qty in requested.items():
        p = products[product_id]
        if qty > p.quantity:
            insufficient.append({
                "productId": p.id,
                "name": p.name,
                "requestedQuantity": qty,
                "available": p.quantity,
            })

    if insufficient:
        first = insufficient[0]
        raise ConflictError(
            f"Insufficient stock for {first['name']}: requested "
            f"{first['requestedQuantity']}, available {first['available']}",
            code="InsufficientStock",
            details={"items": insufficient},
        )

    reserved = [
        ReservedLine(
            product_id=line.product_id,
            name=products[line.product_id].name,
            unit_price_cents=products[line.product_id].price_cents,
            quantity=line.quantity,
        )
        for line in lines
    ]

    changes = []
    for product_id, qty in requested.items():
        p = products[product_id]
        new_quantity = p.quantity - qty
        changes.append(StockChange(
            product_id=product_id,
            quantity=qty,
            previous_quantity=p.quantity,
            new_quantity=new_quantity,
            new_status=derive_status(new_quantity, p.status),
        ))

    return ReconciliationPlan(lines=reserved, changes=changes)


def _decrement(change: StockChange, owner_id: int):
    """One conditional UPDATE. Returns the updated (id, quantity, status, sold) row, or None."""
    remaining = Product.quantity - change.quantity
    stmt = (
        update(Product)
        .where(
            Product.id == change.product_id,
            Product.owner_id == owner_id,
            Product.quantity >= change.quantity,
            Product.status != STATUS_DISCONTINUED,
        )
        .values(
            quantity=remaining,
            status=case((remaining == 0, STATUS_OUT_OF_STOCK), else_=STATUS_IN_STOCK),
            sold=Product.sold + change.quantity,
            version_id=Product.version_id + 1,
            updated_at=func.now(),
        )
        .returning(Product.id, Product.quantity, Product.status, Product.sold)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).first()


def commit_stock(plan: ReconciliationPlan, owner_id: int, *, marker=None) -> list[dict]:
    """
    Apply the planned decrements and commit them as one DB transaction.

    marker, if given, is a row inserted in that same transaction (the
    CheckoutAttempt of a keyed checkout). The updated product records
    (id, quantity, status, sold) come from the UPDATEs themselves; nothing
    is read after the commit.

    Raises:
        ConflictError(InsufficientStock): a concurrent checkout took the stock
            first; everything is rolled back
        ConflictError(CheckoutInProgress): another request with the same
            idempotency key committed first; everything is rolled back
    """
    updated = []
    for change in plan.changes:
        row = _decrement(change, owner_id)
        if row is None:
            db.session.rollback()
            raise ConflictError(
                "Stock changed during checkout. Please retry.",
                code="InsufficientStock",
                details={"productId": change.product_id, "requestedQuantity": change.quantity},
            )
        updated.append({"id": row.id, "quantity": row.quantity, "status": row.status, "sold": row.sold})

    if marker is not None:
        db.session.add(marker)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if marker is None:
            raise
        raise ConflictError(
            "A checkout with this idempotency key is already being processed",
            code="CheckoutInProgress",
            details={"idempotencyKey": marker.idempotency_key},
        )

    return updated


def product_records(product_ids: list[str], owner_id: int) -> list[dict]:
    """Current (id, quantity, status, sold) for the given products, in the given order."""
    rows = {
        p.id: p
        for p in db.session.query(Product)
        .filter(Product.id.in_(product_ids), Product.owner_id == owner_id)
        .all()
    } if product_ids else {}
    return [
        {"id": pid, "quantity": rows[pid].quantity, "status": rows[pid].status, "sold": rows[pid].sold}
        for pid in product_ids
        if pid in rows
    ]
