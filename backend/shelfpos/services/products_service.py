# backend/shelfpos/services/products_service.py
"""
Product Store

All product operations are owner-scoped: a product that belongs to another
account is reported exactly like a missing one.

STATUS RULE (single source of truth, see derive_status):
- DISCONTINUED is sticky; only restore_product clears it
- quantity == 0 -> OUT_OF_STOCK
- quantity > 0  -> IN_STOCK
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product, User
from ..models.activity import (
    ACTION_ADD_PRODUCT,
    ACTION_EDIT_PRODUCT,
    ACTION_ARCHIVE_PRODUCT,
    ACTION_UNARCHIVE_PRODUCT,
)
from ..models.inventory import (
    STATUS_IN_STOCK,
    STATUS_OUT_OF_STOCK,
    STATUS_DISCONTINUED,
)
from ..identifiers import is_record_id
from ..validation import ConflictError, NotFoundError
from .activity_service import append_activity
from .concurrency import run_with_retry

PRODUCT_MUTABLE_FIELDS = {
    "name", "description", "category", "quantity", "price_cents", "product_image_url",
}


def derive_status(quantity: int, previous_status: str | None = None) -> str:
    """Status for a product holding `quantity` units, given its current status."""
    if previous_status == STATUS_DISCONTINUED:
        return STATUS_DISCONTINUED
    if quantity == 0:
        return STATUS_OUT_OF_STOCK
    return STATUS_IN_STOCK


def restored_status(quantity: int) -> str:
    """Status after an explicit restore: re-derived from quantity alone."""
    return derive_status(quantity, previous_status=None)


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)
    p.status = derive_status(p.quantity, p.status)


def get_owned_product(product_id: str, owner_id: int) -> Product:
    """
    Load a product owned by owner_id.

    Raises:
        NotFoundError: unknown id, malformed id, or product of another account
    """
    if not is_record_id(product_id):
        raise NotFoundError("Product not found", details={"productId": product_id})

    p = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.owner_id == owner_id)
        .first()
    )
    if p is None:
        raise NotFoundError("Product not found", details={"productId": product_id})
    return p


def list_products(
    owner_id: int,
    *,
    status: str | None = None,
    category: str | None = None,
    include_archived: bool = False,
) -> dict:
    """
    Owner-scoped product listing.

    Archived (DISCONTINUED) products are hidden unless include_archived is set
    or status=DISCONTINUED is asked for explicitly.
    """
    q = db.session.query(Product).filter(Product.owner_id == owner_id)

    if status is not None:
        q = q.filter(Product.status == status)
    elif not include_archived:
        q = q.filter(Product.status != STATUS_DISCONTINUED)

    if category is not None:
        q = q.filter(Product.category == category)

    products = q.order_by(Product.name.asc(), Product.id.asc()).all()
    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
    }


def create_product(*, patch: dict, owner: User) -> dict:
    """
    Create a product from a validated patch.

    Status is always derived from the initial quantity.
    """
    p = Product(owner_id=owner.id, quantity=0, price_cents=0)
    apply_product_patch(p, patch)
    p.status = derive_status(p.quantity)

    db.session.add(p)
    db.session.flush()  # ensure p.id exists before the activity row

    append_activity(action=ACTION_ADD_PRODUCT, actor=owner, entity_id=p.id)

    db.session.commit()
    return p.to_dict()


def update_product(*, product_id: str, patch: dict, owner: User) -> dict:
    """
    Edit a product.

    Raises:
        NotFoundError: product missing or owned by another account
    """
    def _op():
        p = get_owned_product(product_id, owner.id)
        apply_product_patch(p, patch)
        append_activity(action=ACTION_EDIT_PRODUCT, actor=owner, entity_id=p.id)
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)


def archive_product(*, product_id: str, owner: User) -> dict:
    """
    Archive (discontinue) a product. Archived products cannot be sold.

    Raises:
        NotFoundError: product missing or owned by another account
        ConflictError: product already archived
    """
    def _op():
        p = get_owned_product(product_id, owner.id)
        if p.status == STATUS_DISCONTINUED:
            raise ConflictError("Product is already archived", code="AlreadyArchived")

        p.status = STATUS_DISCONTINUED
        append_activity(action=ACTION_ARCHIVE_PRODUCT, actor=owner, entity_id=p.id)
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)


def restore_product(*, product_id: str, owner: User) -> dict:
    """
    Restore an archived product; status is re-derived from current quantity.

    Raises:
        NotFoundError: product missing or owned by another account
        ConflictError: product is not archived
    """
    def _op():
        p = get_owned_product(product_id, owner.id)
        if p.status != STATUS_DISCONTINUED:
            raise ConflictError("Product is not archived and cannot be restored", code="NotArchived")

        p.status = restored_status(p.quantity)
        append_activity(action=ACTION_UNARCHIVE_PRODUCT, actor=owner, entity_id=p.id)
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)
