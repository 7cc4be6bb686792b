from __future__ import annotations

from ..extensions import db
from ..identifiers import new_record_id, RECORD_ID_LENGTH
from ..time_utils import to_utc_z


# =============================================================================
# PRODUCT STATUS / CATEGORY (CONSTANTS)
# =============================================================================

STATUS_IN_STOCK = "IN_STOCK"
STATUS_OUT_OF_STOCK = "OUT_OF_STOCK"
STATUS_DISCONTINUED = "DISCONTINUED"

VALID_STATUSES = [
    STATUS_IN_STOCK,
    STATUS_OUT_OF_STOCK,
    STATUS_DISCONTINUED,
]

VALID_CATEGORIES = [
    "FOOD",
    "BEVERAGE",
    "CLEANING",
    "PERSONAL_CARE",
    "SCHOOL_SUPPLIES",
    "OTHER",
]


class Product(db.Model):
    """
    Product master data, including the live stock level.

    Quantity is a mutable column here (not ledger-derived): checkout decrements
    it with a single conditional UPDATE so concurrent registers cannot oversell.

    Status follows quantity except when DISCONTINUED, which is sticky until an
    explicit restore. See products_service.derive_status.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_owner_name", "owner_id", "name"),
        db.Index("ix_products_owner_status", "owner_id", "status"),
    )

    id = db.Column(db.String(RECORD_ID_LENGTH), primary_key=True, default=new_record_id)

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    category = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (API speaks decimal amounts)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_IN_STOCK, index=True)

    # Units sold through checkout
    sold = db.Column(db.Integer, nullable=False, default=0)

    product_image_url = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("User", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} qty={self.quantity} status={self.status}>"

    @property
    def price(self) -> float:
        return round(self.price_cents / 100, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "quantity": self.quantity,
            "price": self.price,
            "status": self.status,
            "sold": self.sold,
            "productImageUrl": self.product_image_url,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
