# backend/shelfpos/routes/products.py
"""
Product management routes.

All operations are scoped to the caller's own products; another account's
product is reported as 404. Every mutation returns the updated record.
"""
from flask import Blueprint, current_app, request, g

from ..models import Product
from ..models.inventory import VALID_CATEGORIES, VALID_STATUSES
from ..services import products_service
from ..validation import (
    ApiError,
    ModelValidationPolicy,
    ValidationError,
    validate_payload,
    enforce_rules_product,
)
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "category", "quantity", "price", "productImageUrl"},
    required_on_create={"name", "description", "category", "quantity", "price"},
    column_map={"productImageUrl": "product_image_url"},
    amount_fields={"price": "price_cents"},
    choices={"category": VALID_CATEGORIES},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _query_choice(name: str, allowed: list[str]) -> str | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    value = raw.upper()
    if value not in allowed:
        raise ValidationError(f"Invalid {name}: must be one of {', '.join(allowed)}")
    return value


@products_bp.get("")
@require_auth
def list_products():
    """
    List the caller's products.

    Query params:
    - status: IN_STOCK | OUT_OF_STOCK | DISCONTINUED (optional)
    - category: one of the product categories (optional)
    - include_archived: "true" to include DISCONTINUED products
    """
    try:
        status = _query_choice("status", VALID_STATUSES)
        category = _query_choice("category", VALID_CATEGORIES)
    except ValidationError as e:
        return e.to_response()

    include_archived = request.args.get("include_archived", "false").lower() == "true"

    result = products_service.list_products(
        g.current_user.id,
        status=status,
        category=category,
        include_archived=include_archived,
    )
    return {"success": True, "data": result["items"], "count": result["count"]}


@products_bp.get("/<product_id>")
@require_auth
def get_product(product_id: str):
    try:
        p = products_service.get_owned_product(product_id, g.current_user.id)
    except ApiError as e:
        return e.to_response()
    return {"success": True, "data": p.to_dict()}


@products_bp.post("")
@require_auth
def create_product_route():
    """Create a product owned by the caller. Status is derived from quantity."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch, owner=g.current_user)
    except ApiError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"success": False, "error": "Internal server error"}, 500

    return {"success": True, "message": "Product added successfully", "data": created}, 201


@products_bp.put("/<product_id>")
@require_auth
def update_product_route(product_id: str):
    """Edit a product. DISCONTINUED status survives quantity edits."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch, owner=g.current_user)
    except ApiError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"success": False, "error": "Internal server error"}, 500

    return {"success": True, "message": "Product updated successfully", "data": updated}, 200


@products_bp.post("/<product_id>/archive")
@require_auth
def archive_product_route(product_id: str):
    try:
        archived = products_service.archive_product(product_id=product_id, owner=g.current_user)
    except ApiError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to archive product")
        return {"success": False, "error": "Internal server error"}, 500

    return {"success": True, "message": "Product archived successfully", "data": archived}, 200


@products_bp.post("/<product_id>/restore")
@require_auth
def restore_product_route(product_id: str):
    try:
        restored = products_service.restore_product(product_id=product_id, owner=g.current_user)
    except ApiError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to restore product")
        return {"success": False, "error": "Internal server error"}, 500

    return {"success": True, "message": "Product restored successfully", "data": restored}, 200
