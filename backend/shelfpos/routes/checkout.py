# backend/shelfpos/routes/checkout.py
"""Checkout API route."""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import checkout_service
from ..validation import ApiError
from ..decorators import require_auth


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.route("", methods=["POST", "PATCH"])
@require_auth
def checkout_route():
    """
    Ring up a cart.

    Body: {"items": [{"productId": str, "quantity": int}], "amountPaid": number,
           "idempotencyKey": str (optional)}

    200 with the receipt and the updated product records; 400/404/409 for
    rejected carts (nothing written); 500 with an incident reference when
    the receipt could not be recorded.
    """
    payload = request.get_json(silent=True)

    try:
        result = checkout_service.checkout(
            payload,
            actor=g.current_user,
            currency=current_app.config["POS_CURRENCY"],
        )
    except ApiError as e:
        body, status = e.to_response()
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to checkout")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    return jsonify({
        "success": True,
        "message": "Checkout successful",
        "data": result.to_dict(),
    }), 200
