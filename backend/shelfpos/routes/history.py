# backend/shelfpos/routes/history.py
"""Purchase history (receipts) routes. Read-only."""

from flask import Blueprint, jsonify, g, current_app

from ..services import transaction_service
from ..validation import ApiError
from ..decorators import require_auth


history_bp = Blueprint("history", __name__, url_prefix="/api/history")


@history_bp.get("")
@require_auth
def list_history_route():
    """Caller's receipts, newest first, capped at HISTORY_LIMIT."""
    items = transaction_service.list_history(g.current_user.id, current_app.config["HISTORY_LIMIT"])
    return jsonify({"success": True, "data": items, "count": len(items)}), 200


@history_bp.get("/<transaction_id>")
@require_auth
def get_history_route(transaction_id: str):
    try:
        receipt = transaction_service.get_transaction(g.current_user.id, transaction_id)
    except ApiError as e:
        body, status = e.to_response()
        return jsonify(body), status
    return jsonify({"success": True, "data": receipt}), 200
