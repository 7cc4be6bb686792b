# backend/shelfpos/routes/admin.py
"""
Admin views: account listing and the recent activity feed.

Account provisioning is a CLI concern (`flask users create`).
"""

from flask import Blueprint, request, jsonify, current_app

from ..models.auth import ROLE_ADMIN
from ..services import activity_service, auth_service
from ..decorators import require_auth, require_role


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/users")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    users = auth_service.list_users()
    return jsonify({"success": True, "data": users, "count": len(users)}), 200


@admin_bp.get("/activities")
@require_auth
@require_role(ROLE_ADMIN)
def list_activities_route():
    """
    Recent activity, newest first.

    Query params:
    - limit: int (optional) - default ACTIVITY_LIMIT_DEFAULT, max ACTIVITY_LIMIT_MAX
    """
    limit = request.args.get("limit", type=int) or current_app.config["ACTIVITY_LIMIT_DEFAULT"]
    limit = max(1, min(limit, current_app.config["ACTIVITY_LIMIT_MAX"]))

    items = activity_service.list_activities(limit)
    return jsonify({"success": True, "data": items, "count": len(items)}), 200
