# Overview: Request authentication and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service

AUTH_COOKIE_NAME = "authToken"


def _extract_token() -> str | None:
    """Bearer header first, then the session cookie (which may itself carry 'Bearer ')."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None

    cookie = request.cookies.get(AUTH_COOKIE_NAME)
    if cookie:
        if cookie.startswith("Bearer "):
            cookie = cookie[7:]
        return cookie.strip() or None
    return None


def require_auth(f):
    """
    Require authentication.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.session_context: the SessionContext for this request
    - g.auth_token: the presented token (for logout)

    Returns 401 on a missing, invalid, expired or revoked token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _extract_token()
        if not token:
            return jsonify({"success": False, "error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"success": False, "error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.auth_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require the authenticated user to hold `role`. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"success": False, "error": "Authentication required"}), 401
            if g.current_user.role != role:
                return jsonify({
                    "success": False,
                    "error": "Permission denied",
                    "requiredRole": role,
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
