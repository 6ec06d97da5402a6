# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .models.accounts import STAFF_ROLES
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets:
    - g.current_user: the authenticated User
    - g.session_token: the plaintext token (for logout)

    Returns 401 if the header is missing, or the token is invalid, expired,
    revoked, or belongs to a deactivated account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of `roles`. Must be stacked under @require_auth."""
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role not in allowed:
                return jsonify({"error": "Permission denied", "required_roles": sorted(allowed)}), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator


require_staff = require_role(*STAFF_ROLES)
