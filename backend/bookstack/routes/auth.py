# Overview: Flask API routes for auth and addresses; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import auth_service, session_service
from ..validation import DomainError


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
addresses_bp = Blueprint("addresses", __name__, url_prefix="/api/addresses")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Request body: {"email": "...", "password": "..."}
    The token must be sent as "Authorization: Bearer <token>".
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if user is None:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        }), 200
    except Exception:
        current_app.logger.exception("Failed to log in")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@addresses_bp.get("")
@require_auth
def list_addresses_route():
    addresses = auth_service.list_addresses(g.current_user.id)
    return jsonify({"addresses": [a.to_dict() for a in addresses]}), 200


@addresses_bp.post("")
@require_auth
def add_address_route():
    """Request body: {"line1": "...", "city": "...", "postal_code": "...", "country": "..."}"""
    try:
        address = auth_service.add_address(g.current_user.id, request.get_json(silent=True))
        return jsonify({"address": address.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add address")
        return jsonify({"error": "Internal server error"}), 500
