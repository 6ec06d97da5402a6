# Overview: Flask API routes for titles; access checks, content streaming, stock.

from flask import Blueprint, Response, current_app, g, jsonify, stream_with_context

from ..decorators import require_auth
from ..services import access_service, stock_service
from ..validation import DomainError


titles_bp = Blueprint("titles", __name__, url_prefix="/api/titles")


@titles_bp.get("/<int:title_id>/access")
@require_auth
def check_access_route(title_id: int):
    """
    Returns:
        200: {"authorized": bool, "reason": PLAN_INSUFFICIENT | NEVER_GRANTED | EXPIRED_NOT_RENEWED | null,
              "expires_at": ...}
    """
    try:
        decision = access_service.check_access(g.current_user.id, title_id)
        return jsonify(decision.to_dict()), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check access")
        return jsonify({"error": "Internal server error"}), 500


@titles_bp.get("/<int:title_id>/content")
@require_auth
def read_content_route(title_id: int):
    try:
        chunks, content_type, length = access_service.open_content(g.current_user.id, title_id)
        return Response(
            stream_with_context(chunks),
            mimetype=content_type,
            headers={"Content-Length": str(length), "Content-Disposition": "inline"},
        )
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open title content")
        return jsonify({"error": "Internal server error"}), 500


@titles_bp.get("/<int:title_id>/stock")
@require_auth
def stock_route(title_id: int):
    try:
        return jsonify(stock_service.get_stock(title_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get stock")
        return jsonify({"error": "Internal server error"}), 500
