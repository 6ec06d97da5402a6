# Overview: Flask API routes for the readlist (entitlement requests, quota, reading progress).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..extensions import db
from ..services import entitlement_service, quota_service
from ..validation import DomainError, require_positive_int


readlist_bp = Blueprint("readlist", __name__, url_prefix="/api/readlist")


@readlist_bp.post("")
@require_auth
def add_to_readlist_route():
    """
    Request time-boxed reading access to a title.

    Request body: {"title_id": 12}

    Returns:
        201: Entitlement record (new or reactivated)
        403: UPGRADE_REQUIRED (restricted title)
        404: Title not found
        409: ALREADY_ACTIVE or QUOTA_EXCEEDED (details carry limit/used)
    """
    try:
        data = request.get_json(silent=True) or {}
        title_id = require_positive_int(data.get("title_id"), "title_id")
        record = quota_service.request_entitlement(g.current_user.id, title_id)
        return jsonify({"entitlement": record.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add title to readlist")
        return jsonify({"error": "Internal server error"}), 500


@readlist_bp.get("")
@require_auth
def list_readlist_route():
    try:
        records = entitlement_service.list_for_user(g.current_user.id)
        return jsonify({"entitlements": [r.to_dict() for r in records]}), 200
    except Exception:
        current_app.logger.exception("Failed to list readlist")
        return jsonify({"error": "Internal server error"}), 500


@readlist_bp.get("/quota")
@require_auth
def quota_status_route():
    try:
        return jsonify(quota_service.get_quota_status(g.current_user.id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute quota status")
        return jsonify({"error": "Internal server error"}), 500


@readlist_bp.get("/<int:title_id>/progress")
@require_auth
def get_progress_route(title_id: int):
    try:
        return jsonify(entitlement_service.get_progress(g.current_user.id, title_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get reading progress")
        return jsonify({"error": "Internal server error"}), 500


@readlist_bp.put("/<int:title_id>/progress")
@require_auth
def save_progress_route(title_id: int):
    """
    Save reading progress.

    Request body (all optional): {"last_page": 42, "bookmarks": [3, 17], "status": "COMPLETED"}
    """
    try:
        data = request.get_json(silent=True) or {}
        entitlement_service.save_progress(
            g.current_user.id,
            title_id,
            last_page=data.get("last_page"),
            bookmarks=data.get("bookmarks"),
            status=data.get("status"),
        )
        db.session.commit()
        return jsonify(entitlement_service.get_progress(g.current_user.id, title_id)), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to save reading progress")
        return jsonify({"error": "Internal server error"}), 500
