# Overview: Flask API routes for direct physical borrows and fines.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_staff
from ..services import borrow_service
from ..validation import DomainError, require_positive_int


borrows_bp = Blueprint("borrows", __name__, url_prefix="/api/borrows")


@borrows_bp.post("")
@require_auth
def issue_borrow_route():
    """
    Borrow one physical copy.

    Request body: {"title_id": 12, "days": 7 (optional, defaults to the plan's period)}
    """
    try:
        data = request.get_json(silent=True) or {}
        title_id = require_positive_int(data.get("title_id"), "title_id")
        borrow = borrow_service.issue_copy(g.current_user.id, title_id, days=data.get("days"))
        return jsonify({"borrow": borrow.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to issue borrow")
        return jsonify({"error": "Internal server error"}), 500


@borrows_bp.get("/mine")
@require_auth
def list_my_borrows_route():
    try:
        borrows = borrow_service.list_user_borrows(g.current_user.id)
        return jsonify({"borrows": [b.to_dict() for b in borrows]}), 200
    except Exception:
        current_app.logger.exception("Failed to list borrows")
        return jsonify({"error": "Internal server error"}), 500


@borrows_bp.post("/<int:borrow_id>/return-request")
@require_auth
def request_return_route(borrow_id: int):
    try:
        borrow = borrow_service.request_return(borrow_id, g.current_user.id)
        return jsonify({"borrow": borrow.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to request borrow return")
        return jsonify({"error": "Internal server error"}), 500


@borrows_bp.post("/<int:borrow_id>/pay-fine")
@require_auth
def pay_fine_route(borrow_id: int):
    try:
        borrow = borrow_service.pay_fine(borrow_id, g.current_user.id)
        return jsonify({"message": "Fine paid successfully", "borrow": borrow.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to pay fine")
        return jsonify({"error": "Internal server error"}), 500


@borrows_bp.post("/<int:borrow_id>/renew")
@require_auth
def renew_borrow_route(borrow_id: int):
    try:
        borrow = borrow_service.renew_borrow(borrow_id, g.current_user.id)
        return jsonify({"message": "Book renewed successfully", "borrow": borrow.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to renew borrow")
        return jsonify({"error": "Internal server error"}), 500


@borrows_bp.post("/<int:borrow_id>/accept-return")
@require_auth
@require_staff
def accept_return_route(borrow_id: int):
    try:
        borrow = borrow_service.accept_return(borrow_id, actor_id=g.current_user.id)
        return jsonify({"borrow": borrow.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to accept borrow return")
        return jsonify({"error": "Internal server error"}), 500
