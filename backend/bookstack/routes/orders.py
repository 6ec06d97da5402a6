# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Purchasers place, view, cancel and return their own orders
- Staff list all orders and drive status transitions (single or bulk)
- Status changes go through order_service; side effects never run here

SECURITY:
- All routes require a bearer token
- Status changes and the global listing require a staff role
- Non-staff users only ever see their own orders (404 otherwise)
"""

from flask import Blueprint, Response, current_app, g, jsonify, request

from ..decorators import require_auth, require_staff
from ..services import order_service
from ..validation import DomainError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# PURCHASER
# =============================================================================

@orders_bp.post("")
@require_auth
def place_order_route():
    """
    Check out a cart (cash on delivery).

    Request body:
    {
        "address_id": 3,
        "items": [{"title_id": 12, "quantity": 2}, {"title_id": 7, "quantity": 1}]
    }

    Returns:
        201: Order created with PENDING status
        400: Empty cart or malformed items
        404: Address or title not found
        409: Insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.place_order(
            g.current_user.id,
            data.get("items"),
            data.get("address_id"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/mine")
@require_auth
def list_my_orders_route():
    try:
        orders = order_service.list_user_orders(g.current_user.id, status=request.args.get("status"))
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, viewer=g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Cancel your own PENDING/PROCESSING order; stock is released."""
    try:
        order = order_service.cancel_own_order(order_id, g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/return")
@require_auth
def request_return_route(order_id: int):
    """
    Request a return/exchange for a delivered order.

    Request body: {"reason": "Damaged spine"}

    Returns:
        200: Order moved to RETURN_REQUESTED
        400: Missing reason
        409: Not delivered, or return window expired
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.request_return(order_id, g.current_user.id, data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to request return")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/refund-details")
@require_auth
def submit_refund_details_route(order_id: int):
    """
    Submit bank details for an initiated refund.

    Request body:
    {
        "account_name": "Jane Reader",
        "bank_name": "First Bank",
        "account_number": "000123456789",
        "routing_code": "FBNK0001"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.submit_refund_details(order_id, g.current_user.id, data)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit refund details")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/invoice")
@require_auth
def download_invoice_route(order_id: int):
    try:
        content, content_type, filename = order_service.render_order_invoice(order_id, g.current_user)
        return Response(
            content,
            mimetype=content_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to render invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STAFF
# =============================================================================

@orders_bp.get("")
@require_auth
@require_staff
def list_orders_route():
    """
    List orders with per-status counts.

    Query params: status, limit (default 50, max 200), offset
    """
    try:
        result = order_service.list_orders(
            status=request.args.get("status"),
            limit=request.args.get("limit", 50, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify(result), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_staff
def transition_order_route(order_id: int):
    """
    Move an order to a new status.

    Request body: {"status": "SHIPPED"}

    Returns:
        200: Order (unchanged if it was already in that status)
        400: Unknown status
        404: Order not found
        409: Illegal transition, return window expired, refund details missing
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.transition_order(order_id, data.get("status"), g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/bulk-status")
@require_auth
@require_staff
def bulk_transition_route():
    """
    Apply one status to many orders; each is validated independently.

    Request body: {"order_ids": [1, 2, 3], "status": "PROCESSING"}

    Returns:
        200: {"modified_count": n, "skipped_count": m, "skipped": [{"order_id", "reason"}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = order_service.bulk_transition_orders(
            data.get("order_ids"),
            data.get("status"),
            g.current_user.id,
        )
        return jsonify(result), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk update order status")
        return jsonify({"error": "Internal server error"}), 500
