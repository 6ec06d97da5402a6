# Overview: Health endpoint and staff maintenance routes (expiry sweep).

import time

from flask import Blueprint, current_app, jsonify

from ..decorators import require_auth, require_staff
from ..extensions import db
from ..models import MembershipPlan, Title
from ..services import expiry_service
from bookstack.time_utils import utcnow


system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity and that plans are seeded."""
    start_time = time.time()
    try:
        plan_count = db.session.query(MembershipPlan).count()
        title_count = db.session.query(Title).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if plan_count else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"membership_plans": plan_count, "titles": title_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy, or degraded (no membership plans seeded)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200
    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status


@system_bp.post("/api/entitlements/sweep")
@require_auth
@require_staff
def sweep_entitlements_route():
    """Run the expiry sweep now (normally scheduled)."""
    try:
        return jsonify(expiry_service.sweep_expired_entitlements()), 200
    except Exception:
        current_app.logger.exception("Failed to sweep expired entitlements")
        return jsonify({"error": "Internal server error"}), 500
