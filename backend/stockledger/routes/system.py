# backend/stockledger/routes/system.py
"""
System health and audit trail endpoints.

/health needs no token so load balancers and uptime checks can call it.
"""

import time
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from ..extensions import db
from ..services import audit_service
from ..services.stock_ledger_service import verify_ledger
from ..time_utils import utcnow
from ..decorators import require_auth

system_bp = Blueprint("system", __name__, url_prefix="/api/v1")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_ledger_health() -> dict:
    """Degraded (still operational) when any product's stock disagrees with its movements."""
    start_time = time.time()
    try:
        mismatches = verify_ledger()
        elapsed_ms = (time.time() - start_time) * 1000
        if mismatches:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(mismatches)} product(s) out of balance",
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger check error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = (
        check_ledger_health()
        if database_health["status"] == "healthy"
        else {"status": "unhealthy", "error": "Skipped: database unavailable"}
    )

    all_checks = [database_health, ledger_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        },
    }
    return jsonify(response), http_status


@system_bp.get("/audit-logs")
@require_auth
def list_audit_logs_route():
    """
    Query params:
    - model_type: e.g. Purchase, Sale, StockMovement, Product
    - model_id: int
    - action: created | updated | deleted
    - limit: default 200, max 1000
    """
    limit = request.args.get("limit", 200, type=int)
    limit = max(1, min(limit, 1000))
    logs = audit_service.list_audit_logs(
        model_type=request.args.get("model_type") or None,
        model_id=request.args.get("model_id", type=int),
        action=request.args.get("action") or None,
        limit=limit,
    )
    return jsonify({"items": [entry.to_dict() for entry in logs], "count": len(logs)})
