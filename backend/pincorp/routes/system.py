# backend/pincorp/routes/system.py
"""
System health, cache refresh and batch reconciliation endpoints.
"""

import time

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from ..container import get_services
from ..errors import PincorpError
from ..extensions import db
from .common import error_response, serialize

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and details.
    """
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


@system_bp.get("/health")
def health_route():
    services = get_services()
    if services.offline:
        return jsonify({"status": "degraded", "offline": True}), 200
    database = check_database_health()
    pending = len(services.journal.pending())
    status = database["status"]
    if status == "healthy" and pending:
        status = "degraded"
    code = 200 if status != "unhealthy" else 503
    return jsonify({
        "status": status,
        "offline": False,
        "database": database,
        "pending_batches": pending,
    }), code


@system_bp.post("/refresh")
def refresh_route():
    """Resync every cached collection from the store."""
    try:
        return jsonify({"refreshed": get_services().refresh_all()}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refresh collections")
        return jsonify({"error": "Internal server error"}), 500


@system_bp.get("/batches")
def pending_batches_route():
    services = get_services()
    services.repos.write_batches.refresh()
    return jsonify({"batches": serialize(services.journal.pending())}), 200


@system_bp.post("/batches/reconcile")
def reconcile_batches_route():
    """Reverse failed batches; ?batch_id= limits it to one."""
    try:
        reports = get_services().journal.reconcile(request.args.get("batch_id"))
        return jsonify({"reconciled": reports}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile batches")
        return jsonify({"error": "Internal server error"}), 500


@system_bp.post("/commitments/reconcile")
def reconcile_commitments_route():
    try:
        fixed = get_services().commitments.reconcile()
        return jsonify({"fixed": fixed}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile commitments")
        return jsonify({"error": "Internal server error"}), 500
