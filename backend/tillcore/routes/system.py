# Overview: Health endpoint for load balancers and till front-ends.

"""
GET /api/health

The database is the only hard dependency: when it cannot be queried the
endpoint answers 503. An unconfigured payment gateway only disables non-cash
checkout, so it is reported as "degraded" with a 200.
"""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
        db.session.rollback()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Health check: database unreachable")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": "Database error"}
    return {"status": "healthy", "latency_ms": _elapsed_ms(started)}


def check_collaborators() -> dict:
    gateway = current_app.extensions["tillcore.payment_gateway"]
    sender = current_app.extensions["tillcore.notification_sender"]
    gateway_ready = bool(gateway.base_url and gateway.secret_key)
    return {
        "status": "healthy" if gateway_ready else "degraded",
        "payment_gateway_configured": gateway_ready,
        "notification_sender": type(sender).__name__,
    }


@system_bp.get("/health")
def health():
    checks = {
        "database": check_database(),
        "collaborators": check_collaborators(),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return jsonify({"status": overall, "timestamp": to_utc_z(utcnow()), "checks": checks}), http_status
