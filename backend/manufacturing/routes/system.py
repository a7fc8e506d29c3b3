# Overview: System health endpoint for the manufacturing service.

# backend/manufacturing/routes/system.py
"""
System health endpoint.

Checks database connectivity and that the BOM graph is free of cycles
(cycles can only appear through imported or legacy data).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import BillOfMaterials, ProductionOrder
from ..services import bom_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        bom_count = db.session.query(BillOfMaterials).count()
        order_count = db.session.query(ProductionOrder).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "boms": bom_count,
                "production_orders": order_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_bom_graph_health() -> dict:
    """Degraded (not unhealthy) when cycles exist: orders on other BOMs still work."""
    start_time = time.time()
    try:
        cycles = bom_service.find_cycles()
        elapsed_ms = (time.time() - start_time) * 1000
        if cycles:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(cycles)} circular BOM dependency(ies) found",
                "details": {"cycles": cycles},
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("BOM graph health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "BOM graph error"
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
    graph_health = check_bom_graph_health()

    all_checks = [database_health, graph_health]
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
            "bom_graph": graph_health,
        }
    }
    return response, http_status
