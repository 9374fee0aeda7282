# backend/venue_auth/routes/system.py
"""
System health and permission catalogue endpoints.
"""

import time
from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import SubUserSession, Venue
from ..permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    SubUserRole,
    get_permission_definition,
    permission_codes,
    forbidden_for_role,
)
from ..services.registry import get_services

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with two cheap counts.
    """
    start_time = time.time()
    try:
        venue_count = db.session.query(Venue).count()
        active_sessions = db.session.query(SubUserSession).filter(
            SubUserSession.is_active.is_(True)
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "venues": venue_count,
                "active_sessions": active_sessions,
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


def check_cache_health() -> dict:
    """
    Ping the cache backend.

    An unreachable cache only degrades the service: authorization falls back
    to the engine, but revocation of operational tokens rests on the durable
    session table alone.
    """
    start_time = time.time()
    backend = get_services().cache
    try:
        reachable = backend.ping()
    except Exception:
        current_app.logger.exception("Cache health check failed")
        reachable = False

    elapsed_ms = (time.time() - start_time) * 1000
    result = {
        "status": "healthy" if reachable else "degraded",
        "latency_ms": round(elapsed_ms, 2),
        "details": {"backend": type(backend).__name__},
    }
    if not reachable:
        result["warning"] = "Cache backend unreachable"
    return result


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (cache down)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    cache_health = check_cache_health()

    all_checks = [database_health, cache_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": get_services().clock.now().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "cache": cache_health,
        }
    }
    return response, http_status


@system_bp.get("/api/permissions")
def list_permissions():
    """Permission catalogue plus the default set and ceiling of each role."""
    permissions = [get_permission_definition(row[0].name) for row in PERMISSION_DEFINITIONS]
    roles = {
        role.value: {
            "default_permissions": permission_codes(DEFAULT_ROLE_PERMISSIONS[role]),
            "forbidden_permissions": permission_codes(forbidden_for_role(role)),
        }
        for role in SubUserRole
    }
    return jsonify({"permissions": permissions, "roles": roles})
