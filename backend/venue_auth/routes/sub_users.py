# Overview: Flask API routes for sub-user management and the venue audit log; parses input and returns JSON responses.

"""
Sub-user management routes (venue scoped).

Provides endpoints for:
- First-admin setup (gateway token)
- Sub-user CRUD and password reset (operational token)
- Audit log query, per-sub-user activity summary, chain verification

Management permissions are decided by the service layer on durable state;
the decorators only establish identity and venue scope.
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, g

from ..decorators import require_gateway_token, require_operational_token, require_venue_permission
from ..errors import ValidationError
from ..permissions import VenuePermission
from ..services import audit_service, sub_user_service
from ..services.registry import get_services
from ..time_utils import parse_iso_datetime


sub_users_bp = Blueprint("sub_users", __name__, url_prefix="/api/venues/<int:venue_id>")


def _client():
    return {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    return data


def _datetime_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError as exc:
        raise ValidationError(f"{name} must be an ISO-8601 datetime") from exc


# =============================================================================
# SETUP
# =============================================================================

@sub_users_bp.post("/setup")
@require_gateway_token
def create_first_admin(venue_id: int):
    """
    Create the founder admin. Only the venue owner (gateway token) can do
    this, and only once.

    Request body:
    - username: str (required)
    - password: str (required)
    """
    data = _json_body()
    if not data.get("username") or not data.get("password"):
        raise ValidationError("username and password required")
    result = sub_user_service.create_first_admin(
        venue_id, data["username"], data["password"], **_client()
    )
    return jsonify(result.to_dict()), 201


# =============================================================================
# SUB-USER MANAGEMENT
# =============================================================================

@sub_users_bp.get("/sub-users")
@require_operational_token
def list_sub_users(venue_id: int):
    """
    Query params:
    - include_inactive: bool (default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    sub_users = sub_user_service.list_sub_users(
        venue_id, g.sub_user_id, include_inactive=include_inactive
    )
    return jsonify({"sub_users": sub_users, "count": len(sub_users)})


@sub_users_bp.get("/sub-users/<int:sub_user_id>")
@require_operational_token
def get_sub_user(venue_id: int, sub_user_id: int):
    return jsonify({"sub_user": sub_user_service.get_sub_user(venue_id, g.sub_user_id, sub_user_id)})


@sub_users_bp.post("/sub-users")
@require_operational_token
def create_sub_user(venue_id: int):
    """
    Request body:
    - username: str (required)
    - password: str (required)
    - role: "Admin" | "Coworker" (required)
    - permissions: list of permission codes or an integer bitmask (optional,
      defaults to the role's defaults)
    - must_change_password: bool (default true)
    """
    data = _json_body()
    missing = [name for name in ("username", "password", "role") if not data.get(name)]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")

    result = sub_user_service.create_sub_user(
        venue_id,
        g.sub_user_id,
        data["username"],
        data["password"],
        data["role"],
        data.get("permissions"),
        must_change_password=bool(data.get("must_change_password", True)),
        **_client(),
    )
    return jsonify(result.to_dict()), 201


@sub_users_bp.patch("/sub-users/<int:sub_user_id>")
@require_operational_token
def update_sub_user(venue_id: int, sub_user_id: int):
    """
    Request body (all optional):
    - role
    - permissions
    - is_active: bool
    """
    data = _json_body()
    is_active = data.get("is_active")
    if is_active is not None and not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean")

    result = sub_user_service.update_sub_user(
        venue_id,
        g.sub_user_id,
        sub_user_id,
        role=data.get("role"),
        permissions=data.get("permissions"),
        is_active=is_active,
        **_client(),
    )
    return jsonify(result.to_dict())


@sub_users_bp.delete("/sub-users/<int:sub_user_id>")
@require_operational_token
def delete_sub_user(venue_id: int, sub_user_id: int):
    """Soft delete. The sub-user's sessions end immediately."""
    result = sub_user_service.delete_sub_user(venue_id, g.sub_user_id, sub_user_id, **_client())
    return jsonify(result.to_dict())


@sub_users_bp.post("/sub-users/<int:sub_user_id>/reset-password")
@require_operational_token
def reset_password(venue_id: int, sub_user_id: int):
    """
    Request body:
    - new_password: str (required)
    - must_change_password: bool (default true)
    """
    data = _json_body()
    if not data.get("new_password"):
        raise ValidationError("new_password required")
    result = sub_user_service.reset_password(
        venue_id,
        g.sub_user_id,
        sub_user_id,
        data["new_password"],
        must_change_password=bool(data.get("must_change_password", True)),
        **_client(),
    )
    return jsonify(result.to_dict())


# =============================================================================
# AUDIT LOG
# =============================================================================

@sub_users_bp.get("/audit-logs")
@require_operational_token
@require_venue_permission(VenuePermission.VIEW_AUDIT_LOGS)
def query_audit_log(venue_id: int):
    """
    Query params:
    - start, end: ISO-8601 datetimes
    - sub_user_id: int
    - action: substring match on the action name
    - entity_type: exact match
    - page (default 1), page_size (default 50, max 200)
    """
    result = audit_service.query_audit_log(
        venue_id,
        start=_datetime_arg("start"),
        end=_datetime_arg("end"),
        sub_user_id=request.args.get("sub_user_id", type=int),
        action=request.args.get("action"),
        entity_type=request.args.get("entity_type"),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 50, type=int),
    )
    return jsonify(result)


@sub_users_bp.get("/audit-logs/verify")
@require_operational_token
@require_venue_permission(VenuePermission.VIEW_AUDIT_LOGS)
def verify_audit_chain(venue_id: int):
    return jsonify(audit_service.verify_chain(venue_id))


@sub_users_bp.get("/sub-users/<int:sub_user_id>/activity")
@require_operational_token
@require_venue_permission(VenuePermission.VIEW_COWORKER_ACTIVITY)
def sub_user_activity(venue_id: int, sub_user_id: int):
    """
    Per-action counts for one sub-user.

    Query params:
    - start, end: ISO-8601 datetimes (default: the last 30 days)
    """
    end = _datetime_arg("end") or get_services().clock.now()
    start = _datetime_arg("start") or end - timedelta(days=30)
    return jsonify(audit_service.activity_summary(venue_id, sub_user_id, start, end))
