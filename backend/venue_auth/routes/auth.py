# Overview: Flask API routes for venue-owner and sub-user authentication; parses input and returns JSON responses.

"""
Authentication API routes

Two tiers:
- POST /owner/login       email/password      -> gateway token
- POST /login             gateway token + sub-user credentials -> operational + refresh token

Service errors (VenueAuthError) are rendered by the app-level error handler.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_gateway_token, require_operational_token
from ..errors import ValidationError
from ..permissions import permission_codes
from ..services import session_service, sub_user_service, venue_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


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


def _required(data: dict, *fields) -> list:
    missing = [name for name in fields if not data.get(name)]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")
    return [data[name] for name in fields]


@auth_bp.post("/owner/login")
def owner_login_route():
    """Venue-owner login. Returns a gateway token scoped to the owner's venue."""
    data = _json_body()
    email, password = _required(data, "email", "password")
    return jsonify(venue_service.authenticate_venue_owner(email, password, **_client()))


@auth_bp.post("/login")
@require_gateway_token
def login_route():
    """
    Sub-user login at the gateway token's venue.

    SECURITY:
    - Unknown username and wrong password are the same 401
    - Lockout is reported as 423 with retry_after_seconds
    """
    data = _json_body()
    username, password = _required(data, "username", "password")
    result = session_service.authenticate_sub_user(
        g.venue_id,
        username,
        password,
        device_name=data.get("device_name"),
        device_type=data.get("device_type"),
        **_client(),
    )
    return jsonify(result.to_dict())


@auth_bp.post("/refresh")
def refresh_route():
    """Exchange a refresh token (single use) for a new token pair."""
    data = _json_body()
    (refresh_token,) = _required(data, "refresh_token")
    result = session_service.refresh_operational_token(refresh_token, **_client())
    return jsonify(result.to_dict())


@auth_bp.post("/logout")
@require_operational_token
def logout_route():
    result = session_service.logout(g.sub_user_id, **_client())
    return jsonify(result.to_dict())


@auth_bp.post("/logout-all")
@require_operational_token
def logout_all_route():
    """End the sub-user's sessions on every device."""
    result = session_service.logout_all(g.sub_user_id, **_client())
    return jsonify(result.to_dict())


@auth_bp.get("/sessions")
@require_operational_token
def list_sessions_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    sessions = session_service.list_sessions(g.sub_user_id, include_inactive=include_inactive)
    return jsonify({"sessions": sessions, "count": len(sessions)})


@auth_bp.delete("/sessions/<int:session_id>")
@require_operational_token
def logout_session_route(session_id: int):
    result = session_service.logout_session(g.sub_user_id, session_id, **_client())
    return jsonify(result.to_dict())


@auth_bp.post("/change-password")
@require_operational_token
def change_password_route():
    """
    Self-service password change.

    Works while must_change_password is set: a fresh sub-user's token carries
    no effective permissions, and this is the one thing it may do.
    """
    data = _json_body()
    current_password, new_password = _required(data, "current_password", "new_password")
    result = sub_user_service.change_password(
        g.venue_id, g.sub_user_id, current_password, new_password, **_client()
    )
    return jsonify(result.to_dict())


@auth_bp.get("/me")
@require_operational_token
def me_route():
    principal = g.sub_user
    return jsonify({
        "sub_user_id": principal.id,
        "venue_id": principal.venue_id,
        "role": principal.role,
        "permissions": permission_codes(principal.permissions),
        "expires_at": g.claims["exp"],
    })
