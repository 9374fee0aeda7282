# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import TokenInvalidError
from .services import session_service
from .services.registry import get_services


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _unauthenticated(message: str = "Authentication required"):
    return jsonify({"error": message, "code": TokenInvalidError.kind.value}), 401


def _is_authenticated() -> bool:
    return hasattr(g, "sub_user") and hasattr(g, "venue_id")


def require_gateway_token(f):
    """
    Require a venue-owner gateway token.

    Sets:
    - g.gateway_claims: verified claims
    - g.owner_id: the venue owner
    - g.venue_id: the venue the token is scoped to

    A venue_id URL parameter must match the token's venue (404 otherwise,
    so other venues' ids are not confirmed).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return _unauthenticated()

        try:
            claims = session_service.verify_gateway_token(token)
        except TokenInvalidError as e:
            return _unauthenticated(e.public_message)

        g.gateway_claims = claims
        g.owner_id = int(claims["sub"])
        g.venue_id = int(claims["venueId"])

        if "venue_id" in kwargs and kwargs["venue_id"] != g.venue_id:
            return jsonify({"error": "Venue not found", "code": "NOT_FOUND"}), 404

        return f(*args, **kwargs)

    return decorated_function


def require_operational_token(f):
    """
    Require a sub-user operational token.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.claims: verified token claims
    - g.sub_user: SubUserState principal built from the claims
    - g.sub_user_id / g.venue_id: shortcuts

    SECURITY: Returns 401 for a missing, malformed, expired or revoked token;
    403 when a venue_id URL parameter is outside the token's venue.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return _unauthenticated()

        try:
            claims, principal = session_service.verify_operational_token(token)
        except TokenInvalidError as e:
            return _unauthenticated(e.public_message)

        g.claims = claims
        g.sub_user = principal
        g.sub_user_id = principal.id
        g.venue_id = principal.venue_id

        if "venue_id" in kwargs:
            decision = get_services().authorizer.can_access_venue_resource(principal, kwargs["venue_id"])
            if not decision.authorized:
                current_app.logger.warning(
                    "Sub-user %s denied venue %s: %s", principal.id, kwargs["venue_id"], decision.reason
                )
                return jsonify({"error": "Permission denied", "code": "PERMISSION_DENIED"}), 403

        return f(*args, **kwargs)

    return decorated_function


def require_venue_permission(permission):
    """
    Require a permission on the operational token's embedded permission set.

    Must be stacked under @require_operational_token.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return _unauthenticated()

            decision = get_services().authorizer.check_permission(
                g.sub_user, permission, f"route:{permission.name}"
            )
            if not decision.authorized:
                current_app.logger.warning(
                    "Sub-user %s denied %s on %s: %s",
                    g.sub_user_id, permission.name, request.path, decision.reason,
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_permission": permission.name,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
