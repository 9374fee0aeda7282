# Overview: Read-through cache decorator over the authorization engine.

"""
Authorization Cache

Same operations as AuthorizationEngine, memoized in the cache backend.

KEYS / TTL:
- venue:auth:permission:{sub}:{perm}:{action}:{bits}  allow 15 min, deny 5 min
- venue:auth:manage:{manager}:{target}:{operation}    10 min
- venue:auth:venue-access:{sub}:{venue}               60 min
- venue:auth:effective:{sub}                          30 min
- venue:auth:role-validation:{role}:{bits}            60 min, untagged (pure)

Every subject-dependent entry is tagged user:{id} and venue:{id}. Mutations
call invalidate_user / invalidate_venue.

FAIL OPEN: any backend exception is logged and the engine answers directly.
The cache is a latency optimization, never a point of failure.

BOUNDED STALENESS: a read racing an invalidation may observe one stale
decision for at most one TTL window. Destructive operations never rely on a
cached answer alone; the orchestrator re-reads durable state first.
"""

from __future__ import annotations

from flask import current_app

from ..domain import AuthorizationDecision, SubUserState, ValidationResult
from ..permissions import parse_permissions


KEY_PREFIX = "venue:auth:"


def _user_tag(sub_user_id) -> str:
    return f"user:{sub_user_id}"


def _venue_tag(venue_id) -> str:
    return f"venue:{venue_id}"


class CachedAuthorizationService:
    def __init__(self, engine, backend, *, ttls: dict | None = None):
        self.engine = engine
        self.backend = backend
        ttls = ttls or {}
        self.allow_ttl = ttls.get("allow", 15 * 60)
        self.deny_ttl = ttls.get("deny", 5 * 60)
        self.manage_ttl = ttls.get("manage", 10 * 60)
        self.venue_access_ttl = ttls.get("venue_access", 60 * 60)
        self.effective_ttl = ttls.get("effective", 30 * 60)
        self.role_validation_ttl = ttls.get("role_validation", 60 * 60)

    @classmethod
    def from_config(cls, engine, backend, config) -> "CachedAuthorizationService":
        return cls(engine, backend, ttls={
            "allow": config.get("PERMISSION_ALLOW_TTL_SECONDS", 15 * 60),
            "deny": config.get("PERMISSION_DENY_TTL_SECONDS", 5 * 60),
            "manage": config.get("MANAGE_CHECK_TTL_SECONDS", 10 * 60),
            "venue_access": config.get("VENUE_ACCESS_TTL_SECONDS", 60 * 60),
            "effective": config.get("EFFECTIVE_PERMISSIONS_TTL_SECONDS", 30 * 60),
            "role_validation": config.get("ROLE_VALIDATION_TTL_SECONDS", 60 * 60),
        })

    @property
    def clock(self):
        return self.engine.clock

    # -- read-through core --

    def _read_through(self, key, tags, compute, encode, decode, ttl_for):
        logger = current_app.logger
        try:
            raw = self.backend.get(key)
        except Exception as exc:
            logger.error("Authorization cache read failed for %s, using engine: %s", key, exc)
            return compute()

        if raw is not None:
            try:
                value = decode(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            else:
                logger.debug("Authorization cache hit: %s", key)
                return value

        logger.debug("Authorization cache miss: %s", key)
        value = compute()
        try:
            self.backend.set(key, encode(value), ttl_for(value))
            if tags:
                self.backend.tag(key, *tags)
        except Exception as exc:
            logger.error("Authorization cache write failed for %s: %s", key, exc)
        return value

    # -- engine operations --

    def check_permission(self, sub_user: SubUserState, required, action: str = "") -> AuthorizationDecision:
        required = parse_permissions(required)
        key = (
            f"{KEY_PREFIX}permission:{sub_user.id}:{int(required)}:"
            f"{action}:{int(sub_user.permissions)}"
        )
        return self._read_through(
            key,
            (_user_tag(sub_user.id), _venue_tag(sub_user.venue_id)),
            lambda: self.engine.check_permission(sub_user, required, action),
            lambda decision: decision.to_dict(),
            AuthorizationDecision.from_dict,
            lambda decision: self.allow_ttl if decision.authorized else self.deny_ttl,
        )

    def can_manage_sub_user(self, manager: SubUserState, target: SubUserState, operation: str) -> AuthorizationDecision:
        target_ref = target.id if target.id is not None else f"new-{target.role}"
        key = f"{KEY_PREFIX}manage:{manager.id}:{target_ref}:{(operation or '').lower()}"
        tags = [_user_tag(manager.id), _venue_tag(manager.venue_id)]
        if target.id is not None:
            tags.append(_user_tag(target.id))
        return self._read_through(
            key,
            tuple(tags),
            lambda: self.engine.can_manage_sub_user(manager, target, operation),
            lambda decision: decision.to_dict(),
            AuthorizationDecision.from_dict,
            lambda _decision: self.manage_ttl,
        )

    def can_access_venue_resource(self, sub_user: SubUserState, venue_id) -> AuthorizationDecision:
        key = f"{KEY_PREFIX}venue-access:{sub_user.id}:{venue_id}"
        return self._read_through(
            key,
            (_user_tag(sub_user.id), _venue_tag(venue_id)),
            lambda: self.engine.can_access_venue_resource(sub_user, venue_id),
            lambda decision: decision.to_dict(),
            AuthorizationDecision.from_dict,
            lambda _decision: self.venue_access_ttl,
        )

    def get_effective_permissions(self, sub_user: SubUserState):
        key = f"{KEY_PREFIX}effective:{sub_user.id}"
        return self._read_through(
            key,
            (_user_tag(sub_user.id), _venue_tag(sub_user.venue_id)),
            lambda: self.engine.get_effective_permissions(sub_user),
            lambda permissions: int(permissions),
            parse_permissions,
            lambda _permissions: self.effective_ttl,
        )

    def validate_permissions_for_role(self, role, permissions) -> ValidationResult:
        permissions = parse_permissions(permissions)
        role_value = getattr(role, "value", role)
        key = f"{KEY_PREFIX}role-validation:{role_value}:{int(permissions)}"
        return self._read_through(
            key,
            (),
            lambda: self.engine.validate_permissions_for_role(role, permissions),
            lambda result: result.to_dict(),
            ValidationResult.from_dict,
            lambda _result: self.role_validation_ttl,
        )

    # -- invalidation --

    def invalidate_user(self, sub_user_id) -> bool:
        try:
            removed = self.backend.remove_by_tag(_user_tag(sub_user_id))
        except Exception as exc:
            current_app.logger.error("Failed to invalidate authorization cache for sub-user %s: %s", sub_user_id, exc)
            return False
        current_app.logger.info("Invalidated %s cached authorization entries for sub-user %s", removed, sub_user_id)
        return True

    def invalidate_venue(self, venue_id) -> bool:
        try:
            removed = self.backend.remove_by_tag(_venue_tag(venue_id))
        except Exception as exc:
            current_app.logger.error("Failed to invalidate authorization cache for venue %s: %s", venue_id, exc)
            return False
        current_app.logger.info("Invalidated %s cached authorization entries for venue %s", removed, venue_id)
        return True

    def clear_all(self) -> int | None:
        """Drop every authorization entry. Returns the count, or None on backend failure."""
        try:
            removed = self.backend.remove_by_pattern(f"{KEY_PREFIX}*")
        except Exception as exc:
            current_app.logger.error("Failed to clear authorization cache: %s", exc)
            return None
        current_app.logger.info("Cleared %s cached authorization entries", removed)
        return removed
