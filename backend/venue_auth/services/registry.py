# Overview: Per-app wiring of the stateful collaborators (clock, cache, issuer, engine).

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..time_utils import Clock, SystemClock
from .authorization_cache import CachedAuthorizationService
from .authorization_service import AuthorizationEngine
from .cache_service import CacheBackend, InMemoryCacheBackend, build_cache_backend
from .password_service import PasswordHasher
from .revocation_service import RevocationStore
from .token_service import TokenIssuer


EXTENSION_KEY = "venue_auth"


@dataclass
class ServiceRegistry:
    clock: Clock
    cache: CacheBackend
    engine: AuthorizationEngine
    authorizer: CachedAuthorizationService
    revocation: RevocationStore
    tokens: TokenIssuer
    hasher: PasswordHasher
    max_failed_attempts: int
    lockout_duration: timedelta
    reset_cooldown: timedelta


def init_services(app, clock: Clock | None = None, cache: CacheBackend | None = None) -> ServiceRegistry:
    """
    Build the registry from app.config and attach it to app.extensions.

    clock and cache may be injected (tests pass a frozen clock).
    """
    clock = clock or SystemClock()
    config = app.config
    cache = cache or build_cache_backend(config, clock)
    if isinstance(cache, InMemoryCacheBackend) and not config.get("TESTING"):
        app.logger.warning(
            "CACHE_BACKEND=memory keeps revocations per process; "
            "set CACHE_BACKEND=redis when running more than one worker"
        )
    engine = AuthorizationEngine(clock)

    registry = ServiceRegistry(
        clock=clock,
        cache=cache,
        engine=engine,
        authorizer=CachedAuthorizationService.from_config(engine, cache, config),
        revocation=RevocationStore(cache, clock),
        tokens=TokenIssuer.from_config(config, clock),
        hasher=PasswordHasher(rounds=config["BCRYPT_ROUNDS"]),
        max_failed_attempts=config["MAX_FAILED_LOGIN_ATTEMPTS"],
        lockout_duration=timedelta(minutes=config["LOCKOUT_DURATION_MINUTES"]),
        reset_cooldown=timedelta(seconds=config["PASSWORD_RESET_COOLDOWN_SECONDS"]),
    )
    app.extensions[EXTENSION_KEY] = registry
    return registry


def get_services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]
