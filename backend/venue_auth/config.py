# backend/venue_auth/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/venue_auth.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///venue_auth.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    # Applied only to pooled (non-SQLite) engines
    DB_POOL_TIMEOUT_SECONDS = _int_env("DB_POOL_TIMEOUT_SECONDS", 5)

    # Token signing (HS256). Gateway = venue owner, operational = sub-user.
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-jwt-secret-change-me-please-32b")
    JWT_ALGORITHM = "HS256"
    JWT_ISSUER = os.environ.get("JWT_ISSUER", "venue-auth")
    JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE", "venue-auth-clients")
    GATEWAY_TOKEN_LIFETIME_HOURS = _int_env("GATEWAY_TOKEN_LIFETIME_HOURS", 24)
    OPERATIONAL_TOKEN_LIFETIME_HOURS = _int_env("OPERATIONAL_TOKEN_LIFETIME_HOURS", 4)
    REFRESH_TOKEN_LIFETIME_DAYS = _int_env("REFRESH_TOKEN_LIFETIME_DAYS", 30)

    # Login throttling
    MAX_FAILED_LOGIN_ATTEMPTS = _int_env("MAX_FAILED_LOGIN_ATTEMPTS", 5)
    LOCKOUT_DURATION_MINUTES = _int_env("LOCKOUT_DURATION_MINUTES", 30)

    # One cooldown per action type (seconds)
    PASSWORD_RESET_COOLDOWN_SECONDS = _int_env("PASSWORD_RESET_COOLDOWN_SECONDS", 60)

    BCRYPT_ROUNDS = _int_env("BCRYPT_ROUNDS", 12)

    # Cache backend: "memory" (single process) or "redis".
    # The memory backend also holds the revocation denylist, so with several
    # worker processes a token revoked in one worker is only rejected by the
    # others through the durable session check. Use "redis" for those servers.
    CACHE_BACKEND = os.environ.get("CACHE_BACKEND", "memory")
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = os.environ.get("CACHE_KEY_PREFIX", "venue-auth:")
    CACHE_SOCKET_TIMEOUT_SECONDS = float(os.environ.get("CACHE_SOCKET_TIMEOUT_SECONDS", "0.5"))

    # Authorization cache TTLs (seconds)
    PERMISSION_ALLOW_TTL_SECONDS = _int_env("PERMISSION_ALLOW_TTL_SECONDS", 15 * 60)
    PERMISSION_DENY_TTL_SECONDS = _int_env("PERMISSION_DENY_TTL_SECONDS", 5 * 60)
    MANAGE_CHECK_TTL_SECONDS = _int_env("MANAGE_CHECK_TTL_SECONDS", 10 * 60)
    VENUE_ACCESS_TTL_SECONDS = _int_env("VENUE_ACCESS_TTL_SECONDS", 60 * 60)
    EFFECTIVE_PERMISSIONS_TTL_SECONDS = _int_env("EFFECTIVE_PERMISSIONS_TTL_SECONDS", 30 * 60)
    ROLE_VALIDATION_TTL_SECONDS = _int_env("ROLE_VALIDATION_TTL_SECONDS", 60 * 60)
