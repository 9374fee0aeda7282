# Overview: Service-layer operations for sub-user login, refresh, logout and token verification.

"""
Sub-User Session Management

WHY: A sub-user login turns a username/password into a short-lived
operational token plus a single-use refresh token, bound to one durable
session row per device.

LOGIN ORDER (authenticate_sub_user):
1. Row-locked lookup by (venue, lower(username)). Unknown -> InvalidCredentials.
2. Lockout still running -> AccountLocked, counter untouched. An elapsed
   lockout resets the counter before the password is checked.
3. Wrong password -> counter + 1; reaching the threshold locks the account
   and force-revokes its sessions. InvalidCredentials.
4. Inactive -> AccountInactive (only revealed after a correct password).
5. Success -> counter reset, session row, tokens, audit.

The counter bookkeeping and the audit entry of a failed attempt commit even
though the call raises.

SECURITY NOTES:
- Refresh tokens are single use: rotation is a conditional UPDATE on the old
  hash, so only one exchange per value can ever match
- Logout deactivates sessions even when the revocation backend is down; the
  degraded outcome is logged at ERROR and returned to the caller
- A deactivated session is never reactivated
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..domain import LoginResult, LogoutResult, SubUserState, sub_user_summary
from ..errors import (
    AccountInactiveError,
    AccountLockedError,
    InvalidCredentialsError,
    NotFoundError,
    RevocationUnavailableError,
    TokenInvalidError,
)
from ..extensions import db
from ..models import SessionStatus, SubUser, SubUserSession, Venue
from ..time_utils import seconds_until
from .audit_service import AuditAction, EntityType, record
from .concurrency import atomic, lock_for_update, run_with_retry
from .password_service import PasswordVerificationResult
from .registry import get_services
from .token_service import hash_token


class LogoutReason:
    LOGOUT = "logout"
    LOGOUT_ALL = "logout all devices"
    ACCOUNT_LOCKED = "account locked"
    AUTHORITY_CHANGED = "permissions changed"
    DEACTIVATED = "account deactivated"
    DELETED = "account deleted"
    PASSWORD_RESET = "password reset"
    SUB_USER_UNAVAILABLE = "sub-user inactive or locked"
    REFRESH_EXPIRED = "refresh token expired"


def normalize_username(username) -> str:
    return (username or "").strip().lower()


# -- session bookkeeping shared with sub-user management --

def deactivate_sessions(sessions, *, status: str, reason: str, now) -> list[tuple]:
    """
    End each active session inside the caller's transaction.

    Returns (session_id, jti, jti_expires_at) for every token that still needs
    to be revoked once the transaction commits.
    """
    pending = []
    for session in sessions:
        jti, expires_at = session.access_token_jti, session.access_token_expires_at
        if session.deactivate(status=status, reason=reason, now=now):
            pending.append((session.id, jti, expires_at))
    return pending


def active_sessions_for(sub_user_id: int, *, lock: bool = False):
    query = db.session.query(SubUserSession).filter(
        SubUserSession.sub_user_id == sub_user_id,
        SubUserSession.is_active.is_(True),
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def revoke_pending(pending, outcome) -> int:
    """
    Revoke the access tokens of sessions that were just deactivated.

    Failures do not raise: each one is logged at ERROR (a residual token
    validity window) and recorded on the outcome.
    """
    revocation = get_services().revocation
    revoked = 0
    for session_id, jti, expires_at in pending:
        try:
            if revocation.revoke(jti, expires_at):
                revoked += 1
        except RevocationUnavailableError:
            current_app.logger.error(
                "Token for session %s stays valid until %s: revocation backend unavailable",
                session_id, expires_at,
            )
            outcome.degrade(f"session {session_id}: token not revoked")
    return revoked


def invalidate_subject(sub_user_id: int, outcome) -> None:
    if not get_services().authorizer.invalidate_user(sub_user_id):
        outcome.degrade(f"sub-user {sub_user_id}: authorization cache not invalidated")


def _issue_session(sub_user: SubUser, now, *, ip_address, user_agent, device_name, device_type):
    services = get_services()
    effective = services.engine.get_effective_permissions(SubUserState.from_persisted(sub_user))
    refresh = services.tokens.new_refresh_token()

    session = SubUserSession(
        sub_user_id=sub_user.id,
        venue_id=sub_user.venue_id,
        refresh_token_hash=refresh.token_hash,
        refresh_token_expires_at=refresh.expires_at,
        device_name=device_name,
        device_type=device_type,
        ip_address=ip_address,
        user_agent=user_agent,
        is_active=True,
        status=SessionStatus.ACTIVE,
        created_at=now,
        last_activity_at=now,
    )
    db.session.add(session)
    db.session.flush()

    access = services.tokens.issue_operational_token(
        sub_user.id, sub_user.venue_id, sub_user.role, effective
    )
    session.access_token_jti = access.jti
    session.access_token_expires_at = access.expires_at
    return session, access, refresh


# -- login --

def authenticate_sub_user(
    venue_id: int,
    username: str,
    password: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_name: str | None = None,
    device_type: str | None = None,
) -> LoginResult:
    services = get_services()
    logger = current_app.logger
    now = services.clock.now()
    normalized = normalize_username(username)

    failure = None
    locked_pending = []
    result = None
    sub_user_id = None

    with atomic():
        venue = db.session.get(Venue, venue_id)
        if venue is None:
            raise InvalidCredentialsError()
        if not venue.is_active:
            raise AccountInactiveError("Venue is deactivated")

        sub_user = lock_for_update(
            db.session.query(SubUser)
            .filter(
                SubUser.venue_id == venue_id,
                SubUser.username_normalized == normalized,
                SubUser.deleted_at.is_(None),
            )
            .order_by(SubUser.is_active.desc(), SubUser.id.desc())
        ).first()

        def audit_failure(reason, target=None, extra=None):
            data = {"username": username, "reason": reason}
            data.update(extra or {})
            record(
                venue_id=venue_id,
                sub_user_id=target.id if target else None,
                action=AuditAction.SUB_USER_LOGIN_FAILED,
                entity_type=EntityType.SUB_USER,
                entity_id=target.id if target else None,
                additional_data=data,
                ip_address=ip_address,
                user_agent=user_agent,
                now=now,
            )

        if sub_user is None:
            services.hasher.dummy_verify(password)
            audit_failure("unknown username")
            failure = InvalidCredentialsError()

        elif sub_user.lockout_end is not None and sub_user.lockout_end > now:
            audit_failure("account locked", sub_user)
            failure = AccountLockedError(retry_after_seconds=seconds_until(sub_user.lockout_end, now))

        else:
            sub_user_id = sub_user.id
            if sub_user.lockout_end is not None:
                # Lockout window elapsed: start counting afresh
                sub_user.lockout_end = None
                sub_user.failed_login_attempts = 0

            verification = services.hasher.verify(sub_user.id, sub_user.password_hash, password)

            if verification is PasswordVerificationResult.FAILED:
                sub_user.failed_login_attempts = (sub_user.failed_login_attempts or 0) + 1
                attempts = sub_user.failed_login_attempts
                audit_failure("invalid password", sub_user, {"failed_attempts": attempts})

                if attempts >= services.max_failed_attempts:
                    sub_user.lockout_end = now + services.lockout_duration
                    locked_pending = deactivate_sessions(
                        active_sessions_for(sub_user.id, lock=True),
                        status=SessionStatus.FORCE_REVOKED,
                        reason=LogoutReason.ACCOUNT_LOCKED,
                        now=now,
                    )
                    record(
                        venue_id=venue_id,
                        sub_user_id=sub_user.id,
                        action=AuditAction.SUB_USER_LOCKED,
                        entity_type=EntityType.SUB_USER,
                        entity_id=sub_user.id,
                        additional_data={
                            "failed_attempts": attempts,
                            "lockout_end": sub_user.lockout_end.isoformat(),
                            "sessions_ended": len(locked_pending),
                        },
                        ip_address=ip_address,
                        user_agent=user_agent,
                        now=now,
                    )
                    logger.warning(
                        "Sub-user %s locked out after %s failed attempts", sub_user.id, attempts
                    )
                failure = InvalidCredentialsError()

            elif not sub_user.is_active:
                audit_failure("account inactive", sub_user)
                failure = AccountInactiveError()

            else:
                if verification is PasswordVerificationResult.SUCCESS_REHASH_NEEDED:
                    sub_user.password_hash = services.hasher.hash(sub_user.id, password)
                    logger.info("Re-hashed password for sub-user %s at current cost", sub_user.id)

                sub_user.failed_login_attempts = 0
                sub_user.lockout_end = None
                sub_user.last_login_at = now

                session, access, refresh = _issue_session(
                    sub_user,
                    now,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    device_name=device_name,
                    device_type=device_type,
                )
                record(
                    venue_id=venue_id,
                    sub_user_id=sub_user.id,
                    action=AuditAction.SUB_USER_LOGIN,
                    entity_type=EntityType.SUB_USER_SESSION,
                    entity_id=session.id,
                    additional_data={"device_name": device_name, "device_type": device_type},
                    ip_address=ip_address,
                    user_agent=user_agent,
                    now=now,
                )
                result = LoginResult(
                    access_token=access.token,
                    refresh_token=refresh.token,
                    access_token_expires_at=access.expires_at,
                    refresh_token_expires_at=refresh.expires_at,
                    session_id=session.id,
                    sub_user=sub_user_summary(sub_user),
                    must_change_password=bool(sub_user.must_change_password),
                )

    if failure is not None:
        if locked_pending:
            outcome = LogoutResult()
            revoke_pending(locked_pending, outcome)
        if sub_user_id is not None:
            get_services().authorizer.invalidate_user(sub_user_id)
        logger.info("Sub-user login failed for venue %s: %s", venue_id, failure.kind.value)
        raise failure

    # Cached denials (e.g. "account locked") must not outlive the reset
    invalidate_subject(sub_user_id, result)
    logger.info("Sub-user %s logged in (session %s)", sub_user_id, result.session_id)
    return result


# -- refresh --

def refresh_operational_token(
    refresh_token: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    """
    Exchange a refresh token for a new operational token and refresh token.

    The old refresh value matches at most once (conditional UPDATE). The
    previous access token is revoked best-effort.
    """
    services = get_services()
    logger = current_app.logger
    now = services.clock.now()
    if not refresh_token or not isinstance(refresh_token, str):
        raise TokenInvalidError()
    old_hash = hash_token(refresh_token)

    failure = None
    pending = []
    result = None

    with atomic():
        session = (
            db.session.query(SubUserSession)
            .filter(SubUserSession.refresh_token_hash == old_hash, SubUserSession.is_active.is_(True))
            .first()
        )
        if session is None:
            logger.warning("Refresh attempted with unknown or spent refresh token")
            raise TokenInvalidError()

        if session.refresh_token_expires_at <= now:
            pending = deactivate_sessions(
                [session], status=SessionStatus.LOGGED_OUT, reason=LogoutReason.REFRESH_EXPIRED, now=now
            )
            failure = TokenInvalidError()
        else:
            sub_user = lock_for_update(
                db.session.query(SubUser).filter(SubUser.id == session.sub_user_id)
            ).first()
            state = SubUserState.from_persisted(sub_user) if sub_user else None

            if state is None or not state.is_active or state.is_locked_out(now):
                pending = deactivate_sessions(
                    [session],
                    status=SessionStatus.FORCE_REVOKED,
                    reason=LogoutReason.SUB_USER_UNAVAILABLE,
                    now=now,
                )
                if state is not None and state.is_active:
                    failure = AccountLockedError(
                        retry_after_seconds=seconds_until(state.lockout_end, now)
                    )
                else:
                    failure = AccountInactiveError()
            else:
                effective = services.engine.get_effective_permissions(state)
                new_refresh = services.tokens.new_refresh_token()
                access = services.tokens.issue_operational_token(
                    sub_user.id, sub_user.venue_id, sub_user.role, effective
                )
                pending = [(session.id, session.access_token_jti, session.access_token_expires_at)]

                rotated = (
                    db.session.query(SubUserSession)
                    .filter(
                        SubUserSession.id == session.id,
                        SubUserSession.refresh_token_hash == old_hash,
                        SubUserSession.is_active.is_(True),
                    )
                    .update(
                        {
                            SubUserSession.refresh_token_hash: new_refresh.token_hash,
                            SubUserSession.refresh_token_expires_at: new_refresh.expires_at,
                            SubUserSession.access_token_jti: access.jti,
                            SubUserSession.access_token_expires_at: access.expires_at,
                            SubUserSession.last_activity_at: now,
                            SubUserSession.ip_address: ip_address or session.ip_address,
                            SubUserSession.user_agent: user_agent or session.user_agent,
                        },
                        synchronize_session=False,
                    )
                )
                if rotated != 1:
                    logger.warning("Concurrent refresh lost the race for session %s", session.id)
                    raise TokenInvalidError()

                record(
                    venue_id=sub_user.venue_id,
                    sub_user_id=sub_user.id,
                    action=AuditAction.SUB_USER_TOKEN_REFRESHED,
                    entity_type=EntityType.SUB_USER_SESSION,
                    entity_id=session.id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    now=now,
                )
                result = LoginResult(
                    access_token=access.token,
                    refresh_token=new_refresh.token,
                    access_token_expires_at=access.expires_at,
                    refresh_token_expires_at=new_refresh.expires_at,
                    session_id=session.id,
                    sub_user=sub_user_summary(sub_user),
                    must_change_password=bool(sub_user.must_change_password),
                )

    if failure is not None:
        revoke_pending(pending, LogoutResult())
        raise failure

    revoke_pending(pending, result)
    return result


# -- logout --

def _end_sessions(sub_user_id: int, sessions_query, *, status: str, reason: str, ip_address, user_agent) -> LogoutResult:
    services = get_services()
    now = services.clock.now()
    outcome = LogoutResult()

    with atomic():
        sub_user = db.session.get(SubUser, sub_user_id)
        if sub_user is None:
            raise NotFoundError("Sub-user not found")

        sessions = lock_for_update(sessions_query).all()
        pending = deactivate_sessions(sessions, status=status, reason=reason, now=now)
        outcome.sessions_ended = len(pending)
        if pending:
            record(
                venue_id=sub_user.venue_id,
                sub_user_id=sub_user.id,
                action=AuditAction.SUB_USER_LOGOUT,
                entity_type=EntityType.SUB_USER,
                entity_id=sub_user.id,
                additional_data={
                    "reason": reason,
                    "session_ids": [session_id for session_id, _jti, _exp in pending],
                },
                ip_address=ip_address,
                user_agent=user_agent,
                now=now,
            )

    outcome.tokens_revoked = revoke_pending(pending, outcome)
    invalidate_subject(sub_user_id, outcome)
    current_app.logger.info(
        "Sub-user %s logout (%s): %s sessions ended, %s tokens revoked",
        sub_user_id, reason, outcome.sessions_ended, outcome.tokens_revoked,
    )
    return outcome


def _active_sessions_query(sub_user_id: int):
    return db.session.query(SubUserSession).filter(
        SubUserSession.sub_user_id == sub_user_id,
        SubUserSession.is_active.is_(True),
    )


def logout(sub_user_id: int, *, ip_address: str | None = None, user_agent: str | None = None) -> LogoutResult:
    """
    End every active session of the sub-user. Idempotent: no sessions is a
    successful no-op.
    """
    return _end_sessions(
        sub_user_id,
        _active_sessions_query(sub_user_id),
        status=SessionStatus.LOGGED_OUT,
        reason=LogoutReason.LOGOUT,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def logout_all(sub_user_id: int, *, ip_address: str | None = None, user_agent: str | None = None) -> LogoutResult:
    """Force-revoke every active session (all devices)."""
    return _end_sessions(
        sub_user_id,
        _active_sessions_query(sub_user_id),
        status=SessionStatus.FORCE_REVOKED,
        reason=LogoutReason.LOGOUT_ALL,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def logout_session(
    sub_user_id: int,
    session_id: int,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> LogoutResult:
    """End one device's session. The session must belong to the sub-user."""
    session = db.session.get(SubUserSession, session_id)
    if session is None or session.sub_user_id != sub_user_id:
        raise NotFoundError("Session not found")
    return _end_sessions(
        sub_user_id,
        _active_sessions_query(sub_user_id).filter(SubUserSession.id == session_id),
        status=SessionStatus.LOGGED_OUT,
        reason=LogoutReason.LOGOUT,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def list_sessions(sub_user_id: int, *, include_inactive: bool = False) -> list[dict]:
    query = db.session.query(SubUserSession).filter(SubUserSession.sub_user_id == sub_user_id)
    if not include_inactive:
        query = query.filter(SubUserSession.is_active.is_(True))
    return [session.to_dict() for session in query.order_by(SubUserSession.created_at.desc()).all()]


# -- token verification (request path) --

def _jti_is_current(jti: str) -> bool:
    """Durable answer: jti is the live access token of an active session."""
    return db.session.query(
        db.session.query(SubUserSession.id)
        .filter(SubUserSession.access_token_jti == jti, SubUserSession.is_active.is_(True))
        .exists()
    ).scalar()


def verify_operational_token(token: str) -> tuple[dict, SubUserState]:
    """
    Signature/expiry/type, then revocation, then the principal from claims.

    Raises TokenInvalidError for every failure.
    """
    services = get_services()
    claims = services.tokens.verify_operational_token(token)
    if services.revocation.is_revoked(claims["jti"], durable_check=_jti_is_current):
        current_app.logger.warning("Rejected revoked operational token jti=%s sub=%s", claims["jti"], claims["sub"])
        raise TokenInvalidError()
    try:
        principal = SubUserState.from_claims(claims)
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalidError() from exc
    return claims, principal


def verify_gateway_token(token: str) -> dict:
    """
    Gateway tokens carry no permissions, so a revocation backend outage
    accepts them rather than blocking venue logins.
    """
    services = get_services()
    claims = services.tokens.verify_gateway_token(token)
    if services.revocation.is_revoked(claims["jti"], durable_check=lambda _jti: True):
        current_app.logger.warning("Rejected revoked gateway token jti=%s", claims["jti"])
        raise TokenInvalidError()
    try:
        int(claims["sub"])
        int(claims["venueId"])
    except (TypeError, ValueError) as exc:
        raise TokenInvalidError() from exc
    return claims


# -- maintenance --

def cleanup_sessions(retention_days: int = 30) -> int:
    """
    Delete ended sessions older than the retention window and close active
    sessions whose refresh token has expired.

    Returns count of sessions deleted.
    """
    services = get_services()
    now = services.clock.now()
    cutoff = now - timedelta(days=retention_days)

    def _op():
        expired = (
            db.session.query(SubUserSession)
            .filter(
                SubUserSession.is_active.is_(True),
                SubUserSession.refresh_token_expires_at <= now,
            )
            .all()
        )
        deactivate_sessions(
            expired, status=SessionStatus.LOGGED_OUT, reason=LogoutReason.REFRESH_EXPIRED, now=now
        )
        deleted = (
            db.session.query(SubUserSession)
            .filter(
                SubUserSession.is_active.is_(False),
                SubUserSession.logged_out_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        db.session.commit()
        return deleted

    return run_with_retry(_op)
