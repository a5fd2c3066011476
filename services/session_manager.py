"""Session lifecycle: login, token verification, password change, logout and
the emailed password-reset flow.

Tokens are never mutated. Each user row carries a `token_version`; a token is
only honoured while its `ver` claim matches, so rotating (password change,
reset, logout, administrative changes) is a version bump plus a fresh token.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from jose import JWTError
from sqlalchemy import select, update
from sqlalchemy.orm import Session as DBSession

from auth.security import (
    hash_password, verify_password, password_policy_errors,
    create_access_token, decode_access_token,
    make_reset_token, digest_token, reset_exp, RESET_TOKEN_MINUTES,
)
from auth.session import Session
from db_sql import commit
from Models.auth_models import User, PasswordResetToken, AuthAudit
from services.reset_cooldown import register_request, normalize_email
from utils.date_utils import utcnow
from utils.errors import (
    ValidationError, Unauthenticated, InvalidCredentials, WeakPassword,
    PasswordReuse, InvalidOrExpiredToken,
)

logger = logging.getLogger(__name__)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

_dummy_hash: Optional[str] = None


@dataclass(frozen=True)
class ClientInfo:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class LoginResult:
    token: str
    user: User
    require_password_change: bool


def record_auth_event(db: DBSession, event: str, user_id: Optional[int] = None,
                      details: Optional[str] = None, client: Optional[ClientInfo] = None):
    client = client or ClientInfo()
    db.add(AuthAudit(
        user_id=user_id, event=event, details=(details or "")[:255] or None,
        ip=client.ip, user_agent=(client.user_agent or "")[:255] or None,
    ))


def issue_token(user: User) -> str:
    return create_access_token(
        str(user.user_id),
        user.role.value,
        user.department,
        user.force_password_change,
        user.token_version,
    )


def _equalize_timing(password: str) -> None:
    # unknown accounts still pay for one hash comparison
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password("not-a-real-password!")
    verify_password(password, _dummy_hash)


def _find_by_email(db: DBSession, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def login(db: DBSession, email: str, password: str, client: Optional[ClientInfo] = None) -> LoginResult:
    user = _find_by_email(db, email)
    if user is None:
        _equalize_timing(password)
        record_auth_event(db, "LOGIN_FAILED", details="unknown account", client=client)
        commit(db)
        logger.warning("login failed: unknown account")
        raise InvalidCredentials()

    if not verify_password(password, user.password_hash):
        record_auth_event(db, "LOGIN_FAILED", user.user_id, "bad password", client)
        commit(db)
        logger.warning("login failed for user=%s: bad password", user.user_id)
        raise InvalidCredentials()

    if not user.is_active:
        record_auth_event(db, "LOGIN_FAILED", user.user_id, "inactive account", client)
        commit(db)
        logger.warning("login refused for inactive user=%s", user.user_id)
        raise InvalidCredentials("Account is deactivated. Please contact administrator.")

    user.last_login = utcnow()
    record_auth_event(db, "LOGIN_SUCCESS", user.user_id, client=client)
    commit(db)
    db.refresh(user)
    logger.info("login user=%s role=%s", user.user_id, user.role.value)
    return LoginResult(issue_token(user), user, bool(user.force_password_change))


def verify(db: DBSession, token: Optional[str]) -> Tuple[Session, User]:
    """Resolve a bearer token into the request's Session and the current user row."""
    if not token:
        raise Unauthenticated()
    try:
        claims = decode_access_token(token)
        session = Session.from_claims(claims)
    except (JWTError, KeyError, ValueError, TypeError):
        raise Unauthenticated("Invalid or expired session. Please login again.")

    user = db.get(User, session.user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("User not found or inactive. Please login again.")
    if user.token_version != session.token_version:
        raise Unauthenticated("Session expired. Please login again.")
    return session, user


def _check_new_password(new_password: str, confirm_password: str, error_cls=ValidationError):
    if new_password != confirm_password:
        raise error_cls.for_field("confirmPassword", "Passwords do not match")
    problems = password_policy_errors(new_password)
    if problems:
        raise WeakPassword(problems[0], errors=[{"field": "newPassword", "message": m} for m in problems])


def _rotate(db: DBSession, user_id: int, expected_version: int, **values) -> bool:
    res = db.execute(
        update(User)
        .where(User.user_id == user_id, User.token_version == expected_version)
        .values(token_version=User.token_version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def change_password(db: DBSession, session: Session, current_password: str, new_password: str,
                    confirm_password: str, notifier=None, client: Optional[ClientInfo] = None) -> Tuple[str, User]:
    _check_new_password(new_password, confirm_password)

    user = db.get(User, session.user_id)
    if user is None:
        raise Unauthenticated()
    if not verify_password(current_password, user.password_hash):
        logger.warning("password change refused for user=%s: wrong current password", user.user_id)
        raise ValidationError.for_field("currentPassword", "Current password is incorrect",
                                        code="InvalidCredentials")
    if verify_password(new_password, user.password_hash):
        raise PasswordReuse(errors=[{"field": "newPassword",
                                     "message": "New password must be different from current password"}])

    if not _rotate(db, user.user_id, session.token_version,
                   password_hash=hash_password(new_password), force_password_change=False):
        db.rollback()
        raise Unauthenticated("Session expired. Please login again.")
    record_auth_event(db, "PASSWORD_CHANGED", user.user_id, client=client)
    commit(db)
    db.refresh(user)
    logger.info("password changed for user=%s", user.user_id)

    if notifier:
        notifier.send("password_changed", user.email, name=user.name)
    return issue_token(user), user


def logout(db: DBSession, session: Session, client: Optional[ClientInfo] = None) -> None:
    if _rotate(db, session.user_id, session.token_version):
        record_auth_event(db, "LOGOUT", session.user_id, client=client)
        commit(db)
        logger.info("logout user=%s", session.user_id)
    else:
        db.rollback()


def request_reset(db: DBSession, email: str, notifier=None, now: Optional[datetime] = None,
                  client: Optional[ClientInfo] = None) -> Optional[str]:
    """Count the request against the cooldown and, for a live account, issue a reset token.

    Returns the raw token (only ever sent by mail) or None. Callers must answer
    the same way in both cases.
    """
    now = now or utcnow()
    register_request(db, email, now)

    user = _find_by_email(db, email)
    if user is None or not user.is_active:
        logger.info("password reset requested for an unknown or inactive account")
        return None

    # only the newest link stays valid
    db.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.user_id == user.user_id, PasswordResetToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    raw, digest = make_reset_token()
    db.add(PasswordResetToken(user_id=user.user_id, token_hash=digest, expires_at=reset_exp()))
    record_auth_event(db, "PASSWORD_RESET_REQUESTED", user.user_id, client=client)
    commit(db)
    logger.info("password reset link issued for user=%s", user.user_id)

    if notifier:
        notifier.send(
            "password_reset", user.email,
            name=user.name,
            reset_url=f"{FRONTEND_URL}/reset-password?token={raw}",
            expires_in_minutes=RESET_TOKEN_MINUTES,
        )
    return raw


def reset_password(db: DBSession, raw_token: str, new_password: str, confirm_password: str,
                   notifier=None, now: Optional[datetime] = None, client: Optional[ClientInfo] = None) -> User:
    now = now or utcnow()
    _check_new_password(new_password, confirm_password, error_cls=InvalidOrExpiredToken)

    row = db.execute(
        select(PasswordResetToken).where(
            PasswordResetToken.token_hash == digest_token(raw_token or ""),
            PasswordResetToken.used_at.is_(None),
            PasswordResetToken.expires_at > now,
        )
    ).scalar_one_or_none()
    if row is None:
        logger.warning("password reset refused: invalid or expired token")
        raise InvalidOrExpiredToken()

    # single use: only one caller can flip used_at
    res = db.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.id == row.id, PasswordResetToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise InvalidOrExpiredToken()

    user = db.get(User, row.user_id)
    if user is None or not user.is_active:
        db.rollback()
        raise InvalidOrExpiredToken()
    db.execute(
        update(User)
        .where(User.user_id == user.user_id)
        .values(password_hash=hash_password(new_password), force_password_change=False,
                token_version=User.token_version + 1)
        .execution_options(synchronize_session=False)
    )
    record_auth_event(db, "PASSWORD_RESET", user.user_id, client=client)
    commit(db)
    db.refresh(user)
    logger.info("password reset completed for user=%s", user.user_id)

    if notifier:
        notifier.send("password_changed", user.email, name=user.name)
    return user
