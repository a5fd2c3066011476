from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session as DBSession

from auth.session import Session
from db_sql import get_db
from Models.auth_models import User, UserRole
from services.session_manager import ClientInfo, verify
from utils.errors import Forbidden, PasswordChangeRequired

bearer = HTTPBearer(auto_error=False)


def _extract_token(request: Request, creds: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Accept the access token from (priority order):
    1) header: Authorization: Bearer <token>
    2) cookie: token
    """
    if creds and creds.credentials and creds.credentials.strip():
        return creds.credentials.strip()
    v = request.cookies.get("token")
    if v and v.strip():
        return v.strip()
    return None


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=(request.client.host if request.client else None),
        user_agent=request.headers.get("user-agent"),
    )


def get_current_session(
        request: Request,
        creds: HTTPAuthorizationCredentials = Depends(bearer),
        db: DBSession = Depends(get_db),
) -> Session:
    """Resolve the Session without the forced-change gate (change-password, verify, me, logout)."""
    session, user = verify(db, _extract_token(request, creds))
    request.state.user = user
    request.state.user_email = user.email
    return session


def get_current_user(request: Request, session: Session = Depends(get_current_session)) -> User:
    return request.state.user


def require_session(session: Session = Depends(get_current_session)) -> Session:
    if session.force_password_change:
        raise PasswordChangeRequired()
    return session


def require_roles(*allowed: UserRole):
    def _guard(session: Session = Depends(require_session)) -> Session:
        if session.role not in allowed:
            raise Forbidden("Access denied. Insufficient permissions.")
        return session

    return _guard
