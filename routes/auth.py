# routes/auth.py

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session as DBSession

from auth.deps import client_info, get_current_session, get_current_user
from auth.session import Session
from db_sql import get_db
from Models.auth_models import User
from Schemas.auth_schemas import (
    LoginIn, ChangePasswordIn, ForgotPasswordIn, ResetPasswordIn,
    UserOut, LoginOut, TokenOut, CooldownOut,
)
from services import session_manager
from services.mailer import Notifier, get_notifier
from services.reset_cooldown import check_cooldown
from Schemas.base_schema import dump
from utils.responses import ok

router = APIRouter()

FORGOT_MESSAGE = "If an account exists with this email, a password reset link has been sent."


@router.post("/login")
def login(data: LoginIn, request: Request, db: DBSession = Depends(get_db)):
    result = session_manager.login(db, data.email, data.password, client_info(request))
    out = LoginOut(
        token=result.token,
        user=UserOut.model_validate(result.user),
        require_password_change=result.require_password_change,
    )
    return ok(out, "Login successful")


@router.get("/verify")
def verify(user: User = Depends(get_current_user)):
    return ok({"user": dump(UserOut.model_validate(user))}, "Token is valid")


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return ok(UserOut.model_validate(user))


@router.post("/logout")
def logout(
        request: Request,
        session: Session = Depends(get_current_session),
        db: DBSession = Depends(get_db),
):
    session_manager.logout(db, session, client_info(request))
    return ok(message="Logged out successfully")


@router.post("/change-password")
def change_password(
        data: ChangePasswordIn,
        request: Request,
        session: Session = Depends(get_current_session),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    token, user = session_manager.change_password(
        db, session, data.current_password, data.new_password, data.confirm_password,
        notifier=notifier, client=client_info(request),
    )
    return ok(TokenOut(token=token, user=UserOut.model_validate(user)), "Password changed successfully")


@router.post("/forgot-password")
def forgot_password(
        data: ForgotPasswordIn,
        request: Request,
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    session_manager.request_reset(db, data.email, notifier=notifier, client=client_info(request))
    return ok(message=FORGOT_MESSAGE)


@router.post("/check-forgot-cooldown")
def check_forgot_cooldown(data: ForgotPasswordIn, db: DBSession = Depends(get_db)):
    status = check_cooldown(db, data.email)
    return ok(CooldownOut(is_blocked=status.is_blocked, remaining_seconds=status.remaining_seconds))


@router.post("/reset-password")
def reset_password(
        data: ResetPasswordIn,
        request: Request,
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    session_manager.reset_password(
        db, data.token, data.new_password, data.confirm_password,
        notifier=notifier, client=client_info(request),
    )
    return ok(message="Password has been reset successfully. Please login with your new password.")
