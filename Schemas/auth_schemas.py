# Schemas/auth_schemas.py
import datetime
from typing import Optional

from pydantic import EmailStr, constr

from Models.auth_models import UserRole
from Schemas.base_schema import CamelModel, RequestModel


# ---------- Requests ----------
class LoginIn(RequestModel):
    email: EmailStr
    password: constr(min_length=1)


class ChangePasswordIn(RequestModel):
    current_password: constr(min_length=1)
    new_password: str
    confirm_password: str


class ForgotPasswordIn(RequestModel):
    email: EmailStr


class ResetPasswordIn(RequestModel):
    token: constr(min_length=1)
    new_password: str
    confirm_password: str


# ---------- Responses ----------
class UserOut(CamelModel):
    user_id: int
    email: str
    name: str
    role: UserRole
    department: Optional[str] = None
    college: Optional[str] = None
    student_id: Optional[str] = None
    is_active: bool
    force_password_change: bool
    last_login: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


class LoginOut(CamelModel):
    token: str
    user: UserOut
    require_password_change: bool


class TokenOut(CamelModel):
    token: str
    user: UserOut


class CooldownOut(CamelModel):
    is_blocked: bool
    remaining_seconds: int
