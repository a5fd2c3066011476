# Schemas/users_schema.py
from typing import List, Optional

from pydantic import EmailStr, constr, field_validator

from Models.auth_models import UserRole
from Schemas.auth_schemas import UserOut
from Schemas.base_schema import CamelModel, RequestModel


def _normalize_role_label(v):
    if isinstance(v, str):
        v = v.strip().replace(" ", "_").replace("-", "_").upper()
        if v in {"SUBADMIN", "SUB_ADMIN"}:
            v = "SUB_ADMIN"
    return v


# ---------- Requests ----------
class UserCreateIn(RequestModel):
    email: EmailStr
    name: constr(min_length=2, max_length=100)
    role: UserRole
    department: Optional[constr(max_length=120)] = None
    college: Optional[constr(max_length=200)] = None
    student_id: Optional[constr(max_length=50)] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v):
        return _normalize_role_label(v)


class EmployeeCreateIn(RequestModel):
    """Sub-admins only ever create employees of their own department."""
    email: EmailStr
    name: constr(min_length=2, max_length=100)
    department: Optional[constr(max_length=120)] = None
    college: Optional[constr(max_length=200)] = None


class UserUpdateIn(RequestModel):
    # role is deliberately absent: it never changes after creation
    email: Optional[EmailStr] = None
    name: Optional[constr(min_length=2, max_length=100)] = None
    department: Optional[constr(max_length=120)] = None
    college: Optional[constr(max_length=200)] = None
    student_id: Optional[constr(max_length=50)] = None
    is_active: Optional[bool] = None


class BulkCreateIn(RequestModel):
    """Rows already parsed from the uploaded CSV; each one is validated on its own."""
    rows: List[dict]


# ---------- Responses ----------
class UsersPageOut(CamelModel):
    items: List[UserOut]
    total: int
    page: int
    limit: int
