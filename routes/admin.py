# routes/admin.py
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session as DBSession

from auth.deps import require_roles
from auth.session import Session
from db_sql import get_db
from Models.auth_models import UserRole
from Schemas.auth_schemas import UserOut
from Schemas.users_schema import UserCreateIn, UserUpdateIn, BulkCreateIn, UsersPageOut
from services import user_admin
from services.mailer import Notifier, get_notifier
from utils.responses import ok

router = APIRouter()
admin_only = require_roles(UserRole.ADMIN)


def _row_error(e: SchemaValidationError) -> str:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    msg = first.get("msg", "invalid value").removeprefix("Value error, ")
    return f"{field}: {msg}" if field else msg


@router.get("/users")
def list_users(
        role: Optional[UserRole] = Query(None),
        department: Optional[str] = Query(None),
        search: Optional[str] = Query(None, max_length=100),
        is_active: Optional[bool] = Query(None, alias="isActive"),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
):
    items, total = user_admin.list_users(db, session, role=role, department=department, search=search,
                                         is_active=is_active, page=page, limit=limit)
    return ok(UsersPageOut(items=[UserOut.model_validate(u) for u in items], total=total, page=page, limit=limit))


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
        body: UserCreateIn,
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user, _ = user_admin.create_user(db, session, notifier=notifier, **body.model_dump())
    return ok(UserOut.model_validate(user), "User created. Login details have been emailed.")


@router.post("/users/bulk")
def bulk_create(
        body: BulkCreateIn,
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    valid, invalid = [], []
    for i, raw in enumerate(body.rows, start=1):
        try:
            valid.append((i, UserCreateIn.model_validate(raw).model_dump()))
        except SchemaValidationError as e:
            invalid.append({"row": i, "email": raw.get("email"), "code": "ValidationError", "message": _row_error(e)})

    result = user_admin.bulk_create(db, session, [row for _, row in valid], notifier=notifier)
    # report rows by their position in the upload, not in the valid subset
    positions = [i for i, _ in valid]
    for entry in result["created"] + result["failed"]:
        entry["row"] = positions[entry["row"] - 1]
    result["failed"] = sorted(result["failed"] + invalid, key=lambda r: r["row"])
    return ok(result, f"{len(result['created'])} users created, {len(result['failed'])} failed")


@router.get("/users/{user_id}")
def get_user(
        user_id: int = Path(...),
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
):
    return ok(UserOut.model_validate(user_admin.get_user(db, session, user_id)))


@router.put("/users/{user_id}")
def update_user(
        body: UserUpdateIn,
        user_id: int = Path(...),
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user = user_admin.update_user(db, session, user_id, body.model_dump(exclude_unset=True), notifier=notifier)
    return ok(UserOut.model_validate(user), "User updated successfully")


@router.delete("/users/{user_id}")
def delete_user(
        user_id: int = Path(...),
        hard: bool = Query(False),
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user_admin.delete_user(db, session, user_id, hard=hard, notifier=notifier)
    return ok(message="User deleted permanently" if hard else "User deactivated")


@router.post("/users/{user_id}/reset-password")
def reset_user_password(
        user_id: int = Path(...),
        session: Session = Depends(admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user_admin.admin_reset_password(db, session, user_id, notifier=notifier)
    return ok(message="Password reset. A temporary password has been emailed to the user.")
