# routes/sub_admin.py
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session as DBSession

from auth.deps import require_roles
from auth.session import Session
from db_sql import get_db
from Models.auth_models import UserRole
from Schemas.auth_schemas import UserOut
from Schemas.users_schema import EmployeeCreateIn, UserUpdateIn, UsersPageOut
from services import user_admin
from services.mailer import Notifier, get_notifier
from utils.responses import ok

router = APIRouter()
sub_admin_only = require_roles(UserRole.SUB_ADMIN)


def _page(db, session, role: UserRole, search, page, limit):
    items, total = user_admin.list_users(db, session, role=role, search=search, page=page, limit=limit)
    return ok(UsersPageOut(items=[UserOut.model_validate(u) for u in items], total=total, page=page, limit=limit))


@router.get("/students")
def list_students(
        search: Optional[str] = Query(None, max_length=100),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        session: Session = Depends(sub_admin_only),
        db: DBSession = Depends(get_db),
):
    return _page(db, session, UserRole.STUDENT, search, page, limit)


@router.get("/employees")
def list_employees(
        search: Optional[str] = Query(None, max_length=100),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        session: Session = Depends(sub_admin_only),
        db: DBSession = Depends(get_db),
):
    return _page(db, session, UserRole.EMPLOYEE, search, page, limit)


@router.post("/employees", status_code=status.HTTP_201_CREATED)
def create_employee(
        body: EmployeeCreateIn,
        session: Session = Depends(sub_admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user, _ = user_admin.create_user(db, session, role=UserRole.EMPLOYEE, notifier=notifier, **body.model_dump())
    return ok(UserOut.model_validate(user), "Employee created. Login details have been emailed.")


@router.put("/employees/{user_id}")
def update_employee(
        body: UserUpdateIn,
        user_id: int = Path(...),
        session: Session = Depends(sub_admin_only),
        db: DBSession = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user = user_admin.update_user(db, session, user_id, body.model_dump(exclude_unset=True), notifier=notifier)
    return ok(UserOut.model_validate(user), "Employee updated successfully")
