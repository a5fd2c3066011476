"""Account administration: creation with a temporary password, profile edits,
deactivation and deletion, administrative password resets and bulk creation
from pre-parsed CSV rows.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from auth.authorizer import Action, ResourceScope, authorize, default_read_action
from auth.security import hash_password, generate_temporary_password
from auth.session import Session
from db_sql import commit
from Models.auth_models import User, UserRole, PasswordResetToken, AuthAudit
from Models.complaints_models import Complaint
from services.reset_cooldown import normalize_email
from services.session_manager import record_auth_event
from utils.errors import APIError, ValidationError, Forbidden, NotFound, Conflict, DuplicateEmail

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "department", "college", "student_id", "is_active")
# changing any of these ends the user's current sessions
SESSION_FIELDS = {"email", "department", "is_active"}


def _clean(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def _get(db: DBSession, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _ensure_unique(db: DBSession, email: Optional[str], student_id: Optional[str], exclude_id: Optional[int] = None):
    if email:
        q = select(User.user_id).where(User.email == email)
        if exclude_id is not None:
            q = q.where(User.user_id != exclude_id)
        if db.execute(q).first():
            raise DuplicateEmail()
    if student_id:
        q = select(User.user_id).where(User.student_id == student_id)
        if exclude_id is not None:
            q = q.where(User.user_id != exclude_id)
        if db.execute(q).first():
            raise Conflict("A user with this student ID already exists", code="DuplicateStudentId")


def create_user(db: DBSession, session: Session, email: str, name: str, role, department: Optional[str] = None,
                college: Optional[str] = None, student_id: Optional[str] = None,
                notifier=None) -> Tuple[User, str]:
    """Create an account with a generated temporary password.

    Returns the user and the temporary password; the password is also mailed
    to the new account and must be changed at first login.
    """
    try:
        role = UserRole(role)
    except ValueError:
        raise ValidationError.for_field("role", "Invalid role")
    email = normalize_email(email)
    name = _clean(name)
    department = _clean(department)
    if not name:
        raise ValidationError.for_field("name", "Name is required")
    if department is None and session.role is UserRole.SUB_ADMIN:
        department = session.department
    if department is None and role is not UserRole.ADMIN:
        raise ValidationError.for_field("department", "Department is required")

    authorize(session, Action.WRITE_USER, ResourceScope(owner_role=role, department=department))
    student_id = _clean(student_id)
    _ensure_unique(db, email, student_id)

    temp = generate_temporary_password()
    user = User(
        email=email,
        password_hash=hash_password(temp),
        name=name,
        role=role,
        department=department,
        college=_clean(college),
        student_id=student_id,
        force_password_change=True,
        is_active=True,
    )
    db.add(user)
    try:
        commit(db)
    except IntegrityError:
        _ensure_unique(db, email, student_id)
        raise Conflict("The account could not be created")
    db.refresh(user)
    logger.info("user=%s created %s account user=%s", session.user_id, role.value, user.user_id)

    if notifier:
        notifier.send("account_created", user.email, name=user.name, role=role.value,
                      email=user.email, temporary_password=temp)
    return user, temp


def bulk_create(db: DBSession, session: Session, rows: Iterable[dict], notifier=None) -> dict:
    """Create one account per pre-parsed row; a bad row does not stop the rest."""
    created: List[dict] = []
    failed: List[dict] = []
    for i, row in enumerate(rows, start=1):
        try:
            user, _ = create_user(db, session, notifier=notifier, **row)
        except APIError as e:
            failed.append({"row": i, "email": row.get("email"), "code": e.code, "message": e.message})
            continue
        created.append({"row": i, "userId": user.user_id, "email": user.email})
    logger.info("bulk create by user=%s: %s created, %s failed", session.user_id, len(created), len(failed))
    return {"created": created, "failed": failed}


def list_users(db: DBSession, session: Session, role=None, department: Optional[str] = None,
               search: Optional[str] = None, is_active: Optional[bool] = None,
               page: int = 1, limit: int = 20) -> Tuple[List[User], int]:
    flt = authorize(session, default_read_action(session.role), ResourceScope(department=department))
    stmt = select(User).where(*flt.user_clauses())
    if role is not None:
        stmt = stmt.where(User.role == UserRole(role))
    if is_active is not None:
        stmt = stmt.where(User.is_active == is_active)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(like), User.email.ilike(like), User.student_id.ilike(like)))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(User.created_at.desc(), User.user_id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(rows), total


def get_user(db: DBSession, session: Session, user_id: int) -> User:
    user = _get(db, user_id)
    authorize(session, default_read_action(session.role), ResourceScope.of_user(user))
    return user


def update_user(db: DBSession, session: Session, user_id: int, changes: dict, notifier=None) -> User:
    user = _get(db, user_id)
    authorize(session, Action.WRITE_USER, ResourceScope.of_user(user))

    changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if "is_active" in changes:
        # (de)activation is account removal; ADMIN only, like delete_user
        if session.role is not UserRole.ADMIN:
            raise Forbidden("Only administrators can activate or deactivate accounts.")
        if changes["is_active"] is None:
            raise ValidationError.for_field("isActive", "isActive must be true or false")
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
        if not changes["email"]:
            raise ValidationError.for_field("email", "Email is required")
    for k in ("name", "college", "student_id", "department"):
        if k in changes:
            changes[k] = _clean(changes[k])
    if "name" in changes and not changes["name"]:
        raise ValidationError.for_field("name", "Name is required")
    if "department" in changes:
        if changes["department"] is None and user.role is not UserRole.ADMIN:
            raise ValidationError.for_field("department", "Department is required")
        # the new department must be inside the caller's scope as well
        authorize(session, Action.WRITE_USER, ResourceScope(owner_id=user.user_id, owner_role=user.role,
                                                            department=changes["department"]))

    changed = {k: v for k, v in changes.items() if getattr(user, k) != v}
    if not changed:
        return user

    _ensure_unique(db, changed.get("email"), changed.get("student_id"), exclude_id=user.user_id)
    for k, v in changed.items():
        setattr(user, k, v)
    if SESSION_FIELDS & set(changed):
        user.token_version = user.token_version + 1
    try:
        commit(db)
    except IntegrityError:
        _ensure_unique(db, changed.get("email"), changed.get("student_id"), exclude_id=user.user_id)
        raise Conflict("The account could not be updated")
    db.refresh(user)
    logger.info("user=%s updated user=%s fields=%s", session.user_id, user.user_id, sorted(changed))

    if notifier:
        notifier.send("account_updated", user.email, name=user.name,
                      changed_fields=", ".join(sorted(changed)))
    return user


def delete_user(db: DBSession, session: Session, user_id: int, hard: bool = False, notifier=None) -> None:
    """Deactivate (default) or permanently delete an account. ADMIN only."""
    if session.role is not UserRole.ADMIN:
        raise Forbidden("Only administrators can delete accounts.")
    user = _get(db, user_id)
    authorize(session, Action.WRITE_USER, ResourceScope.of_user(user))
    email, name = user.email, user.name

    if not hard:
        if user.is_active:
            user.is_active = False
            user.token_version = user.token_version + 1
            commit(db)
            logger.info("user=%s deactivated user=%s", session.user_id, user_id)
        return

    owned = db.execute(select(func.count(Complaint.id)).where(Complaint.user_id == user_id)).scalar_one()
    if owned:
        raise Conflict("User has complaints and cannot be permanently deleted. Deactivate the account instead.",
                       code="UserHasComplaints")
    db.execute(
        update(Complaint).where(Complaint.resolved_by == user_id).values(resolved_by=None)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(AuthAudit).where(AuthAudit.user_id == user_id).values(user_id=None)
        .execution_options(synchronize_session=False)
    )
    db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user_id).delete(synchronize_session=False)
    db.delete(user)
    commit(db)
    logger.info("user=%s permanently deleted user=%s", session.user_id, user_id)

    if notifier:
        notifier.send("account_deleted", email, name=name)


def admin_reset_password(db: DBSession, session: Session, user_id: int, notifier=None) -> str:
    """Give the account a new temporary password and force a change at next login."""
    user = _get(db, user_id)
    authorize(session, Action.WRITE_USER, ResourceScope.of_user(user))

    temp = generate_temporary_password()
    user.password_hash = hash_password(temp)
    user.force_password_change = True
    user.token_version = user.token_version + 1
    record_auth_event(db, "ADMIN_PASSWORD_RESET", user.user_id, f"by user {session.user_id}")
    commit(db)
    logger.info("user=%s reset the password of user=%s", session.user_id, user.user_id)

    if notifier:
        notifier.send("password_reset_by_admin", user.email, name=user.name, temporary_password=temp)
    return temp


def seed_admin(db: DBSession, email: Optional[str], password: Optional[str], name: Optional[str] = None) -> Optional[User]:
    """Create the first ADMIN account from configuration if it does not exist yet."""
    email = normalize_email(email)
    if not email or not password:
        return None
    existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing is not None:
        return existing
    user = User(
        email=email,
        password_hash=hash_password(password),
        name=_clean(name) or "Administrator",
        role=UserRole.ADMIN,
        department=None,
        force_password_change=False,
        is_active=True,
    )
    db.add(user)
    commit(db)
    logger.info("seeded admin account user=%s", user.user_id)
    return user
