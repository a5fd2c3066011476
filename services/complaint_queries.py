import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session as DBSession, selectinload

from auth.authorizer import ResourceScope, authorize, default_read_action
from auth.session import Session
from Models.auth_models import User, UserRole
from Models.complaints_models import Complaint, ComplaintStatus
from services.complaint_engine import find_complaint
from utils.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def scoped_complaints(
        session: Session,
        department: Optional[str] = None,
        status: Optional[ComplaintStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        search: Optional[str] = None,
        owner_role: Optional[UserRole] = None,
):
    """SELECT over the complaints the caller may read, owner joined in.

    The report exporter builds on this; listing and stats below do too.
    """
    flt = authorize(session, default_read_action(session.role), ResourceScope(department=department))
    stmt = (
        select(Complaint)
        .join(User, Complaint.user_id == User.user_id)
        .where(*flt.complaint_clauses())
    )
    if status is not None:
        stmt = stmt.where(Complaint.status == status)
    if start is not None:
        stmt = stmt.where(Complaint.created_at >= start)
    if end is not None:
        stmt = stmt.where(Complaint.created_at <= end)
    if owner_role is not None:
        stmt = stmt.where(User.role == owner_role)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Complaint.complaint_id.ilike(like),
            Complaint.subject.ilike(like),
            User.name.ilike(like),
        ))
    return stmt


def list_complaints(
        db: DBSession,
        session: Session,
        page: int = 1,
        limit: int = 10,
        **filters,
) -> Tuple[List[Complaint], int]:
    if page < 1:
        raise ValidationError.for_field("page", "page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError.for_field("limit", f"limit must be between 1 and {MAX_PAGE_SIZE}")

    stmt = scoped_complaints(session, **filters)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.options(selectinload(Complaint.owner), selectinload(Complaint.reopen_entries))
        .order_by(Complaint.created_at.desc(), Complaint.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(rows), total


def get_complaint(db: DBSession, session: Session, ref: Union[int, str]) -> Complaint:
    complaint = find_complaint(db, ref)
    owner = db.get(User, complaint.user_id)
    scope = ResourceScope.of_user(owner) if owner else ResourceScope(owner_id=complaint.user_id)
    authorize(session, default_read_action(session.role), scope)
    return complaint


def stats(db: DBSession, session: Session, department: Optional[str] = None, **filters) -> dict:
    """Counts by status plus the average rating, over the caller's scope."""
    scoped = scoped_complaints(session, department=department, **filters).subquery()
    by_status = {
        ComplaintStatus(s): n
        for s, n in db.execute(select(scoped.c.status, func.count()).group_by(scoped.c.status)).all()
    }
    rated, avg_rating = db.execute(
        select(func.count(scoped.c.rating), func.avg(scoped.c.rating))
    ).one()

    counts = {s.value: int(by_status.get(s, 0)) for s in ComplaintStatus}
    return {
        "total": sum(counts.values()),
        "byStatus": counts,
        "rated": int(rated or 0),
        "averageRating": round(float(avg_rating), 2) if avg_rating is not None else None,
    }
