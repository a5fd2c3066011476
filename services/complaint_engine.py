"""Complaint lifecycle: submit, status changes, rating, owner acknowledgment
and reopen.

Every status-affecting write is a conditional UPDATE guarded by the status
(and, for rating, `rating IS NULL`) the caller observed. Zero affected rows
means someone else got there first and the request fails with a Conflict.
"""
import logging
import math
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from auth.authorizer import Action, ResourceScope, COMPLAINANT_ROLES, authorize
from auth.session import Session
from db_sql import commit
from Models.auth_models import User, UserRole
from Models.complaints_models import Complaint, ComplaintReopen, ComplaintStatus, STATUS_ORDER
from utils.date_utils import utcnow
from utils.errors import (
    ValidationError, Forbidden, NotFound, Conflict, RateLimited, Unavailable,
    AlreadyResolved, AlreadyRated, InvalidState,
)

logger = logging.getLogger(__name__)

COMPLAINT_ID_PREFIX = os.getenv("COMPLAINT_ID_PREFIX", "GEIMS")
COMPLAINT_DAILY_LIMIT = int(os.getenv("COMPLAINT_DAILY_LIMIT", "5"))
COMPLAINT_MIN_INTERVAL_SECONDS = int(os.getenv("COMPLAINT_MIN_INTERVAL_SECONDS", "300"))
COMPLAINT_DUPLICATE_WINDOW_SECONDS = int(os.getenv("COMPLAINT_DUPLICATE_WINDOW_SECONDS", "3600"))
REOPEN_CLEARS_FEEDBACK = os.getenv("REOPEN_CLEARS_FEEDBACK", "true").lower() == "true"

SUBJECT_MIN, SUBJECT_MAX = 5, 200
CONTENT_MIN_WORDS, CONTENT_MAX_WORDS = 10, 5000
ACKNOWLEDGMENT_MAX = 2000
REMARKS_MAX = 1000
_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class ReopenPolicy:
    """Whether a reopen also wipes the owner's rating and acknowledgedBy* flags.

    resolvedBy, resolvedAt and the staff acknowledgment are always cleared.
    """
    clear_owner_feedback: bool = True


DEFAULT_REOPEN_POLICY = ReopenPolicy(clear_owner_feedback=REOPEN_CLEARS_FEEDBACK)


def word_count(text: str) -> int:
    return len((text or "").split())


def _normalize_text(text: str) -> str:
    return " ".join((text or "").split()).casefold()


def find_complaint(db: DBSession, ref: Union[int, str]) -> Complaint:
    """Look a complaint up by internal id or by its display code."""
    ref = str(ref).strip()
    if ref.isdigit():
        c = db.get(Complaint, int(ref))
    else:
        c = db.execute(select(Complaint).where(Complaint.complaint_id == ref.upper())).scalar_one_or_none()
    if c is None:
        raise NotFound("Complaint not found")
    return c


def _owner_scope(db: DBSession, complaint: Complaint) -> ResourceScope:
    owner = db.get(User, complaint.user_id)
    if owner is None:
        return ResourceScope(owner_id=complaint.user_id)
    return ResourceScope.of_user(owner)


def _new_complaint_id(db: DBSession) -> str:
    for _ in range(20):
        cid = f"{COMPLAINT_ID_PREFIX}{secrets.randbelow(10 ** 6):06d}"
        taken = db.execute(select(Complaint.id).where(Complaint.complaint_id == cid)).first()
        if taken is None:
            return cid
    raise Unavailable("Could not allocate a complaint ID. Please try again.")


def _validate_submission(subject: str, content: str, image_url: Optional[str]):
    subject = (subject or "").strip()
    content = (content or "").strip()
    if len(subject) < SUBJECT_MIN:
        raise ValidationError.for_field("subject", f"Subject must be at least {SUBJECT_MIN} characters")
    if len(subject) > SUBJECT_MAX:
        raise ValidationError.for_field("subject", f"Subject must not exceed {SUBJECT_MAX} characters")
    words = word_count(content)
    if words < CONTENT_MIN_WORDS:
        raise ValidationError.for_field("content", f"Content must contain at least {CONTENT_MIN_WORDS} words")
    if words > CONTENT_MAX_WORDS:
        raise ValidationError.for_field("content", f"Content must not exceed {CONTENT_MAX_WORDS} words")
    if image_url:
        image_url = image_url.strip()
        if not (image_url.startswith("/uploads/") or image_url.startswith(("http://", "https://"))):
            raise ValidationError.for_field("imageUrl", "Image URL must be an uploaded file or an http(s) URL")
    return subject, content, image_url or None


def _check_submission_limits(db: DBSession, owner_id: int, subject: str, content: str, now: datetime):
    day_start = now - timedelta(days=1)
    count, oldest, latest = db.execute(
        select(func.count(Complaint.id), func.min(Complaint.created_at), func.max(Complaint.created_at))
        .where(Complaint.user_id == owner_id, Complaint.created_at > day_start)
    ).one()

    if count >= COMPLAINT_DAILY_LIMIT:
        remaining = math.ceil((oldest + timedelta(days=1) - now).total_seconds())
        logger.warning("daily complaint limit reached for user=%s", owner_id)
        raise RateLimited(
            f"You can submit at most {COMPLAINT_DAILY_LIMIT} complaints per day.",
            code="DailyComplaintLimit", remaining_seconds=max(1, remaining),
        )

    if latest is not None and COMPLAINT_MIN_INTERVAL_SECONDS > 0:
        wait = COMPLAINT_MIN_INTERVAL_SECONDS - (now - latest).total_seconds()
        if wait > 0:
            logger.warning("complaint submitted too soon by user=%s", owner_id)
            raise RateLimited(
                "Please wait before submitting another complaint.",
                code="ComplaintTooSoon", remaining_seconds=max(1, math.ceil(wait)),
            )

    if COMPLAINT_DUPLICATE_WINDOW_SECONDS > 0:
        since = now - timedelta(seconds=COMPLAINT_DUPLICATE_WINDOW_SECONDS)
        recent = db.execute(
            select(Complaint.subject, Complaint.content)
            .where(Complaint.user_id == owner_id, Complaint.created_at > since)
        ).all()
        key = (_normalize_text(subject), _normalize_text(content))
        if any((_normalize_text(s), _normalize_text(c)) == key for s, c in recent):
            raise Conflict("A similar complaint was submitted recently.", code="DuplicateComplaint")


def submit(db: DBSession, session: Session, subject: str, content: str, image_url: Optional[str] = None,
           notifier=None, now: Optional[datetime] = None) -> Complaint:
    if session.role not in COMPLAINANT_ROLES:
        raise Forbidden("Only students and employees can submit complaints.")
    now = now or utcnow()
    subject, content, image_url = _validate_submission(subject, content, image_url)
    _check_submission_limits(db, session.user_id, subject, content, now)

    for _ in range(_ID_ATTEMPTS):
        c = Complaint(
            complaint_id=_new_complaint_id(db),
            user_id=session.user_id,
            subject=subject,
            content=content,
            image_url=image_url,
            status=ComplaintStatus.SUBMITTED,
            created_at=now,
            updated_at=now,
        )
        db.add(c)
        try:
            commit(db)
            break
        except IntegrityError:
            # another submission took the same display code
            continue
    else:
        raise Unavailable("Could not allocate a complaint ID. Please try again.")

    db.refresh(c)
    logger.info("complaint %s submitted by user=%s", c.complaint_id, session.user_id)

    owner = db.get(User, session.user_id)
    if notifier and owner is not None:
        notifier.send("complaint_submitted", owner.email, name=owner.name,
                      complaint_id=c.complaint_id, subject=c.subject)
    return c


def _conflict_after_miss(db: DBSession, complaint: Complaint):
    db.rollback()
    db.refresh(complaint)
    if complaint.status is ComplaintStatus.RESOLVED:
        return AlreadyResolved()
    return Conflict("The complaint was modified by someone else. Please reload and try again.",
                    code="ConcurrentModification")


def update_status(db: DBSession, session: Session, ref: Union[int, str], new_status,
                  acknowledgment: Optional[str] = None, notifier=None,
                  now: Optional[datetime] = None) -> Complaint:
    complaint = find_complaint(db, ref)
    authorize(session, Action.WRITE_STATUS, _owner_scope(db, complaint))

    try:
        new_status = ComplaintStatus(new_status)
    except ValueError:
        raise ValidationError.for_field("status", "Invalid status")

    current = complaint.status
    if current is ComplaintStatus.RESOLVED:
        raise AlreadyResolved()

    ack = (acknowledgment or "").strip()
    if new_status is ComplaintStatus.RESOLVED and not ack:
        raise ValidationError.for_field("acknowledgment", "Acknowledgment is required when resolving a complaint")
    if len(ack) > ACKNOWLEDGMENT_MAX:
        raise ValidationError.for_field("acknowledgment",
                                        f"Acknowledgment must not exceed {ACKNOWLEDGMENT_MAX} characters")

    if STATUS_ORDER[new_status] <= STATUS_ORDER[current]:
        raise InvalidState(f"Cannot move a complaint from {current.value} to {new_status.value}")

    now = now or utcnow()
    values = {"status": new_status, "updated_at": now}
    if ack:
        values["acknowledgment"] = ack
    if new_status is ComplaintStatus.RESOLVED:
        values.update(resolved_by=session.user_id, resolved_at=now)

    res = db.execute(
        update(Complaint)
        .where(Complaint.id == complaint.id, Complaint.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise _conflict_after_miss(db, complaint)
    commit(db)
    db.refresh(complaint)
    logger.info("complaint %s %s -> %s by user=%s", complaint.complaint_id, current.value,
                new_status.value, session.user_id)

    owner = db.get(User, complaint.user_id)
    if notifier and owner is not None:
        if new_status is ComplaintStatus.RESOLVED:
            notifier.send("complaint_resolved", owner.email, name=owner.name,
                          complaint_id=complaint.complaint_id, acknowledgment=ack)
        else:
            notifier.send("complaint_status_updated", owner.email, name=owner.name,
                          complaint_id=complaint.complaint_id, status=new_status.value)
    return complaint


def _require_owner(session: Session, complaint: Complaint, what: str):
    if complaint.user_id != session.user_id:
        logger.warning("user=%s tried to %s complaint %s it does not own", session.user_id, what,
                       complaint.complaint_id)
        raise Forbidden(f"You can only {what} your own complaints.")
    authorize(session, Action.READ_OWN, ResourceScope(owner_id=complaint.user_id))


def rate(db: DBSession, session: Session, ref: Union[int, str], stars: int,
         now: Optional[datetime] = None) -> Complaint:
    complaint = find_complaint(db, ref)
    _require_owner(session, complaint, "rate")

    if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
        raise ValidationError.for_field("rating", "Rating must be between 1 and 5")
    if complaint.status is not ComplaintStatus.RESOLVED:
        raise InvalidState("Only resolved complaints can be rated")
    if complaint.rating is not None:
        raise AlreadyRated()

    now = now or utcnow()
    res = db.execute(
        update(Complaint)
        .where(Complaint.id == complaint.id,
               Complaint.status == ComplaintStatus.RESOLVED,
               Complaint.rating.is_(None))
        .values(rating=stars, rated_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        db.refresh(complaint)
        if complaint.rating is not None:
            raise AlreadyRated()
        raise InvalidState("Only resolved complaints can be rated")
    commit(db)
    db.refresh(complaint)
    logger.info("complaint %s rated %s by user=%s", complaint.complaint_id, stars, session.user_id)
    return complaint


def acknowledge_resolution(db: DBSession, session: Session, ref: Union[int, str],
                           now: Optional[datetime] = None) -> Complaint:
    """Owner confirms they have seen the resolution. Repeating it is a no-op."""
    complaint = find_complaint(db, ref)
    _require_owner(session, complaint, "acknowledge")
    if complaint.status is not ComplaintStatus.RESOLVED:
        raise InvalidState("Only resolved complaints can be acknowledged")

    owner = db.get(User, complaint.user_id)
    if owner.role is UserRole.STUDENT:
        flag, flag_at = Complaint.acknowledged_by_student, "acknowledged_by_student_at"
    else:
        flag, flag_at = Complaint.acknowledged_by_employee, "acknowledged_by_employee_at"
    if getattr(complaint, flag.key):
        return complaint

    now = now or utcnow()
    res = db.execute(
        update(Complaint)
        .where(Complaint.id == complaint.id,
               Complaint.status == ComplaintStatus.RESOLVED,
               flag.is_(False))
        .values({flag.key: True, flag_at: now, "updated_at": now})
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        db.refresh(complaint)
        if complaint.status is not ComplaintStatus.RESOLVED:
            raise InvalidState("Only resolved complaints can be acknowledged")
        return complaint
    commit(db)
    db.refresh(complaint)
    logger.info("complaint %s resolution acknowledged by user=%s", complaint.complaint_id, session.user_id)
    return complaint


def reopen(db: DBSession, session: Session, ref: Union[int, str], remarks: str,
           policy: Optional[ReopenPolicy] = None, notifier=None,
           now: Optional[datetime] = None) -> Complaint:
    policy = policy or DEFAULT_REOPEN_POLICY
    complaint = find_complaint(db, ref)
    if complaint.user_id == session.user_id:
        authorize(session, Action.READ_OWN, ResourceScope(owner_id=complaint.user_id))
    else:
        authorize(session, Action.WRITE_STATUS, _owner_scope(db, complaint))

    remarks = (remarks or "").strip()
    if not remarks:
        raise ValidationError.for_field("reopenRemarks", "Reopen remarks are required")
    if len(remarks) > REMARKS_MAX:
        raise ValidationError.for_field("reopenRemarks", f"Reopen remarks must not exceed {REMARKS_MAX} characters")
    if complaint.status is not ComplaintStatus.RESOLVED:
        raise InvalidState("Only resolved complaints can be reopened")

    now = now or utcnow()
    previous_ack = complaint.acknowledgment
    values = {
        "status": ComplaintStatus.UNDER_REVIEW,
        "resolved_by": None,
        "resolved_at": None,
        "acknowledgment": None,
        "updated_at": now,
    }
    if policy.clear_owner_feedback:
        values.update(
            rating=None, rated_at=None,
            acknowledged_by_student=False, acknowledged_by_student_at=None,
            acknowledged_by_employee=False, acknowledged_by_employee_at=None,
        )

    res = db.execute(
        update(Complaint)
        .where(Complaint.id == complaint.id, Complaint.status == ComplaintStatus.RESOLVED)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise InvalidState("Only resolved complaints can be reopened")
    db.add(ComplaintReopen(
        complaint_pk=complaint.id,
        previous_status=ComplaintStatus.RESOLVED,
        reopened_by=session.user_id,
        reopen_remarks=remarks,
        previous_acknowledgment=previous_ack,
        reopened_at=now,
    ))
    commit(db)
    db.refresh(complaint)
    logger.info("complaint %s reopened by user=%s", complaint.complaint_id, session.user_id)

    owner = db.get(User, complaint.user_id)
    if notifier and owner is not None:
        notifier.send("complaint_status_updated", owner.email, name=owner.name,
                      complaint_id=complaint.complaint_id, status=complaint.status.value)
    return complaint
