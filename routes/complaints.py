# routes/complaints.py
"""Complaint endpoints.

Owners (students, employees) and staff (admins, sub-admins) get the same
shapes under their own prefixes; every query and mutation is scoped by the
caller's Session in the service layer, never by request parameters.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session as DBSession

from auth.deps import require_roles
from auth.session import Session
from db_sql import get_db
from Models.auth_models import User, UserRole
from Models.complaints_models import ComplaintStatus
from Schemas.auth_schemas import UserOut
from Schemas.base_schema import dump
from Schemas.complaints_schema import (
    ComplaintCreate, StatusUpdateIn, RateIn, ReopenIn, complaint_to_schema, page_to_schema,
)
from services import complaint_engine, complaint_queries
from services.mailer import Notifier, get_notifier
from utils.date_utils import resolve_date_range
from utils.errors import ValidationError
from utils.responses import ok


class ListParams:
    def __init__(
            self,
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=complaint_queries.MAX_PAGE_SIZE),
            status_q: Optional[ComplaintStatus] = Query(None, alias="status"),
            start_date: Optional[str] = Query(None, alias="startDate", description="YYYY-MM-DD[ HH:MM[:SS]]"),
            end_date: Optional[str] = Query(None, alias="endDate", description="YYYY-MM-DD[ HH:MM[:SS]]"),
            date_range: Optional[str] = Query(None, alias="range", description="last7days|last30days"),
            search: Optional[str] = Query(None, max_length=100),
    ):
        try:
            self.start, self.end = resolve_date_range(start_date, end_date, date_range)
        except ValueError as e:
            raise ValidationError.for_field("startDate" if start_date else "range", str(e))
        self.page = page
        self.limit = limit
        self.status = status_q
        self.search = search

    def filters(self) -> dict:
        return {"status": self.status, "start": self.start, "end": self.end, "search": self.search}


def owner_router(role: UserRole) -> APIRouter:
    """Routes mounted under /api/student and /api/employee."""
    router = APIRouter()
    guard = require_roles(role)

    @router.get("/profile")
    def profile(session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        return ok(UserOut.model_validate(db.get(User, session.user_id)))

    @router.get("/stats")
    def my_stats(session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        return ok(complaint_queries.stats(db, session))

    @router.get("/dashboard")
    def dashboard(session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        recent, _ = complaint_queries.list_complaints(db, session, page=1, limit=5)
        return ok({
            "stats": complaint_queries.stats(db, session),
            "recentComplaints": [dump(complaint_to_schema(c)) for c in recent],
        })

    @router.get("/complaints")
    def my_complaints(
            params: ListParams = Depends(),
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
    ):
        items, total = complaint_queries.list_complaints(
            db, session, page=params.page, limit=params.limit, **params.filters()
        )
        return ok(page_to_schema(items, total, params.page, params.limit))

    @router.post("/complaints", status_code=status.HTTP_201_CREATED)
    def submit_complaint(
            body: ComplaintCreate,
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
            notifier: Notifier = Depends(get_notifier),
    ):
        c = complaint_engine.submit(db, session, body.subject, body.content, body.image_url, notifier=notifier)
        return ok(complaint_to_schema(c), "Complaint submitted successfully")

    @router.get("/complaints/{ref}")
    def my_complaint(ref: str, session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        return ok(complaint_to_schema(complaint_queries.get_complaint(db, session, ref)))

    @router.post("/complaints/{ref}/rate")
    def rate_complaint(ref: str, body: RateIn, session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        c = complaint_engine.rate(db, session, ref, body.rating)
        return ok(complaint_to_schema(c), "Thank you for your feedback")

    @router.post("/complaints/{ref}/acknowledge")
    def acknowledge_complaint(ref: str, session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        c = complaint_engine.acknowledge_resolution(db, session, ref)
        return ok(complaint_to_schema(c), "Resolution acknowledged")

    @router.post("/complaints/{ref}/reopen")
    def reopen_complaint(
            ref: str,
            body: ReopenIn,
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
            notifier: Notifier = Depends(get_notifier),
    ):
        c = complaint_engine.reopen(db, session, ref, body.reopen_remarks, notifier=notifier)
        return ok(complaint_to_schema(c), "Complaint reopened")

    return router


def staff_router(role: UserRole) -> APIRouter:
    """Routes mounted under /api/admin and /api/sub-admin."""
    router = APIRouter()
    guard = require_roles(role)

    @router.get("/stats")
    def staff_stats(
            department: Optional[str] = Query(None),
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
    ):
        return ok(complaint_queries.stats(db, session, department=department))

    @router.get("/complaints")
    def list_complaints(
            params: ListParams = Depends(),
            department: Optional[str] = Query(None),
            owner_role: Optional[UserRole] = Query(None, alias="role"),
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
    ):
        items, total = complaint_queries.list_complaints(
            db, session, page=params.page, limit=params.limit,
            department=department, owner_role=owner_role, **params.filters()
        )
        return ok(page_to_schema(items, total, params.page, params.limit))

    @router.get("/complaints/{ref}")
    def get_complaint(ref: str, session: Session = Depends(guard), db: DBSession = Depends(get_db)):
        return ok(complaint_to_schema(complaint_queries.get_complaint(db, session, ref)))

    @router.patch("/complaints/{ref}/status")
    def update_status(
            ref: str,
            body: StatusUpdateIn,
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
            notifier: Notifier = Depends(get_notifier),
    ):
        c = complaint_engine.update_status(db, session, ref, body.status, body.acknowledgment, notifier=notifier)
        return ok(complaint_to_schema(c), "Complaint status updated successfully")

    @router.post("/complaints/{ref}/reopen")
    def reopen_complaint(
            ref: str,
            body: ReopenIn,
            session: Session = Depends(guard),
            db: DBSession = Depends(get_db),
            notifier: Notifier = Depends(get_notifier),
    ):
        c = complaint_engine.reopen(db, session, ref, body.reopen_remarks, notifier=notifier)
        return ok(complaint_to_schema(c), "Complaint reopened")

    return router
