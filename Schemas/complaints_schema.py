# Schemas/complaints_schema.py
from datetime import datetime
from typing import List, Optional

from pydantic import Field, constr

from Models.auth_models import UserRole
from Models.complaints_models import Complaint, ComplaintStatus
from Schemas.base_schema import CamelModel, RequestModel


# ---------- Requests ----------
class ComplaintCreate(RequestModel):
    subject: str
    content: str
    image_url: Optional[str] = None


class StatusUpdateIn(RequestModel):
    status: ComplaintStatus
    acknowledgment: Optional[str] = None


class RateIn(RequestModel):
    rating: int = Field(..., strict=True)


class ReopenIn(RequestModel):
    reopen_remarks: constr(max_length=1000)


# ---------- Responses ----------
class ComplaintOwnerOut(CamelModel):
    user_id: int
    name: str
    email: str
    role: UserRole
    department: Optional[str] = None
    student_id: Optional[str] = None


class ReopenEntryOut(CamelModel):
    previous_status: ComplaintStatus
    reopened_at: datetime
    reopen_remarks: str
    reopened_by: Optional[int] = None
    previous_acknowledgment: Optional[str] = None


class ComplaintOut(CamelModel):
    id: int
    complaint_id: str
    subject: str
    content: str
    image_url: Optional[str] = None
    status: ComplaintStatus
    acknowledgment: Optional[str] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    rating: Optional[int] = None
    rated_at: Optional[datetime] = None
    acknowledged_by_student: bool = False
    acknowledged_by_student_at: Optional[datetime] = None
    acknowledged_by_employee: bool = False
    acknowledged_by_employee_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    owner: Optional[ComplaintOwnerOut] = None
    reopen_history: List[ReopenEntryOut] = []


class ComplaintPageOut(CamelModel):
    items: List[ComplaintOut]
    total: int
    page: int
    limit: int
    pages: int


def complaint_to_schema(c: Complaint) -> ComplaintOut:
    return ComplaintOut.model_validate(c)


def page_to_schema(items: List[Complaint], total: int, page: int, limit: int) -> ComplaintPageOut:
    return ComplaintPageOut(
        items=[complaint_to_schema(c) for c in items],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )
