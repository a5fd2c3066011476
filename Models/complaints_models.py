# Models/complaints_models.py
import enum

from sqlalchemy import (
    Column, BigInteger, Integer, SmallInteger, String, Text, Boolean, DateTime, ForeignKey, Enum, Index, func
)
from sqlalchemy.orm import relationship

from Models.auth_models import Base


class ComplaintStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    READ = "READ"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"


# forward order; reopen is the only way back
STATUS_ORDER = {
    ComplaintStatus.SUBMITTED: 0,
    ComplaintStatus.READ: 1,
    ComplaintStatus.UNDER_REVIEW: 2,
    ComplaintStatus.RESOLVED: 3,
}


class Complaint(Base):
    __tablename__ = "complaints"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    complaint_id = Column(String(20), nullable=False, unique=True)
    user_id = Column(BigInteger, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False)
    subject = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    image_url = Column(String(500), nullable=True)
    status = Column(Enum(ComplaintStatus, name="complaint_status_enum"), nullable=False,
                    default=ComplaintStatus.SUBMITTED)
    acknowledgment = Column(Text, nullable=True)
    resolved_by = Column(BigInteger, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    rating = Column(SmallInteger, nullable=True)
    rated_at = Column(DateTime, nullable=True)
    acknowledged_by_student = Column(Boolean, nullable=False, default=False)
    acknowledged_by_student_at = Column(DateTime, nullable=True)
    acknowledged_by_employee = Column(Boolean, nullable=False, default=False)
    acknowledged_by_employee_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", foreign_keys=[user_id])
    resolver = relationship("User", foreign_keys=[resolved_by])
    # read-only view; entries are only ever inserted by the lifecycle engine
    reopen_entries = relationship(
        "ComplaintReopen",
        order_by="ComplaintReopen.id",
        viewonly=True,
    )

    __table_args__ = (
        Index("idx_complaints_owner_status", "user_id", "status"),
        Index("idx_complaints_created", "created_at"),
    )

    @property
    def reopen_history(self):
        return tuple(self.reopen_entries)


class ComplaintReopen(Base):
    __tablename__ = "complaint_reopens"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    complaint_pk = Column(BigInteger, ForeignKey("complaints.id", ondelete="RESTRICT"), nullable=False)
    previous_status = Column(Enum(ComplaintStatus, name="complaint_status_enum"), nullable=False)
    reopened_by = Column(BigInteger, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    reopen_remarks = Column(Text, nullable=False)
    previous_acknowledgment = Column(Text, nullable=True)
    reopened_at = Column(DateTime, nullable=False)

    __table_args__ = (Index("idx_reopens_complaint", "complaint_pk"),)
