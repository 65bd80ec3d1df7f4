"""Refund Request Model"""

from sqlalchemy import Column, String, Text, DateTime, Numeric, ForeignKey, Index, Uuid, text

from app.models.base import BaseModel, enum_column_type
from app.models.enums import RefundStatus, RefundMethod, ContactMethodType
from app.utils.time import get_utc_now


class RefundRequest(BaseModel):
    """
    A student's request to be refunded for one paid enrollment.

    Only one PENDING request may exist per enrollment; the partial unique
    index enforces it when two requests race past the service check.
    """
    __tablename__ = "refund_requests"

    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    enrollment_id = Column(Uuid, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    bill_id = Column(Uuid, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    contact_type = Column(enum_column_type(ContactMethodType, "refund_contact_type"), nullable=False)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(20), nullable=True)

    status = Column(
        enum_column_type(RefundStatus, "refund_status"),
        default=RefundStatus.PENDING,
        nullable=False,
        index=True,
    )
    refund_method = Column(enum_column_type(RefundMethod, "refund_method"), nullable=True)
    requested_at = Column(DateTime, default=get_utc_now, nullable=False)
    processed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    processed_at = Column(DateTime, nullable=True, index=True)
    rejection_reason = Column(String(500), nullable=True)
    teacher_notes = Column(String(1000), nullable=True)
    admin_notes = Column(String(1000), nullable=True)

    __table_args__ = (
        Index(
            "uq_refund_requests_pending_enrollment",
            "enrollment_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    @property
    def is_processed(self) -> bool:
        return self.status != RefundStatus.PENDING

    def __repr__(self) -> str:
        return f"<RefundRequest {self.amount} - {self.status}>"
