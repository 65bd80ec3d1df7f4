"""Enrollment Model"""

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Index, Uuid

from app.models.base import BaseModel, StatusMixin
from app.models.enums import EnrollmentStatus
from app.utils.time import get_utc_now


class Enrollment(BaseModel, StatusMixin):
    """
    A student's access to a course, created by a successful purchase.
    Deactivated (is_active=False, status="refunded") by refund approval.
    """
    __tablename__ = "enrollments"

    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(50), default=EnrollmentStatus.ACTIVE.value, nullable=False)
    progress = Column(Integer, default=0, nullable=False)
    enrolled_at = Column(DateTime, default=get_utc_now, nullable=False)
    refunded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_enrollments_course_active", "course_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Enrollment {self.student_id} -> {self.course_id} ({self.status})>"
