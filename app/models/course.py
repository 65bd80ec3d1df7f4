"""Course Model"""

from sqlalchemy import Column, String, Boolean, DateTime, Integer, Numeric, ForeignKey, Uuid

from app.models.base import BaseModel, enum_column_type
from app.models.enums import CourseStatus


class Course(BaseModel):
    """
    A course offered by one instructor.

    ``status`` is the lifecycle stage; ``is_published``/``is_approved`` are
    legacy flags mirrored from it. ``total_students`` is the aggregate of
    active enrollments and is only changed by enrollment creation and the
    refund cascade (and repaired by reconciliation).
    """
    __tablename__ = "courses"

    instructor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(
        enum_column_type(CourseStatus, "course_status"),
        default=CourseStatus.DRAFT,
        nullable=False,
        index=True,
    )
    is_published = Column(Boolean, default=False, nullable=False)
    is_approved = Column(Boolean, default=False, nullable=False)
    has_unsaved_changes = Column(Boolean, default=False, nullable=False)
    submitted_for_review = Column(Boolean, default=False, nullable=False)
    submitted_at = Column(DateTime, nullable=True)

    total_students = Column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Course {self.title} ({self.status})>"
