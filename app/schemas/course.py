from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from app.models.enums import CourseStatus


class SubmitCourseCommand(BaseModel):
    """Instructor asks for a course to be reviewed."""
    course_id: UUID
    instructor_id: UUID


class CourseStatusUpdate(BaseModel):
    """
    Body of the instructor status endpoint.
    Kept as a free string: unsupported actions are rejected by the
    lifecycle service with a domain error, not by schema validation.
    """
    status: str = Field(..., min_length=1, max_length=50)


class CourseResponse(BaseModel):
    id: UUID
    instructor_id: UUID
    title: str
    price: Decimal
    status: CourseStatus
    is_published: bool
    is_approved: bool
    has_unsaved_changes: bool
    submitted_for_review: bool
    submitted_at: Optional[datetime] = None
    total_students: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
