"""Course lifecycle endpoints - instructors submit their courses for review"""

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.config import Settings
from app.models.user import User
from app.schemas.course import CourseResponse, CourseStatusUpdate, SubmitCourseCommand
from app.schemas.responses import SuccessResponse
from app.services.course_lifecycle_service import CourseLifecycleService

router = APIRouter()


@router.post("/{course_id}/submit", response_model=SuccessResponse[CourseResponse])
async def submit_course_for_review(
    course_id: UUID,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
    settings: Settings = Depends(deps.get_settings),
) -> Any:
    """Submit a draft, edited published, rejected or needs-revision course for review."""
    course = await CourseLifecycleService.submit_for_review(
        db,
        SubmitCourseCommand(course_id=course_id, instructor_id=current_user.id),
        settings,
    )
    return SuccessResponse(
        data=CourseResponse.model_validate(course),
        message="Course submitted for review",
    )


@router.patch("/{course_id}/status", response_model=SuccessResponse[CourseResponse])
async def update_course_status(
    course_id: UUID,
    body: CourseStatusUpdate,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
    settings: Settings = Depends(deps.get_settings),
) -> Any:
    """Instructor status action. Only "submit" is accepted."""
    course = await CourseLifecycleService.apply_status_action(
        db, course_id, current_user.id, body.status, settings
    )
    return SuccessResponse(
        data=CourseResponse.model_validate(course),
        message="Course status updated",
    )


@router.post("/{course_id}/content-changed", response_model=SuccessResponse[CourseResponse])
async def mark_course_content_changed(
    course_id: UUID,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Hook for the course editor: flags unsaved changes on a published course."""
    course = await CourseLifecycleService.record_content_change(db, course_id, current_user.id)
    return SuccessResponse(data=CourseResponse.model_validate(course))


@router.post("/{course_id}/resubmit", response_model=SuccessResponse[CourseResponse])
async def reset_course_for_resubmission(
    course_id: UUID,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Move a needs-revision course back to draft so it can be submitted again."""
    course = await CourseLifecycleService.reset_for_resubmission(db, course_id, current_user.id)
    return SuccessResponse(
        data=CourseResponse.model_validate(course),
        message="Course reset for resubmission successfully",
    )
