"""Course Lifecycle Service - instructor-driven course status transitions"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.course import Course
from app.models.enums import CourseStatus, CourseStatusAction
from app.schemas.course import SubmitCourseCommand
from app.services import notification_service
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)

# Statuses an instructor may submit from. SUBMITTED and APPROVED courses
# are waiting on the admin review workflow.
SUBMITTABLE_STATUSES = (
    CourseStatus.DRAFT,
    CourseStatus.PUBLISHED,
    CourseStatus.REJECTED,
    CourseStatus.NEEDS_REVISION,
)


class CourseLifecycleService:
    """
    Owns ``Course.status`` on the instructor side.

    Transitions into approved/rejected/needs_revision/published belong to the
    administrative review workflow and are only read here as preconditions.
    Every write is a conditional UPDATE keyed on the state that was read, so
    two racing requests cannot both apply a transition.
    """

    @staticmethod
    async def get_course_by_id(db: AsyncSession, course_id: UUID) -> Optional[Course]:
        result = await db.execute(select(Course).where(Course.id == course_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_owned_course(db: AsyncSession, course_id: UUID, instructor_id: UUID) -> Course:
        """Load a course and check the caller owns it."""
        course = await CourseLifecycleService.get_course_by_id(db, course_id)
        if not course:
            raise NotFoundError("Course not found")
        if course.instructor_id != instructor_id:
            raise AuthorizationError("You do not have permission to manage this course")
        return course

    @staticmethod
    def build_submission_updates(course: Course) -> Dict[str, Any]:
        """
        Validate a submission from the course's current state and return the
        column values to write.

        Raises:
            ConflictError: status does not allow submission, a published course
                has no changes, or a draft was already submitted once.
        """
        current = course.status or CourseStatus.DRAFT

        if current not in SUBMITTABLE_STATUSES:
            raise ConflictError(
                f'Cannot submit course with status "{current.value}". Only draft, published, '
                "rejected, or needs_revision courses can be submitted for review."
            )

        if current == CourseStatus.PUBLISHED and not course.has_unsaved_changes:
            raise ConflictError(
                "Cannot resubmit published course without any changes. Please edit the course first."
            )

        if current == CourseStatus.DRAFT and (course.submitted_for_review or course.submitted_at):
            raise ConflictError(
                "This course has already been submitted for review. "
                "You can only submit each draft course once."
            )

        return {
            "status": CourseStatus.SUBMITTED,
            "submitted_at": get_utc_now(),
            "submitted_for_review": True,
            "has_unsaved_changes": False,
            # Legacy flags follow the status
            "is_published": False,
            "is_approved": False,
        }

    @staticmethod
    async def _conditional_write(
        db: AsyncSession,
        course: Course,
        values: Dict[str, Any],
        **expected: Any,
    ) -> Course:
        """
        Apply ``values`` only if the row still holds the ``expected`` column
        values; otherwise another request got there first.
        """
        conditions = [Course.id == course.id]
        conditions.extend(getattr(Course, column) == value for column, value in expected.items())

        result = await db.execute(
            update(Course)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise ConflictError("Course was changed by another request. Reload and try again.")

        await db.commit()
        await db.refresh(course)
        return course

    @staticmethod
    async def submit_for_review(
        db: AsyncSession,
        command: SubmitCourseCommand,
        settings: Settings,
    ) -> Course:
        """Submit a course for admin review."""
        course = await CourseLifecycleService.get_owned_course(
            db, command.course_id, command.instructor_id
        )
        previous_status = course.status
        updates = CourseLifecycleService.build_submission_updates(course)

        course = await CourseLifecycleService._conditional_write(
            db,
            course,
            updates,
            status=previous_status,
            submitted_for_review=course.submitted_for_review,
        )
        logger.info(
            "Course submitted for review",
            extra={
                "course_id": str(course.id),
                "from_status": previous_status.value,
                "instructor_id": str(command.instructor_id),
            },
        )
        notification_service.notify_course_submitted(settings, course)
        return course

    @staticmethod
    async def apply_status_action(
        db: AsyncSession,
        course_id: UUID,
        instructor_id: UUID,
        action: str,
        settings: Settings,
    ) -> Course:
        """
        Handle a status change requested by the instructor.

        Only submission is supported; withdrawing a submission and
        publishing/unpublishing are not available to instructors.
        """
        course = await CourseLifecycleService.get_owned_course(db, course_id, instructor_id)

        try:
            requested = CourseStatusAction(action.strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid status update: {action}. "
                "Teachers can only submit courses for review."
            )

        if requested in (CourseStatusAction.SUBMIT, CourseStatusAction.SUBMITTED):
            return await CourseLifecycleService.submit_for_review(
                db,
                SubmitCourseCommand(course_id=course_id, instructor_id=instructor_id),
                settings,
            )

        if requested in (CourseStatusAction.PUBLISH, CourseStatusAction.UNPUBLISH):
            raise AuthorizationError(
                "Teachers cannot publish or unpublish courses. "
                "This action is reserved for administrators."
            )

        if requested == CourseStatusAction.WITHDRAW or course.status == CourseStatus.SUBMITTED:
            raise ValidationError(
                "Cannot withdraw submission. Each course can only be submitted once for review."
            )

        raise ValidationError(
            f"Invalid status update: {action}. Teachers can only submit courses for review."
        )

    @staticmethod
    async def record_content_change(
        db: AsyncSession,
        course_id: UUID,
        instructor_id: UUID,
    ) -> Course:
        """
        Called by the course editing flow after an instructor saves changes.
        A published course is marked as having unsaved changes so it can be
        resubmitted; other statuses are left alone.
        """
        course = await CourseLifecycleService.get_owned_course(db, course_id, instructor_id)
        if course.status != CourseStatus.PUBLISHED or course.has_unsaved_changes:
            return course

        await db.execute(
            update(Course)
            .where(Course.id == course.id, Course.status == CourseStatus.PUBLISHED)
            .values(has_unsaved_changes=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(course)
        logger.info("Published course edited", extra={"course_id": str(course.id)})
        return course

    @staticmethod
    async def reset_for_resubmission(
        db: AsyncSession,
        course_id: UUID,
        instructor_id: UUID,
    ) -> Course:
        """Start a new submission cycle for a course that needs revision."""
        course = await CourseLifecycleService.get_owned_course(db, course_id, instructor_id)
        if course.status != CourseStatus.NEEDS_REVISION:
            raise ConflictError("Course does not need revision")

        course = await CourseLifecycleService._conditional_write(
            db,
            course,
            {
                "status": CourseStatus.DRAFT,
                "submitted_for_review": False,
                "submitted_at": None,
            },
            status=CourseStatus.NEEDS_REVISION,
        )
        logger.info("Course reset for resubmission", extra={"course_id": str(course.id)})
        return course
