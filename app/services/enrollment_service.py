"""Enrollment Service - paid enrollment records consumed by the refund workflow"""

import logging
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError
from app.models.billing import Bill
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.enums import BillStatus, EnrollmentStatus
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)


class EnrollmentService:
    """
    Stand-in for the purchase flow: writes the completed bill, the active
    enrollment and the course counter increment in one transaction.
    """

    @staticmethod
    async def count_active_enrollments(db: AsyncSession, course_id: UUID) -> int:
        count = await db.scalar(
            select(func.count()).select_from(Enrollment).where(
                Enrollment.course_id == course_id,
                Enrollment.is_active.is_(True),
            )
        )
        return count or 0

    @staticmethod
    async def record_purchase(
        db: AsyncSession,
        student_id: UUID,
        course_id: UUID,
        amount: Optional[Decimal] = None,
    ) -> Tuple[Enrollment, Bill]:
        """
        Record a completed purchase of a course.

        Args:
            amount: Paid amount; defaults to the current course price.

        Raises:
            NotFoundError: course does not exist
            ConflictError: the student already has an active enrollment
        """
        course = await db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course not found")

        existing = await db.scalar(
            select(Enrollment.id).where(
                Enrollment.student_id == student_id,
                Enrollment.course_id == course_id,
                Enrollment.is_active.is_(True),
            )
        )
        if existing:
            raise ConflictError("Student is already enrolled in this course")

        now = get_utc_now()
        bill = Bill(
            student_id=student_id,
            course_id=course_id,
            amount=amount if amount is not None else course.price,
            status=BillStatus.COMPLETED,
            paid_at=now,
        )
        enrollment = Enrollment(
            student_id=student_id,
            course_id=course_id,
            is_active=True,
            status=EnrollmentStatus.ACTIVE.value,
            progress=0,
            enrolled_at=now,
        )
        db.add_all([bill, enrollment])
        await db.execute(
            update(Course)
            .where(Course.id == course_id)
            .values(total_students=Course.total_students + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(bill)
        await db.refresh(enrollment)

        logger.info(
            "Enrollment purchased",
            extra={"enrollment_id": str(enrollment.id), "course_id": str(course_id)},
        )
        return enrollment, bill
