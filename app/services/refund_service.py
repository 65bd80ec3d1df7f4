"""Refund Service - refund request state machine and the enrollment cascade"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
from uuid import UUID
from sqlalchemy import select, update, func, case, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.billing import Bill
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.enums import BillStatus, EnrollmentStatus, RefundStatus, SETTLED_REFUND_STATUSES
from app.models.refund import RefundRequest
from app.schemas.refund import (
    ApproveRefundCommand,
    CancelRefundCommand,
    CreateRefundCommand,
    EligibleCourse,
    RefundFilter,
    RefundStats,
    RejectRefundCommand,
)
from app.services import notification_service
from app.services.user_service import UserService
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)


class CascadeTarget(NamedTuple):
    """Records touched by a refund approval."""
    refund_id: UUID
    bill_id: UUID
    enrollment_id: UUID
    course_id: UUID

    @classmethod
    def from_refund(cls, refund: RefundRequest) -> "CascadeTarget":
        return cls(refund.id, refund.bill_id, refund.enrollment_id, refund.course_id)


class RefundService:
    """
    Owns ``RefundRequest.status``.

    pending -> approved | rejected | cancelled. ``completed`` follows
    ``approved`` through external settlement and is never set here.
    Approval drives the cascade RefundRequest -> Bill -> Enrollment -> Course.
    """

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    async def get_refund_by_id(db: AsyncSession, refund_id: UUID) -> Optional[RefundRequest]:
        result = await db.execute(select(RefundRequest).where(RefundRequest.id == refund_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_pending_refund(db: AsyncSession, enrollment_id: UUID) -> Optional[RefundRequest]:
        result = await db.execute(
            select(RefundRequest).where(
                RefundRequest.enrollment_id == enrollment_id,
                RefundRequest.status == RefundStatus.PENDING,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_latest_bill(
        db: AsyncSession,
        student_id: UUID,
        course_id: UUID,
        status: BillStatus,
    ) -> Optional[Bill]:
        result = await db.execute(
            select(Bill)
            .where(
                Bill.student_id == student_id,
                Bill.course_id == course_id,
                Bill.status == status,
            )
            .order_by(Bill.paid_at.desc().nulls_last(), Bill.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_refund_or_404(db: AsyncSession, refund_id: UUID) -> RefundRequest:
        refund = await RefundService.get_refund_by_id(db, refund_id)
        if not refund:
            raise NotFoundError("Refund request not found")
        return refund

    @staticmethod
    def _ensure_pending(refund: RefundRequest) -> None:
        if refund.status.is_terminal:
            raise ConflictError(f"Refund request has already been {refund.status.value}")

    # ------------------------------------------------------------------
    # Student side
    # ------------------------------------------------------------------

    @staticmethod
    async def get_eligible_courses(db: AsyncSession, student_id: UUID) -> List[EligibleCourse]:
        """Active paid enrollments without a pending refund request."""
        paid_amount = (
            select(Bill.amount)
            .where(
                Bill.student_id == Enrollment.student_id,
                Bill.course_id == Enrollment.course_id,
                Bill.status == BillStatus.COMPLETED,
            )
            .order_by(Bill.paid_at.desc().nulls_last(), Bill.created_at.desc())
            .limit(1)
            .correlate(Enrollment)
            .scalar_subquery()
        )
        pending = exists().where(
            RefundRequest.enrollment_id == Enrollment.id,
            RefundRequest.status == RefundStatus.PENDING,
        )
        result = await db.execute(
            select(Enrollment, Course, paid_amount)
            .join(Course, Course.id == Enrollment.course_id)
            .where(
                Enrollment.student_id == student_id,
                Enrollment.is_active.is_(True),
                paid_amount.is_not(None),
                ~pending,
            )
            .order_by(Enrollment.enrolled_at.desc())
        )

        return [
            EligibleCourse(
                enrollment_id=enrollment.id,
                course_id=course.id,
                course_title=course.title,
                teacher_id=course.instructor_id,
                amount=amount,
                enrolled_at=enrollment.enrolled_at,
                progress=enrollment.progress,
            )
            for enrollment, course, amount in result.all()
        ]

    @staticmethod
    async def _resolve_bill(
        db: AsyncSession,
        enrollment: Enrollment,
        course: Course,
        settings: Settings,
    ) -> Bill:
        """Find the paid bill behind an enrollment."""
        bill = await RefundService.get_latest_bill(
            db, enrollment.student_id, course.id, BillStatus.COMPLETED
        )
        if bill:
            return bill

        if await RefundService.get_latest_bill(
            db, enrollment.student_id, course.id, BillStatus.REFUNDED
        ):
            raise ConflictError("This purchase has already been refunded")

        if not settings.REFUND_SYNTHESIZE_MISSING_BILL:
            raise NotFoundError("Payment bill not found")

        # Enrollments that predate billing have no bill; charge them at the
        # current course price.
        bill = Bill(
            student_id=enrollment.student_id,
            course_id=course.id,
            amount=course.price,
            status=BillStatus.COMPLETED,
            paid_at=enrollment.enrolled_at,
        )
        db.add(bill)
        await db.flush()
        logger.warning(
            "Synthesized missing bill for legacy enrollment",
            extra={"enrollment_id": str(enrollment.id), "bill_id": str(bill.id)},
        )
        return bill

    @staticmethod
    async def create_refund_request(
        db: AsyncSession,
        command: CreateRefundCommand,
        settings: Settings,
    ) -> RefundRequest:
        """
        Open a refund request against one of the student's paid enrollments.

        Raises:
            NotFoundError: enrollment (active, owned by the student) or bill missing
            ConflictError: a pending request exists or the bill is already refunded
            ValidationError: contact details missing or amount differs from the bill amount
        """
        result = await db.execute(
            select(Enrollment).where(
                Enrollment.id == command.enrollment_id,
                Enrollment.student_id == command.student_id,
                Enrollment.is_active.is_(True),
            )
        )
        enrollment = result.scalar_one_or_none()
        if not enrollment:
            raise NotFoundError("Enrollment not found or not eligible for refund")

        if await RefundService.get_pending_refund(db, enrollment.id):
            raise ConflictError("A pending refund request already exists for this enrollment")

        missing = command.contact_method.missing_fields()
        if missing:
            raise ValidationError(
                f"Contact method '{command.contact_method.type.value}' requires: {', '.join(missing)}"
            )

        course = await db.get(Course, enrollment.course_id)
        if not course:
            raise NotFoundError("Course not found")

        bill = await RefundService._resolve_bill(db, enrollment, course, settings)

        # Refunds always cover the whole bill
        amount = Decimal(bill.amount)
        if command.amount is not None and Decimal(command.amount) != amount:
            # Discard a bill synthesized for this request
            await db.rollback()
            if Decimal(command.amount) > amount:
                raise ValidationError("Refund amount cannot exceed bill amount")
            raise ValidationError("Partial refunds are not supported")

        refund = RefundRequest(
            student_id=command.student_id,
            teacher_id=course.instructor_id,
            course_id=course.id,
            enrollment_id=enrollment.id,
            bill_id=bill.id,
            amount=amount,
            reason=command.reason,
            description=command.description,
            contact_type=command.contact_method.type,
            contact_email=command.contact_method.email,
            contact_phone=command.contact_method.phone,
            status=RefundStatus.PENDING,
            requested_at=get_utc_now(),
        )
        db.add(refund)
        try:
            await db.commit()
        except IntegrityError:
            # Lost the race against another request for the same enrollment
            await db.rollback()
            raise ConflictError("A pending refund request already exists for this enrollment")
        await db.refresh(refund)

        logger.info(
            "Refund requested",
            extra={
                "refund_id": str(refund.id),
                "enrollment_id": str(enrollment.id),
                "amount": str(refund.amount),
            },
        )
        teacher_email = await UserService.get_email(db, refund.teacher_id)
        notification_service.notify_refund_requested(settings, teacher_email, refund)
        return refund

    @staticmethod
    async def cancel_refund_request(
        db: AsyncSession,
        command: CancelRefundCommand,
    ) -> RefundRequest:
        """Withdraw a pending request. Only the requesting student may cancel."""
        refund = await RefundService.get_refund_or_404(db, command.refund_id)
        if refund.student_id != command.student_id:
            raise AuthorizationError("Only the requesting student can cancel this refund request")
        if refund.status != RefundStatus.PENDING:
            raise ConflictError("Can only cancel pending refund requests")

        claimed = await RefundService._claim_pending(
            db,
            refund,
            {"status": RefundStatus.CANCELLED},
            student_id=command.student_id,
        )
        if not claimed:
            await db.rollback()
            raise ConflictError("Refund request not found or cannot be cancelled")

        await db.commit()
        await db.refresh(refund)
        logger.info("Refund cancelled", extra={"refund_id": str(refund.id)})
        return refund

    # ------------------------------------------------------------------
    # Teacher side
    # ------------------------------------------------------------------

    @staticmethod
    async def _get_teacher_refund(db: AsyncSession, refund_id: UUID, teacher_id: UUID) -> RefundRequest:
        refund = await RefundService.get_refund_or_404(db, refund_id)
        if refund.teacher_id != teacher_id:
            raise AuthorizationError("Only the course owner can process this refund request")
        return refund

    @staticmethod
    async def _claim_pending(
        db: AsyncSession,
        refund: RefundRequest,
        values: Dict[str, Any],
        **owner: UUID,
    ) -> bool:
        """
        Move a request out of PENDING with one conditional UPDATE.

        Returns False when the row is no longer pending (or no longer owned
        as expected), i.e. another request already processed it.
        """
        conditions = [
            RefundRequest.id == refund.id,
            RefundRequest.status == RefundStatus.PENDING,
        ]
        conditions.extend(getattr(RefundRequest, column) == value for column, value in owner.items())

        result = await db.execute(
            update(RefundRequest)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def mark_bill_refunded(db: AsyncSession, target: CascadeTarget, now: datetime) -> bool:
        """Bill -> refunded, only from completed so it happens at most once."""
        result = await db.execute(
            update(Bill)
            .where(Bill.id == target.bill_id, Bill.status == BillStatus.COMPLETED)
            .values(status=BillStatus.REFUNDED, refunded_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Bill not in completed state, left unchanged",
                extra={"refund_id": str(target.refund_id), "bill_id": str(target.bill_id)},
            )
            return False
        return True

    @staticmethod
    async def deactivate_enrollment(db: AsyncSession, target: CascadeTarget, now: datetime) -> bool:
        result = await db.execute(
            update(Enrollment)
            .where(Enrollment.id == target.enrollment_id, Enrollment.is_active.is_(True))
            .values(is_active=False, status=EnrollmentStatus.REFUNDED.value, refunded_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Enrollment already inactive, left unchanged",
                extra={"refund_id": str(target.refund_id), "enrollment_id": str(target.enrollment_id)},
            )
            return False
        return True

    @staticmethod
    async def decrement_course_students(db: AsyncSession, target: CascadeTarget) -> None:
        await db.execute(
            update(Course)
            .where(Course.id == target.course_id)
            .values(
                total_students=case(
                    (Course.total_students > 0, Course.total_students - 1),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def _run_atomic_cascade(db: AsyncSession, target: CascadeTarget, now: datetime) -> None:
        """Bill, enrollment and course writes in the approval transaction."""
        try:
            await RefundService.mark_bill_refunded(db, target, now)
            if await RefundService.deactivate_enrollment(db, target, now):
                await RefundService.decrement_course_students(db, target)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Refund approval rolled back", extra={"refund_id": str(target.refund_id)})
            raise

    @staticmethod
    async def _run_best_effort_cascade(db: AsyncSession, target: CascadeTarget, now: datetime) -> None:
        """
        Commit the approval, then each cascade step on its own. A failed step
        is logged and skipped; reconciliation repairs what it left behind.
        """
        await db.commit()
        refund_id = str(target.refund_id)

        try:
            await RefundService.mark_bill_refunded(db, target, now)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Error updating bill status", extra={"refund_id": refund_id})

        try:
            deactivated = await RefundService.deactivate_enrollment(db, target, now)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Error deactivating enrollment", extra={"refund_id": refund_id})
            return

        if not deactivated:
            return

        try:
            await RefundService.decrement_course_students(db, target)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Error decrementing course students", extra={"refund_id": refund_id})

    @staticmethod
    async def approve_refund(
        db: AsyncSession,
        command: ApproveRefundCommand,
        settings: Settings,
    ) -> RefundRequest:
        """
        Approve a pending refund and unwind the paid enrollment.

        Raises:
            NotFoundError: refund request missing
            AuthorizationError: caller does not own the course
            ConflictError: request already processed (including a lost race)
        """
        refund = await RefundService._get_teacher_refund(db, command.refund_id, command.teacher_id)
        RefundService._ensure_pending(refund)

        now = get_utc_now()
        values: Dict[str, Any] = {
            "status": RefundStatus.APPROVED,
            "processed_by": command.teacher_id,
            "processed_at": now,
        }
        if command.notes:
            values["teacher_notes"] = command.notes
        if command.refund_method:
            values["refund_method"] = command.refund_method

        # Rollbacks expire the ORM object, so the cascade works from plain ids
        target = CascadeTarget.from_refund(refund)

        claimed = await RefundService._claim_pending(db, refund, values, teacher_id=command.teacher_id)
        if not claimed:
            await db.rollback()
            raise ConflictError("Refund request not found or already processed")

        if settings.REFUND_CASCADE_ATOMIC:
            await RefundService._run_atomic_cascade(db, target, now)
        else:
            await RefundService._run_best_effort_cascade(db, target, now)

        await db.refresh(refund)
        logger.info(
            "Refund approved",
            extra={
                "refund_id": str(refund.id),
                "enrollment_id": str(refund.enrollment_id),
                "course_id": str(refund.course_id),
            },
        )
        student_email = refund.contact_email or await UserService.get_email(db, refund.student_id)
        notification_service.notify_refund_processed(settings, student_email, refund)
        return refund

    @staticmethod
    async def reject_refund(
        db: AsyncSession,
        command: RejectRefundCommand,
        settings: Settings,
    ) -> RefundRequest:
        """Reject a pending refund. Bill, enrollment and course stay untouched."""
        refund = await RefundService._get_teacher_refund(db, command.refund_id, command.teacher_id)
        RefundService._ensure_pending(refund)

        values: Dict[str, Any] = {
            "status": RefundStatus.REJECTED,
            "rejection_reason": command.reason,
            "processed_by": command.teacher_id,
            "processed_at": get_utc_now(),
        }
        if command.notes:
            values["teacher_notes"] = command.notes

        claimed = await RefundService._claim_pending(db, refund, values, teacher_id=command.teacher_id)
        if not claimed:
            await db.rollback()
            raise ConflictError("Refund request not found or already processed")

        await db.commit()
        await db.refresh(refund)
        logger.info("Refund rejected", extra={"refund_id": str(refund.id)})
        student_email = refund.contact_email or await UserService.get_email(db, refund.student_id)
        notification_service.notify_refund_processed(settings, student_email, refund)
        return refund

    # ------------------------------------------------------------------
    # Listings and admin views
    # ------------------------------------------------------------------

    @staticmethod
    async def list_refunds(
        db: AsyncSession,
        filters: RefundFilter,
        student_id: Optional[UUID] = None,
        teacher_id: Optional[UUID] = None,
    ) -> Tuple[List[RefundRequest], int]:
        conditions = []
        if student_id is not None:
            conditions.append(RefundRequest.student_id == student_id)
        if teacher_id is not None:
            conditions.append(RefundRequest.teacher_id == teacher_id)
        if filters.status is not None:
            conditions.append(RefundRequest.status == filters.status)

        total = await db.scalar(
            select(func.count()).select_from(RefundRequest).where(*conditions)
        )
        result = await db.execute(
            select(RefundRequest)
            .where(*conditions)
            .order_by(RefundRequest.created_at.desc())
            .offset(filters.offset)
            .limit(filters.page_size)
        )
        return list(result.scalars().all()), total or 0

    @staticmethod
    async def get_refund_for_student(db: AsyncSession, refund_id: UUID, student_id: UUID) -> RefundRequest:
        refund = await RefundService.get_refund_by_id(db, refund_id)
        if not refund or refund.student_id != student_id:
            raise NotFoundError("Refund request not found")
        return refund

    @staticmethod
    async def get_refund_for_teacher(db: AsyncSession, refund_id: UUID, teacher_id: UUID) -> RefundRequest:
        refund = await RefundService.get_refund_by_id(db, refund_id)
        if not refund or refund.teacher_id != teacher_id:
            raise NotFoundError("Refund request not found")
        return refund

    @staticmethod
    async def get_refund_stats(db: AsyncSession) -> RefundStats:
        result = await db.execute(
            select(RefundRequest.status, func.count()).group_by(RefundRequest.status)
        )
        counts = {status: count for status, count in result.all()}

        settled_total = await db.scalar(
            select(func.coalesce(func.sum(RefundRequest.amount), 0)).where(
                RefundRequest.status.in_(SETTLED_REFUND_STATUSES)
            )
        )
        settled_total = Decimal(settled_total or 0)
        settled_count = sum(counts.get(s, 0) for s in SETTLED_REFUND_STATUSES)

        return RefundStats(
            total_refunds=sum(counts.values()),
            pending_refunds=counts.get(RefundStatus.PENDING, 0),
            approved_refunds=counts.get(RefundStatus.APPROVED, 0),
            rejected_refunds=counts.get(RefundStatus.REJECTED, 0),
            cancelled_refunds=counts.get(RefundStatus.CANCELLED, 0),
            completed_refunds=counts.get(RefundStatus.COMPLETED, 0),
            total_refunded_amount=settled_total,
            average_refund_amount=(settled_total / settled_count) if settled_count else Decimal("0"),
        )

    @staticmethod
    async def add_admin_note(db: AsyncSession, refund_id: UUID, note: str) -> RefundRequest:
        """Annotate a request for audit. Admins cannot change its status."""
        refund = await RefundService.get_refund_or_404(db, refund_id)
        refund.admin_notes = note
        await db.commit()
        await db.refresh(refund)
        return refund
