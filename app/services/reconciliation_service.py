"""Reconciliation Service - repairs drift left by non-atomic refund cascades

Recomputes ``Course.total_students`` from active enrollments and flags
records that could only have been changed outside the refund workflow.
Every step is idempotent: a second run over an unchanged store finds
nothing to fix.
"""

import logging
from sqlalchemy import select, update, func, and_, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.models.billing import Bill
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.enums import (
    AnomalyType,
    BillStatus,
    EnrollmentStatus,
    RefundStatus,
    SETTLED_REFUND_STATUSES,
)
from app.models.refund import RefundRequest
from app.schemas.reconciliation import Anomaly, CourseDrift, ReconciliationReport
from app.services import notification_service
from app.services.refund_service import CascadeTarget, RefundService
from app.utils.time import elapsed_ms, get_utc_now

logger = logging.getLogger(__name__)


class ReconciliationService:

    @staticmethod
    async def repair_refund_cascades(
        db: AsyncSession,
        report: ReconciliationReport,
        repair: bool,
    ) -> None:
        """Approved refunds whose bill or enrollment write never landed."""
        result = await db.execute(
            select(RefundRequest, Bill.status, Enrollment.is_active)
            .join(Bill, Bill.id == RefundRequest.bill_id)
            .join(Enrollment, Enrollment.id == RefundRequest.enrollment_id)
            .where(
                RefundRequest.status.in_(SETTLED_REFUND_STATUSES),
                or_(Bill.status != BillStatus.REFUNDED, Enrollment.is_active.is_(True)),
            )
        )
        rows = result.all()
        now = get_utc_now()

        for refund, bill_status, enrollment_active in rows:
            missing = []
            if bill_status != BillStatus.REFUNDED:
                missing.append(f"bill is {bill_status.value}")
            if enrollment_active:
                missing.append("enrollment still active")

            repaired = False
            if repair:
                target = CascadeTarget.from_refund(refund)
                # A pending bill was never paid and is left for billing to sort out
                bill_fixed = bill_status == BillStatus.REFUNDED or (
                    bill_status == BillStatus.COMPLETED
                    and await RefundService.mark_bill_refunded(db, target, now)
                )
                enrollment_fixed = not enrollment_active or await RefundService.deactivate_enrollment(
                    db, target, now
                )
                repaired = bill_fixed and enrollment_fixed

            report.anomalies.append(
                Anomaly(
                    type=AnomalyType.INCOMPLETE_REFUND_CASCADE,
                    record_id=refund.id,
                    detail=", ".join(missing),
                    repaired=repaired,
                )
            )
            logger.warning(
                "Incomplete refund cascade",
                extra={"refund_id": str(refund.id), "detail": missing, "repaired": repaired},
            )

        if rows and repair:
            await db.commit()

    @staticmethod
    async def flag_unapproved_bill_refunds(db: AsyncSession, report: ReconciliationReport) -> None:
        approved = exists().where(
            RefundRequest.bill_id == Bill.id,
            RefundRequest.status.in_(SETTLED_REFUND_STATUSES),
        )
        result = await db.execute(
            select(Bill.id).where(Bill.status == BillStatus.REFUNDED, ~approved)
        )
        for bill_id in result.scalars().all():
            report.anomalies.append(
                Anomaly(
                    type=AnomalyType.BILL_REFUNDED_WITHOUT_APPROVAL,
                    record_id=bill_id,
                    detail="bill is refunded but no approved refund request references it",
                )
            )
            logger.error("Bill refunded without approved refund", extra={"bill_id": str(bill_id)})

    @staticmethod
    async def flag_unapproved_enrollment_refunds(db: AsyncSession, report: ReconciliationReport) -> None:
        """Likely an administrative override; logged for audit, never reverted."""
        approved = exists().where(
            RefundRequest.enrollment_id == Enrollment.id,
            RefundRequest.status.in_(SETTLED_REFUND_STATUSES),
        )
        result = await db.execute(
            select(Enrollment.id).where(
                Enrollment.is_active.is_(False),
                Enrollment.status == EnrollmentStatus.REFUNDED.value,
                ~approved,
            )
        )
        for enrollment_id in result.scalars().all():
            report.anomalies.append(
                Anomaly(
                    type=AnomalyType.ENROLLMENT_REFUNDED_WITHOUT_APPROVAL,
                    record_id=enrollment_id,
                    detail="enrollment is refunded but has no approved refund request",
                )
            )
            logger.warning(
                "Enrollment refunded without approved refund",
                extra={"enrollment_id": str(enrollment_id)},
            )

    @staticmethod
    async def flag_duplicate_pending_refunds(db: AsyncSession, report: ReconciliationReport) -> None:
        result = await db.execute(
            select(RefundRequest.enrollment_id, func.count())
            .where(RefundRequest.status == RefundStatus.PENDING)
            .group_by(RefundRequest.enrollment_id)
            .having(func.count() > 1)
        )
        for enrollment_id, count in result.all():
            report.anomalies.append(
                Anomaly(
                    type=AnomalyType.DUPLICATE_PENDING_REFUND,
                    record_id=enrollment_id,
                    detail=f"{count} pending refund requests",
                )
            )
            logger.error(
                "Duplicate pending refunds",
                extra={"enrollment_id": str(enrollment_id), "count": count},
            )

    @staticmethod
    async def recount_students(db: AsyncSession, report: ReconciliationReport) -> None:
        """Set total_students to the number of active enrollments per course."""
        active = (
            select(Enrollment.course_id, func.count().label("active"))
            .where(Enrollment.is_active.is_(True))
            .group_by(Enrollment.course_id)
            .subquery()
        )
        result = await db.execute(
            select(Course.id, Course.total_students, func.coalesce(active.c.active, 0))
            .outerjoin(active, active.c.course_id == Course.id)
        )

        for course_id, recorded, actual in result.all():
            report.courses_checked += 1
            if recorded == actual:
                continue

            # Skip if the counter moved since it was read; the next run
            # sees the new value.
            updated = await db.execute(
                update(Course)
                .where(and_(Course.id == course_id, Course.total_students == recorded))
                .values(total_students=actual)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                continue

            report.drifts.append(CourseDrift(course_id=course_id, recorded=recorded, actual=actual))
            logger.warning(
                "Corrected total_students drift",
                extra={"course_id": str(course_id), "recorded": recorded, "actual": actual},
            )

        await db.commit()

    @staticmethod
    async def run(db: AsyncSession, settings: Settings) -> ReconciliationReport:
        """One full reconciliation pass."""
        report = ReconciliationReport(started_at=get_utc_now())

        await ReconciliationService.repair_refund_cascades(
            db, report, repair=settings.RECONCILIATION_REPAIR_CASCADES
        )
        await ReconciliationService.flag_unapproved_bill_refunds(db, report)
        await ReconciliationService.flag_unapproved_enrollment_refunds(db, report)
        await ReconciliationService.flag_duplicate_pending_refunds(db, report)
        # Recount last so repaired enrollments are reflected
        await ReconciliationService.recount_students(db, report)

        report.finished_at = get_utc_now()
        report.duration_ms = elapsed_ms(report.started_at)

        if report.total_drift >= settings.RECONCILIATION_ALERT_THRESHOLD:
            report.alert_raised = True
            logger.error(
                "Reconciliation drift above alert threshold",
                extra={
                    "total_drift": report.total_drift,
                    "threshold": settings.RECONCILIATION_ALERT_THRESHOLD,
                },
            )
            notification_service.notify_reconciliation_alert(
                settings, report.total_drift, len(report.anomalies)
            )

        logger.info(
            "Reconciliation finished",
            extra={
                "courses_checked": report.courses_checked,
                "drifted_courses": len(report.drifts),
                "anomalies": len(report.anomalies),
                "duration_ms": report.duration_ms,
            },
        )
        return report
