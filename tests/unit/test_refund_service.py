"""Unit tests for RefundService: request lifecycle and the approval cascade."""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.billing import Bill
from app.models.enums import (
    BillStatus,
    ContactMethodType,
    CourseStatus,
    EnrollmentStatus,
    RefundMethod,
    RefundStatus,
    UserRole,
)
from app.models.refund import RefundRequest
from app.schemas.refund import (
    ApproveRefundCommand,
    CancelRefundCommand,
    ContactMethod,
    CreateRefundCommand,
    RefundFilter,
    RejectRefundCommand,
)
from app.services.enrollment_service import EnrollmentService
from app.services.refund_service import RefundService


def _create_command(purchase, **overrides) -> CreateRefundCommand:
    fields = {
        "student_id": purchase.student.id,
        "enrollment_id": purchase.enrollment.id,
        "reason": "Course content did not match the description",
        "contact_method": ContactMethod(type=ContactMethodType.EMAIL, email="student@test.example.com"),
    }
    fields.update(overrides)
    return CreateRefundCommand(**fields)


async def _request(db, settings, purchase, **overrides) -> RefundRequest:
    return await RefundService.create_refund_request(db, _create_command(purchase, **overrides), settings)


def _approve(refund, teacher, **fields) -> ApproveRefundCommand:
    return ApproveRefundCommand(refund_id=refund.id, teacher_id=teacher.id, **fields)


# ---------------------------------------------------------------------------
# Creating requests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_refund_request_defaults_to_bill_amount(db, settings, purchase):
    refund = await _request(db, settings, purchase)

    assert refund.status == RefundStatus.PENDING
    assert refund.amount == purchase.bill.amount
    assert refund.teacher_id == purchase.teacher.id
    assert refund.bill_id == purchase.bill.id
    assert refund.contact_type == ContactMethodType.EMAIL
    assert refund.is_processed is False


@pytest.mark.asyncio
async def test_explicit_amount_must_match_bill(db, settings, purchase):
    refund = await _request(db, settings, purchase, amount=purchase.bill.amount)
    assert refund.amount == purchase.bill.amount


@pytest.mark.asyncio
async def test_partial_refund_is_rejected(db, settings, purchase):
    with pytest.raises(ValidationError) as exc:
        await _request(db, settings, purchase, amount=Decimal("10.00"))
    assert "Partial" in exc.value.message


@pytest.mark.asyncio
async def test_amount_above_bill_is_rejected(db, settings, purchase):
    with pytest.raises(ValidationError) as exc:
        await _request(db, settings, purchase, amount=purchase.bill.amount + Decimal("0.01"))
    assert "cannot exceed" in exc.value.message


@pytest.mark.asyncio
async def test_duplicate_pending_request_conflicts(db, settings, purchase):
    await _request(db, settings, purchase)
    with pytest.raises(ConflictError):
        await _request(db, settings, purchase)


@pytest.mark.asyncio
async def test_pending_index_blocks_racing_duplicates(db, settings, purchase):
    """Even past the service check, the store allows one pending request per enrollment."""
    first = await _request(db, settings, purchase)
    db.add(
        RefundRequest(
            student_id=first.student_id,
            teacher_id=first.teacher_id,
            course_id=first.course_id,
            enrollment_id=first.enrollment_id,
            bill_id=first.bill_id,
            amount=first.amount,
            reason="again",
            contact_type=ContactMethodType.EMAIL,
            contact_email="student@test.example.com",
            status=RefundStatus.PENDING,
        )
    )
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_missing_contact_details(db, settings, purchase):
    with pytest.raises(ValidationError) as exc:
        await _request(
            db,
            settings,
            purchase,
            contact_method=ContactMethod(type=ContactMethodType.BOTH, email="student@test.example.com"),
        )
    assert "phone" in exc.value.message


@pytest.mark.asyncio
async def test_other_students_enrollment_not_found(db, settings, purchase, make_user):
    stranger = await make_user(UserRole.STUDENT)
    with pytest.raises(NotFoundError):
        await _request(db, settings, purchase, student_id=stranger.id)


@pytest.mark.asyncio
async def test_enrollment_without_bill(db, settings, purchase):
    await db.execute(text("DELETE FROM bills"))
    await db.commit()

    with pytest.raises(NotFoundError):
        await _request(db, settings, purchase)


@pytest.mark.asyncio
async def test_enrollment_without_bill_synthesized_when_enabled(db, settings, purchase):
    await db.execute(text("DELETE FROM bills"))
    await db.commit()
    legacy = settings.model_copy(update={"REFUND_SYNTHESIZE_MISSING_BILL": True})

    refund = await _request(db, legacy, purchase)

    bill = await db.get(Bill, refund.bill_id)
    assert bill.status == BillStatus.COMPLETED
    assert bill.amount == purchase.course.price



@pytest.mark.asyncio
async def test_synthesized_bill_discarded_when_amount_rejected(db, settings, purchase):
    await db.execute(text("DELETE FROM bills"))
    await db.commit()
    legacy = settings.model_copy(update={"REFUND_SYNTHESIZE_MISSING_BILL": True})

    with pytest.raises(ValidationError):
        await _request(db, legacy, purchase, amount=Decimal("1.00"))

    # A caller that keeps using the session must not persist the bill
    await db.commit()
    assert await db.scalar(select(func.count()).select_from(Bill)) == 0
    assert await db.scalar(select(func.count()).select_from(RefundRequest)) == 0


@pytest.mark.asyncio
async def test_already_refunded_bill_conflicts(db, settings, purchase):
    await db.execute(
        text("UPDATE bills SET status = 'refunded' WHERE id = :id"),
        {"id": purchase.bill.id.hex},
    )
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await _request(db, settings, purchase)
    assert "already been refunded" in exc.value.message

    await db.refresh(purchase.enrollment)
    assert purchase.enrollment.is_active is True


@pytest.mark.asyncio
async def test_eligible_courses_need_paid_bill_and_no_pending_refund(db, settings, purchase, make_course):
    unpaid = await make_course(purchase.teacher, status=CourseStatus.PUBLISHED)
    await EnrollmentService.record_purchase(db, purchase.student.id, unpaid.id)
    await db.execute(
        text("DELETE FROM bills WHERE course_id = :id"),
        {"id": unpaid.id.hex},
    )
    await db.commit()

    eligible = await RefundService.get_eligible_courses(db, purchase.student.id)
    assert [c.enrollment_id for c in eligible] == [purchase.enrollment.id]
    assert eligible[0].amount == purchase.bill.amount
    assert eligible[0].course_title == purchase.course.title

    await _request(db, settings, purchase)
    assert await RefundService.get_eligible_courses(db, purchase.student.id) == []


# ---------------------------------------------------------------------------
# Approval cascade
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_approval_cascades_to_bill_enrollment_and_course(db, settings, purchase):
    assert purchase.course.total_students == 1
    refund = await _request(db, settings, purchase)

    approved = await RefundService.approve_refund(
        db,
        _approve(refund, purchase.teacher, notes="Sorry it did not work out",
                 refund_method=RefundMethod.ORIGINAL_PAYMENT),
        settings,
    )

    assert approved.status == RefundStatus.APPROVED
    assert approved.processed_by == purchase.teacher.id
    assert approved.processed_at is not None
    assert approved.teacher_notes == "Sorry it did not work out"
    assert approved.refund_method == RefundMethod.ORIGINAL_PAYMENT

    await db.refresh(purchase.bill)
    await db.refresh(purchase.enrollment)
    await db.refresh(purchase.course)
    assert purchase.bill.status == BillStatus.REFUNDED
    assert purchase.bill.refunded_at is not None
    assert purchase.enrollment.is_active is False
    assert purchase.enrollment.status == EnrollmentStatus.REFUNDED.value
    assert purchase.course.total_students == 0

    eligible = await RefundService.get_eligible_courses(db, purchase.student.id)
    assert eligible == []


@pytest.mark.asyncio
async def test_end_to_end_scenario(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    student = await make_user(UserRole.STUDENT)
    course = await make_course(teacher, status=CourseStatus.PUBLISHED, price=Decimal("500000"))
    enrollment, bill = await EnrollmentService.record_purchase(db, student.id, course.id)
    # Nine other students bought the course through the payment flow
    await db.execute(text("UPDATE courses SET total_students = 10"))
    await db.commit()

    refund = await RefundService.create_refund_request(
        db,
        CreateRefundCommand(
            student_id=student.id,
            enrollment_id=enrollment.id,
            reason="not helpful",
            contact_method=ContactMethod(type=ContactMethodType.PHONE, phone="0123456789"),
        ),
        settings,
    )
    assert refund.status == RefundStatus.PENDING
    assert refund.amount == Decimal("500000")

    approved = await RefundService.approve_refund(
        db, ApproveRefundCommand(refund_id=refund.id, teacher_id=teacher.id), settings
    )

    assert approved.status == RefundStatus.APPROVED
    for obj in (bill, enrollment, course):
        await db.refresh(obj)
    assert bill.status == BillStatus.REFUNDED
    assert enrollment.is_active is False
    assert enrollment.status == EnrollmentStatus.REFUNDED.value
    assert course.total_students == 9


@pytest.mark.asyncio
async def test_second_approval_conflicts_without_double_decrement(db, settings, purchase, make_user):
    other = await make_user(UserRole.STUDENT)
    await EnrollmentService.record_purchase(db, other.id, purchase.course.id)
    refund = await _request(db, settings, purchase)

    await RefundService.approve_refund(db, _approve(refund, purchase.teacher), settings)
    with pytest.raises(ConflictError):
        await RefundService.approve_refund(db, _approve(refund, purchase.teacher), settings)

    await db.refresh(purchase.course)
    assert purchase.course.total_students == 1


@pytest.mark.asyncio
async def test_concurrent_approval_only_one_wins(session_factory, settings, purchase):
    """A second session that read the request while pending loses the conditional write."""
    async with session_factory() as setup:
        refund = await _request(setup, settings, purchase)

    async with session_factory() as first, session_factory() as second:
        stale = await RefundService.get_refund_by_id(second, refund.id)
        assert stale.status == RefundStatus.PENDING

        await RefundService.approve_refund(first, _approve(refund, purchase.teacher), settings)
        with pytest.raises(ConflictError):
            await RefundService.approve_refund(second, _approve(refund, purchase.teacher), settings)

    async with session_factory() as check:
        stored = await RefundService.get_refund_by_id(check, refund.id)
        assert stored.status == RefundStatus.APPROVED
        assert await EnrollmentService.count_active_enrollments(check, purchase.course.id) == 0


@pytest.mark.asyncio
async def test_approval_by_other_teacher_is_forbidden(db, settings, purchase, make_user):
    other = await make_user(UserRole.TEACHER)
    refund = await _request(db, settings, purchase)

    with pytest.raises(AuthorizationError):
        await RefundService.approve_refund(db, _approve(refund, other), settings)

    await db.refresh(refund)
    assert refund.status == RefundStatus.PENDING


@pytest.mark.asyncio
async def test_approve_unknown_refund_not_found(db, settings, purchase):
    with pytest.raises(NotFoundError):
        await RefundService.approve_refund(
            db,
            ApproveRefundCommand(refund_id=uuid.uuid4(), teacher_id=purchase.teacher.id),
            settings,
        )


@pytest.mark.asyncio
async def test_counter_never_goes_negative(db, settings, purchase):
    await db.execute(text("UPDATE courses SET total_students = 0"))
    await db.commit()
    refund = await _request(db, settings, purchase)

    await RefundService.approve_refund(db, _approve(refund, purchase.teacher), settings)

    await db.refresh(purchase.course)
    assert purchase.course.total_students == 0


@pytest.mark.asyncio
async def test_atomic_cascade_failure_rolls_back_everything(db, settings, purchase):
    refund = await _request(db, settings, purchase)

    with patch.object(
        RefundService,
        "decrement_course_students",
        AsyncMock(side_effect=RuntimeError("connection lost")),
    ):
        with pytest.raises(RuntimeError):
            await RefundService.approve_refund(db, _approve(refund, purchase.teacher), settings)

    for obj in (refund, purchase.bill, purchase.enrollment, purchase.course):
        await db.refresh(obj)
    assert refund.status == RefundStatus.PENDING
    assert purchase.bill.status == BillStatus.COMPLETED
    assert purchase.enrollment.is_active is True
    assert purchase.course.total_students == 1


@pytest.mark.asyncio
async def test_best_effort_cascade_keeps_approval_when_a_step_fails(db, settings, purchase):
    best_effort = settings.model_copy(update={"REFUND_CASCADE_ATOMIC": False})
    refund = await _request(db, best_effort, purchase)

    with patch.object(
        RefundService,
        "deactivate_enrollment",
        AsyncMock(side_effect=RuntimeError("connection lost")),
    ):
        approved = await RefundService.approve_refund(db, _approve(refund, purchase.teacher), best_effort)

    assert approved.status == RefundStatus.APPROVED
    for obj in (purchase.bill, purchase.enrollment, purchase.course):
        await db.refresh(obj)
    assert purchase.bill.status == BillStatus.REFUNDED
    # Left for reconciliation
    assert purchase.enrollment.is_active is True
    assert purchase.course.total_students == 1


@pytest.mark.asyncio
async def test_best_effort_cascade_success(db, settings, purchase):
    best_effort = settings.model_copy(update={"REFUND_CASCADE_ATOMIC": False})
    refund = await _request(db, best_effort, purchase)

    await RefundService.approve_refund(db, _approve(refund, purchase.teacher), best_effort)

    for obj in (purchase.bill, purchase.enrollment, purchase.course):
        await db.refresh(obj)
    assert purchase.bill.status == BillStatus.REFUNDED
    assert purchase.enrollment.is_active is False
    assert purchase.course.total_students == 0


# ---------------------------------------------------------------------------
# Rejection and cancellation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rejection_leaves_purchase_untouched(db, settings, purchase):
    refund = await _request(db, settings, purchase)

    rejected = await RefundService.reject_refund(
        db,
        RejectRefundCommand(refund_id=refund.id, teacher_id=purchase.teacher.id, reason="Course completed"),
        settings,
    )

    assert rejected.status == RefundStatus.REJECTED
    assert rejected.rejection_reason == "Course completed"
    for obj in (purchase.bill, purchase.enrollment, purchase.course):
        await db.refresh(obj)
    assert purchase.bill.status == BillStatus.COMPLETED
    assert purchase.enrollment.is_active is True
    assert purchase.course.total_students == 1

    # A new request is allowed once the previous one is closed
    again = await _request(db, settings, purchase)
    assert again.status == RefundStatus.PENDING


@pytest.mark.asyncio
async def test_rejected_request_cannot_be_approved(db, settings, purchase):
    refund = await _request(db, settings, purchase)
    await RefundService.reject_refund(
        db,
        RejectRefundCommand(refund_id=refund.id, teacher_id=purchase.teacher.id, reason="No"),
        settings,
    )

    with pytest.raises(ConflictError) as exc:
        await RefundService.approve_refund(db, _approve(refund, purchase.teacher), settings)
    assert "rejected" in exc.value.message


@pytest.mark.asyncio
async def test_cancel_pending_request(db, settings, purchase):
    refund = await _request(db, settings, purchase)

    cancelled = await RefundService.cancel_refund_request(
        db, CancelRefundCommand(refund_id=refund.id, student_id=purchase.student.id)
    )
    assert cancelled.status == RefundStatus.CANCELLED

    with pytest.raises(ConflictError):
        await RefundService.cancel_refund_request(
            db, CancelRefundCommand(refund_id=refund.id, student_id=purchase.student.id)
        )


@pytest.mark.asyncio
async def test_cancel_by_other_student_is_forbidden(db, settings, purchase, make_user):
    stranger = await make_user(UserRole.STUDENT)
    refund = await _request(db, settings, purchase)

    with pytest.raises(AuthorizationError):
        await RefundService.cancel_refund_request(
            db, CancelRefundCommand(refund_id=refund.id, student_id=stranger.id)
        )


# ---------------------------------------------------------------------------
# Listings and stats
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_refunds_scoped_and_filtered(db, settings, purchase, make_user):
    await _request(db, settings, purchase)

    refunds, total = await RefundService.list_refunds(
        db, RefundFilter(), student_id=purchase.student.id
    )
    assert total == 1 and len(refunds) == 1

    _, total = await RefundService.list_refunds(
        db, RefundFilter(status=RefundStatus.APPROVED), teacher_id=purchase.teacher.id
    )
    assert total == 0

    stranger = await make_user(UserRole.STUDENT)
    _, total = await RefundService.list_refunds(db, RefundFilter(), student_id=stranger.id)
    assert total == 0


@pytest.mark.asyncio
async def test_refund_visible_only_to_its_parties(db, settings, purchase, make_user):
    refund = await _request(db, settings, purchase)
    stranger = await make_user(UserRole.TEACHER)

    assert (await RefundService.get_refund_for_teacher(db, refund.id, purchase.teacher.id)).id == refund.id
    with pytest.raises(NotFoundError):
        await RefundService.get_refund_for_teacher(db, refund.id, stranger.id)
    with pytest.raises(NotFoundError):
        await RefundService.get_refund_for_student(db, refund.id, stranger.id)


@pytest.mark.asyncio
async def test_refund_stats(db, settings, purchase):
    refund = await _request(db, settings, purchase)
    await RefundService.approve_refund(db, _approve(refund, purchase.teacher), settings)

    stats = await RefundService.get_refund_stats(db)
    assert stats.total_refunds == 1
    assert stats.approved_refunds == 1
    assert stats.pending_refunds == 0
    assert stats.total_refunded_amount == Decimal("49.99")
    assert stats.average_refund_amount == Decimal("49.99")


@pytest.mark.asyncio
async def test_admin_note_does_not_change_status(db, settings, purchase):
    refund = await _request(db, settings, purchase)

    noted = await RefundService.add_admin_note(db, refund.id, "Checked with payments team")
    assert noted.admin_notes == "Checked with payments team"
    assert noted.status == RefundStatus.PENDING
