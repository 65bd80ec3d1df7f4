"""Unit tests for CourseLifecycleService (instructor-side status transitions)."""

import uuid

import pytest

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.course import Course
from app.models.enums import CourseStatus, UserRole
from app.schemas.course import SubmitCourseCommand
from app.services.course_lifecycle_service import CourseLifecycleService


def _course(**fields) -> Course:
    defaults = {
        "status": CourseStatus.DRAFT,
        "has_unsaved_changes": False,
        "submitted_for_review": False,
        "submitted_at": None,
    }
    defaults.update(fields)
    return Course(**defaults)


# ---------------------------------------------------------------------------
# build_submission_updates (pure precondition logic)
# ---------------------------------------------------------------------------

def test_fresh_draft_can_be_submitted():
    updates = CourseLifecycleService.build_submission_updates(_course())
    assert updates["status"] == CourseStatus.SUBMITTED
    assert updates["submitted_for_review"] is True
    assert updates["has_unsaved_changes"] is False
    assert updates["is_published"] is False
    assert updates["is_approved"] is False
    assert updates["submitted_at"] is not None


def test_rejected_and_needs_revision_can_be_submitted():
    for status in (CourseStatus.REJECTED, CourseStatus.NEEDS_REVISION):
        updates = CourseLifecycleService.build_submission_updates(_course(status=status))
        assert updates["status"] == CourseStatus.SUBMITTED


def test_published_course_with_changes_can_be_resubmitted():
    course = _course(status=CourseStatus.PUBLISHED, has_unsaved_changes=True)
    updates = CourseLifecycleService.build_submission_updates(course)
    assert updates["status"] == CourseStatus.SUBMITTED
    assert updates["has_unsaved_changes"] is False


def test_published_course_without_changes_is_rejected():
    course = _course(status=CourseStatus.PUBLISHED, has_unsaved_changes=False)
    with pytest.raises(ConflictError) as exc:
        CourseLifecycleService.build_submission_updates(course)
    assert "without any changes" in exc.value.message


def test_submitted_and_approved_courses_cannot_be_submitted():
    for status in (CourseStatus.SUBMITTED, CourseStatus.APPROVED):
        with pytest.raises(ConflictError) as exc:
            CourseLifecycleService.build_submission_updates(_course(status=status))
        assert f'"{status.value}"' in exc.value.message


def test_draft_already_submitted_once_is_rejected():
    with pytest.raises(ConflictError):
        CourseLifecycleService.build_submission_updates(_course(submitted_for_review=True))


# ---------------------------------------------------------------------------
# Persisted transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_for_review_persists(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)

    result = await CourseLifecycleService.submit_for_review(
        db, SubmitCourseCommand(course_id=course.id, instructor_id=teacher.id), settings
    )

    assert result.status == CourseStatus.SUBMITTED
    assert result.submitted_for_review is True
    assert result.submitted_at is not None


@pytest.mark.asyncio
async def test_second_submit_of_same_draft_conflicts(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)
    command = SubmitCourseCommand(course_id=course.id, instructor_id=teacher.id)

    await CourseLifecycleService.submit_for_review(db, command, settings)
    with pytest.raises(ConflictError):
        await CourseLifecycleService.submit_for_review(db, command, settings)


@pytest.mark.asyncio
async def test_submit_by_non_owner_is_forbidden(db, settings, make_user, make_course):
    owner = await make_user(UserRole.TEACHER)
    other = await make_user(UserRole.TEACHER)
    course = await make_course(owner)

    with pytest.raises(AuthorizationError):
        await CourseLifecycleService.submit_for_review(
            db, SubmitCourseCommand(course_id=course.id, instructor_id=other.id), settings
        )

    await db.refresh(course)
    assert course.status == CourseStatus.DRAFT


@pytest.mark.asyncio
async def test_submit_unknown_course_not_found(db, settings, make_user):
    teacher = await make_user(UserRole.TEACHER)
    with pytest.raises(NotFoundError):
        await CourseLifecycleService.submit_for_review(
            db, SubmitCourseCommand(course_id=uuid.uuid4(), instructor_id=teacher.id), settings
        )


@pytest.mark.asyncio
async def test_stale_submission_loses_conditional_write(session_factory, settings, make_user, make_course):
    """Two sessions read the same draft; only the first submission lands."""
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)
    command = SubmitCourseCommand(course_id=course.id, instructor_id=teacher.id)

    async with session_factory() as first, session_factory() as second:
        stale = await CourseLifecycleService.get_course_by_id(second, course.id)
        assert stale.status == CourseStatus.DRAFT

        await CourseLifecycleService.submit_for_review(first, command, settings)

        # The second session still holds the draft in its identity map
        with pytest.raises(ConflictError):
            await CourseLifecycleService.submit_for_review(second, command, settings)


@pytest.mark.asyncio
async def test_status_action_submit(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)

    result = await CourseLifecycleService.apply_status_action(
        db, course.id, teacher.id, " Submitted ", settings
    )
    assert result.status == CourseStatus.SUBMITTED


@pytest.mark.asyncio
async def test_status_action_publish_is_forbidden(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)

    for action in ("publish", "unpublish"):
        with pytest.raises(AuthorizationError):
            await CourseLifecycleService.apply_status_action(db, course.id, teacher.id, action, settings)


@pytest.mark.asyncio
async def test_status_action_withdraw_is_invalid(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher, status=CourseStatus.SUBMITTED, submitted_for_review=True)

    for action in ("withdraw", "draft"):
        with pytest.raises(ValidationError) as exc:
            await CourseLifecycleService.apply_status_action(db, course.id, teacher.id, action, settings)
        assert "Cannot withdraw submission" in exc.value.message


@pytest.mark.asyncio
async def test_status_action_unknown_is_invalid(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)

    with pytest.raises(ValidationError) as exc:
        await CourseLifecycleService.apply_status_action(db, course.id, teacher.id, "archive", settings)
    assert "Invalid status update" in exc.value.message


@pytest.mark.asyncio
async def test_content_change_enables_resubmission(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher, status=CourseStatus.PUBLISHED, is_published=True)

    edited = await CourseLifecycleService.record_content_change(db, course.id, teacher.id)
    assert edited.has_unsaved_changes is True

    result = await CourseLifecycleService.submit_for_review(
        db, SubmitCourseCommand(course_id=course.id, instructor_id=teacher.id), settings
    )
    assert result.status == CourseStatus.SUBMITTED
    assert result.has_unsaved_changes is False
    assert result.is_published is False


@pytest.mark.asyncio
async def test_content_change_on_draft_is_noop(db, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher)

    result = await CourseLifecycleService.record_content_change(db, course.id, teacher.id)
    assert result.has_unsaved_changes is False


@pytest.mark.asyncio
async def test_reset_for_resubmission(db, settings, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher, status=CourseStatus.NEEDS_REVISION, submitted_for_review=True)

    reset = await CourseLifecycleService.reset_for_resubmission(db, course.id, teacher.id)
    assert reset.status == CourseStatus.DRAFT
    assert reset.submitted_for_review is False
    assert reset.submitted_at is None

    # A fresh cycle allows one more submission
    result = await CourseLifecycleService.submit_for_review(
        db, SubmitCourseCommand(course_id=course.id, instructor_id=teacher.id), settings
    )
    assert result.status == CourseStatus.SUBMITTED


@pytest.mark.asyncio
async def test_reset_requires_needs_revision(db, make_user, make_course):
    teacher = await make_user(UserRole.TEACHER)
    course = await make_course(teacher, status=CourseStatus.REJECTED)

    with pytest.raises(ConflictError):
        await CourseLifecycleService.reset_for_resubmission(db, course.id, teacher.id)
