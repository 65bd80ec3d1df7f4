"""Refund endpoints - students request and cancel refunds"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.config import Settings
from app.models.enums import RefundStatus
from app.models.user import User
from app.schemas.refund import (
    CancelRefundCommand,
    CreateRefundCommand,
    RefundCreate,
    RefundFilter,
    RefundResponse,
)
from app.schemas.responses import PaginatedResponse, PaginationMeta, SuccessResponse
from app.services.refund_service import RefundService

router = APIRouter()


def refund_filter(
    status: Optional[RefundStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
) -> RefundFilter:
    """Query-string filter shared by the refund listings."""
    return RefundFilter(status=status, page=page, page_size=page_size)


@router.get("/eligible-courses", response_model=SuccessResponse)
async def list_eligible_courses(
    current_user: User = Depends(deps.require_student),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Paid, active enrollments that can still be refunded."""
    courses = await RefundService.get_eligible_courses(db, current_user.id)
    return SuccessResponse(data=courses)


@router.post("", response_model=SuccessResponse[RefundResponse])
async def create_refund_request(
    body: RefundCreate,
    current_user: User = Depends(deps.require_student),
    db: AsyncSession = Depends(deps.get_db),
    settings: Settings = Depends(deps.get_settings),
) -> Any:
    command = CreateRefundCommand(student_id=current_user.id, **body.model_dump())
    refund = await RefundService.create_refund_request(db, command, settings)
    return SuccessResponse(
        data=RefundResponse.model_validate(refund),
        message="Refund request submitted",
    )


@router.get("", response_model=PaginatedResponse[RefundResponse])
async def list_my_refunds(
    filters: RefundFilter = Depends(refund_filter),
    current_user: User = Depends(deps.require_student),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    refunds, total = await RefundService.list_refunds(db, filters, student_id=current_user.id)
    return PaginatedResponse(
        data=[RefundResponse.model_validate(r) for r in refunds],
        meta=PaginationMeta.build(filters.page, filters.page_size, total),
    )


@router.get("/{refund_id}", response_model=SuccessResponse[RefundResponse])
async def get_my_refund(
    refund_id: UUID,
    current_user: User = Depends(deps.require_student),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    refund = await RefundService.get_refund_for_student(db, refund_id, current_user.id)
    return SuccessResponse(data=RefundResponse.model_validate(refund))


@router.post("/{refund_id}/cancel", response_model=SuccessResponse[RefundResponse])
async def cancel_refund_request(
    refund_id: UUID,
    current_user: User = Depends(deps.require_student),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Cancel a pending refund request."""
    refund = await RefundService.cancel_refund_request(
        db, CancelRefundCommand(refund_id=refund_id, student_id=current_user.id)
    )
    return SuccessResponse(
        data=RefundResponse.model_validate(refund),
        message="Refund request cancelled",
    )
