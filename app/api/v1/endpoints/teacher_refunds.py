"""Teacher refund endpoints - course owners approve or reject refunds"""

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.api.v1.endpoints.refunds import refund_filter
from app.config import Settings
from app.models.user import User
from app.schemas.refund import (
    ApproveRefundCommand,
    RefundApprove,
    RefundFilter,
    RefundReject,
    RefundResponse,
    RejectRefundCommand,
)
from app.schemas.responses import PaginatedResponse, PaginationMeta, SuccessResponse
from app.services.refund_service import RefundService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[RefundResponse])
async def list_course_refunds(
    filters: RefundFilter = Depends(refund_filter),
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Refund requests for the teacher's courses."""
    refunds, total = await RefundService.list_refunds(db, filters, teacher_id=current_user.id)
    return PaginatedResponse(
        data=[RefundResponse.model_validate(r) for r in refunds],
        meta=PaginationMeta.build(filters.page, filters.page_size, total),
    )


@router.get("/{refund_id}", response_model=SuccessResponse[RefundResponse])
async def get_course_refund(
    refund_id: UUID,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    refund = await RefundService.get_refund_for_teacher(db, refund_id, current_user.id)
    return SuccessResponse(data=RefundResponse.model_validate(refund))


@router.post("/{refund_id}/approve", response_model=SuccessResponse[RefundResponse])
async def approve_refund(
    refund_id: UUID,
    body: RefundApprove,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
    settings: Settings = Depends(deps.get_settings),
) -> Any:
    """Approve a refund. The student loses access to the course."""
    refund = await RefundService.approve_refund(
        db,
        ApproveRefundCommand(refund_id=refund_id, teacher_id=current_user.id, **body.model_dump()),
        settings,
    )
    return SuccessResponse(
        data=RefundResponse.model_validate(refund),
        message="Refund approved",
    )


@router.post("/{refund_id}/reject", response_model=SuccessResponse[RefundResponse])
async def reject_refund(
    refund_id: UUID,
    body: RefundReject,
    current_user: User = Depends(deps.require_teacher),
    db: AsyncSession = Depends(deps.get_db),
    settings: Settings = Depends(deps.get_settings),
) -> Any:
    refund = await RefundService.reject_refund(
        db,
        RejectRefundCommand(refund_id=refund_id, teacher_id=current_user.id, **body.model_dump()),
        settings,
    )
    return SuccessResponse(
        data=RefundResponse.model_validate(refund),
        message="Refund rejected",
    )
