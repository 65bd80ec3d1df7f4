"""Admin endpoints - read-only refund oversight and reconciliation"""

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.api.v1.endpoints.refunds import refund_filter
from app.config import Settings
from app.models.user import User
from app.schemas.reconciliation import ReconciliationReport
from app.schemas.refund import AdminNoteUpdate, RefundFilter, RefundResponse, RefundStats
from app.schemas.responses import PaginatedResponse, PaginationMeta, SuccessResponse
from app.services.reconciliation_service import ReconciliationService
from app.services.refund_service import RefundService

router = APIRouter()


@router.get("/refunds", response_model=PaginatedResponse[RefundResponse])
async def list_all_refunds(
    filters: RefundFilter = Depends(refund_filter),
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    refunds, total = await RefundService.list_refunds(db, filters)
    return PaginatedResponse(
        data=[RefundResponse.model_validate(r) for r in refunds],
        meta=PaginationMeta.build(filters.page, filters.page_size, total),
    )


@router.get("/refunds/stats", response_model=SuccessResponse[RefundStats])
async def get_refund_stats(
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    stats = await RefundService.get_refund_stats(db)
    return SuccessResponse(data=stats)


@router.get("/refunds/{refund_id}", response_model=SuccessResponse[RefundResponse])
async def get_refund(
    refund_id: UUID,
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    refund = await RefundService.get_refund_or_404(db, refund_id)
    return SuccessResponse(data=RefundResponse.model_validate(refund))


@router.patch("/refunds/{refund_id}/notes", response_model=SuccessResponse[RefundResponse])
async def add_refund_note(
    refund_id: UUID,
    body: AdminNoteUpdate,
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Attach an admin note. Admins cannot approve or reject refunds."""
    refund = await RefundService.add_admin_note(db, refund_id, body.note)
    return SuccessResponse(data=RefundResponse.model_validate(refund), message="Note saved")


@router.post("/reconciliation/run", response_model=SuccessResponse[ReconciliationReport])
async def run_reconciliation(
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db),
    settings: Settings = Depends(deps.get_settings),
) -> Any:
    """Run a reconciliation pass now instead of waiting for the scheduled job."""
    report = await ReconciliationService.run(db, settings)
    message = "Nothing to reconcile" if report.is_clean else "Reconciliation applied"
    return SuccessResponse(data=report, message=message)
