"""Audit log API router."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from rentalcore.audit.schemas import (
    AuditChainVerification,
    AuditEventPage,
    AuditEventResponse,
    AuditStatisticsResponse,
)
from rentalcore.common.schemas import PaginationParams
from rentalcore.common.security import require_api_key

router = APIRouter()


def _get_logger():
    from rentalcore.deps import get_audit_logger
    return get_audit_logger()


@router.get("/audit/events", response_model=AuditEventPage)
async def list_audit_events(
    event_type: str | None = Query(None),
    object_type: str | None = Query(None),
    object_id: str | None = Query(None),
    user_id: int | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _=Depends(require_api_key),
):
    pagination = PaginationParams(page=page, page_size=page_size)
    events, total = await _get_logger().get_events(
        event_type=event_type,
        object_type=object_type,
        object_id=object_id,
        user_id=user_id,
        start=start,
        end=end,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return AuditEventPage(
        events=[AuditEventResponse.model_validate(e) for e in events],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.get(
    "/audit/trail/{object_type}/{object_id}",
    response_model=list[AuditEventResponse],
)
async def get_audit_trail(
    object_type: str, object_id: str, _=Depends(require_api_key),
):
    events = await _get_logger().get_audit_trail(object_type, object_id)
    return [AuditEventResponse.model_validate(e) for e in events]


@router.get("/audit/verify", response_model=AuditChainVerification)
async def verify_audit_chain(_=Depends(require_api_key)):
    result = await _get_logger().verify_chain_integrity()
    return AuditChainVerification.model_validate(result)


@router.get("/audit/statistics", response_model=AuditStatisticsResponse)
async def get_audit_statistics(_=Depends(require_api_key)):
    stats = await _get_logger().get_statistics()
    return AuditStatisticsResponse(**stats)
