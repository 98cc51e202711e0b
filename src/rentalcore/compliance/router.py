"""Compliance API router: invoice handling, cleanup and status."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from rentalcore.archive.schemas import ArchivedRecordResponse
from rentalcore.common.exceptions import ArchiveWriteError, IntegrityBreachError
from rentalcore.common.security import (
    actor_from_request,
    context_from_request,
    require_api_key,
)
from rentalcore.compliance.schemas import (
    CleanupResponse,
    DailyCheckResponse,
    InvoiceComplianceRequest,
    InvoiceComplianceResponse,
)

router = APIRouter()


def _get_service():
    from rentalcore.deps import get_compliance_service
    return get_compliance_service()


@router.post(
    "/compliance/invoices", response_model=InvoiceComplianceResponse, status_code=201,
)
async def handle_invoice(
    body: InvoiceComplianceRequest, request: Request, _=Depends(require_api_key),
):
    try:
        record = await _get_service().handle_invoice(
            body.invoice_id,
            body.payload,
            actor=actor_from_request(request),
            request=context_from_request(request),
            operation=body.operation,
        )
    except ArchiveWriteError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return InvoiceComplianceResponse(
        record=ArchivedRecordResponse.model_validate(record),
        digitally_signed=record.signature_id is not None,
    )


@router.post("/compliance/cleanup", response_model=CleanupResponse)
async def run_cleanup(request: Request, _=Depends(require_api_key)):
    try:
        report = await _get_service().run_retention_cleanup(actor_from_request(request))
    except IntegrityBreachError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return CleanupResponse(**report.summary())


@router.post("/compliance/daily-checks", response_model=DailyCheckResponse)
async def run_daily_checks(_=Depends(require_api_key)):
    report = await _get_service().run_daily_checks()
    return DailyCheckResponse(
        date=report.date,
        compliance_status=report.compliance_status,
        chain_valid=report.chain.valid,
        breach=report.breach,
        counters=report.counters,
        cleanup=CleanupResponse(**report.cleanup.summary()) if report.cleanup else None,
    )


@router.get("/compliance/status")
async def get_status(_=Depends(require_api_key)) -> dict[str, Any]:
    return await _get_service().get_status()
