"""GoBD archive API router."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from rentalcore.archive.schemas import (
    ArchivedDocumentResponse,
    ArchivedRecordResponse,
    ArchiveRequest,
    ComplianceReportResponse,
    IntegrityResponse,
)
from rentalcore.common.exceptions import (
    ArchiveWriteError,
    IntegrityBreachError,
    RecordNotFoundError,
)
from rentalcore.common.security import (
    actor_from_request,
    context_from_request,
    require_api_key,
)

router = APIRouter()


def _get_archive():
    from rentalcore.deps import get_archive
    return get_archive()


@router.post("/archive", response_model=ArchivedRecordResponse, status_code=201)
async def archive_document(
    body: ArchiveRequest, request: Request, _=Depends(require_api_key),
):
    try:
        record = await _get_archive().archive(
            body.document_type,
            body.document_id,
            body.payload,
            actor=actor_from_request(request),
            request=context_from_request(request),
        )
    except ArchiveWriteError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return ArchivedRecordResponse.model_validate(record)


@router.get("/archive", response_model=list[ArchivedRecordResponse])
async def list_archived_records(
    document_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    records = await _get_archive().list_records(document_type, limit=limit, offset=offset)
    return [ArchivedRecordResponse.model_validate(r) for r in records]


@router.get("/archive/report", response_model=ComplianceReportResponse)
async def get_compliance_report(_=Depends(require_api_key)):
    return ComplianceReportResponse(**await _get_archive().get_compliance_report())


@router.get(
    "/archive/{document_type}/{document_id}", response_model=ArchivedDocumentResponse,
)
async def get_archived_document(
    document_type: str, document_id: str, _=Depends(require_api_key),
):
    try:
        record = await _get_archive().get_archived_document(document_type, document_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except IntegrityBreachError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return ArchivedDocumentResponse.model_validate(record)


@router.get("/archive/records/{record_id}/verify", response_model=IntegrityResponse)
async def verify_archived_record(record_id: str, _=Depends(require_api_key)):
    archive = _get_archive()
    try:
        integrity_valid = await archive.verify_integrity(record_id)
        signature_valid = await archive.verify_signature(record_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return IntegrityResponse(
        record_id=record_id,
        integrity_valid=integrity_valid,
        signature_valid=signature_valid,
    )
