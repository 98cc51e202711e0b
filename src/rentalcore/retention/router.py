"""Retention policy API router."""

from fastapi import APIRouter, Depends, HTTPException

from rentalcore.common.exceptions import (
    PolicyExistsError,
    PolicyNotFoundError,
    ValidationError,
)
from rentalcore.common.security import require_api_key
from rentalcore.retention.schemas import (
    ComplianceValidationResponse,
    RetentionDateResponse,
    RetentionPolicyCreate,
    RetentionPolicyResponse,
    RetentionPolicyUpdate,
    RetentionStatusResponse,
)

router = APIRouter()


def _get_service():
    from rentalcore.deps import get_retention_manager
    return get_retention_manager()


def _get_db():
    from rentalcore.deps import get_db
    return get_db()


@router.get("/retention/policies", response_model=list[RetentionPolicyResponse])
async def list_policies(_=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        policies = await svc.list_policies(session)
        return [RetentionPolicyResponse.model_validate(p) for p in policies]


@router.post(
    "/retention/policies", response_model=RetentionPolicyResponse, status_code=201,
)
async def create_policy(body: RetentionPolicyCreate, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            policy = await svc.create_policy(
                session, body.document_type, body.retention_years, body.legal_basis,
                description=body.description,
                auto_delete_after=body.auto_delete_after,
            )
            return RetentionPolicyResponse.model_validate(policy)
    except PolicyExistsError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.patch(
    "/retention/policies/{document_type}", response_model=RetentionPolicyResponse,
)
async def update_policy(
    document_type: str, body: RetentionPolicyUpdate, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            policy = await svc.update_policy(
                session, document_type, **body.model_dump(exclude_unset=True),
            )
            return RetentionPolicyResponse.model_validate(policy)
    except PolicyNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)


@router.get(
    "/retention/date/{document_type}", response_model=RetentionDateResponse,
)
async def get_retention_date(document_type: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return RetentionDateResponse(
            document_type=document_type,
            retention_date=await svc.retention_date_for(session, document_type),
            can_auto_delete=await svc.can_auto_delete(session, document_type),
        )


@router.get("/retention/status", response_model=RetentionStatusResponse)
async def get_retention_status(_=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return RetentionStatusResponse(**await svc.get_retention_status(session))


@router.get("/retention/validate", response_model=ComplianceValidationResponse)
async def validate_retention(_=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        validation = await svc.validate_compliance(session)
        return ComplianceValidationResponse.model_validate(validation)
