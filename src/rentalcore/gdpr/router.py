"""GDPR consent, processing registry, data subject request and personal data router."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from rentalcore.audit.events import AuditEventType
from rentalcore.common.exceptions import (
    NotFoundError,
    PersonalDataDecryptionError,
    ValidationError,
)
from rentalcore.common.security import (
    actor_from_request,
    context_from_request,
    require_api_key,
)
from rentalcore.gdpr.schemas import (
    ConsentCheckResponse,
    ConsentCreate,
    ConsentResponse,
    ConsentWithdraw,
    DataProcessingCreate,
    DataProcessingResponse,
    DataSubjectRequestComplete,
    DataSubjectRequestCreate,
    DataSubjectRequestProcess,
    DataSubjectRequestResponse,
    PersonalDataResponse,
    PersonalDataStore,
    PersonalDataStored,
    UserDataErasureResponse,
)
from rentalcore.gdpr.service import processing_entry

router = APIRouter()


def _get_service():
    from rentalcore.deps import get_gdpr_service
    return get_gdpr_service()


def _get_db():
    from rentalcore.deps import get_db
    return get_db()


def _get_audit():
    from rentalcore.deps import get_audit_logger
    return get_audit_logger()


@router.post("/gdpr/consents", response_model=ConsentResponse, status_code=201)
async def record_consent(
    body: ConsentCreate, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    context = context_from_request(request)
    try:
        async with db.get_session() as session:
            consent = await svc.record_consent(
                session, body.user_id, body.data_type, body.purpose, body.legal_basis,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                expiry_date=body.expiry_date,
            )
            response = ConsentResponse.model_validate(consent)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    await _get_audit().record_customer_event(
        AuditEventType.CREATE, str(body.user_id), actor_from_request(request),
        "Consent recorded", new_value=response.model_dump(mode="json"), request=context,
    )
    return response


@router.post("/gdpr/consents/withdraw")
async def withdraw_consent(
    body: ConsentWithdraw, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        withdrawn = await svc.withdraw_consent(
            session, body.user_id, body.data_type, body.purpose,
        )

    await _get_audit().record_customer_event(
        AuditEventType.UPDATE, str(body.user_id), actor_from_request(request),
        "Consent withdrawn",
        new_value={"data_type": body.data_type, "purpose": body.purpose, "withdrawn": withdrawn},
        request=context_from_request(request),
    )
    return {"withdrawn": withdrawn}


@router.get("/gdpr/consents/check", response_model=ConsentCheckResponse)
async def check_consent(
    user_id: int = Query(..., ge=1),
    data_type: str = Query(...),
    purpose: str = Query(...),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        has_consent = await svc.check_consent(session, user_id, data_type, purpose)
    return ConsentCheckResponse(
        user_id=user_id, data_type=data_type, purpose=purpose, has_consent=has_consent,
    )


@router.post(
    "/gdpr/requests", response_model=DataSubjectRequestResponse, status_code=201,
)
async def create_data_subject_request(
    body: DataSubjectRequestCreate, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            dsr = await svc.create_data_subject_request(
                session, body.user_id, body.request_type, body.description,
            )
            response = DataSubjectRequestResponse.model_validate(dsr)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    await _get_audit().record_customer_event(
        AuditEventType.CREATE, str(body.user_id), actor_from_request(request),
        f"Data subject request created: {body.request_type}",
        new_value={"request_id": response.id, "request_type": body.request_type},
        request=context_from_request(request),
    )
    return response


@router.post(
    "/gdpr/requests/{request_id}/process", response_model=DataSubjectRequestResponse,
)
async def process_data_subject_request(
    request_id: str, body: DataSubjectRequestProcess, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            dsr = await svc.process_data_subject_request(
                session, request_id, body.processor_id, body.response,
            )
            return DataSubjectRequestResponse.model_validate(dsr)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post(
    "/gdpr/requests/{request_id}/complete", response_model=DataSubjectRequestResponse,
)
async def complete_data_subject_request(
    request_id: str, body: DataSubjectRequestComplete, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            dsr = await svc.complete_data_subject_request(
                session, request_id, body.response_data,
            )
            return DataSubjectRequestResponse.model_validate(dsr)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=e.message)




@router.post(
    "/gdpr/processing", response_model=DataProcessingResponse, status_code=201,
)
async def record_data_processing(
    body: DataProcessingCreate, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            record = await svc.record_data_processing(
                session, **body.model_dump(),
            )
            response = DataProcessingResponse.model_validate(processing_entry(record))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    await _get_audit().record_customer_event(
        AuditEventType.CREATE, str(body.user_id), actor_from_request(request),
        "Data processing recorded", new_value=response.model_dump(mode="json"),
        request=context_from_request(request),
    )
    return response


@router.get("/gdpr/processing", response_model=list[DataProcessingResponse])
async def get_data_processing_registry(
    user_id: int | None = Query(default=None, ge=1),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        registry = await svc.get_data_processing_registry(session, user_id)
    return [DataProcessingResponse.model_validate(entry) for entry in registry]


@router.put(
    "/gdpr/users/{user_id}/personal-data", response_model=PersonalDataStored,
)
async def store_personal_data(
    user_id: int, body: PersonalDataStore, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            record = await svc.encrypt_personal_data(
                session, user_id, body.data_type, body.data,
            )
            response = PersonalDataStored.model_validate(record)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    # Only the data type goes on the chain, never the plaintext.
    await _get_audit().record_customer_event(
        AuditEventType.UPDATE, str(user_id), actor_from_request(request),
        "Personal data stored encrypted",
        new_value={"data_type": body.data_type, "key_version": response.key_version},
        request=context_from_request(request),
    )
    return response


@router.get(
    "/gdpr/users/{user_id}/personal-data/{data_type}",
    response_model=PersonalDataResponse,
)
async def read_personal_data(
    user_id: int, data_type: str, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            data = await svc.decrypt_personal_data(session, user_id, data_type)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PersonalDataDecryptionError as e:
        raise HTTPException(status_code=500, detail=e.message)

    await _get_audit().record_customer_event(
        AuditEventType.READ, str(user_id), actor_from_request(request),
        "Personal data accessed", new_value={"data_type": data_type},
        request=context_from_request(request),
    )
    return PersonalDataResponse(user_id=user_id, data_type=data_type, data=data)


@router.get("/gdpr/users/{user_id}/export")
async def export_user_data(user_id: int, request: Request, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            export = await svc.export_user_data(session, user_id)
    except PersonalDataDecryptionError as e:
        raise HTTPException(status_code=500, detail=e.message)

    await _get_audit().record_customer_event(
        AuditEventType.READ, str(user_id), actor_from_request(request),
        "User data exported", request=context_from_request(request),
    )
    return export


@router.delete("/gdpr/users/{user_id}", response_model=UserDataErasureResponse)
async def delete_user_data(user_id: int, request: Request, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        deleted = await svc.delete_user_data(session, user_id)

    await _get_audit().record_customer_event(
        AuditEventType.DELETE, str(user_id), actor_from_request(request),
        "User data erased", old_value=deleted, request=context_from_request(request),
    )
    return UserDataErasureResponse(user_id=user_id, deleted=deleted)
