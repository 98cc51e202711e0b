"""Document signature API router."""

from fastapi import APIRouter, Depends, HTTPException, Request

from rentalcore.audit.events import AuditEventType
from rentalcore.common.exceptions import RecordNotFoundError
from rentalcore.common.security import (
    actor_from_request,
    context_from_request,
    require_api_key,
)
from rentalcore.signing.schemas import (
    PublicKeyResponse,
    SignedDocumentResponse,
    SignRequest,
    VerifyRequest,
    VerifyResponse,
)
from rentalcore.signing.service import SIGNING_METHOD

router = APIRouter()


def _get_service():
    from rentalcore.deps import get_signature_manager
    return get_signature_manager()


def _get_db():
    from rentalcore.deps import get_db
    return get_db()


def _get_audit():
    from rentalcore.deps import get_audit_logger
    return get_audit_logger()


@router.get("/signing/public-key", response_model=PublicKeyResponse)
async def get_public_key():
    svc = _get_service()
    return PublicKeyResponse(
        public_key=svc.export_public_key(),
        public_key_hash=svc.public_key_hash,
        signing_method=SIGNING_METHOD,
    )


@router.post("/signing/sign", response_model=SignedDocumentResponse, status_code=201)
async def sign_document(
    body: SignRequest, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        signed = await svc.sign_and_store(
            session, body.document_type, body.document_id, body.payload, body.signed_by,
        )
        response = SignedDocumentResponse.model_validate(signed)

    await _get_audit().record(
        AuditEventType.SIGN, body.document_type, body.document_id,
        actor_from_request(request), "Document digitally signed",
        new_value={
            "signature_id": response.id,
            "document_hash": response.document_hash,
            "signed_by": response.signed_by,
            "signing_method": response.signing_method,
            "public_key_hash": response.public_key_hash,
        },
        request=context_from_request(request),
    )
    return response


@router.post("/signing/{signature_id}/verify", response_model=VerifyResponse)
async def verify_document(
    signature_id: str, body: VerifyRequest, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            signed = await svc.get_signed_document(session, signature_id)
            return VerifyResponse(
                signature_id=signature_id, valid=svc.verify(signed, body.payload),
            )
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
