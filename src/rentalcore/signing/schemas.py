"""Pydantic schemas for signing endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SignRequest(BaseModel):
    document_type: str = Field(..., min_length=1, max_length=100)
    document_id: str = Field(..., min_length=1, max_length=100)
    payload: dict[str, Any]
    signed_by: str = Field(..., min_length=1, max_length=255)


class VerifyRequest(BaseModel):
    payload: dict[str, Any]


class SignedDocumentResponse(BaseModel):
    id: str
    document_type: str
    document_id: str
    document_hash: str
    signature: str
    signature_hash: str
    signed_at: datetime
    signed_by: str
    company_name: str
    signing_method: str
    public_key_hash: str
    is_valid: bool

    model_config = {"from_attributes": True}


class VerifyResponse(BaseModel):
    signature_id: str
    valid: bool


class PublicKeyResponse(BaseModel):
    public_key: str
    public_key_hash: str
    signing_method: str
