"""Pydantic schemas for GDPR endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ConsentCreate(BaseModel):
    user_id: int = Field(..., ge=1)
    data_type: str
    purpose: str = Field(..., min_length=1, max_length=255)
    legal_basis: str = Field(..., min_length=1, max_length=255)
    expiry_date: Optional[datetime] = None


class ConsentWithdraw(BaseModel):
    user_id: int = Field(..., ge=1)
    data_type: str
    purpose: str


class ConsentResponse(BaseModel):
    id: str
    user_id: int
    data_type: str
    purpose: str
    consent_given: bool
    consent_date: datetime
    expiry_date: Optional[datetime] = None
    legal_basis: str
    withdrawn_at: Optional[datetime] = None
    version: str

    model_config = {"from_attributes": True}


class ConsentCheckResponse(BaseModel):
    user_id: int
    data_type: str
    purpose: str
    has_consent: bool


class DataSubjectRequestCreate(BaseModel):
    user_id: int = Field(..., ge=1)
    request_type: str
    description: str = ""


class DataSubjectRequestProcess(BaseModel):
    processor_id: int = Field(..., ge=1)
    response: str = ""


class DataSubjectRequestComplete(BaseModel):
    response_data: str = ""


class DataSubjectRequestResponse(BaseModel):
    id: str
    user_id: int
    request_type: str
    status: str
    description: str
    requested_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processor_id: Optional[int] = None
    response: str = ""

    model_config = {"from_attributes": True}


class DataProcessingCreate(BaseModel):
    user_id: int = Field(..., ge=1)
    data_type: str
    processing_type: str
    purpose: str = Field(..., min_length=1, max_length=255)
    legal_basis: str = Field(..., min_length=1, max_length=255)
    data_controller: str = Field(..., min_length=1, max_length=255)
    data_processor: Optional[str] = None
    recipients: list[str] = Field(default_factory=list)
    transfer_country: Optional[str] = None
    retention_period: str = "indefinite"


class DataProcessingResponse(BaseModel):
    id: str
    user_id: int
    data_type: str
    processing_type: str
    purpose: str
    legal_basis: str
    data_controller: str
    data_processor: Optional[str] = None
    recipients: list[str]
    transfer_country: Optional[str] = None
    retention_period: str
    processed_at: datetime
    expires_at: Optional[datetime] = None


class PersonalDataStore(BaseModel):
    data_type: str
    data: Any


class PersonalDataStored(BaseModel):
    user_id: int
    data_type: str
    key_version: str
    algorithm: str

    model_config = {"from_attributes": True}


class PersonalDataResponse(BaseModel):
    user_id: int
    data_type: str
    data: Any


class UserDataErasureResponse(BaseModel):
    user_id: int
    deleted: dict[str, int]
