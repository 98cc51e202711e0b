"""Pydantic schemas for retention endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RetentionPolicyCreate(BaseModel):
    document_type: str = Field(..., min_length=1, max_length=100)
    retention_years: int = Field(..., ge=1, le=100)
    legal_basis: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    auto_delete_after: bool = False


class RetentionPolicyUpdate(BaseModel):
    retention_years: Optional[int] = Field(default=None, ge=1, le=100)
    legal_basis: Optional[str] = None
    description: Optional[str] = None
    auto_delete_after: Optional[bool] = None
    is_active: Optional[bool] = None


class RetentionPolicyResponse(BaseModel):
    id: str
    document_type: str
    retention_years: int
    legal_basis: str
    description: str
    is_active: bool
    auto_delete_after: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class RetentionDateResponse(BaseModel):
    document_type: str
    retention_date: datetime
    can_auto_delete: bool


class ComplianceIssueResponse(BaseModel):
    type: str
    severity: str
    description: str
    document_type: str = ""
    count: int = 0

    model_config = {"from_attributes": True}


class ComplianceValidationResponse(BaseModel):
    checked_at: datetime
    is_compliant: bool
    compliance_level: str
    issues: list[ComplianceIssueResponse] = []

    model_config = {"from_attributes": True}


class RetentionCleanupResponse(BaseModel):
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0
    total_expired: int
    marked_for_deletion: int
    skipped_auto_delete: int

    model_config = {"from_attributes": True}


class PolicyStatus(BaseModel):
    retention_years: int
    legal_basis: str
    auto_delete_after: bool
    total_records: int
    expired_count: int
    expiring_soon: int


class RetentionStatusResponse(BaseModel):
    total_documents: int
    expired_documents: int
    expiring_soon: int
    policies: dict[str, PolicyStatus] = {}
