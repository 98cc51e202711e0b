"""Pydantic schemas for archive endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ArchiveRequest(BaseModel):
    document_type: str = Field(..., min_length=1, max_length=100)
    document_id: str = Field(..., min_length=1, max_length=100)
    payload: dict[str, Any]


class ArchivedRecordResponse(BaseModel):
    id: str
    document_type: str
    document_id: str
    data_hash: str
    archive_date: datetime
    retention_date: Optional[datetime] = None
    seal: str
    signature_id: Optional[str] = None
    user_id: int
    is_immutable: bool
    archive_file_name: str
    marked_for_deletion_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ArchivedDocumentResponse(ArchivedRecordResponse):
    original_data: str


class IntegrityResponse(BaseModel):
    record_id: str
    integrity_valid: bool
    signature_valid: bool


class ComplianceReportResponse(BaseModel):
    generated_at: datetime
    archived_documents: dict[str, int] = {}
    total_archive_size: int
    expiring_records: int
    audit_events: int
    chain_intact: bool
    compliance_status: str
    recommendations: list[str] = []
