"""Pydantic schemas for compliance endpoints."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from rentalcore.archive.schemas import ArchivedRecordResponse


class InvoiceComplianceRequest(BaseModel):
    invoice_id: str = Field(..., min_length=1, max_length=100)
    payload: dict[str, Any]
    operation: str = Field(default="create", pattern="^(create|update)$")


class InvoiceComplianceResponse(BaseModel):
    record: ArchivedRecordResponse
    digitally_signed: bool


class CleanupResponse(BaseModel):
    consents_closed: int
    processing_records_expired: int
    expired_records: int
    marked_for_deletion: int
    skipped_auto_delete: int
    purged_records: int


class DailyCheckResponse(BaseModel):
    date: str
    compliance_status: str
    chain_valid: bool
    breach: str = ""
    counters: dict[str, int]
    cleanup: Optional[CleanupResponse] = None
