"""Pydantic schemas for audit log API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class AuditEventResponse(BaseModel):
    id: int
    event_type: str
    object_type: str
    object_id: str
    user_id: int
    username: str
    action: str
    old_values: str = ""
    new_values: str = ""
    ip_address: str = ""
    user_agent: str = ""
    session_id: str = ""
    context: dict[str, Any] = {}
    event_hash: str
    previous_hash: str = ""
    is_compliant: bool
    retention_date: datetime
    timestamp: datetime

    model_config = {"from_attributes": True}


class AuditEventPage(BaseModel):
    events: list[AuditEventResponse]
    total: int
    page: int
    page_size: int


class AuditChainVerification(BaseModel):
    valid: bool
    events_checked: int
    break_at: Optional[int] = None
    reason: str = ""

    model_config = {"from_attributes": True}


class AuditStatisticsResponse(BaseModel):
    total_events: int
    events_by_type: dict[str, int] = {}
    events_by_user: dict[str, int] = {}
    last_event: Optional[datetime] = None
    chain_intact: bool
