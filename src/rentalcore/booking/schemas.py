"""Pydantic schemas for booking endpoints."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


# ── Catalogue ──

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    item_cost_per_day: Optional[float] = Field(default=None, ge=0)


class ProductResponse(BaseModel):
    id: str
    name: str
    item_cost_per_day: Optional[float] = None

    model_config = {"from_attributes": True}


class DeviceCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=50)
    product_id: Optional[str] = None
    serial_number: Optional[str] = Field(default=None, max_length=100)
    status: str = "free"


class DeviceStatusUpdate(BaseModel):
    status: str


class DeviceResponse(BaseModel):
    id: str
    product_id: Optional[str] = None
    serial_number: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}


# ── Jobs ──

class JobCreate(BaseModel):
    customer: str = ""
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str = "open"
    discount: float = Field(default=0.0, ge=0)
    discount_type: str = "amount"


class JobStatusUpdate(BaseModel):
    status: str


class DiscountUpdate(BaseModel):
    discount: float = Field(..., ge=0)
    discount_type: str


class JobResponse(BaseModel):
    id: str
    customer: str
    description: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str
    discount: float
    discount_type: str
    revenue: float
    final_revenue: float

    model_config = {"from_attributes": True}


# ── Assignment ──

class AssignDeviceRequest(BaseModel):
    device_id: str
    custom_price: Optional[float] = None


class BulkAssignRequest(BaseModel):
    identifiers: list[str] = Field(..., min_length=1)
    custom_price: Optional[float] = None


class JobDeviceResponse(BaseModel):
    job_id: str
    device_id: str
    custom_price: Optional[float] = None
    state: str
    assigned_at: datetime
    returned_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AssignmentResponse(BaseModel):
    assignment: JobDeviceResponse
    job: JobResponse


class BulkItemResponse(BaseModel):
    identifier: str
    success: bool
    message: str
    device_id: Optional[str] = None
    code: str = ""

    model_config = {"from_attributes": True}


class BulkAssignmentResponse(BaseModel):
    job: JobResponse
    items: list[BulkItemResponse]


class CurrentAssignmentResponse(BaseModel):
    device_id: str
    assigned: bool
    job_id: Optional[str] = None
