"""SQLAlchemy models for devices, jobs and their assignments."""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rentalcore.common.models import Base, TimestampMixin, generate_uuid, utcnow

DEVICE_STATUSES = ("free", "checked_out", "maintenance", "retired")
JOB_STATUSES = ("open", "in_progress", "completed", "cancelled", "paid")
DISCOUNT_TYPES = ("amount", "percent")
ASSIGNMENT_STATES = ("assigned", "returned")


class ProductModel(Base, TimestampMixin):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Flat rate charged once per job, regardless of duration.
    item_cost_per_day: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class DeviceModel(Base, TimestampMixin):
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    serial_number: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True, index=True
    )
    product_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), default="free", index=True)


class JobModel(Base, TimestampMixin):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    customer: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    discount_type: Mapped[str] = mapped_column(String(10), default="amount")
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    final_revenue: Mapped[float] = mapped_column(Float, default=0.0)


class JobDeviceModel(Base):
    __tablename__ = "job_devices"
    __table_args__ = (
        UniqueConstraint("job_id", "device_id", name="uq_job_device"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("jobs.id"), nullable=False, index=True
    )
    device_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("devices.id"), nullable=False, index=True
    )
    custom_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    state: Mapped[str] = mapped_column(String(20), default="assigned")
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    returned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
