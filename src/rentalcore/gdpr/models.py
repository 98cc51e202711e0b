"""SQLAlchemy models for GDPR consent, processing records, requests and personal data."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rentalcore.common.models import Base, TimestampMixin, generate_uuid


class ConsentRecordModel(Base, TimestampMixin):
    __tablename__ = "consent_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    consent_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    legal_basis: Mapped[str] = mapped_column(String(255), nullable=False)
    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")
    ip_address: Mapped[str] = mapped_column(String(45), default="")
    user_agent: Mapped[str] = mapped_column(Text, default="")


class DataSubjectRequestModel(Base, TimestampMixin):
    __tablename__ = "data_subject_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response: Mapped[str] = mapped_column(Text, default="")
    response_data: Mapped[str] = mapped_column(Text, default="")


class DataProcessingRecordModel(Base, TimestampMixin):
    """Art. 30 GDPR record of a processing activity."""

    __tablename__ = "data_processing_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    processing_type: Mapped[str] = mapped_column(String(30), nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    legal_basis: Mapped[str] = mapped_column(String(255), nullable=False)
    data_controller: Mapped[str] = mapped_column(String(255), nullable=False)
    data_processor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    recipients: Mapped[str] = mapped_column(Text, default="[]")
    transfer_country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    retention_period: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )


class EncryptedPersonalDataModel(Base, TimestampMixin):
    __tablename__ = "encrypted_personal_data"
    __table_args__ = (
        UniqueConstraint("user_id", "data_type", name="uq_personal_data_user_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    encrypted_data: Mapped[str] = mapped_column(Text, nullable=False)
    key_version: Mapped[str] = mapped_column(String(20), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(20), nullable=False, default="AES-256-GCM")
