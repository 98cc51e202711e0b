"""SQLAlchemy models for the GoBD document archive."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rentalcore.common.models import Base, TimestampMixin, generate_uuid


class ArchivedRecordModel(Base, TimestampMixin):
    """Immutable snapshot of a business document kept for legal retention."""

    __tablename__ = "gobd_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    original_data: Mapped[str] = mapped_column(Text, nullable=False)
    data_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    archive_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    retention_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    seal: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    signature_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("signed_documents.id"), nullable=True
    )
    user_id: Mapped[int] = mapped_column(Integer, default=0, index=True)
    is_immutable: Mapped[bool] = mapped_column(Boolean, default=True)
    archive_file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    marked_for_deletion_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
