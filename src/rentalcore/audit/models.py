"""SQLAlchemy models for the hash-chained audit log."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rentalcore.common.models import Base, utcnow


class AuditEventModel(Base):
    """One immutable audit record. Insertion order (id) defines the chain."""

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    object_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    object_id: Mapped[str] = mapped_column(String(100), nullable=False, default="", index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    old_values: Mapped[str] = mapped_column(Text, nullable=False, default="")
    new_values: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    session_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    event_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    is_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    retention_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
