"""SQLAlchemy models for retention policies."""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rentalcore.common.models import Base, TimestampMixin, generate_uuid


class RetentionPolicyModel(Base, TimestampMixin):
    __tablename__ = "retention_policies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_type: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    retention_years: Mapped[int] = mapped_column(Integer, nullable=False)
    legal_basis: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_delete_after: Mapped[bool] = mapped_column(Boolean, default=False)
