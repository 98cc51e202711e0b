"""Retention manager: per-document-type expiry dates and deletion gating.

Unknown document types are kept for the default period and are never
eligible for automatic deletion. Nothing here deletes data; ``cleanup``
only marks expired archive records whose policy permits auto-deletion.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.archive.models import ArchivedRecordModel
from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.exceptions import (
    PolicyExistsError,
    PolicyNotFoundError,
    ValidationError,
)
from rentalcore.common.hashing import as_utc
from rentalcore.common.models import utcnow
from rentalcore.retention.models import RetentionPolicyModel

logger = logging.getLogger(__name__)

AO_147 = "§ 147 AO (Abgabenordnung)"
HGB_257 = "§ 257 HGB (Handelsgesetzbuch)"
GOBD = "GoBD (Grundsätze ordnungsmäßiger Buchführung)"

DEFAULT_POLICIES: list[dict[str, Any]] = [
    {
        "document_type": "invoice",
        "retention_years": 10,
        "legal_basis": AO_147,
        "description": "Rechnungen müssen 10 Jahre aufbewahrt werden",
        "auto_delete_after": False,
    },
    {
        "document_type": "receipt",
        "retention_years": 10,
        "legal_basis": AO_147,
        "description": "Belege müssen 10 Jahre aufbewahrt werden",
        "auto_delete_after": False,
    },
    {
        "document_type": "contract",
        "retention_years": 10,
        "legal_basis": AO_147,
        "description": "Verträge müssen 10 Jahre aufbewahrt werden",
        "auto_delete_after": False,
    },
    {
        "document_type": "customer_data",
        "retention_years": 6,
        "legal_basis": HGB_257,
        "description": "Kundendaten müssen 6 Jahre aufbewahrt werden",
        "auto_delete_after": True,
    },
    {
        "document_type": "audit_log",
        "retention_years": 10,
        "legal_basis": GOBD,
        "description": "Audit-Logs müssen 10 Jahre aufbewahrt werden",
        "auto_delete_after": False,
    },
]

EDITABLE_POLICY_FIELDS = frozenset({
    "retention_years", "legal_basis", "description", "auto_delete_after", "is_active",
})

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"


@dataclass
class RetentionCleanupReport:
    start_time: datetime
    end_time: Optional[datetime] = None
    total_expired: int = 0
    marked_for_deletion: int = 0
    skipped_auto_delete: int = 0
    marked_record_ids: list[str] = field(default_factory=list)
    skipped_record_ids: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


@dataclass
class ComplianceIssue:
    type: str
    severity: str
    description: str
    document_type: str = ""
    count: int = 0


@dataclass
class ComplianceValidation:
    checked_at: datetime
    issues: list[ComplianceIssue] = field(default_factory=list)

    @property
    def is_compliant(self) -> bool:
        return not self.issues

    @property
    def compliance_level(self) -> str:
        if not self.issues:
            return "fully_compliant"
        if any(issue.severity == SEVERITY_HIGH for issue in self.issues):
            return "non_compliant"
        return "partially_compliant"


class RetentionManager:
    """Computes retention dates and decides what may be auto-deleted."""

    def __init__(self, settings: RentalCoreSettings):
        self.settings = settings

    # ── Policies ──

    async def seed_default_policies(self, session: AsyncSession) -> int:
        """Insert any missing default policy. Existing rows are left as edited."""
        created = 0
        for defaults in DEFAULT_POLICIES:
            existing = await self._find_policy(session, defaults["document_type"])
            if existing is None:
                session.add(RetentionPolicyModel(is_active=True, **defaults))
                created += 1
        await session.flush()
        if created:
            logger.info("seeded %d default retention policies", created)
        return created

    async def get_policy(
        self, session: AsyncSession, document_type: str,
    ) -> RetentionPolicyModel | None:
        """Active policy for a document type, or None."""
        result = await session.execute(
            select(RetentionPolicyModel).where(
                RetentionPolicyModel.document_type == document_type,
                RetentionPolicyModel.is_active == True,  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def list_policies(self, session: AsyncSession) -> list[RetentionPolicyModel]:
        result = await session.execute(
            select(RetentionPolicyModel)
            .where(RetentionPolicyModel.is_active == True)  # noqa: E712
            .order_by(RetentionPolicyModel.document_type)
        )
        return list(result.scalars().all())

    async def create_policy(
        self,
        session: AsyncSession,
        document_type: str,
        retention_years: int,
        legal_basis: str,
        description: str = "",
        auto_delete_after: bool = False,
    ) -> RetentionPolicyModel:
        if await self._find_policy(session, document_type) is not None:
            raise PolicyExistsError(document_type)
        policy = RetentionPolicyModel(
            document_type=document_type,
            retention_years=retention_years,
            legal_basis=legal_basis,
            description=description,
            auto_delete_after=auto_delete_after,
            is_active=True,
        )
        session.add(policy)
        await session.flush()
        return policy

    async def update_policy(
        self, session: AsyncSession, document_type: str, **updates: Any,
    ) -> RetentionPolicyModel:
        policy = await self._find_policy(session, document_type)
        if policy is None:
            raise PolicyNotFoundError(
                f"Retention policy for document type {document_type} not found"
            )
        unknown = sorted(set(updates) - EDITABLE_POLICY_FIELDS)
        if unknown:
            raise ValidationError(f"Policy fields not editable: {', '.join(unknown)}")
        for field_name, value in updates.items():
            if value is not None:
                setattr(policy, field_name, value)
        await session.flush()
        return policy

    # ── Decisions ──

    async def retention_date_for(
        self,
        session: AsyncSession,
        document_type: str,
        now: datetime | None = None,
    ) -> datetime:
        """now + policy years; the default period when no active policy exists."""
        now = now or utcnow()
        policy = await self.get_policy(session, document_type)
        years = policy.retention_years if policy else self.settings.default_retention_years
        return now + relativedelta(years=years)

    async def can_auto_delete(self, session: AsyncSession, document_type: str) -> bool:
        policy = await self.get_policy(session, document_type)
        if policy is None:
            return False
        return policy.auto_delete_after

    # ── Cleanup ──

    async def cleanup(
        self, session: AsyncSession, now: datetime | None = None,
    ) -> RetentionCleanupReport:
        """Mark expired, auto-deletable archive records. Never deletes."""
        now = now or utcnow()
        report = RetentionCleanupReport(start_time=utcnow())

        result = await session.execute(
            select(ArchivedRecordModel)
            .where(ArchivedRecordModel.retention_date < now)
            .order_by(ArchivedRecordModel.retention_date)
        )
        expired = list(result.scalars().all())
        report.total_expired = len(expired)

        decisions: dict[str, bool] = {}
        for record in expired:
            if record.document_type not in decisions:
                decisions[record.document_type] = await self.can_auto_delete(
                    session, record.document_type
                )
            if not decisions[record.document_type]:
                report.skipped_auto_delete += 1
                report.skipped_record_ids.append(record.id)
                logger.info(
                    "auto-deletion disabled for document type %s, skipping record %s",
                    record.document_type, record.id,
                )
                continue

            if record.marked_for_deletion_at is None:
                record.marked_for_deletion_at = now
            report.marked_for_deletion += 1
            report.marked_record_ids.append(record.id)
            logger.info(
                "record %s (%s:%s) marked for deletion, retention expired on %s",
                record.id, record.document_type, record.document_id,
                as_utc(record.retention_date).date().isoformat(),
            )

        await session.flush()
        report.end_time = utcnow()
        return report

    async def get_expiring_documents(
        self,
        session: AsyncSession,
        within: timedelta,
        now: datetime | None = None,
    ) -> list[ArchivedRecordModel]:
        now = now or utcnow()
        result = await session.execute(
            select(ArchivedRecordModel)
            .where(
                ArchivedRecordModel.retention_date >= now,
                ArchivedRecordModel.retention_date <= now + within,
            )
            .order_by(ArchivedRecordModel.retention_date)
        )
        return list(result.scalars().all())

    async def get_retention_status(
        self, session: AsyncSession, now: datetime | None = None,
    ) -> dict[str, Any]:
        """Per-policy totals, expired and expiring-soon counts."""
        now = now or utcnow()
        soon = now + timedelta(days=self.settings.expiring_soon_days)

        async def count(*conditions) -> int:
            result = await session.execute(
                select(func.count(ArchivedRecordModel.id)).where(*conditions)
            )
            return result.scalar_one()

        status: dict[str, Any] = {
            "total_documents": await count(),
            "expired_documents": await count(ArchivedRecordModel.retention_date < now),
            "expiring_soon": 0,
            "policies": {},
        }
        for policy in await self.list_policies(session):
            of_type = ArchivedRecordModel.document_type == policy.document_type
            expiring = await count(
                of_type,
                ArchivedRecordModel.retention_date >= now,
                ArchivedRecordModel.retention_date <= soon,
            )
            status["policies"][policy.document_type] = {
                "retention_years": policy.retention_years,
                "legal_basis": policy.legal_basis,
                "auto_delete_after": policy.auto_delete_after,
                "total_records": await count(of_type),
                "expired_count": await count(of_type, ArchivedRecordModel.retention_date < now),
                "expiring_soon": expiring,
            }
            status["expiring_soon"] += expiring
        return status

    # ── Validation ──

    async def validate_compliance(
        self, session: AsyncSession, now: datetime | None = None,
    ) -> ComplianceValidation:
        """Report retention issues. Remediation is left to an administrator."""
        now = now or utcnow()
        validation = ComplianceValidation(checked_at=now)

        missing_dates = (await session.execute(
            select(func.count(ArchivedRecordModel.id))
            .where(ArchivedRecordModel.retention_date.is_(None))
        )).scalar_one()
        if missing_dates:
            validation.issues.append(ComplianceIssue(
                type="missing_retention_date",
                severity=SEVERITY_HIGH,
                description=f"{missing_dates} records found without proper retention dates",
                count=missing_dates,
            ))

        grace_cutoff = now - relativedelta(months=self.settings.over_retention_grace_months)
        over_retention = (await session.execute(
            select(func.count(ArchivedRecordModel.id))
            .where(ArchivedRecordModel.retention_date < grace_cutoff)
        )).scalar_one()
        if over_retention:
            validation.issues.append(ComplianceIssue(
                type="over_retention",
                severity=SEVERITY_MEDIUM,
                description=(
                    f"{over_retention} records found that are significantly "
                    "past their retention date"
                ),
                count=over_retention,
            ))

        doc_types = (await session.execute(
            select(ArchivedRecordModel.document_type).distinct()
        )).scalars().all()
        for doc_type in sorted(doc_types):
            if await self.get_policy(session, doc_type) is None:
                validation.issues.append(ComplianceIssue(
                    type="missing_policy",
                    severity=SEVERITY_HIGH,
                    description=f"No retention policy found for document type: {doc_type}",
                    document_type=doc_type,
                ))

        if validation.issues:
            logger.warning(
                "retention validation found %d issue(s), level %s",
                len(validation.issues), validation.compliance_level,
            )
        return validation

    # ── Internal helpers ──

    async def _find_policy(
        self, session: AsyncSession, document_type: str,
    ) -> RetentionPolicyModel | None:
        result = await session.execute(
            select(RetentionPolicyModel).where(
                RetentionPolicyModel.document_type == document_type
            )
        )
        return result.scalar_one_or_none()
