"""Compliance orchestrator.

Ties the ledger, retention manager, archive and GDPR tracking together for
request handlers and scheduled jobs. Integrity failures stop cleanup and are
raised as ``IntegrityBreachError`` after a critical security event has been
recorded.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.archive.models import ArchivedRecordModel
from rentalcore.archive.service import GoBDArchive, PurgeReport
from rentalcore.audit.events import (
    SYSTEM_ACTOR,
    AuditActor,
    RequestContext,
    SecurityNotice,
)
from rentalcore.audit.models import AuditEventModel
from rentalcore.audit.service import AuditLogger, ChainVerification
from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.database import DatabaseManager
from rentalcore.common.exceptions import IntegrityBreachError
from rentalcore.common.models import utcnow
from rentalcore.gdpr.models import ConsentRecordModel, DataSubjectRequestModel
from rentalcore.gdpr.service import GDPRService
from rentalcore.retention.service import RetentionCleanupReport, RetentionManager

logger = logging.getLogger(__name__)

CAPABILITIES: dict[str, dict[str, Any]] = {
    "gobd_compliance": {
        "enabled": True,
        "archiving_active": True,
        "audit_logs_active": True,
        "digital_signatures": True,
    },
    "gdpr_compliance": {
        "enabled": True,
        "consent_tracking": True,
        "retention_policies": True,
        "subject_requests": True,
    },
    "audit_trail": {
        "immutable_logs": True,
        "hash_chain": True,
        "signing_method": "RSA-SHA256",
    },
}


@dataclass
class ComplianceCleanupReport:
    started_at: datetime
    consents_closed: int = 0
    processing_records_expired: int = 0
    retention: Optional[RetentionCleanupReport] = None
    purge: Optional[PurgeReport] = None

    def summary(self) -> dict[str, Any]:
        retention = self.retention
        return {
            "consents_closed": self.consents_closed,
            "processing_records_expired": self.processing_records_expired,
            "expired_records": retention.total_expired if retention else 0,
            "marked_for_deletion": retention.marked_for_deletion if retention else 0,
            "skipped_auto_delete": retention.skipped_auto_delete if retention else 0,
            "purged_records": self.purge.deleted if self.purge else 0,
        }


@dataclass
class DailyComplianceReport:
    date: str
    chain: ChainVerification
    counters: dict[str, int] = field(default_factory=dict)
    cleanup: Optional[ComplianceCleanupReport] = None
    breach: str = ""

    @property
    def compliance_status(self) -> str:
        return "breach" if self.breach else "compliant"


class ComplianceService:
    def __init__(
        self,
        db: DatabaseManager,
        settings: RentalCoreSettings,
        audit: AuditLogger,
        retention: RetentionManager,
        archive: GoBDArchive,
        gdpr: GDPRService,
    ):
        self.db = db
        self.settings = settings
        self.audit = audit
        self.retention = retention
        self.archive = archive
        self.gdpr = gdpr

    # ── Invoices ──

    async def handle_invoice(
        self,
        invoice_id: str,
        payload: dict[str, Any],
        actor: AuditActor = SYSTEM_ACTOR,
        request: Optional[RequestContext] = None,
        operation: str = "create",
    ) -> ArchivedRecordModel:
        """Archive and sign an invoice snapshot, then log the compliance step."""
        record = await self.archive.archive_invoice(str(invoice_id), payload, actor, request)
        await self.audit.record_system_event(
            "invoice_compliance",
            {
                "invoice_id": str(invoice_id),
                "operation": operation,
                "record_id": record.id,
                "signature_id": record.signature_id,
                "gobd_compliant": True,
                "digitally_signed": record.signature_id is not None,
            },
            actor=actor,
            request=request,
        )
        return record

    # ── Cleanup ──

    async def run_retention_cleanup(
        self,
        actor: AuditActor = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> ComplianceCleanupReport:
        """Expire consents and processing records, mark archive records, then purge.

        The purge verifies every candidate first; a failed check records a
        critical security event and re-raises, so nothing is deleted.
        """
        now = now or utcnow()
        report = ComplianceCleanupReport(started_at=now)

        async with self.db.get_session() as session:
            report.consents_closed = await self.gdpr.cleanup_expired_consents(session, now)
            report.processing_records_expired = (
                await self.gdpr.cleanup_expired_processing_records(session, now)
            )
            report.retention = await self.retention.cleanup(session, now)

        try:
            report.purge = await self.archive.purge_expired_records(now)
        except IntegrityBreachError as e:
            logger.error("retention cleanup halted: %s", e.message)
            await self.audit.record_security_event(
                "retention_cleanup_halted",
                SecurityNotice("critical", {"reason": e.message, **report.summary()}),
                actor=actor,
            )
            raise

        await self.audit.record_system_event(
            "retention_cleanup",
            {"executed_at": now.isoformat(), **report.summary()},
            actor=actor,
        )
        logger.info("retention cleanup finished: %s", report.summary())
        return report

    async def run_daily_checks(self, now: datetime | None = None) -> DailyComplianceReport:
        """Verify the chain, run cleanup when it is intact, log a daily report."""
        now = now or utcnow()
        chain = await self.audit.verify_chain_integrity()
        report = DailyComplianceReport(date=now.date().isoformat(), chain=chain)

        if not chain.valid:
            report.breach = f"audit chain broken at event {chain.break_at}: {chain.reason}"
            await self.audit.record_security_event(
                "audit_chain_broken",
                SecurityNotice("critical", {
                    "break_at": chain.break_at,
                    "reason": chain.reason,
                    "events_checked": chain.events_checked,
                }),
            )
        else:
            try:
                report.cleanup = await self.run_retention_cleanup(now=now)
            except IntegrityBreachError as e:
                report.breach = e.message

        async with self.db.get_session() as session:
            report.counters = await self._counters(session, now)

        await self.audit.record_system_event(
            "daily_compliance_report",
            {
                "date": report.date,
                "compliance_status": report.compliance_status,
                "chain_valid": chain.valid,
                "breach": report.breach,
                **report.counters,
            },
        )
        if report.breach:
            logger.error("daily compliance check found a breach: %s", report.breach)
        return report

    # ── Status ──

    async def get_status(self) -> dict[str, Any]:
        now = utcnow()
        chain = await self.audit.verify_chain_integrity()
        async with self.db.get_session() as session:
            counters = await self._counters(session, now)
        status: dict[str, Any] = {key: dict(value) for key, value in CAPABILITIES.items()}
        status["audit_trail"]["chain_intact"] = chain.valid
        status["audit_trail"]["log_retention_years"] = self.settings.audit_retention_years
        status["counters"] = counters
        return status

    @staticmethod
    async def _counters(session: AsyncSession, now: datetime) -> dict[str, int]:
        async def count(column, *conditions) -> int:
            result = await session.execute(select(func.count(column)).where(*conditions))
            return result.scalar_one()

        return {
            "audit_events_last_24h": await count(
                AuditEventModel.id, AuditEventModel.timestamp >= now - timedelta(days=1),
            ),
            "archived_documents": await count(ArchivedRecordModel.id),
            "active_consents": await count(
                ConsentRecordModel.id,
                ConsentRecordModel.consent_given == True,  # noqa: E712
                ConsentRecordModel.withdrawn_at.is_(None),
            ),
            "pending_requests": await count(
                DataSubjectRequestModel.id, DataSubjectRequestModel.status == "pending",
            ),
        }
