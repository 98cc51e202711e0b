"""GoBD archive: immutable document snapshots with integrity checks.

A snapshot is written to ``<archive_dir>/<document_type>/`` first and made
read-only; the database row follows. If the row cannot be persisted the file
is removed again and the error propagates. The ARCHIVE audit event is only
recorded once the row is committed.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.archive.models import ArchivedRecordModel
from rentalcore.audit.events import (
    SYSTEM_ACTOR,
    ArchiveNotice,
    AuditActor,
    AuditEventType,
    RequestContext,
)
from rentalcore.audit.service import AuditLogger
from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.database import DatabaseManager
from rentalcore.common.exceptions import (
    ArchiveWriteError,
    IntegrityBreachError,
    RecordNotFoundError,
)
from rentalcore.common.hashing import canonical_json, format_timestamp, sha256_hex
from rentalcore.common.models import utcnow
from rentalcore.retention.service import RetentionManager
from rentalcore.signing.service import DigitalSignatureManager

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def safe_component(value: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", str(value)).strip(".")
    return cleaned or "_"


def compute_seal(document_type: str, document_id: str, data_hash: str, archive_date: datetime) -> str:
    """Hash over type:id:hash:archive_date. A tamper marker, not a signature."""
    return sha256_hex(
        ":".join([document_type, document_id, data_hash, format_timestamp(archive_date)])
    )


@dataclass
class PurgeReport:
    started_at: datetime
    candidates: int = 0
    deleted_record_ids: list[str] = field(default_factory=list)
    skipped_record_ids: list[str] = field(default_factory=list)
    missing_files: list[str] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return len(self.deleted_record_ids)


class GoBDArchive:
    """Writes, verifies and eventually purges archived documents."""

    def __init__(
        self,
        db: DatabaseManager,
        settings: RentalCoreSettings,
        retention: RetentionManager,
        audit: AuditLogger,
        signer: DigitalSignatureManager | None = None,
    ):
        self.db = db
        self.settings = settings
        self.retention = retention
        self.audit = audit
        self.signer = signer
        self.archive_dir = Path(settings.archive_dir)

    def file_path(self, record: ArchivedRecordModel) -> Path:
        return self.archive_dir / record.archive_file_name

    # ── Write ──

    async def archive(
        self,
        document_type: str,
        document_id: str,
        payload: Any,
        actor: AuditActor = SYSTEM_ACTOR,
        request: Optional[RequestContext] = None,
    ) -> ArchivedRecordModel:
        """Snapshot ``payload`` and return the committed record."""
        document_id = str(document_id)
        original_data = canonical_json(payload)
        data_hash = sha256_hex(original_data)
        archive_date = utcnow()

        relative_name = (
            f"{safe_component(document_type)}/"
            f"{safe_component(document_type)}_{safe_component(document_id)}_"
            f"{archive_date.strftime('%Y%m%d_%H%M%S_%f')}.json"
        )
        path = self.archive_dir / relative_name
        self._write_immutable(path, original_data.encode("utf-8"))

        try:
            async with self.db.get_session() as session:
                retention_date = await self.retention.retention_date_for(
                    session, document_type, archive_date,
                )
                signature_id = None
                if self.signer is not None:
                    signed = await self.signer.sign_and_store(
                        session, document_type, document_id, original_data,
                        actor.display_name,
                    )
                    signature_id = signed.id
                record = ArchivedRecordModel(
                    document_type=document_type,
                    document_id=document_id,
                    original_data=original_data,
                    data_hash=data_hash,
                    archive_date=archive_date,
                    retention_date=retention_date,
                    seal=compute_seal(document_type, document_id, data_hash, archive_date),
                    signature_id=signature_id,
                    user_id=actor.user_id,
                    is_immutable=True,
                    archive_file_name=relative_name,
                )
                session.add(record)
                await session.flush()
        except Exception as e:
            self._remove_file(path)
            logger.error(
                "archiving %s %s failed, removed %s: %s",
                document_type, document_id, path, e,
            )
            raise ArchiveWriteError(
                f"Failed to persist archive record for {document_type} {document_id}: {e}"
            ) from e

        await self.audit.record(
            AuditEventType.ARCHIVE,
            document_type,
            document_id,
            actor,
            "Document archived for GoBD compliance",
            new_value=ArchiveNotice(
                document_type=document_type,
                archive_file=relative_name,
                data_hash=data_hash,
                signature_id=signature_id,
            ),
            request=request,
        )
        logger.info("archived %s %s as %s", document_type, document_id, relative_name)
        return record

    async def archive_invoice(
        self,
        invoice_id: str,
        invoice: dict[str, Any],
        actor: AuditActor = SYSTEM_ACTOR,
        request: Optional[RequestContext] = None,
    ) -> ArchivedRecordModel:
        return await self.archive("invoice", invoice_id, invoice, actor, request)

    # ── Verify ──

    async def get_record(self, session: AsyncSession, record_id: str) -> ArchivedRecordModel:
        result = await session.execute(
            select(ArchivedRecordModel).where(ArchivedRecordModel.id == record_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(f"Archived record {record_id} not found")
        return record

    async def verify_integrity(self, record_id: str) -> bool:
        """True iff both the stored payload and the on-disk file match the hash."""
        async with self.db.get_session() as session:
            record = await self.get_record(session, record_id)
        return self.check_record(record)

    def check_record(self, record: ArchivedRecordModel) -> bool:
        if sha256_hex(record.original_data) != record.data_hash:
            logger.error("data integrity check failed for record %s: hash mismatch", record.id)
            return False

        path = self.file_path(record)
        try:
            file_data = path.read_bytes()
        except FileNotFoundError:
            logger.error("archive file missing for record %s: %s", record.id, path)
            return False
        if sha256_hex(file_data) != record.data_hash:
            logger.error("file integrity check failed for record %s: hash mismatch", record.id)
            return False
        return True

    async def verify_signature(self, record_id: str) -> bool:
        """Re-verify the linked signature against the stored payload."""
        if self.signer is None:
            return False
        async with self.db.get_session() as session:
            record = await self.get_record(session, record_id)
            if record.signature_id is None:
                return False
            signed = await self.signer.get_signed_document(session, record.signature_id)
        return self.signer.verify(signed, record.original_data)

    # ── Read ──

    async def get_archived_document(
        self, document_type: str, document_id: str,
    ) -> ArchivedRecordModel:
        """Latest snapshot of a document, verified before it is returned."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ArchivedRecordModel)
                .where(
                    ArchivedRecordModel.document_type == document_type,
                    ArchivedRecordModel.document_id == str(document_id),
                )
                .order_by(ArchivedRecordModel.archive_date.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(
                f"No archived {document_type} found for id {document_id}"
            )
        if not self.check_record(record):
            raise IntegrityBreachError(
                f"Archived record {record.id} failed integrity check"
            )
        return record

    async def list_records(
        self,
        document_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ArchivedRecordModel]:
        query = select(ArchivedRecordModel)
        if document_type:
            query = query.where(ArchivedRecordModel.document_type == document_type)
        query = (
            query.order_by(ArchivedRecordModel.archive_date.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ── Purge ──

    async def purge_expired_records(self, now: datetime | None = None) -> PurgeReport:
        """Physically delete records the retention cleanup marked.

        Every candidate is verified before anything is deleted; a single
        integrity failure raises ``IntegrityBreachError`` and nothing is purged.
        """
        now = now or utcnow()
        report = PurgeReport(started_at=now)
        purged: list[ArchivedRecordModel] = []

        async with self.db.get_session() as session:
            result = await session.execute(
                select(ArchivedRecordModel)
                .where(
                    ArchivedRecordModel.marked_for_deletion_at.is_not(None),
                    ArchivedRecordModel.retention_date < now,
                )
                .order_by(ArchivedRecordModel.retention_date)
            )
            candidates = list(result.scalars().all())
            report.candidates = len(candidates)

            eligible = []
            for record in candidates:
                if not await self.retention.can_auto_delete(session, record.document_type):
                    report.skipped_record_ids.append(record.id)
                    logger.info(
                        "auto-deletion no longer permitted for %s, keeping record %s",
                        record.document_type, record.id,
                    )
                    continue
                if not self.check_record(record):
                    raise IntegrityBreachError(
                        f"Archived record {record.id} failed integrity check, purge halted"
                    )
                eligible.append(record)

            for record in eligible:
                await session.delete(record)
                report.deleted_record_ids.append(record.id)
                purged.append(record)
            await session.flush()

        # Files go only after the row deletions are committed.
        for record in purged:
            if not self._remove_file(self.file_path(record)):
                report.missing_files.append(record.archive_file_name)
            logger.info(
                "deleted expired archive record %s (%s)", record.id, record.document_type,
                extra={"record_id": record.id, "document_type": record.document_type},
            )
            await self.audit.record(
                AuditEventType.DELETE,
                record.document_type,
                record.document_id,
                SYSTEM_ACTOR,
                "Archived record purged after retention period",
                old_value=ArchiveNotice(
                    document_type=record.document_type,
                    archive_file=record.archive_file_name,
                    data_hash=record.data_hash,
                    signature_id=record.signature_id,
                ),
            )
        return report

    # ── Reporting ──

    async def get_compliance_report(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        async with self.db.get_session() as session:
            by_type = await session.execute(
                select(ArchivedRecordModel.document_type, func.count(ArchivedRecordModel.id))
                .group_by(ArchivedRecordModel.document_type)
            )
            archived_documents = {row[0]: row[1] for row in by_type.all()}
            expiring = (await session.execute(
                select(func.count(ArchivedRecordModel.id)).where(
                    ArchivedRecordModel.retention_date >= now,
                    ArchivedRecordModel.retention_date <= now + relativedelta(months=1),
                )
            )).scalar_one()

        audit_stats = await self.audit.get_statistics()
        recommendations = []
        if not audit_stats["chain_intact"]:
            recommendations.append("Audit chain verification failed, investigate immediately")
        if expiring:
            recommendations.append(f"{expiring} archived records expire within the next month")

        return {
            "generated_at": now,
            "archived_documents": archived_documents,
            "total_archive_size": self._archive_size(),
            "expiring_records": expiring,
            "audit_events": audit_stats["total_events"],
            "chain_intact": audit_stats["chain_intact"],
            "compliance_status": "compliant" if audit_stats["chain_intact"] else "breach",
            "recommendations": recommendations,
        }

    # ── Internal helpers ──

    @staticmethod
    def _write_immutable(path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "xb") as f:
                f.write(data)
            os.chmod(path, 0o444)
        except OSError as e:
            raise ArchiveWriteError(f"Failed to write archive file {path}: {e}") from e

    @staticmethod
    def _remove_file(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("archive file already gone: %s", path)
            return False
        return True

    def _archive_size(self) -> int:
        if not self.archive_dir.exists():
            return 0
        return sum(p.stat().st_size for p in self.archive_dir.rglob("*") if p.is_file())
