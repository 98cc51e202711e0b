"""Tests for the GoBD archive: write, verify, tamper detection and purge."""

import json
import os
from datetime import timedelta

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.archive.models import ArchivedRecordModel
from rentalcore.archive.service import GoBDArchive, safe_component
from rentalcore.audit.chain import ChainTail
from rentalcore.audit.events import AuditActor
from rentalcore.audit.models import AuditEventModel
from rentalcore.audit.service import AuditLogger
from rentalcore.common.exceptions import (
    ArchiveWriteError,
    IntegrityBreachError,
    RecordNotFoundError,
)
from rentalcore.common.models import utcnow
from rentalcore.retention.service import RetentionManager
from rentalcore.signing.service import DigitalSignatureManager


INVOICE = {"invoice_number": "RE-2024-0001", "total": 1190.0, "currency": "EUR"}
ALICE = AuditActor(user_id=7, username="alice")


@pytest.fixture
async def retention(db, settings):
    manager = RetentionManager(settings)
    async with db.get_session() as session:
        await manager.seed_default_policies(session)
    return manager


@pytest.fixture
def audit(db, settings):
    return AuditLogger(db, settings, tail=ChainTail())


@pytest.fixture
def signer(settings):
    return DigitalSignatureManager(settings)


@pytest.fixture
def archive(db, settings, retention, audit, signer):
    return GoBDArchive(db, settings, retention, audit, signer)


def _overwrite(path, content: bytes):
    os.chmod(path, 0o644)
    path.write_bytes(content)


async def _expire(db, record_id):
    async with db.get_session() as session:
        await session.execute(
            update(ArchivedRecordModel)
            .where(ArchivedRecordModel.id == record_id)
            .values(retention_date=utcnow() - timedelta(days=1))
        )


class TestArchive:
    async def test_archive_round_trip(self, archive):
        record = await archive.archive("invoice", "42", INVOICE, ALICE)

        assert record.is_immutable is True
        assert record.user_id == 7
        assert json.loads(record.original_data) == INVOICE
        assert await archive.verify_integrity(record.id) is True

        stored = await archive.get_archived_document("invoice", "42")
        assert stored.id == record.id
        assert json.loads(stored.original_data) == INVOICE

    async def test_file_is_read_only_and_under_type_dir(self, archive):
        record = await archive.archive("invoice", "42", INVOICE)
        path = archive.file_path(record)
        assert path.parent.name == "invoice"
        assert path.read_text(encoding="utf-8") == record.original_data
        assert oct(path.stat().st_mode & 0o777) == oct(0o444)

    async def test_retention_date_from_policy(self, archive):
        record = await archive.archive("invoice", "42", INVOICE)
        assert record.retention_date == record.archive_date + relativedelta(years=10)

    async def test_record_links_valid_signature(self, archive):
        record = await archive.archive("invoice", "42", INVOICE, ALICE)
        assert record.signature_id is not None
        assert await archive.verify_signature(record.id) is True

    async def test_archive_event_is_recorded(self, db, archive):
        record = await archive.archive("invoice", "42", INVOICE, ALICE)
        trail = await archive.audit.get_audit_trail("invoice", "42")
        assert [e.event_type for e in trail] == ["ARCHIVE"]
        assert record.archive_file_name in trail[0].new_values

    async def test_unknown_record(self, archive):
        with pytest.raises(RecordNotFoundError):
            await archive.verify_integrity("missing")
        with pytest.raises(RecordNotFoundError):
            await archive.get_archived_document("invoice", "missing")

    async def test_path_components_are_sanitized(self, archive):
        record = await archive.archive("invoice", "../../etc/passwd", INVOICE)
        assert ".." not in record.archive_file_name.split("/")
        assert archive.file_path(record).is_relative_to(archive.archive_dir)
        assert safe_component("a/b c") == "a_b_c"


class TestTamperDetection:
    async def test_modified_file_fails_integrity(self, archive):
        record = await archive.archive("invoice", "42", INVOICE)
        _overwrite(archive.file_path(record), b'{"total":1.0}')

        assert await archive.verify_integrity(record.id) is False
        with pytest.raises(IntegrityBreachError):
            await archive.get_archived_document("invoice", "42")

    async def test_modified_row_fails_integrity(self, db, archive):
        record = await archive.archive("invoice", "42", INVOICE)
        async with db.get_session() as session:
            await session.execute(
                update(ArchivedRecordModel)
                .where(ArchivedRecordModel.id == record.id)
                .values(original_data='{"total":1.0}')
            )

        assert await archive.verify_integrity(record.id) is False
        assert await archive.verify_signature(record.id) is False

    async def test_missing_file_fails_integrity(self, archive):
        record = await archive.archive("invoice", "42", INVOICE)
        archive.file_path(record).unlink()
        assert await archive.verify_integrity(record.id) is False


class TestWriteFailure:
    async def test_failed_row_removes_file(self, archive, retention, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(retention, "retention_date_for", broken)

        with pytest.raises(ArchiveWriteError) as exc_info:
            await archive.archive("invoice", "42", INVOICE)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert list((archive.archive_dir / "invoice").iterdir()) == []
        assert await archive.list_records() == []

    async def test_failed_write_records_no_event(self, db, archive, retention, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(retention, "retention_date_for", broken)
        with pytest.raises(ArchiveWriteError):
            await archive.archive("invoice", "42", INVOICE)

        async with db.get_session() as session:
            count = (await session.execute(
                select(func.count(AuditEventModel.id))
            )).scalar_one()
        assert count == 0


class TestPurge:
    async def test_only_marked_deletable_records_are_purged(self, db, archive, retention):
        customer = await archive.archive("customer_data", "C-1", {"name": "Erika"})
        invoice = await archive.archive("invoice", "42", INVOICE)
        await _expire(db, customer.id)
        await _expire(db, invoice.id)

        async with db.get_session() as session:
            await retention.cleanup(session)
        report = await archive.purge_expired_records()

        assert report.deleted_record_ids == [customer.id]
        assert not archive.file_path(customer).exists()
        assert archive.file_path(invoice).exists()
        assert [r.id for r in await archive.list_records()] == [invoice.id]

        trail = await archive.audit.get_audit_trail("customer_data", "C-1")
        assert [e.event_type for e in trail] == ["ARCHIVE", "DELETE"]

    async def test_unmarked_records_are_not_purged(self, db, archive):
        customer = await archive.archive("customer_data", "C-1", {"name": "Erika"})
        await _expire(db, customer.id)

        report = await archive.purge_expired_records()
        assert report.deleted == 0
        assert archive.file_path(customer).exists()

    async def test_tampered_candidate_halts_purge(self, db, archive, retention):
        first = await archive.archive("customer_data", "C-1", {"name": "Erika"})
        second = await archive.archive("customer_data", "C-2", {"name": "Max"})
        for record in (first, second):
            await _expire(db, record.id)
        async with db.get_session() as session:
            await retention.cleanup(session)
        _overwrite(archive.file_path(second), b"{}")

        with pytest.raises(IntegrityBreachError):
            await archive.purge_expired_records()

        assert archive.file_path(first).exists()
        assert len(await archive.list_records()) == 2

    async def test_failed_commit_keeps_file(self, db, archive, retention, monkeypatch):
        customer = await archive.archive("customer_data", "C-1", {"name": "Erika"})
        await _expire(db, customer.id)
        async with db.get_session() as session:
            await retention.cleanup(session)

        async def failing_commit(self):
            raise RuntimeError("disk full")

        monkeypatch.setattr(AsyncSession, "commit", failing_commit)
        with pytest.raises(RuntimeError):
            await archive.purge_expired_records()
        monkeypatch.undo()

        assert archive.file_path(customer).exists()
        assert [r.id for r in await archive.list_records()] == [customer.id]
        assert await archive.verify_integrity(customer.id) is True


class TestComplianceReport:
    async def test_report(self, archive):
        await archive.archive("invoice", "42", INVOICE)
        await archive.archive("invoice", "43", INVOICE)

        report = await archive.get_compliance_report()
        assert report["archived_documents"] == {"invoice": 2}
        assert report["audit_events"] == 2
        assert report["chain_intact"] is True
        assert report["compliance_status"] == "compliant"
        assert report["total_archive_size"] > 0
