"""Tests for the hash-chained audit logger."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.audit.chain import ChainTail
from rentalcore.audit.events import (
    AuditActor,
    AuditEventType,
    DeviceAssignmentChange,
    RequestContext,
    SecurityNotice,
)
from rentalcore.audit.models import AuditEventModel
from rentalcore.audit.service import AuditLogger, compute_event_hash, serialize_values


ALICE = AuditActor(user_id=7, username="alice")


@pytest.fixture
def audit(db, settings):
    return AuditLogger(db, settings, tail=ChainTail())


async def _tamper(db, event_id, **values):
    async with db.get_session() as session:
        await session.execute(
            update(AuditEventModel).where(AuditEventModel.id == event_id).values(**values)
        )


class TestRecord:
    async def test_first_event_has_empty_previous_hash(self, audit):
        event = await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "Job created")
        assert event.id is not None
        assert event.previous_hash == ""
        assert len(event.event_hash) == 64
        assert event.username == "alice"
        assert event.user_id == 7

    async def test_events_are_chained(self, audit):
        first = await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "Job created")
        second = await audit.record(AuditEventType.UPDATE, "job", "J-1", ALICE, "Job updated")
        assert second.previous_hash == first.event_hash
        assert second.event_hash != first.event_hash

    async def test_retention_date_is_ten_years_out(self, audit):
        event = await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "Job created")
        assert event.retention_date.year - event.timestamp.year == 10
        assert event.is_compliant is True

    async def test_typed_payload_serialized_as_canonical_json(self, audit):
        event = await audit.record(
            AuditEventType.CREATE, "job_device", "J-1:D-1", ALICE, "Device assigned",
            new_value=DeviceAssignmentChange(job_id="J-1", device_id="D-1"),
        )
        assert event.old_values == ""
        assert event.new_values.startswith('{"custom_price":null,"device_id":"D-1"')

    async def test_request_context_is_stored(self, audit):
        event = await audit.record(
            AuditEventType.READ, "invoice", "42", ALICE, "Invoice viewed",
            request=RequestContext("10.0.0.1", "pytest", "sess-1"),
        )
        assert event.ip_address == "10.0.0.1"
        assert event.user_agent == "pytest"
        assert event.session_id == "sess-1"

    async def test_invoice_event_context(self, audit):
        event = await audit.record_invoice_event(
            AuditEventType.CREATE, "42", ALICE, "Invoice created", new_value={"total": 100},
        )
        assert event.object_type == "invoice"
        assert event.context["gobd_relevant"] is True

    async def test_security_event_requires_review(self, audit):
        event = await audit.record_security_event(
            "login_bruteforce", SecurityNotice("high", {"attempts": 20}),
        )
        assert event.event_type == "SECURITY"
        assert event.context["requires_review"] is True
        assert event.context["attempts"] == 20

    async def test_concurrent_appends_keep_chain_linear(self, audit):
        await asyncio.gather(*[
            audit.record(AuditEventType.UPDATE, "device", f"D-{i}", ALICE, "touched")
            for i in range(10)
        ])
        result = await audit.verify_chain_integrity()
        assert result.valid is True
        assert result.events_checked == 10

    async def test_fresh_tail_resumes_from_latest_event(self, db, settings, audit):
        last = await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "Job created")
        restarted = AuditLogger(db, settings, tail=ChainTail())
        event = await restarted.record(AuditEventType.UPDATE, "job", "J-1", ALICE, "Job updated")
        assert event.previous_hash == last.event_hash

    async def test_failed_commit_does_not_advance_tail(self, audit, monkeypatch):
        committed = await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "Job created")

        async def failing_commit(self):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(AsyncSession, "commit", failing_commit)
        with pytest.raises(RuntimeError):
            await audit.record(AuditEventType.UPDATE, "job", "J-1", ALICE, "Lost update")
        monkeypatch.undo()

        assert audit.tail.last_hash == committed.event_hash
        event = await audit.record(AuditEventType.UPDATE, "job", "J-1", ALICE, "Job updated")
        assert event.previous_hash == committed.event_hash
        assert (await audit.verify_chain_integrity()).valid


class TestHash:
    def test_hash_is_deterministic(self):
        ts = datetime(2024, 1, 5, 12, 30, tzinfo=timezone.utc)
        args = ("CREATE", "job", "J-1", 7, "Job created", "", ts, "", '{"a":1}')
        assert compute_event_hash(*args) == compute_event_hash(*args)

    def test_naive_and_aware_utc_hash_the_same(self):
        aware = datetime(2024, 1, 5, 12, 30, tzinfo=timezone.utc)
        naive = aware.replace(tzinfo=None)
        base = ("CREATE", "job", "J-1", 7, "Job created", "")
        assert compute_event_hash(*base, aware, "", "") == compute_event_hash(*base, naive, "", "")

    def test_any_field_changes_hash(self):
        ts = datetime(2024, 1, 5, 12, 30, tzinfo=timezone.utc)
        original = compute_event_hash("CREATE", "job", "J-1", 7, "a", "", ts, "", "")
        assert original != compute_event_hash("CREATE", "job", "J-1", 8, "a", "", ts, "", "")
        assert original != compute_event_hash("CREATE", "job", "J-1", 7, "b", "", ts, "", "")

    def test_serialize_values(self):
        assert serialize_values(None) == ""
        assert serialize_values({"b": 1, "a": 2}) == '{"a":2,"b":1}'


class TestVerifyChain:
    async def test_empty_chain_is_valid(self, audit):
        result = await audit.verify_chain_integrity()
        assert result.valid is True
        assert result.events_checked == 0

    async def test_intact_chain(self, audit):
        for i in range(5):
            await audit.record(AuditEventType.CREATE, "device", f"D-{i}", ALICE, "created")
        result = await audit.verify_chain_integrity()
        assert result.valid is True
        assert result.events_checked == 5

    async def test_modified_field_is_detected(self, db, audit):
        events = [
            await audit.record(AuditEventType.CREATE, "device", f"D-{i}", ALICE, "created")
            for i in range(3)
        ]
        await _tamper(db, events[1].id, action="deleted")

        result = await audit.verify_chain_integrity()
        assert result.valid is False
        assert result.break_at == events[1].id
        assert result.reason == "event hash mismatch"

    async def test_broken_link_is_detected(self, db, audit):
        events = [
            await audit.record(AuditEventType.CREATE, "device", f"D-{i}", ALICE, "created")
            for i in range(3)
        ]
        await _tamper(db, events[2].id, previous_hash="0" * 64)

        result = await audit.verify_chain_integrity()
        assert result.valid is False
        assert result.break_at == events[2].id
        assert result.reason == "previous hash does not match predecessor"

    async def test_first_event_with_previous_hash_is_detected(self, db, audit):
        event = await audit.record(AuditEventType.CREATE, "device", "D-1", ALICE, "created")
        await _tamper(db, event.id, previous_hash="abc")

        result = await audit.verify_chain_integrity()
        assert result.valid is False
        assert result.reason == "first event has a previous hash"


class TestQueries:
    async def test_audit_trail_oldest_first(self, audit):
        await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "created")
        await audit.record(AuditEventType.CREATE, "job", "J-2", ALICE, "created")
        await audit.record(AuditEventType.UPDATE, "job", "J-1", ALICE, "updated")

        trail = await audit.get_audit_trail("job", "J-1")
        assert [e.action for e in trail] == ["created", "updated"]

    async def test_get_events_filters_and_paginates(self, audit):
        for i in range(5):
            await audit.record(AuditEventType.CREATE, "device", f"D-{i}", ALICE, "created")
        await audit.record(AuditEventType.DELETE, "device", "D-0", ALICE, "deleted")

        events, total = await audit.get_events(event_type="CREATE", limit=2, offset=0)
        assert total == 5
        assert len(events) == 2
        assert events[0].object_id == "D-4"

        events, total = await audit.get_events(object_id="D-0")
        assert total == 2

    async def test_statistics(self, audit):
        await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "created")
        await audit.record_system_event("startup")

        stats = await audit.get_statistics()
        assert stats["total_events"] == 2
        assert stats["events_by_type"] == {"CREATE": 1, "SYSTEM": 1}
        assert stats["events_by_user"] == {"alice": 1, "system": 1}
        assert stats["chain_intact"] is True

    async def test_events_are_never_updated_by_queries(self, db, audit):
        event = await audit.record(AuditEventType.CREATE, "job", "J-1", ALICE, "created")
        await audit.get_statistics()
        async with db.get_session() as session:
            stored = (await session.execute(
                select(AuditEventModel).where(AuditEventModel.id == event.id)
            )).scalar_one()
        assert stored.event_hash == event.event_hash
