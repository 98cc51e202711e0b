"""Tests for GDPR consent, processing registry, requests and personal data."""

from datetime import datetime, timedelta, timezone

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update

from rentalcore.common.exceptions import (
    NotFoundError,
    PersonalDataDecryptionError,
    ValidationError,
)
from rentalcore.gdpr.models import EncryptedPersonalDataModel
from rentalcore.gdpr.service import GDPRService


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def gdpr(settings):
    return GDPRService(settings)


async def _consent(db, gdpr, user_id=1, purpose="newsletter", expiry_date=None):
    async with db.get_session() as session:
        return await gdpr.record_consent(
            session, user_id, "contact_info", purpose, "Art. 6(1)(a) DSGVO",
            expiry_date=expiry_date,
        )


class TestConsent:
    async def test_record_and_check(self, db, gdpr):
        consent = await _consent(db, gdpr)
        assert consent.consent_given is True
        assert consent.version == "1.0"
        async with db.get_session() as session:
            assert await gdpr.check_consent(session, 1, "contact_info", "newsletter") is True
            assert await gdpr.check_consent(session, 1, "contact_info", "marketing") is False
            assert await gdpr.check_consent(session, 2, "contact_info", "newsletter") is False

    async def test_unknown_data_type(self, db, gdpr):
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await gdpr.record_consent(session, 1, "dna_sample", "research", "consent")

    async def test_withdraw(self, db, gdpr):
        await _consent(db, gdpr)
        await _consent(db, gdpr)
        async with db.get_session() as session:
            assert await gdpr.withdraw_consent(session, 1, "contact_info", "newsletter") == 2
        async with db.get_session() as session:
            assert await gdpr.check_consent(session, 1, "contact_info", "newsletter") is False

    async def test_expired_consent_does_not_count(self, db, gdpr):
        await _consent(db, gdpr, expiry_date=NOW - timedelta(days=1))
        async with db.get_session() as session:
            assert await gdpr.check_consent(
                session, 1, "contact_info", "newsletter", now=NOW,
            ) is False

    async def test_cleanup_closes_expired_consents(self, db, gdpr):
        expired = await _consent(db, gdpr, expiry_date=NOW - timedelta(days=1))
        await _consent(db, gdpr, purpose="billing", expiry_date=NOW + timedelta(days=30))
        await _consent(db, gdpr, purpose="support")

        async with db.get_session() as session:
            assert await gdpr.cleanup_expired_consents(session, NOW) == 1
        async with db.get_session() as session:
            export = await gdpr.export_user_data(session, 1)

        withdrawn = [c for c in export["consents"] if c["withdrawn_at"] is not None]
        assert len(export["consents"]) == 3
        assert [c["purpose"] for c in withdrawn] == [expired.purpose]


class TestDataSubjectRequests:
    async def test_lifecycle(self, db, gdpr):
        async with db.get_session() as session:
            request = await gdpr.create_data_subject_request(session, 1, "access", "Send my data")
            assert request.status == "pending"
        async with db.get_session() as session:
            request = await gdpr.process_data_subject_request(session, request.id, 9, "On it")
            assert request.status == "processing"
            assert request.processor_id == 9
        async with db.get_session() as session:
            request = await gdpr.complete_data_subject_request(session, request.id, "{}")
            assert request.status == "completed"
            assert request.completed_at is not None

    async def test_invalid_transitions(self, db, gdpr):
        async with db.get_session() as session:
            request = await gdpr.create_data_subject_request(session, 1, "erasure")
        async with db.get_session() as session:
            await gdpr.complete_data_subject_request(session, request.id)

        with pytest.raises(ValidationError) as exc_info:
            async with db.get_session() as session:
                await gdpr.process_data_subject_request(session, request.id, 9, "late")
        assert exc_info.value.code == "INVALID_REQUEST_STATUS"

        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await gdpr.complete_data_subject_request(session, request.id)

    async def test_unknown_request_type(self, db, gdpr):
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await gdpr.create_data_subject_request(session, 1, "teleport")

    async def test_unknown_request(self, db, gdpr):
        with pytest.raises(NotFoundError):
            async with db.get_session() as session:
                await gdpr.get_data_subject_request(session, "missing")

    async def test_export_includes_requests(self, db, gdpr):
        await _consent(db, gdpr)
        async with db.get_session() as session:
            await gdpr.create_data_subject_request(session, 1, "portability")
        async with db.get_session() as session:
            export = await gdpr.export_user_data(session, 1)
        assert export["user_id"] == 1
        assert [r["request_type"] for r in export["data_subject_requests"]] == ["portability"]


async def _processing(db, gdpr, user_id=1, retention_period="1_year", now=NOW, **kwargs):
    async with db.get_session() as session:
        return await gdpr.record_data_processing(
            session, user_id, "contact_info", "storage", "newsletter",
            "Art. 6(1)(a) DSGVO", "RentalCore GmbH",
            retention_period=retention_period, now=now, **kwargs,
        )


async def _store(db, gdpr, data, user_id=1, data_type="contact_info"):
    async with db.get_session() as session:
        return await gdpr.encrypt_personal_data(session, user_id, data_type, data)


class TestProcessingRegistry:
    async def test_record_sets_expiry_from_period(self, db, gdpr):
        record = await _processing(
            db, gdpr, data_processor="Mailer Ltd", recipients=["Mailer Ltd"],
            transfer_country="US",
        )
        assert record.expires_at == NOW + relativedelta(years=1)

        indefinite = await _processing(
            db, gdpr, retention_period="indefinite", now=NOW + timedelta(minutes=1),
        )
        assert indefinite.expires_at is None

        async with db.get_session() as session:
            registry = await gdpr.get_data_processing_registry(session)
        assert [e["retention_period"] for e in registry] == ["1_year", "indefinite"]
        assert registry[0]["recipients"] == ["Mailer Ltd"]
        assert registry[0]["transfer_country"] == "US"
        assert registry[0]["data_controller"] == "RentalCore GmbH"

    async def test_registry_filters_by_user(self, db, gdpr):
        await _processing(db, gdpr, user_id=1)
        await _processing(db, gdpr, user_id=2)
        async with db.get_session() as session:
            registry = await gdpr.get_data_processing_registry(session, user_id=2)
        assert [e["user_id"] for e in registry] == [2]

    @pytest.mark.parametrize("field,value", [
        ("data_type", "dna_sample"),
        ("processing_type", "profiling"),
        ("retention_period", "5_years"),
    ])
    async def test_rejects_unknown_values(self, db, gdpr, field, value):
        args = {
            "user_id": 1,
            "data_type": "contact_info",
            "processing_type": "storage",
            "purpose": "newsletter",
            "legal_basis": "consent",
            "data_controller": "RentalCore GmbH",
            field: value,
        }
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await gdpr.record_data_processing(session, **args)

    async def test_cleanup_expires_records_and_their_personal_data(self, db, gdpr):
        await _processing(db, gdpr, now=NOW - relativedelta(years=2))
        await _processing(db, gdpr, retention_period="10_years")
        await _store(db, gdpr, {"email": "erika@example.com"})
        await _store(db, gdpr, {"name": "Erika"}, data_type="personal_identity")

        async with db.get_session() as session:
            assert await gdpr.cleanup_expired_processing_records(session, NOW) == 1
        async with db.get_session() as session:
            assert await gdpr.cleanup_expired_processing_records(session, NOW) == 0
            export = await gdpr.export_user_data(session, 1)

        assert export["personal_data"] == {"personal_identity": {"name": "Erika"}}
        assert [e["processing_type"] for e in export["data_processing"]] == [
            "expired_deleted", "storage",
        ]


class TestPersonalData:
    async def test_round_trip(self, db, gdpr):
        record = await _store(db, gdpr, {"email": "erika@example.com", "phone": "+49 30 1234"})
        assert record.algorithm == "AES-256-GCM"
        assert record.key_version == "v1.0"
        assert "erika" not in record.encrypted_data

        async with db.get_session() as session:
            data = await gdpr.decrypt_personal_data(session, 1, "contact_info")
        assert data == {"email": "erika@example.com", "phone": "+49 30 1234"}

    async def test_store_replaces_previous_value(self, db, gdpr):
        first = await _store(db, gdpr, {"email": "old@example.com"})
        second = await _store(db, gdpr, {"email": "new@example.com"})
        assert second.id == first.id
        async with db.get_session() as session:
            assert await gdpr.decrypt_personal_data(session, 1, "contact_info") == {
                "email": "new@example.com",
            }

    async def test_same_plaintext_encrypts_differently(self, db, gdpr):
        first = await _store(db, gdpr, {"email": "erika@example.com"}, user_id=1)
        second = await _store(db, gdpr, {"email": "erika@example.com"}, user_id=2)
        assert first.encrypted_data != second.encrypted_data

    async def test_missing_value(self, db, gdpr):
        with pytest.raises(NotFoundError):
            async with db.get_session() as session:
                await gdpr.decrypt_personal_data(session, 1, "contact_info")

    async def test_unknown_data_type(self, db, gdpr):
        with pytest.raises(ValidationError):
            await _store(db, gdpr, {"x": 1}, data_type="dna_sample")

    async def test_wrong_key_fails(self, db, gdpr, settings):
        await _store(db, gdpr, {"email": "erika@example.com"})
        other = GDPRService(settings.model_copy(update={"gdpr_encryption_key": "rotated"}))
        with pytest.raises(PersonalDataDecryptionError):
            async with db.get_session() as session:
                await other.decrypt_personal_data(session, 1, "contact_info")

    async def test_ciphertext_moved_to_another_user_fails(self, db, gdpr):
        victim = await _store(db, gdpr, {"email": "erika@example.com"}, user_id=1)
        await _store(db, gdpr, {"email": "max@example.com"}, user_id=2)
        async with db.get_session() as session:
            await session.execute(
                update(EncryptedPersonalDataModel)
                .where(EncryptedPersonalDataModel.user_id == 2)
                .values(encrypted_data=victim.encrypted_data)
            )

        with pytest.raises(PersonalDataDecryptionError):
            async with db.get_session() as session:
                await gdpr.decrypt_personal_data(session, 2, "contact_info")

    async def test_export_decrypts(self, db, gdpr):
        await _store(db, gdpr, {"email": "erika@example.com"})
        await _processing(db, gdpr)
        async with db.get_session() as session:
            export = await gdpr.export_user_data(session, 1)
        assert export["personal_data"] == {"contact_info": {"email": "erika@example.com"}}
        assert export["data_processing"][0]["purpose"] == "newsletter"


class TestErasure:
    async def test_deletes_every_gdpr_row_for_user(self, db, gdpr):
        await _consent(db, gdpr)
        await _processing(db, gdpr)
        await _store(db, gdpr, {"email": "erika@example.com"})
        async with db.get_session() as session:
            await gdpr.create_data_subject_request(session, 1, "erasure")
        await _consent(db, gdpr, user_id=2)
        await _store(db, gdpr, {"email": "max@example.com"}, user_id=2)

        async with db.get_session() as session:
            deleted = await gdpr.delete_user_data(session, 1)
        assert deleted == {
            "personal_data": 1,
            "data_subject_requests": 1,
            "data_processing": 1,
            "consents": 1,
        }

        async with db.get_session() as session:
            export = await gdpr.export_user_data(session, 1)
            other = await gdpr.export_user_data(session, 2)
        assert export["consents"] == []
        assert export["data_processing"] == []
        assert export["data_subject_requests"] == []
        assert export["personal_data"] == {}
        assert len(other["consents"]) == 1
        assert other["personal_data"] == {"contact_info": {"email": "max@example.com"}}

    async def test_failed_erasure_keeps_data(self, db, gdpr, monkeypatch):
        await _store(db, gdpr, {"email": "erika@example.com"})
        await _consent(db, gdpr)

        async def broken_flush(*args, **kwargs):
            raise RuntimeError("database unavailable")

        with pytest.raises(RuntimeError):
            async with db.get_session() as session:
                monkeypatch.setattr(session, "flush", broken_flush)
                await gdpr.delete_user_data(session, 1)
        monkeypatch.undo()

        async with db.get_session() as session:
            rows = (await session.execute(select(EncryptedPersonalDataModel))).scalars().all()
            export = await gdpr.export_user_data(session, 1)
        assert len(rows) == 1
        assert len(export["consents"]) == 1
