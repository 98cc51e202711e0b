"""GDPR consent, processing registry, data subject requests and personal data.

Personal data is stored AES-256-GCM encrypted. The key is the SHA-256 digest
of ``gdpr_encryption_key``; each ciphertext is base64(nonce || sealed) and is
bound to its (user, data type) pair as associated data.
"""

import base64
import hashlib
import json
import logging
import os
from datetime import datetime
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from dateutil.relativedelta import relativedelta
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.exceptions import (
    NotFoundError,
    PersonalDataDecryptionError,
    ValidationError,
)
from rentalcore.common.models import utcnow
from rentalcore.gdpr.models import (
    ConsentRecordModel,
    DataProcessingRecordModel,
    DataSubjectRequestModel,
    EncryptedPersonalDataModel,
)

logger = logging.getLogger(__name__)

DATA_TYPES = (
    "personal_identity",
    "contact_info",
    "financial_data",
    "behavioral_data",
    "technical_data",
)

# Art. 15-22 GDPR
REQUEST_TYPES = (
    "access",
    "rectification",
    "erasure",
    "portability",
    "restriction",
    "objection",
)

CONSENT_VERSION = "1.0"

PROCESSING_TYPES = ("collection", "storage", "transfer", "deletion")
EXPIRED_PROCESSING_TYPE = "expired_deleted"

# retention period label -> years; None keeps the record indefinitely
RETENTION_PERIODS: dict[str, Optional[int]] = {
    "1_year": 1,
    "3_years": 3,
    "10_years": 10,
    "indefinite": None,
}

ENCRYPTION_ALGORITHM = "AES-256-GCM"
NONCE_SIZE = 12


class GDPRService:
    def __init__(self, settings: RentalCoreSettings):
        self.settings = settings
        self._aead = AESGCM(hashlib.sha256(settings.gdpr_encryption_key.encode()).digest())

    # ── Consent ──

    async def record_consent(
        self,
        session: AsyncSession,
        user_id: int,
        data_type: str,
        purpose: str,
        legal_basis: str,
        ip_address: str = "",
        user_agent: str = "",
        expiry_date: datetime | None = None,
    ) -> ConsentRecordModel:
        if data_type not in DATA_TYPES:
            raise ValidationError(f"Unknown personal data type: {data_type}")
        consent = ConsentRecordModel(
            user_id=user_id,
            data_type=data_type,
            purpose=purpose,
            consent_given=True,
            consent_date=utcnow(),
            expiry_date=expiry_date,
            legal_basis=legal_basis,
            version=CONSENT_VERSION,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(consent)
        await session.flush()
        return consent

    async def withdraw_consent(
        self, session: AsyncSession, user_id: int, data_type: str, purpose: str,
    ) -> int:
        """Withdraw every active consent for (user, data type, purpose)."""
        now = utcnow()
        consents = await self._active_consents(session, user_id, data_type, purpose)
        for consent in consents:
            consent.withdrawn_at = now
        await session.flush()
        return len(consents)

    async def check_consent(
        self,
        session: AsyncSession,
        user_id: int,
        data_type: str,
        purpose: str,
        now: datetime | None = None,
    ) -> bool:
        """True if an unwithdrawn, unexpired consent exists."""
        now = now or utcnow()
        result = await session.execute(
            select(ConsentRecordModel.id)
            .where(
                ConsentRecordModel.user_id == user_id,
                ConsentRecordModel.data_type == data_type,
                ConsentRecordModel.purpose == purpose,
                ConsentRecordModel.consent_given == True,  # noqa: E712
                ConsentRecordModel.withdrawn_at.is_(None),
                or_(
                    ConsentRecordModel.expiry_date.is_(None),
                    ConsentRecordModel.expiry_date > now,
                ),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def cleanup_expired_consents(
        self, session: AsyncSession, now: datetime | None = None,
    ) -> int:
        """Close consents whose expiry date has passed. Rows are kept as evidence."""
        now = now or utcnow()
        result = await session.execute(
            select(ConsentRecordModel).where(
                ConsentRecordModel.withdrawn_at.is_(None),
                ConsentRecordModel.expiry_date.is_not(None),
                ConsentRecordModel.expiry_date <= now,
            )
        )
        expired = list(result.scalars().all())
        for consent in expired:
            consent.withdrawn_at = now
        await session.flush()
        if expired:
            logger.info("closed %d expired consent record(s)", len(expired))
        return len(expired)

    # ── Processing registry ──

    async def record_data_processing(
        self,
        session: AsyncSession,
        user_id: int,
        data_type: str,
        processing_type: str,
        purpose: str,
        legal_basis: str,
        data_controller: str,
        data_processor: str | None = None,
        recipients: list[str] | None = None,
        transfer_country: str | None = None,
        retention_period: str = "indefinite",
        now: datetime | None = None,
    ) -> DataProcessingRecordModel:
        if data_type not in DATA_TYPES:
            raise ValidationError(f"Unknown personal data type: {data_type}")
        if processing_type not in PROCESSING_TYPES:
            raise ValidationError(f"Unknown processing type: {processing_type}")
        if retention_period not in RETENTION_PERIODS:
            raise ValidationError(f"Unknown retention period: {retention_period}")

        now = now or utcnow()
        years = RETENTION_PERIODS[retention_period]
        record = DataProcessingRecordModel(
            user_id=user_id,
            data_type=data_type,
            processing_type=processing_type,
            purpose=purpose,
            legal_basis=legal_basis,
            data_controller=data_controller,
            data_processor=data_processor,
            recipients=json.dumps(recipients or []),
            transfer_country=transfer_country,
            retention_period=retention_period,
            processed_at=now,
            expires_at=now + relativedelta(years=years) if years is not None else None,
        )
        session.add(record)
        await session.flush()
        return record

    async def get_data_processing_registry(
        self, session: AsyncSession, user_id: int | None = None,
    ) -> list[dict[str, Any]]:
        """Processing activities, oldest first, optionally for one user."""
        query = select(DataProcessingRecordModel).order_by(
            DataProcessingRecordModel.processed_at
        )
        if user_id is not None:
            query = query.where(DataProcessingRecordModel.user_id == user_id)
        result = await session.execute(query)
        return [processing_entry(r) for r in result.scalars().all()]

    async def cleanup_expired_processing_records(
        self, session: AsyncSession, now: datetime | None = None,
    ) -> int:
        """Delete personal data behind expired processing records and mark them.

        The processing record itself stays in the registry with processing
        type ``expired_deleted``.
        """
        now = now or utcnow()
        result = await session.execute(
            select(DataProcessingRecordModel).where(
                DataProcessingRecordModel.processing_type != EXPIRED_PROCESSING_TYPE,
                DataProcessingRecordModel.expires_at.is_not(None),
                DataProcessingRecordModel.expires_at <= now,
            )
        )
        expired = list(result.scalars().all())
        for record in expired:
            await session.execute(
                delete(EncryptedPersonalDataModel).where(
                    EncryptedPersonalDataModel.user_id == record.user_id,
                    EncryptedPersonalDataModel.data_type == record.data_type,
                )
            )
            record.processing_type = EXPIRED_PROCESSING_TYPE
        await session.flush()
        if expired:
            logger.info("expired %d data processing record(s)", len(expired))
        return len(expired)

    # ── Data subject requests ──

    async def create_data_subject_request(
        self,
        session: AsyncSession,
        user_id: int,
        request_type: str,
        description: str = "",
    ) -> DataSubjectRequestModel:
        if request_type not in REQUEST_TYPES:
            raise ValidationError(f"Unknown data subject request type: {request_type}")
        request = DataSubjectRequestModel(
            user_id=user_id,
            request_type=request_type,
            status="pending",
            description=description,
            requested_at=utcnow(),
        )
        session.add(request)
        await session.flush()
        return request

    async def get_data_subject_request(
        self, session: AsyncSession, request_id: str,
    ) -> DataSubjectRequestModel:
        result = await session.execute(
            select(DataSubjectRequestModel).where(DataSubjectRequestModel.id == request_id)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError(f"Data subject request {request_id} not found")
        return request

    async def process_data_subject_request(
        self,
        session: AsyncSession,
        request_id: str,
        processor_id: int,
        response: str,
    ) -> DataSubjectRequestModel:
        request = await self.get_data_subject_request(session, request_id)
        if request.status != "pending":
            raise ValidationError(
                f"Request {request_id} cannot be processed from status {request.status}",
                code="INVALID_REQUEST_STATUS",
            )
        request.status = "processing"
        request.processor_id = processor_id
        request.response = response
        request.processed_at = utcnow()
        await session.flush()
        return request

    async def complete_data_subject_request(
        self, session: AsyncSession, request_id: str, response_data: str = "",
    ) -> DataSubjectRequestModel:
        request = await self.get_data_subject_request(session, request_id)
        if request.status not in ("pending", "processing"):
            raise ValidationError(
                f"Request {request_id} cannot be completed from status {request.status}",
                code="INVALID_REQUEST_STATUS",
            )
        request.status = "completed"
        request.response_data = response_data
        request.completed_at = utcnow()
        await session.flush()
        return request

    # ── Personal data ──

    async def encrypt_personal_data(
        self, session: AsyncSession, user_id: int, data_type: str, data: Any,
    ) -> EncryptedPersonalDataModel:
        """Store ``data`` encrypted, replacing any earlier value for the same type."""
        if data_type not in DATA_TYPES:
            raise ValidationError(f"Unknown personal data type: {data_type}")
        token = self._encrypt(json.dumps(data).encode(), user_id, data_type)
        record = await self._personal_data(session, user_id, data_type)
        if record is None:
            record = EncryptedPersonalDataModel(user_id=user_id, data_type=data_type)
            session.add(record)
        record.encrypted_data = token
        record.key_version = self.settings.gdpr_key_version
        record.algorithm = ENCRYPTION_ALGORITHM
        await session.flush()
        return record

    async def decrypt_personal_data(
        self, session: AsyncSession, user_id: int, data_type: str,
    ) -> Any:
        record = await self._personal_data(session, user_id, data_type)
        if record is None:
            raise NotFoundError(f"No {data_type} stored for user {user_id}")
        return json.loads(self._decrypt(record.encrypted_data, user_id, data_type))

    async def delete_user_data(self, session: AsyncSession, user_id: int) -> dict[str, int]:
        """Right to erasure: remove every GDPR row held for the user.

        Returns the number of rows deleted per table. Runs inside the caller's
        session, so a failure leaves all tables untouched.
        """
        deleted = {}
        for name, model in (
            ("personal_data", EncryptedPersonalDataModel),
            ("data_subject_requests", DataSubjectRequestModel),
            ("data_processing", DataProcessingRecordModel),
            ("consents", ConsentRecordModel),
        ):
            result = await session.execute(delete(model).where(model.user_id == user_id))
            deleted[name] = result.rowcount
        await session.flush()
        logger.info("erased GDPR data for user %s", user_id, extra={"record_id": str(user_id)})
        return deleted

    async def export_user_data(self, session: AsyncSession, user_id: int) -> dict[str, Any]:
        """Everything held about a user for an access or portability request.

        Personal data is decrypted; a value that fails to decrypt raises
        rather than being left out of the export.
        """
        consents = await session.execute(
            select(ConsentRecordModel)
            .where(ConsentRecordModel.user_id == user_id)
            .order_by(ConsentRecordModel.consent_date)
        )
        requests = await session.execute(
            select(DataSubjectRequestModel)
            .where(DataSubjectRequestModel.user_id == user_id)
            .order_by(DataSubjectRequestModel.requested_at)
        )
        personal = await session.execute(
            select(EncryptedPersonalDataModel)
            .where(EncryptedPersonalDataModel.user_id == user_id)
            .order_by(EncryptedPersonalDataModel.data_type)
        )
        return {
            "user_id": user_id,
            "consents": [
                {
                    "data_type": c.data_type,
                    "purpose": c.purpose,
                    "legal_basis": c.legal_basis,
                    "consent_date": c.consent_date,
                    "expiry_date": c.expiry_date,
                    "withdrawn_at": c.withdrawn_at,
                    "version": c.version,
                }
                for c in consents.scalars().all()
            ],
            "data_subject_requests": [
                {
                    "request_type": r.request_type,
                    "status": r.status,
                    "requested_at": r.requested_at,
                    "completed_at": r.completed_at,
                }
                for r in requests.scalars().all()
            ],
            "data_processing": await self.get_data_processing_registry(session, user_id),
            "personal_data": {
                p.data_type: json.loads(self._decrypt(p.encrypted_data, user_id, p.data_type))
                for p in personal.scalars().all()
            },
        }

    # ── Internal helpers ──

    def _encrypt(self, plaintext: bytes, user_id: int, data_type: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, _associated_data(user_id, data_type))
        return base64.b64encode(nonce + sealed).decode("ascii")

    def _decrypt(self, token: str, user_id: int, data_type: str) -> bytes:
        try:
            raw = base64.b64decode(token, validate=True)
            if len(raw) <= NONCE_SIZE:
                raise ValueError("ciphertext too short")
            return self._aead.decrypt(
                raw[:NONCE_SIZE], raw[NONCE_SIZE:], _associated_data(user_id, data_type),
            )
        except (InvalidTag, ValueError) as e:
            raise PersonalDataDecryptionError(
                f"{data_type} for user {user_id} could not be decrypted"
            ) from e

    async def _personal_data(
        self, session: AsyncSession, user_id: int, data_type: str,
    ) -> EncryptedPersonalDataModel | None:
        result = await session.execute(
            select(EncryptedPersonalDataModel).where(
                EncryptedPersonalDataModel.user_id == user_id,
                EncryptedPersonalDataModel.data_type == data_type,
            )
        )
        return result.scalar_one_or_none()

    async def _active_consents(
        self, session: AsyncSession, user_id: int, data_type: str, purpose: str,
    ) -> list[ConsentRecordModel]:
        result = await session.execute(
            select(ConsentRecordModel).where(
                ConsentRecordModel.user_id == user_id,
                ConsentRecordModel.data_type == data_type,
                ConsentRecordModel.purpose == purpose,
                ConsentRecordModel.consent_given == True,  # noqa: E712
                ConsentRecordModel.withdrawn_at.is_(None),
            )
        )
        return list(result.scalars().all())


def _associated_data(user_id: int, data_type: str) -> bytes:
    return f"{user_id}:{data_type}".encode()


def processing_entry(record: DataProcessingRecordModel) -> dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "data_type": record.data_type,
        "processing_type": record.processing_type,
        "purpose": record.purpose,
        "legal_basis": record.legal_basis,
        "data_controller": record.data_controller,
        "data_processor": record.data_processor,
        "recipients": json.loads(record.recipients or "[]"),
        "transfer_country": record.transfer_country,
        "retention_period": record.retention_period,
        "processed_at": record.processed_at,
        "expires_at": record.expires_at,
    }
