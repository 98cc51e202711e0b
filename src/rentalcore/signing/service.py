"""RSA-SHA256 document signing.

The signed message is ``type:id:payload_hash:signer:signed_at``, never the
raw payload, so verification does not depend on how the payload was
serialized beyond its canonical hash.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.exceptions import RecordNotFoundError, SigningKeyError
from rentalcore.common.hashing import canonical_json, format_timestamp, sha256_hex
from rentalcore.common.models import utcnow
from rentalcore.signing.models import SignedDocumentModel

logger = logging.getLogger(__name__)

SIGNING_METHOD = "RSA-SHA256"
KEY_SIZE = 2048
PRIVATE_KEY_FILE = "private_key.pem"
PUBLIC_KEY_FILE = "public_key.pem"


@dataclass
class Signature:
    document_type: str
    document_id: str
    document_hash: str
    signature: str
    signature_hash: str
    signed_at: datetime
    signed_by: str
    company_name: str
    public_key_hash: str
    signing_method: str = SIGNING_METHOD
    is_valid: bool = True


def payload_hash(payload: Any) -> str:
    """Hash of the canonical serialization.

    ``bytes`` and ``str`` are taken as an already-serialized document;
    anything else is serialized with ``canonical_json`` first.
    """
    if isinstance(payload, (bytes, str)):
        return sha256_hex(payload)
    return sha256_hex(canonical_json(payload))


def signing_input(
    document_type: str,
    document_id: str,
    document_hash: str,
    signed_by: str,
    signed_at: datetime,
) -> bytes:
    return ":".join([
        document_type,
        document_id,
        document_hash,
        signed_by,
        format_timestamp(signed_at),
    ]).encode("utf-8")


class DigitalSignatureManager:
    """Long-lived RSA key pair stored under ``key_dir``.

    Keys are generated on first use when absent and loaded otherwise.
    """

    def __init__(self, settings: RentalCoreSettings):
        self.settings = settings
        self.key_dir = Path(settings.key_dir)
        self.company_name = settings.company_name
        self._private_key: rsa.RSAPrivateKey | None = None
        self._public_key: rsa.RSAPublicKey | None = None

    # ── Keys ──

    def load_or_generate_keys(self) -> None:
        if self._private_key is not None:
            return
        private_path = self.key_dir / PRIVATE_KEY_FILE
        public_path = self.key_dir / PUBLIC_KEY_FILE
        try:
            self.key_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(self.key_dir, 0o700)
            if not private_path.exists():
                self._generate_key_pair(private_path, public_path)
                return
            private_key = serialization.load_pem_private_key(
                private_path.read_bytes(), password=None,
            )
            public_key = serialization.load_pem_public_key(public_path.read_bytes())
        except (OSError, ValueError) as e:
            raise SigningKeyError(f"Failed to load signing keys from {self.key_dir}: {e}") from e

        if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(
            public_key, rsa.RSAPublicKey
        ):
            raise SigningKeyError("Signing keys are not RSA keys")
        self._private_key = private_key
        self._public_key = public_key
        logger.info("loaded signing key pair from %s", self.key_dir)

    def _generate_key_pair(self, private_path: Path, public_path: Path) -> None:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(private_pem)
        os.chmod(private_path, 0o600)

        public_key = private_key.public_key()
        public_path.write_bytes(self._public_pem(public_key))

        self._private_key = private_key
        self._public_key = public_key
        logger.info("generated new %d-bit signing key pair in %s", KEY_SIZE, self.key_dir)

    @staticmethod
    def _public_pem(public_key: rsa.RSAPublicKey) -> bytes:
        return public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        self.load_or_generate_keys()
        return self._public_key

    @property
    def public_key_hash(self) -> str:
        der = self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return sha256_hex(der)

    def export_public_key(self) -> str:
        """PEM-encoded public key for external verification."""
        return self._public_pem(self.public_key).decode("ascii")

    # ── Sign / verify ──

    def sign(
        self,
        document_type: str,
        document_id: str,
        payload: Any,
        signed_by: str,
    ) -> Signature:
        self.load_or_generate_keys()
        document_id = str(document_id)
        document_hash = payload_hash(payload)
        signed_at = utcnow()
        raw = self._private_key.sign(
            signing_input(document_type, document_id, document_hash, signed_by, signed_at),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        signature = base64.b64encode(raw).decode("ascii")
        return Signature(
            document_type=document_type,
            document_id=document_id,
            document_hash=document_hash,
            signature=signature,
            signature_hash=sha256_hex(signature),
            signed_at=signed_at,
            signed_by=signed_by,
            company_name=self.company_name,
            public_key_hash=self.public_key_hash,
        )

    def verify(self, signature: Signature | SignedDocumentModel, current_payload: Any) -> bool:
        """False if the payload changed since signing or the signature is bad."""
        if payload_hash(current_payload) != signature.document_hash:
            logger.warning(
                "document hash mismatch for %s %s: document has been modified",
                signature.document_type, signature.document_id,
            )
            return False

        try:
            raw = base64.b64decode(signature.signature, validate=True)
            self.public_key.verify(
                raw,
                signing_input(
                    signature.document_type,
                    signature.document_id,
                    signature.document_hash,
                    signature.signed_by,
                    signature.signed_at,
                ),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except (InvalidSignature, binascii.Error, ValueError):
            logger.warning(
                "signature verification failed for %s %s",
                signature.document_type, signature.document_id,
            )
            return False
        return True

    # ── Persistence ──

    async def sign_and_store(
        self,
        session: AsyncSession,
        document_type: str,
        document_id: str,
        payload: Any,
        signed_by: str,
    ) -> SignedDocumentModel:
        signed = self.to_model(self.sign(document_type, document_id, payload, signed_by))
        session.add(signed)
        await session.flush()
        return signed

    async def get_signed_document(
        self, session: AsyncSession, signature_id: str,
    ) -> SignedDocumentModel:
        result = await session.execute(
            select(SignedDocumentModel).where(SignedDocumentModel.id == signature_id)
        )
        signed = result.scalar_one_or_none()
        if signed is None:
            raise RecordNotFoundError(f"Signature {signature_id} not found")
        return signed

    async def list_signatures(
        self, session: AsyncSession, document_type: str, document_id: str,
    ) -> list[SignedDocumentModel]:
        result = await session.execute(
            select(SignedDocumentModel)
            .where(
                SignedDocumentModel.document_type == document_type,
                SignedDocumentModel.document_id == str(document_id),
            )
            .order_by(SignedDocumentModel.signed_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    def to_model(signature: Signature) -> SignedDocumentModel:
        return SignedDocumentModel(
            document_type=signature.document_type,
            document_id=signature.document_id,
            document_hash=signature.document_hash,
            signature=signature.signature,
            signature_hash=signature.signature_hash,
            signed_at=signature.signed_at,
            signed_by=signature.signed_by,
            company_name=signature.company_name,
            signing_method=signature.signing_method,
            public_key_hash=signature.public_key_hash,
            is_valid=signature.is_valid,
        )

    @staticmethod
    def from_model(model: SignedDocumentModel) -> Signature:
        return Signature(
            document_type=model.document_type,
            document_id=model.document_id,
            document_hash=model.document_hash,
            signature=model.signature,
            signature_hash=model.signature_hash,
            signed_at=model.signed_at,
            signed_by=model.signed_by,
            company_name=model.company_name,
            public_key_hash=model.public_key_hash,
            signing_method=model.signing_method,
            is_valid=model.is_valid,
        )
