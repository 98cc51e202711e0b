"""Dependency injection singletons for RentalCore."""

from rentalcore.archive.service import GoBDArchive
from rentalcore.audit.chain import ChainTail
from rentalcore.audit.service import AuditLogger
from rentalcore.booking.service import BookingService
from rentalcore.common.config import get_settings
from rentalcore.common.database import DatabaseManager
from rentalcore.compliance.service import ComplianceService
from rentalcore.gdpr.service import GDPRService
from rentalcore.retention.service import RetentionManager
from rentalcore.signing.service import DigitalSignatureManager

_db: DatabaseManager | None = None
_retention: RetentionManager | None = None
_audit: AuditLogger | None = None
_signer: DigitalSignatureManager | None = None
_archive: GoBDArchive | None = None
_gdpr: GDPRService | None = None
_booking: BookingService | None = None
_compliance: ComplianceService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_retention_manager() -> RetentionManager:
    global _retention
    if _retention is None:
        _retention = RetentionManager(get_settings())
    return _retention


def get_audit_logger() -> AuditLogger:
    global _audit
    if _audit is None:
        _audit = AuditLogger(get_db(), get_settings(), tail=ChainTail())
    return _audit


def get_signature_manager() -> DigitalSignatureManager:
    global _signer
    if _signer is None:
        _signer = DigitalSignatureManager(get_settings())
        _signer.load_or_generate_keys()
    return _signer


def get_archive() -> GoBDArchive:
    global _archive
    if _archive is None:
        _archive = GoBDArchive(
            get_db(),
            get_settings(),
            retention=get_retention_manager(),
            audit=get_audit_logger(),
            signer=get_signature_manager(),
        )
    return _archive


def get_gdpr_service() -> GDPRService:
    global _gdpr
    if _gdpr is None:
        _gdpr = GDPRService(get_settings())
    return _gdpr


def get_booking_service() -> BookingService:
    global _booking
    if _booking is None:
        _booking = BookingService(get_settings())
    return _booking


def get_compliance_service() -> ComplianceService:
    global _compliance
    if _compliance is None:
        _compliance = ComplianceService(
            get_db(),
            get_settings(),
            audit=get_audit_logger(),
            retention=get_retention_manager(),
            archive=get_archive(),
            gdpr=get_gdpr_service(),
        )
    return _compliance


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _retention, _audit, _signer, _archive, _gdpr, _booking, _compliance
    _db = None
    _retention = None
    _audit = None
    _signer = None
    _archive = None
    _gdpr = None
    _booking = None
    _compliance = None
