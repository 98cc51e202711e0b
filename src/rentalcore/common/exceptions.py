"""RentalCore exception hierarchy.

Three families matter to callers:

- validation errors (bad input, booking conflicts), reported to the caller
  and never retried;
- integrity failures (broken hash chain, archive hash mismatch), reported as
  a compliance breach that stops automated cleanup;
- archive write failures, fatal for the single operation.
"""

from datetime import date
from typing import Optional


class RentalCoreError(Exception):
    """Base exception for all RentalCore errors."""

    def __init__(self, message: str = "", code: str = "RENTALCORE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ──

class ValidationError(RentalCoreError):
    """Raised when a request is well-formed but violates a business rule."""

    def __init__(self, message: str = "Validation failed", code: str = "VALIDATION_ERROR"):
        super().__init__(message, code=code)


class AssignmentConflictError(ValidationError):
    """Raised when a device is booked by another job in an overlapping range."""

    def __init__(
        self,
        device_id: str,
        job_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ):
        self.device_id = device_id
        self.conflicting_job_id = job_id
        self.start_date = start_date
        self.end_date = end_date
        if start_date is not None and end_date is not None:
            message = (
                f"device {device_id} is already assigned to job {job_id} "
                f"(dates: {start_date.isoformat()} to {end_date.isoformat()})"
            )
        else:
            message = f"device {device_id} is already assigned to job {job_id}"
        super().__init__(message, code="ASSIGNMENT_CONFLICT")


class DuplicateAssignmentError(ValidationError):
    """Raised when a device is assigned twice to the same job."""

    def __init__(self, device_id: str, job_id: str):
        self.device_id = device_id
        self.job_id = job_id
        super().__init__(
            f"device {device_id} is already assigned to this job",
            code="ALREADY_ASSIGNED",
        )


class DeviceUnavailableError(ValidationError):
    """Raised when a device's status does not allow assignment."""

    def __init__(self, device_id: str, status: str):
        self.device_id = device_id
        self.status = status
        super().__init__(
            f"device {device_id} is not available (status: {status})",
            code="DEVICE_UNAVAILABLE",
        )


class PolicyExistsError(ValidationError):
    """Raised when creating a second retention policy for a document type."""

    def __init__(self, document_type: str):
        super().__init__(
            f"retention policy for document type {document_type} already exists",
            code="POLICY_EXISTS",
        )


# ── Lookups ──

class NotFoundError(RentalCoreError):
    """Raised when a referenced row does not exist."""

    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND"):
        super().__init__(message, code=code)


class JobNotFoundError(NotFoundError):
    def __init__(self, message: str = "Job not found"):
        super().__init__(message)


class DeviceNotFoundError(NotFoundError):
    def __init__(self, message: str = "Device not found"):
        super().__init__(message)


class RecordNotFoundError(NotFoundError):
    def __init__(self, message: str = "Archived record not found"):
        super().__init__(message)


class PolicyNotFoundError(NotFoundError):
    def __init__(self, message: str = "Retention policy not found"):
        super().__init__(message)


# ── Integrity / I/O ──

class IntegrityBreachError(RentalCoreError):
    """Raised when stored data no longer matches its recorded hash."""

    def __init__(self, message: str = "Integrity check failed"):
        super().__init__(message, code="COMPLIANCE_BREACH")


class ArchiveWriteError(RentalCoreError):
    """Raised when an archive snapshot cannot be persisted."""

    def __init__(self, message: str = "Archive write failed"):
        super().__init__(message, code="ARCHIVE_WRITE_FAILED")


class SigningKeyError(RentalCoreError):
    """Raised when the signing key pair cannot be loaded or created."""

    def __init__(self, message: str = "Signing key unavailable"):
        super().__init__(message, code="SIGNING_KEY_ERROR")


class PersonalDataDecryptionError(RentalCoreError):
    """Raised when stored personal data cannot be decrypted with the current key."""

    def __init__(self, message: str = "Personal data could not be decrypted"):
        super().__init__(message, code="DECRYPTION_FAILED")
