"""Availability rules for assigning a device to a job."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.booking.models import DeviceModel, JobModel
from rentalcore.booking.repository import AssignmentRepository, ConflictRow
from rentalcore.common.exceptions import (
    AssignmentConflictError,
    DeviceUnavailableError,
    DuplicateAssignmentError,
)

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityDecision:
    device_id: str
    available: bool
    reason: str = ""
    conflict: Optional[ConflictRow] = None


class AvailabilityEngine:
    """Interprets assignment rows into an assign/reject decision.

    A device is assignable to a job when it is not already on that job, its
    status is ``free``, and no other blocking job holds it over an
    overlapping range.
    """

    def __init__(self, repository: AssignmentRepository):
        self.repository = repository

    async def check(
        self, session: AsyncSession, device: DeviceModel, job: JobModel,
    ) -> AvailabilityDecision:
        if await self.repository.get_assignment(session, job.id, device.id) is not None:
            return AvailabilityDecision(device.id, False, "already_assigned")
        if device.status != "free":
            return AvailabilityDecision(device.id, False, f"status:{device.status}")

        conflicts = await self.repository.find_conflicts(
            session, device.id, job.start_date, job.end_date, exclude_job_id=job.id,
        )
        if conflicts:
            return AvailabilityDecision(device.id, False, "conflict", conflicts[0])
        return AvailabilityDecision(device.id, True)

    async def ensure_assignable(
        self, session: AsyncSession, device: DeviceModel, job: JobModel,
    ) -> None:
        """Raise the matching validation error if ``check`` rejects."""
        decision = await self.check(session, device, job)
        if decision.available:
            return
        if decision.reason == "already_assigned":
            raise DuplicateAssignmentError(device.id, job.id)
        if decision.conflict is None:
            raise DeviceUnavailableError(device.id, device.status)

        conflict = decision.conflict
        logger.info(
            "assignment conflict: device %s requested for job %s is held by job %s",
            device.id, job.id, conflict.job_id,
            extra={"job_id": job.id, "device_id": device.id},
        )
        raise AssignmentConflictError(
            device.id, conflict.job_id, conflict.start_date, conflict.end_date,
        )
