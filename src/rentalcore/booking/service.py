"""Booking service: device assignment lifecycle and job revenue."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.booking.availability import AvailabilityEngine
from rentalcore.booking.models import (
    DEVICE_STATUSES,
    DISCOUNT_TYPES,
    JOB_STATUSES,
    DeviceModel,
    JobDeviceModel,
    JobModel,
    ProductModel,
)
from rentalcore.booking.repository import AssignmentRepository
from rentalcore.booking.revenue import RevenueBreakdown, calculate
from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.exceptions import (
    DeviceNotFoundError,
    JobNotFoundError,
    NotFoundError,
    ValidationError,
)
from rentalcore.common.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    assignment: JobDeviceModel
    job: JobModel


@dataclass
class BulkItemResult:
    identifier: str
    success: bool
    message: str
    device_id: Optional[str] = None
    code: str = ""


@dataclass
class BulkAssignmentResult:
    job: JobModel
    items: list[BulkItemResult] = field(default_factory=list)

    @property
    def assigned(self) -> list[str]:
        return [item.device_id for item in self.items if item.success]


class BookingService:
    """Temporally exclusive device assignment with revenue roll-up."""

    def __init__(
        self,
        settings: RentalCoreSettings,
        repository: AssignmentRepository | None = None,
    ):
        self.settings = settings
        self.repository = repository or AssignmentRepository(settings.blocking_job_statuses)
        self.availability = AvailabilityEngine(self.repository)

    # ── Catalogue ──

    async def create_product(
        self, session: AsyncSession, name: str, item_cost_per_day: float | None = None,
    ) -> ProductModel:
        product = ProductModel(name=name, item_cost_per_day=item_cost_per_day)
        session.add(product)
        await session.flush()
        return product

    async def create_device(
        self,
        session: AsyncSession,
        device_id: str,
        product_id: str | None = None,
        serial_number: str | None = None,
        status: str = "free",
    ) -> DeviceModel:
        if status not in DEVICE_STATUSES:
            raise ValidationError(f"Invalid device status: {status}")
        if await session.get(DeviceModel, device_id) is not None:
            raise ValidationError(f"Device {device_id} already exists", code="DEVICE_EXISTS")
        device = DeviceModel(
            id=device_id, product_id=product_id, serial_number=serial_number, status=status,
        )
        session.add(device)
        await session.flush()
        return device

    async def get_device(
        self, session: AsyncSession, device_id: str, for_update: bool = False,
    ) -> DeviceModel:
        query = select(DeviceModel).where(DeviceModel.id == device_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        device = result.scalar_one_or_none()
        if device is None:
            raise DeviceNotFoundError(f"Device {device_id} not found")
        return device

    async def find_device(self, session: AsyncSession, identifier: str) -> DeviceModel | None:
        """Look a device up by id or serial number."""
        result = await session.execute(
            select(DeviceModel)
            .where(or_(DeviceModel.id == identifier, DeviceModel.serial_number == identifier))
            .with_for_update()
        )
        return result.scalars().first()

    async def set_device_status(
        self, session: AsyncSession, device_id: str, status: str,
    ) -> DeviceModel:
        if status not in DEVICE_STATUSES:
            raise ValidationError(f"Invalid device status: {status}")
        device = await self.get_device(session, device_id, for_update=True)
        device.status = status
        await session.flush()
        return device

    # ── Jobs ──

    async def create_job(
        self,
        session: AsyncSession,
        customer: str = "",
        start_date: date | None = None,
        end_date: date | None = None,
        discount: float = 0.0,
        discount_type: str = "amount",
        status: str = "open",
        description: str = "",
    ) -> JobModel:
        self._validate_job(start_date, end_date, discount, discount_type, status)
        job = JobModel(
            customer=customer,
            description=description,
            start_date=start_date,
            end_date=end_date,
            status=status,
            discount=discount,
            discount_type=discount_type,
            revenue=0.0,
            final_revenue=0.0,
        )
        session.add(job)
        await session.flush()
        return job

    async def get_job(self, session: AsyncSession, job_id: str) -> JobModel:
        job = await session.get(JobModel, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    async def update_job_status(
        self, session: AsyncSession, job_id: str, status: str,
    ) -> JobModel:
        if status not in JOB_STATUSES:
            raise ValidationError(f"Invalid job status: {status}")
        job = await self.get_job(session, job_id)
        job.status = status
        await session.flush()
        return job

    async def update_discount(
        self, session: AsyncSession, job_id: str, discount: float, discount_type: str,
    ) -> JobModel:
        job = await self.get_job(session, job_id)
        self._validate_job(job.start_date, job.end_date, discount, discount_type, job.status)
        job.discount = discount
        job.discount_type = discount_type
        await self.recalculate_revenue(session, job)
        return job

    async def list_job_devices(
        self, session: AsyncSession, job_id: str,
    ) -> list[JobDeviceModel]:
        await self.get_job(session, job_id)
        return await self.repository.list_job_assignments(session, job_id)

    # ── Assignment ──

    async def assign_device(
        self,
        session: AsyncSession,
        job_id: str,
        device_id: str,
        custom_price: float | None = None,
    ) -> AssignmentResult:
        """Assign one device and recompute the job's revenue."""
        job = await self.get_job(session, job_id)
        device = await self.get_device(session, device_id, for_update=True)
        assignment = await self._assign(session, job, device, custom_price)
        await self.recalculate_revenue(session, job)
        logger.info("assigned device %s to job %s", device.id, job.id)
        return AssignmentResult(assignment=assignment, job=job)

    async def bulk_assign(
        self,
        session: AsyncSession,
        job_id: str,
        identifiers: list[str],
        custom_price: float | None = None,
    ) -> BulkAssignmentResult:
        """Assign devices one by one, recomputing revenue once at the end."""
        job = await self.get_job(session, job_id)
        result = BulkAssignmentResult(job=job)

        for identifier in identifiers:
            device = await self.find_device(session, identifier)
            if device is None:
                result.items.append(BulkItemResult(
                    identifier, False, "Device not found", code="NOT_FOUND",
                ))
                continue
            try:
                await self._assign(session, job, device, custom_price)
            except ValidationError as e:
                result.items.append(BulkItemResult(
                    identifier, False, e.message, device_id=device.id, code=e.code,
                ))
                continue
            result.items.append(BulkItemResult(
                identifier, True, "Device assigned successfully", device_id=device.id,
            ))

        if result.assigned:
            await self.recalculate_revenue(session, job)
        return result

    async def unassign_device(
        self, session: AsyncSession, job_id: str, device_id: str,
    ) -> JobModel:
        """Remove the assignment and put the device back to ``free``."""
        job = await self.get_job(session, job_id)
        assignment = await self._require_assignment(session, job_id, device_id)
        device = await self.get_device(session, device_id, for_update=True)
        await session.delete(assignment)
        device.status = "free"
        await session.flush()
        await self.recalculate_revenue(session, job)
        return job

    async def remove_device(
        self, session: AsyncSession, job_id: str, device_id: str,
    ) -> JobModel:
        """Remove the assignment without touching the device status."""
        job = await self.get_job(session, job_id)
        assignment = await self._require_assignment(session, job_id, device_id)
        await session.delete(assignment)
        await session.flush()
        await self.recalculate_revenue(session, job)
        return job

    async def check_out_device(
        self, session: AsyncSession, job_id: str, device_id: str,
    ) -> JobDeviceModel:
        assignment = await self._require_assignment(session, job_id, device_id)
        if assignment.state != "assigned":
            raise ValidationError(
                f"Device {device_id} was already returned from job {job_id}",
                code="INVALID_ASSIGNMENT_STATE",
            )
        device = await self.get_device(session, device_id, for_update=True)
        device.status = "checked_out"
        await session.flush()
        return assignment

    async def return_device(
        self, session: AsyncSession, job_id: str, device_id: str,
    ) -> JobDeviceModel:
        assignment = await self._require_assignment(session, job_id, device_id)
        if assignment.state == "returned":
            raise ValidationError(
                f"Device {device_id} was already returned from job {job_id}",
                code="INVALID_ASSIGNMENT_STATE",
            )
        device = await self.get_device(session, device_id, for_update=True)
        assignment.state = "returned"
        assignment.returned_at = utcnow()
        device.status = "free"
        await session.flush()
        return assignment

    async def free_devices_from_cancelled_jobs(self, session: AsyncSession) -> list[str]:
        """Drop assignments of cancelled jobs and free their devices.

        Paid and completed jobs keep their assignments for the record.
        """
        assignments = await self.repository.assignments_for_jobs_with_status(
            session, "cancelled",
        )
        freed: list[str] = []
        job_ids: set[str] = set()
        for assignment in assignments:
            device = await self.get_device(session, assignment.device_id, for_update=True)
            device.status = "free"
            freed.append(device.id)
            job_ids.add(assignment.job_id)
            await session.delete(assignment)
        await session.flush()

        for job_id in sorted(job_ids):
            await self.recalculate_revenue(session, await self.get_job(session, job_id))
        if freed:
            logger.info(
                "freed %d device(s) from %d cancelled job(s)", len(freed), len(job_ids),
            )
        return freed

    # ── Availability ──

    async def available_devices_for_job(
        self, session: AsyncSession, job_id: str,
    ) -> list[DeviceModel]:
        """Free devices that could still be assigned to the job."""
        job = await self.get_job(session, job_id)
        on_job = {a.device_id for a in await self.repository.list_job_assignments(session, job_id)}
        if job.start_date is not None and job.end_date is not None:
            blocked = await self.repository.devices_blocked_between(
                session, job.start_date, job.end_date, exclude_job_id=job.id,
            )
        else:
            blocked = set()
        devices = await self._free_devices(session)
        return [d for d in devices if d.id not in blocked and d.id not in on_job]

    async def available_devices_on(
        self, session: AsyncSession, day: date,
    ) -> list[DeviceModel]:
        """Free devices not held by a blocking job on ``day`` (end day included)."""
        blocked = await self.repository.devices_blocked_between(session, day, day)
        return [d for d in await self._free_devices(session) if d.id not in blocked]

    async def is_device_currently_assigned(
        self, session: AsyncSession, device_id: str, today: date | None = None,
    ) -> Optional[str]:
        """Id of the blocking job holding the device today, or None."""
        row = await self.repository.current_assignment(
            session, device_id, today or utcnow().date(),
        )
        return row.job_id if row else None

    # ── Revenue ──

    async def recalculate_revenue(
        self, session: AsyncSession, job: JobModel,
    ) -> RevenueBreakdown:
        """Derive revenue and final revenue from the current device set."""
        lines = await self.repository.revenue_lines(session, job.id)
        breakdown = calculate(lines, job.discount or 0.0, job.discount_type)
        job.revenue = breakdown.revenue
        job.final_revenue = breakdown.final_revenue
        await session.flush()
        return breakdown

    # ── Internal helpers ──

    async def _assign(
        self,
        session: AsyncSession,
        job: JobModel,
        device: DeviceModel,
        custom_price: float | None,
    ) -> JobDeviceModel:
        await self.availability.ensure_assignable(session, device, job)
        assignment = JobDeviceModel(
            job_id=job.id,
            device_id=device.id,
            custom_price=custom_price if custom_price is not None and custom_price > 0 else None,
            state="assigned",
        )
        session.add(assignment)
        await session.flush()
        return assignment

    async def _require_assignment(
        self, session: AsyncSession, job_id: str, device_id: str,
    ) -> JobDeviceModel:
        assignment = await self.repository.get_assignment(session, job_id, device_id)
        if assignment is None:
            raise NotFoundError(f"Device {device_id} is not assigned to job {job_id}")
        return assignment

    async def _free_devices(self, session: AsyncSession) -> list[DeviceModel]:
        result = await session.execute(
            select(DeviceModel).where(DeviceModel.status == "free").order_by(DeviceModel.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _validate_job(
        start_date: date | None,
        end_date: date | None,
        discount: float,
        discount_type: str,
        status: str,
    ) -> None:
        if (start_date is None) != (end_date is None):
            raise ValidationError("A job needs both a start and an end date, or neither")
        if start_date is not None and end_date is not None and end_date < start_date:
            raise ValidationError("Job end date is before its start date")
        if discount < 0:
            raise ValidationError("Discount cannot be negative")
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Invalid discount type: {discount_type}")
        if status not in JOB_STATUSES:
            raise ValidationError(f"Invalid job status: {status}")
