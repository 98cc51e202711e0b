"""Query layer for device assignments.

``find_conflicts`` is the contract the availability engine relies on: given
a device and a date range it returns the assignments that block it.
Overlap is tested on closed intervals, so a job ending on day N and another
starting on day N conflict.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.booking.models import DeviceModel, JobDeviceModel, JobModel, ProductModel
from rentalcore.booking.revenue import RevenueLine


@dataclass(frozen=True)
class ConflictRow:
    job_id: str
    device_id: str
    status: str
    start_date: Optional[date]
    end_date: Optional[date]


class AssignmentRepository:
    def __init__(self, blocking_statuses: Sequence[str] = ("open", "in_progress")):
        self.blocking_statuses = tuple(blocking_statuses)

    def _blocking(self):
        return and_(
            JobModel.status.in_(self.blocking_statuses),
            JobDeviceModel.state == "assigned",
        )

    async def find_conflicts(
        self,
        session: AsyncSession,
        device_id: str,
        start: Optional[date],
        end: Optional[date],
        exclude_job_id: Optional[str] = None,
    ) -> list[ConflictRow]:
        """Blocking assignments of ``device_id`` to other jobs.

        With a full range, only jobs overlapping ``[start, end]`` are returned
        (undated jobs occupy the device indefinitely). Without one, every
        blocking assignment is returned.
        """
        query = (
            select(
                JobDeviceModel.job_id,
                JobDeviceModel.device_id,
                JobModel.status,
                JobModel.start_date,
                JobModel.end_date,
            )
            .join(JobModel, JobModel.id == JobDeviceModel.job_id)
            .where(JobDeviceModel.device_id == device_id, self._blocking())
        )
        if exclude_job_id is not None:
            query = query.where(JobDeviceModel.job_id != exclude_job_id)
        if start is not None and end is not None:
            query = query.where(
                or_(
                    and_(JobModel.start_date <= end, JobModel.end_date >= start),
                    JobModel.start_date.is_(None),
                    JobModel.end_date.is_(None),
                )
            )
        query = query.order_by(JobModel.start_date, JobDeviceModel.job_id)
        result = await session.execute(query)
        return [ConflictRow(*row) for row in result.all()]

    async def get_assignment(
        self, session: AsyncSession, job_id: str, device_id: str,
    ) -> JobDeviceModel | None:
        result = await session.execute(
            select(JobDeviceModel).where(
                JobDeviceModel.job_id == job_id,
                JobDeviceModel.device_id == device_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_job_assignments(
        self, session: AsyncSession, job_id: str,
    ) -> list[JobDeviceModel]:
        result = await session.execute(
            select(JobDeviceModel)
            .where(JobDeviceModel.job_id == job_id)
            .order_by(JobDeviceModel.assigned_at)
        )
        return list(result.scalars().all())

    async def revenue_lines(self, session: AsyncSession, job_id: str) -> list[RevenueLine]:
        result = await session.execute(
            select(
                JobDeviceModel.device_id,
                JobDeviceModel.custom_price,
                ProductModel.item_cost_per_day,
            )
            .join(DeviceModel, DeviceModel.id == JobDeviceModel.device_id)
            .outerjoin(ProductModel, ProductModel.id == DeviceModel.product_id)
            .where(JobDeviceModel.job_id == job_id)
            .order_by(JobDeviceModel.device_id)
        )
        return [RevenueLine(*row) for row in result.all()]

    async def devices_blocked_between(
        self, session: AsyncSession, start: date, end: date,
        exclude_job_id: Optional[str] = None,
    ) -> set[str]:
        """Ids of devices held by a blocking job overlapping ``[start, end]``."""
        query = (
            select(JobDeviceModel.device_id)
            .join(JobModel, JobModel.id == JobDeviceModel.job_id)
            .where(
                self._blocking(),
                JobModel.start_date <= end,
                JobModel.end_date >= start,
            )
        )
        if exclude_job_id is not None:
            query = query.where(JobDeviceModel.job_id != exclude_job_id)
        result = await session.execute(query.distinct())
        return set(result.scalars().all())

    async def current_assignment(
        self, session: AsyncSession, device_id: str, today: date,
    ) -> ConflictRow | None:
        """Blocking assignment whose job covers ``today``, if any."""
        result = await session.execute(
            select(
                JobDeviceModel.job_id,
                JobDeviceModel.device_id,
                JobModel.status,
                JobModel.start_date,
                JobModel.end_date,
            )
            .join(JobModel, JobModel.id == JobDeviceModel.job_id)
            .where(
                JobDeviceModel.device_id == device_id,
                self._blocking(),
                JobModel.start_date <= today,
                JobModel.end_date >= today,
            )
            .limit(1)
        )
        row = result.first()
        return ConflictRow(*row) if row else None

    async def assignments_for_jobs_with_status(
        self, session: AsyncSession, status: str,
    ) -> list[JobDeviceModel]:
        result = await session.execute(
            select(JobDeviceModel)
            .join(JobModel, JobModel.id == JobDeviceModel.job_id)
            .where(JobModel.status == status)
        )
        return list(result.scalars().all())
