"""Job repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.db.models.job import JobRow
from unibox.models.enums import JobStatus, JobType
from unibox.repositories.base import BaseRepository


class JobRepository(BaseRepository[JobRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, JobRow)

    async def get(self, job_id: str, for_update: bool = False) -> JobRow | None:
        return await self.get_by_id("job_id", job_id, for_update=for_update)

    async def find_queued_by_dedup(self, dedup_key: str, for_update: bool = True) -> JobRow | None:
        """The queued job for a pushed item, row-locked unless ``for_update`` is False."""
        stmt = select(JobRow).where(JobRow.dedup_key == dedup_key, JobRow.status == JobStatus.QUEUED)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def has_pending_for_connection(self, connection_id: str) -> bool:
        """True when a periodic sync for the connection is queued or running."""
        stmt = (
            select(JobRow.job_id)
            .where(
                JobRow.connection_id == connection_id,
                JobRow.job_type == JobType.SYNC_SOURCE,
                JobRow.status.in_([JobStatus.QUEUED, JobStatus.RUNNING]),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_by_status(self, status: JobStatus, limit: int = 100) -> list[JobRow]:
        stmt = select(JobRow).where(JobRow.status == status).order_by(JobRow.created_at).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
