"""Integration connection repository."""

from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.db.base import utcnow
from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.models.enums import IntegrationConnectionStatus
from unibox.repositories.base import BaseRepository

RECONNECT_REQUIRED = "reconnect required"


class IntegrationConnectionRepository(BaseRepository[IntegrationConnectionRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, IntegrationConnectionRow)

    async def get(self, connection_id: str) -> IntegrationConnectionRow | None:
        return await self.get_by_id("connection_id", connection_id)

    async def get_for_user(self, user_id: str, source_kind: str) -> IntegrationConnectionRow | None:
        stmt = select(IntegrationConnectionRow).where(
            IntegrationConnectionRow.user_id == user_id,
            IntegrationConnectionRow.source_kind == source_kind,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[IntegrationConnectionRow]:
        stmt = (
            select(IntegrationConnectionRow)
            .where(IntegrationConnectionRow.user_id == user_id)
            .order_by(IntegrationConnectionRow.source_kind)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_syncable(self, user_id: str | None = None) -> list[IntegrationConnectionRow]:
        """Enabled connections that are not waiting for a reconnect."""
        stmt = select(IntegrationConnectionRow).where(
            IntegrationConnectionRow.enabled.is_(True),
            IntegrationConnectionRow.status.in_(
                [IntegrationConnectionStatus.CREATED, IntegrationConnectionStatus.VALIDATED]
            ),
        )
        if user_id is not None:
            stmt = stmt.where(IntegrationConnectionRow.user_id == user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_due(self, interval_seconds: float, now: datetime | None = None) -> list[IntegrationConnectionRow]:
        """Syncable connections whose last sync started more than ``interval_seconds`` ago."""
        cutoff = (now or utcnow()) - timedelta(seconds=interval_seconds)
        stmt = select(IntegrationConnectionRow).where(
            IntegrationConnectionRow.enabled.is_(True),
            IntegrationConnectionRow.status.in_(
                [IntegrationConnectionStatus.CREATED, IntegrationConnectionStatus.VALIDATED]
            ),
            or_(
                IntegrationConnectionRow.last_sync_started_at.is_(None),
                IntegrationConnectionRow.last_sync_started_at < cutoff,
            ),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_provider_user(
        self, source_kind: str, provider_user_id: str
    ) -> IntegrationConnectionRow | None:
        """Find the connection whose config records this provider-side account id."""
        stmt = select(IntegrationConnectionRow).where(IntegrationConnectionRow.source_kind == source_kind)
        result = await self.session.execute(stmt)
        for row in result.scalars().all():
            if str((row.config or {}).get("provider_user_id")) == provider_user_id:
                return row
        return None

    async def mark_sync_started(self, row: IntegrationConnectionRow) -> None:
        row.last_sync_started_at = utcnow()
        await self.session.flush()

    async def mark_sync_succeeded(self, row: IntegrationConnectionRow) -> None:
        row.last_sync_completed_at = utcnow()
        row.last_sync_failure_message = None
        if row.status == IntegrationConnectionStatus.CREATED:
            row.status = IntegrationConnectionStatus.VALIDATED
        await self.session.flush()

    async def mark_sync_failed(self, row: IntegrationConnectionRow, message: str) -> None:
        row.last_sync_failure_message = message
        await self.session.flush()

    async def mark_failing(self, row: IntegrationConnectionRow, message: str = RECONNECT_REQUIRED) -> None:
        """Exclude the connection from scheduling until it is re-validated."""
        row.status = IntegrationConnectionStatus.FAILING
        row.failure_message = message
        row.last_sync_failure_message = message
        await self.session.flush()
