"""Third-party item store: raw payloads keyed by (source kind, external id, user)."""

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.db.models.third_party_item import ThirdPartyItemRow
from unibox.errors.exceptions import ConflictError, NotFoundError
from unibox.integrations.normalized import ThirdPartyItemIn
from unibox.models.enums import ThirdPartyItemStatus, UpsertStatus
from unibox.repositories.base import BaseRepository, UpsertResult
from unibox.services.id_generator import generate_id


def _is_later(incoming: datetime | None, stored: datetime | None) -> bool:
    if incoming is None or stored is None:
        return False
    if incoming.tzinfo is None:
        incoming = incoming.replace(tzinfo=timezone.utc)
    if stored.tzinfo is None:
        stored = stored.replace(tzinfo=timezone.utc)
    return incoming > stored


class ThirdPartyItemRepository(BaseRepository[ThirdPartyItemRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ThirdPartyItemRow)

    async def get(self, third_party_item_id: str) -> ThirdPartyItemRow | None:
        return await self.get_by_id("third_party_item_id", third_party_item_id)

    async def get_by_key(
        self, user_id: str, source_kind: str, external_id: str, for_update: bool = False
    ) -> ThirdPartyItemRow | None:
        stmt = select(ThirdPartyItemRow).where(
            ThirdPartyItemRow.user_id == user_id,
            ThirdPartyItemRow.source_kind == source_kind,
            ThirdPartyItemRow.external_id == external_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, item: ThirdPartyItemIn) -> UpsertResult[ThirdPartyItemRow]:
        """Insert or update by natural key, comparing on ``content_hash``.

        ``untouched`` is returned only for an already processed item with the
        same payload. Anything else goes back to ``new`` so the pipeline runs
        again, including a previously deleted item that reappears.
        """
        digest = item.content_hash
        existing = await self.get_by_key(item.user_id, item.source_kind, item.external_id, for_update=True)

        if existing is None:
            row = ThirdPartyItemRow(
                third_party_item_id=generate_id("tpi_"),
                source_kind=item.source_kind,
                external_id=item.external_id,
                user_id=item.user_id,
                connection_id=item.connection_id,
                data=item.data,
                content_hash=digest,
                source_updated_at=item.source_updated_at,
                status=ThirdPartyItemStatus.NEW,
            )
            self.session.add(row)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    f"Concurrent insert of {item.source_kind} item '{item.external_id}'",
                    details={"user_id": item.user_id},
                ) from exc
            return UpsertResult(UpsertStatus.CREATED, row)

        if existing.content_hash == digest and existing.status == ThirdPartyItemStatus.PROCESSED:
            return UpsertResult(UpsertStatus.UNTOUCHED, existing)

        advanced = _is_later(item.source_updated_at, existing.source_updated_at)
        existing.data = item.data
        existing.content_hash = digest
        existing.source_updated_at = item.source_updated_at
        existing.connection_id = item.connection_id or existing.connection_id
        existing.status = ThirdPartyItemStatus.NEW
        existing.processing_error = None
        await self.session.flush()
        return UpsertResult(UpsertStatus.UPDATED, existing, source_advanced=advanced)

    async def find_unprocessed(self, user_id: str, source_kind: str) -> list[ThirdPartyItemRow]:
        stmt = (
            select(ThirdPartyItemRow)
            .where(
                ThirdPartyItemRow.user_id == user_id,
                ThirdPartyItemRow.source_kind == source_kind,
                ThirdPartyItemRow.status == ThirdPartyItemStatus.NEW,
            )
            .order_by(ThirdPartyItemRow.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_processed(self, third_party_item_id: str, error: str | None = None) -> ThirdPartyItemRow:
        row = await self._require(third_party_item_id)
        row.status = ThirdPartyItemStatus.PROCESSED
        row.processing_error = error
        await self.session.flush()
        return row

    async def mark_deleted(self, third_party_item_id: str) -> ThirdPartyItemRow:
        row = await self._require(third_party_item_id)
        row.status = ThirdPartyItemStatus.DELETED
        await self.session.flush()
        return row

    async def find_stale(
        self, user_id: str, source_kind: str, seen_external_ids: Iterable[str]
    ) -> list[ThirdPartyItemRow]:
        """Live items of this source that a full sync did not report."""
        seen = set(seen_external_ids)
        stmt = select(ThirdPartyItemRow).where(
            ThirdPartyItemRow.user_id == user_id,
            ThirdPartyItemRow.source_kind == source_kind,
            ThirdPartyItemRow.status != ThirdPartyItemStatus.DELETED,
        )
        result = await self.session.execute(stmt)
        return [row for row in result.scalars().all() if row.external_id not in seen]

    async def _require(self, third_party_item_id: str) -> ThirdPartyItemRow:
        row = await self.get(third_party_item_id)
        if row is None:
            raise NotFoundError("Third-party item", third_party_item_id)
        return row
