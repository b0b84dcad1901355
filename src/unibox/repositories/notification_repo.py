"""Notification repository."""

from collections.abc import Collection
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.db.base import utcnow
from unibox.db.models.notification import NotificationRow
from unibox.db.models.task import TaskRow
from unibox.errors.exceptions import ConflictError, NotFoundError
from unibox.integrations.normalized import NotificationDraft
from unibox.models.enums import NotificationStatus, UpsertStatus
from unibox.models.notification import NotificationFilter, NotificationPatch
from unibox.models.patch import apply_changes
from unibox.repositories.base import BaseRepository, UpdateResult, UpsertResult, resolve_source_status
from unibox.services.id_generator import generate_id

_STALE_CANDIDATES = (NotificationStatus.UNREAD, NotificationStatus.READ)


class NotificationRepository(BaseRepository[NotificationRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, NotificationRow)

    async def get(self, notification_id: str, user_id: str | None = None) -> NotificationRow | None:
        row = await self.get_by_id("notification_id", notification_id)
        if row is not None and user_id is not None and row.user_id != user_id:
            return None
        return row

    async def get_by_item(
        self, user_id: str, third_party_item_id: str, for_update: bool = False
    ) -> NotificationRow | None:
        stmt = select(NotificationRow).where(
            NotificationRow.user_id == user_id,
            NotificationRow.third_party_item_id == third_party_item_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_from_third_party(
        self,
        user_id: str,
        source_kind: str,
        third_party_item_id: str,
        draft: NotificationDraft,
        reopen: bool = False,
    ) -> UpsertResult[NotificationRow]:
        """Create or refresh the notification derived from one third-party item.

        Only fields the draft carries are written. The status follows the
        source when the source changed it; otherwise a local edit is kept,
        unless ``reopen`` says the item saw new activity since. Snooze is
        never touched here.
        """
        existing = await self.get_by_item(user_id, third_party_item_id, for_update=True)
        changes = draft.changes()
        incoming = changes.pop("status")

        if existing is None:
            row = NotificationRow(
                notification_id=generate_id("ntf_"),
                user_id=user_id,
                source_kind=source_kind,
                third_party_item_id=third_party_item_id,
                status=incoming,
                source_status=incoming,
                **changes,
            )
            self.session.add(row)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    f"Concurrent insert of notification for item '{third_party_item_id}'",
                    details={"user_id": user_id},
                ) from exc
            return UpsertResult(UpsertStatus.CREATED, row)

        changes["status"] = resolve_source_status(
            existing.status, existing.source_status, incoming, reopen=reopen
        )
        changes["source_status"] = incoming
        written = apply_changes(existing, changes)
        if not written:
            return UpsertResult(UpsertStatus.UNTOUCHED, existing)
        await self.session.flush()
        return UpsertResult(UpsertStatus.UPDATED, existing)

    async def apply_patch(
        self, notification_id: str, patch: NotificationPatch, user_id: str | None = None
    ) -> UpdateResult[NotificationRow]:
        """Apply an inbox-side edit. Absent fields are left as they are.

        Raises:
            NotFoundError: the notification (or a linked task) does not exist.
        """
        row = await self.get(notification_id, user_id)
        if row is None:
            raise NotFoundError("Notification", notification_id)

        changes = patch.changes()
        task_id = changes.get("task_id")
        if task_id is not None:
            task = await self.session.get(TaskRow, task_id)
            if task is None or task.user_id != row.user_id:
                raise NotFoundError("Task", task_id)
        if changes.get("status") == NotificationStatus.READ and row.status != NotificationStatus.READ:
            changes["last_read_at"] = utcnow()

        written = apply_changes(row, changes)
        if written:
            await self.session.flush()
        return UpdateResult(bool(written), row)

    async def link_task(self, notification: NotificationRow, task_id: str) -> bool:
        if notification.task_id == task_id:
            return False
        notification.task_id = task_id
        await self.session.flush()
        return True

    async def mark_stale(
        self, user_id: str, source_kind: str, active_item_ids: Collection[str]
    ) -> int:
        """Delete live notifications whose third-party item was not reported.

        Notifications already deleted or unsubscribed, and those whose item
        reference was severed, are left alone.
        """
        stmt = select(NotificationRow).where(
            NotificationRow.user_id == user_id,
            NotificationRow.source_kind == source_kind,
            NotificationRow.third_party_item_id.is_not(None),
            NotificationRow.status.in_(_STALE_CANDIDATES),
        )
        result = await self.session.execute(stmt)
        count = 0
        for row in result.scalars().all():
            if row.third_party_item_id in active_item_ids:
                continue
            row.status = NotificationStatus.DELETED
            row.source_status = NotificationStatus.DELETED
            count += 1
        if count:
            await self.session.flush()
        return count

    async def list_for_user(
        self, user_id: str, filters: NotificationFilter, now: datetime | None = None
    ) -> list[NotificationRow]:
        now = now or utcnow()
        stmt = select(NotificationRow).where(
            NotificationRow.user_id == user_id,
            NotificationRow.status.in_(filters.status),
        )
        if filters.source_kind is not None:
            stmt = stmt.where(NotificationRow.source_kind == filters.source_kind)
        if not filters.include_snoozed:
            stmt = stmt.where(
                or_(NotificationRow.snoozed_until.is_(None), NotificationRow.snoozed_until <= now)
            )
        if filters.with_task is True:
            stmt = stmt.where(NotificationRow.task_id.is_not(None))
        elif filters.with_task is False:
            stmt = stmt.where(NotificationRow.task_id.is_(None))
        stmt = (
            stmt.order_by(NotificationRow.updated_at.desc(), NotificationRow.notification_id)
            .limit(filters.limit)
            .offset(filters.offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
