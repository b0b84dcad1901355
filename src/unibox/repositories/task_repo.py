"""Task repository."""

from collections.abc import Collection
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.db.base import utcnow
from unibox.db.models.task import TaskRow
from unibox.errors.exceptions import ConflictError, NotFoundError
from unibox.integrations.normalized import TaskDraft
from unibox.models.enums import TaskStatus, UpsertStatus
from unibox.models.patch import apply_changes
from unibox.models.task import TaskFilter, TaskPatch
from unibox.repositories.base import BaseRepository, UpdateResult, UpsertResult, resolve_source_status
from unibox.services.id_generator import generate_id


def _column_values(changes: dict[str, Any]) -> dict[str, Any]:
    """Map draft/patch values onto column values (``body`` is never NULL)."""
    values = dict(changes)
    if "body" in values and values["body"] is None:
        values["body"] = ""
    if values.get("priority") is not None:
        values["priority"] = int(values["priority"])
    return values


def _completion_changes(row: TaskRow | None, new_status: str) -> dict[str, Any]:
    """``completed_at`` is set on transition to done and cleared on reopen."""
    old_status = row.status if row is not None else None
    if new_status == TaskStatus.DONE and old_status != TaskStatus.DONE:
        return {"completed_at": utcnow()}
    if new_status == TaskStatus.ACTIVE and old_status is not None and old_status != TaskStatus.ACTIVE:
        return {"completed_at": None}
    return {}


class TaskRepository(BaseRepository[TaskRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, TaskRow)

    async def get(self, task_id: str, user_id: str | None = None) -> TaskRow | None:
        row = await self.get_by_id("task_id", task_id)
        if row is not None and user_id is not None and row.user_id != user_id:
            return None
        return row

    async def get_by_item(
        self, user_id: str, third_party_item_id: str, for_update: bool = False
    ) -> TaskRow | None:
        stmt = select(TaskRow).where(
            TaskRow.user_id == user_id,
            TaskRow.third_party_item_id == third_party_item_id,
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
        draft: TaskDraft,
    ) -> UpsertResult[TaskRow]:
        """Create or refresh the task derived from one third-party item.

        Same sticky rule as notifications: a local status edit survives
        until the source reports a different status.
        """
        existing = await self.get_by_item(user_id, third_party_item_id, for_update=True)
        changes = _column_values(draft.changes())
        incoming = changes.pop("status")

        if existing is None:
            row = TaskRow(
                task_id=generate_id("tsk_"),
                user_id=user_id,
                source_kind=source_kind,
                third_party_item_id=third_party_item_id,
                status=incoming,
                source_status=incoming,
                **_completion_changes(None, incoming),
                **changes,
            )
            self.session.add(row)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    f"Concurrent insert of task for item '{third_party_item_id}'",
                    details={"user_id": user_id},
                ) from exc
            return UpsertResult(UpsertStatus.CREATED, row)

        new_status = resolve_source_status(existing.status, existing.source_status, incoming)
        changes.update(_completion_changes(existing, new_status))
        changes["status"] = new_status
        changes["source_status"] = incoming
        written = apply_changes(existing, changes)
        if not written:
            return UpsertResult(UpsertStatus.UNTOUCHED, existing)
        await self.session.flush()
        return UpsertResult(UpsertStatus.UPDATED, existing)

    async def apply_patch(
        self, task_id: str, patch: TaskPatch, user_id: str | None = None
    ) -> UpdateResult[TaskRow]:
        """Apply an inbox-side edit; status only moves when the patch carries one."""
        row = await self.get(task_id, user_id)
        if row is None:
            raise NotFoundError("Task", task_id)

        changes = _column_values(patch.changes())
        if "status" in changes:
            changes.update(_completion_changes(row, changes["status"]))

        written = apply_changes(row, changes)
        if written:
            await self.session.flush()
        return UpdateResult(bool(written), row)

    async def mark_stale(
        self, user_id: str, source_kind: str, active_item_ids: Collection[str]
    ) -> int:
        """Complete active tasks whose third-party item was not reported."""
        stmt = select(TaskRow).where(
            TaskRow.user_id == user_id,
            TaskRow.source_kind == source_kind,
            TaskRow.third_party_item_id.is_not(None),
            TaskRow.status == TaskStatus.ACTIVE,
        )
        result = await self.session.execute(stmt)
        count = 0
        for row in result.scalars().all():
            if row.third_party_item_id in active_item_ids:
                continue
            row.status = TaskStatus.DONE
            row.source_status = TaskStatus.DONE
            row.completed_at = utcnow()
            count += 1
        if count:
            await self.session.flush()
        return count

    async def list_for_user(self, user_id: str, filters: TaskFilter) -> list[TaskRow]:
        stmt = select(TaskRow).where(
            TaskRow.user_id == user_id,
            TaskRow.status.in_(filters.status),
        )
        if filters.source_kind is not None:
            stmt = stmt.where(TaskRow.source_kind == filters.source_kind)
        if filters.project is not None:
            stmt = stmt.where(TaskRow.project == filters.project)
        stmt = (
            stmt.order_by(TaskRow.priority, TaskRow.due_at, TaskRow.created_at)
            .limit(filters.limit)
            .offset(filters.offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
