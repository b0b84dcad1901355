"""Inbox service: the engine entry points used by the API layer."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from unibox.errors.exceptions import AuthExpiredError, ConflictError, NotFoundError, ValidationError
from unibox.models.enums import (
    TERMINAL_NOTIFICATION_STATUSES,
    IntegrationConnectionStatus,
    NotificationStatus,
    SourceKind,
)
from unibox.models.integration_connection import (
    IntegrationConnectionCreate,
    IntegrationConnectionModel,
    IntegrationConnectionPatch,
)
from unibox.models.job import JobHandle, JobStatusModel
from unibox.models.notification import NotificationFilter, NotificationModel, NotificationPatch
from unibox.models.patch import apply_changes
from unibox.models.task import TaskFilter, TaskModel, TaskPatch
from unibox.repositories.integration_connection_repo import IntegrationConnectionRepository
from unibox.repositories.job_repo import JobRepository
from unibox.repositories.notification_repo import NotificationRepository
from unibox.repositories.task_repo import TaskRepository
from unibox.services.id_generator import generate_id
from unibox.workers.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


class InboxService:
    """Per-request facade over the repositories and the orchestrator.

    Every method is scoped to ``user_id``: rows owned by another user are
    reported as not found.
    """

    def __init__(self, session: AsyncSession, orchestrator: JobOrchestrator):
        self.session = session
        self.orchestrator = orchestrator

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_now(
        self, user_id: str, source_kind: SourceKind | None = None, trace_id: str = "manual"
    ) -> list[JobHandle]:
        """Queue an immediate sync of every syncable connection (or just one kind)."""
        connections = await IntegrationConnectionRepository(self.session).list_syncable(user_id)
        if source_kind is not None:
            connections = [c for c in connections if c.source_kind == source_kind]
            if not connections:
                raise NotFoundError("Integration connection", source_kind)
        # The orchestrator writes jobs in its own session
        await self.session.commit()

        handles = []
        for connection in connections:
            handle = await self.orchestrator.enqueue_sync(connection, trace_id=trace_id)
            if handle is not None:
                handles.append(handle)
        return handles

    async def get_job(self, job_id: str, user_id: str | None = None) -> JobStatusModel:
        row = await JobRepository(self.session).get(job_id)
        if row is None or (user_id is not None and row.user_id != user_id):
            raise NotFoundError("Job", job_id)
        return JobStatusModel.model_validate(row)

    # ------------------------------------------------------------------
    # Notifications and tasks
    # ------------------------------------------------------------------

    async def list_notifications(self, user_id: str, filters: NotificationFilter) -> list[NotificationModel]:
        rows = await NotificationRepository(self.session).list_for_user(user_id, filters)
        return [NotificationModel.model_validate(r) for r in rows]

    async def list_tasks(self, user_id: str, filters: TaskFilter) -> list[TaskModel]:
        rows = await TaskRepository(self.session).list_for_user(user_id, filters)
        return [TaskModel.model_validate(r) for r in rows]

    async def patch_notification(
        self, user_id: str, notification_id: str, patch: NotificationPatch, trace_id: str = "manual"
    ) -> NotificationModel:
        """Apply an inbox-side edit.

        Moving a notification to deleted or unsubscribed also queues a job
        that repeats the action at the provider, when its connector can.
        """
        repo = NotificationRepository(self.session)
        current = await repo.get(notification_id, user_id)
        previous_status = current.status if current is not None else None
        result = await repo.apply_patch(notification_id, patch, user_id=user_id)
        row = result.row

        connection = None
        if (
            row.status != previous_status
            and row.status in TERMINAL_NOTIFICATION_STATUSES
            and row.third_party_item_id is not None
        ):
            connection = await IntegrationConnectionRepository(self.session).get_for_user(user_id, row.source_kind)
        await self.session.commit()

        if connection is not None:
            await self._push_to_source(connection, row.third_party_item_id, NotificationStatus(row.status), trace_id)
        return NotificationModel.model_validate(row)

    async def _push_to_source(
        self, connection, third_party_item_id: str, action: NotificationStatus, trace_id: str
    ) -> JobHandle | None:
        connector = self.orchestrator.coordinator.connectors.get(connection.source_kind)
        if not connector.supports_source_action(action):
            logger.debug("%s cannot apply %s at the source", connection.source_kind, action)
            return None
        return await self.orchestrator.enqueue_source_action(
            connection, third_party_item_id, action, trace_id=trace_id
        )

    async def patch_task(self, user_id: str, task_id: str, patch: TaskPatch) -> TaskModel:
        result = await TaskRepository(self.session).apply_patch(task_id, patch, user_id=user_id)
        await self.session.commit()
        return TaskModel.model_validate(result.row)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def list_connections(self, user_id: str) -> list[IntegrationConnectionModel]:
        rows = await IntegrationConnectionRepository(self.session).list_by_user(user_id)
        return [IntegrationConnectionModel.model_validate(r) for r in rows]

    async def create_connection(self, user_id: str, data: IntegrationConnectionCreate) -> IntegrationConnectionModel:
        repo = IntegrationConnectionRepository(self.session)
        if await repo.get_for_user(user_id, data.source_kind) is not None:
            raise ConflictError(f"A {data.source_kind} connection already exists for this user")
        row = await repo.create(
            connection_id=generate_id("conn_"),
            user_id=user_id,
            source_kind=data.source_kind,
            status=IntegrationConnectionStatus.CREATED,
            enabled=data.enabled,
            config=data.config,
            credential_ref=data.credential_ref,
        )
        await self.session.commit()
        logger.info("Created %s connection %s for %s", data.source_kind, row.connection_id, user_id)
        return IntegrationConnectionModel.model_validate(row)

    async def update_connection(
        self, user_id: str, connection_id: str, patch: IntegrationConnectionPatch
    ) -> IntegrationConnectionModel:
        row = await self._require_connection(user_id, connection_id)
        changes = patch.changes()
        if "config" in changes and changes["config"] is None:
            changes["config"] = {}

        written = apply_changes(row, changes)
        # A new credential is the reconnect that lifts the failing state
        if "credential_ref" in written and row.status == IntegrationConnectionStatus.FAILING:
            row.status = IntegrationConnectionStatus.CREATED
            row.failure_message = None
        await self.session.commit()
        return IntegrationConnectionModel.model_validate(row)

    async def test_connection(self, user_id: str, connection_id: str) -> IntegrationConnectionModel:
        row = await self._require_connection(user_id, connection_id)
        coordinator = self.orchestrator.coordinator
        repo = IntegrationConnectionRepository(self.session)

        try:
            connector = coordinator.connectors.get(row.source_kind)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        # No transaction stays open across the provider round trip
        await self.session.commit()

        credentials = None
        try:
            credentials = await coordinator.credential_provider.get_credentials(row)
        except AuthExpiredError as exc:
            logger.warning("Credential lookup failed for %s: %s", connection_id, exc)

        if credentials is not None and await connector.test_connection(row, credentials):
            row.status = IntegrationConnectionStatus.VALIDATED
            row.failure_message = None
            await self.session.flush()
        else:
            await repo.mark_failing(row)
        await self.session.commit()
        return IntegrationConnectionModel.model_validate(row)

    async def _require_connection(self, user_id: str, connection_id: str):
        row = await IntegrationConnectionRepository(self.session).get(connection_id)
        if row is None or row.user_id != user_id:
            raise NotFoundError("Integration connection", connection_id)
        return row
