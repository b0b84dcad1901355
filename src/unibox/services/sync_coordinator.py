"""Sync coordinator: one job, fetched outside and applied inside a single transaction."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unibox.config import settings
from unibox.db.base import utcnow
from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.db.models.job import JobRow
from unibox.errors.exceptions import (
    AuthExpiredError,
    ConflictError,
    MalformedPayloadError,
    NotFoundError,
    TransientNetworkError,
    TransientStorageError,
    ValidationError,
)
from unibox.integrations.connectors import ConnectorRegistry
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import NormalizationContext, RawItem
from unibox.integrations.pipeline import normalize
from unibox.models.enums import IntegrationConnectionStatus, JobType, NotificationStatus, UpsertStatus
from unibox.models.job import SyncReport
from unibox.repositories.integration_connection_repo import IntegrationConnectionRepository
from unibox.repositories.notification_repo import NotificationRepository
from unibox.repositories.task_repo import TaskRepository
from unibox.repositories.third_party_repo import ThirdPartyItemRepository
from unibox.services.credentials import CredentialProvider

logger = logging.getLogger(__name__)

_SKIP_STATUSES = {IntegrationConnectionStatus.FAILING, IntegrationConnectionStatus.DISABLED}
_ITEM_COUNTERS = ("created", "updated", "untouched", "notifications_written", "tasks_written")


@dataclass
class _RunState:
    """Bookkeeping for one transactional pass over the fetched items."""

    seen_external_ids: set[str] = field(default_factory=set)
    active_item_ids: set[str] = field(default_factory=set)
    unreadable: int = 0


class SyncCoordinator:
    """Runs a sync job end to end for one connection.

    The fetch happens with no transaction open. All writes then go through
    one session: each raw item is applied inside its own SAVEPOINT so a bad
    item rolls back alone, and the batch commits once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        credential_provider: CredentialProvider,
        connectors: ConnectorRegistry | None = None,
        fetch_timeout: float | None = None,
        calendar_window_hours: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.credential_provider = credential_provider
        self.connectors = connectors or ConnectorRegistry()
        self._fetch_timeout = fetch_timeout or settings.fetch_timeout_seconds
        self._calendar_window_hours = calendar_window_hours or settings.calendar_window_hours
        self._clock = clock

    async def run(self, job: JobRow) -> SyncReport:
        report = SyncReport()
        pushing = job.job_type == JobType.SOURCE_ACTION
        connection = await self._start(job, mark_started=not pushing)
        if connection is None:
            report.skipped_reason = "connection disabled or failing"
            logger.info("Skipping job %s: connection %s is not syncable", job.job_id, job.connection_id)
            return report

        if pushing:
            return await self._push_source_action(job, connection, report)

        try:
            connector = self.connectors.get(connection.source_kind)
            full_sync = job.job_type == JobType.SYNC_SOURCE
            if full_sync:
                credentials = await self.credential_provider.get_credentials(connection)
                raw_items = await self._fetch(connector, connection, credentials)
            else:
                raw_items = [connector.decode_webhook((job.payload or {}).get("event") or {})]
            report.fetched = len(raw_items)

            await self._apply(connection, connector, raw_items, full_sync, report)
        except Exception as exc:
            await self._record_failure(connection.connection_id, exc)
            raise

        await self._record_success(connection.connection_id)
        logger.info(
            "Sync %s for %s/%s: fetched=%d created=%d updated=%d untouched=%d skipped=%d stale=%d",
            job.job_id, connection.user_id, connection.source_kind,
            report.fetched, report.created, report.updated, report.untouched, report.skipped, report.stale,
        )
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _start(self, job: JobRow, mark_started: bool = True) -> IntegrationConnectionRow | None:
        async with self._session_factory() as session:
            repo = IntegrationConnectionRepository(session)
            connection = await repo.get(job.connection_id) if job.connection_id else None
            if connection is None:
                raise NotFoundError("Integration connection", job.connection_id or "")
            if not connection.enabled or connection.status in _SKIP_STATUSES:
                return None
            if mark_started:
                await repo.mark_sync_started(connection)
                await session.commit()
            return connection

    async def _push_source_action(
        self, job: JobRow, connection: IntegrationConnectionRow, report: SyncReport
    ) -> SyncReport:
        """Carry an inbox-side delete or unsubscribe over to the provider.

        The notification itself was already updated locally; this only talks
        to the provider, so it writes nothing but the connection's failing
        state on an expired credential.
        """
        payload = job.payload or {}
        action = payload.get("action")
        item_id = payload.get("third_party_item_id") or ""
        async with self._session_factory() as session:
            item = await ThirdPartyItemRepository(session).get(item_id)
        if item is None:
            report.skipped_reason = "third-party item no longer stored"
            logger.info("Skipping %s for job %s: item %s is gone", action, job.job_id, item_id)
            return report

        connector = self.connectors.get(connection.source_kind)
        try:
            credentials = await self.credential_provider.get_credentials(connection)
            if action == NotificationStatus.DELETED:
                await connector.delete_notification_from_source(connection, credentials, item.external_id, item.data)
            elif action == NotificationStatus.UNSUBSCRIBED:
                await connector.unsubscribe_notification_from_source(
                    connection, credentials, item.external_id, item.data
                )
            else:
                raise ValidationError(f"Unknown source action: {action}")
        except AuthExpiredError as exc:
            await self._record_failure(connection.connection_id, exc)
            raise

        report.source_action = action
        logger.info(
            "Pushed %s for %s item %s of %s", action, connection.source_kind, item.external_id, connection.user_id
        )
        return report

    async def _fetch(self, connector: Connector, connection, credentials) -> list[RawItem]:
        async def collect() -> list[RawItem]:
            return [raw async for raw in connector.fetch_items(connection, credentials)]

        try:
            return await asyncio.wait_for(collect(), timeout=self._fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise TransientNetworkError(
                f"Fetching {connection.source_kind} exceeded {self._fetch_timeout:.0f}s"
            ) from exc

    async def _apply(
        self,
        connection: IntegrationConnectionRow,
        connector: Connector,
        raw_items: list[RawItem],
        full_sync: bool,
        report: SyncReport,
    ) -> None:
        context = NormalizationContext(
            now=self._clock(),
            connection_config=connection.config or {},
            calendar_window_hours=self._calendar_window_hours,
        )
        state = _RunState()

        try:
            async with self._session_factory() as session:
                for raw in raw_items:
                    await self._apply_with_retry(session, connection, connector, raw, context, report, state)

                if full_sync:
                    if state.unreadable:
                        logger.warning(
                            "Not marking stale %s items for %s: %d unreadable item(s) in this batch",
                            connection.source_kind, connection.user_id, state.unreadable,
                        )
                    else:
                        await self._mark_stale(session, connection, state, report)

                await session.commit()
        except OperationalError as exc:
            raise TransientStorageError("Storage unavailable during sync", details={"error": str(exc)}) from exc

    async def _apply_with_retry(self, session, connection, connector, raw, context, report, state) -> None:
        for attempt in (1, 2):
            try:
                # Counters only land in the report once the savepoint is released
                delta = SyncReport()
                async with session.begin_nested():
                    await self._apply_item(session, connection, connector, raw, context, delta, state)
                for counter in _ITEM_COUNTERS:
                    setattr(report, counter, getattr(report, counter) + getattr(delta, counter))
                return
            except MalformedPayloadError as exc:
                state.unreadable += 1
                report.skipped += 1
                report.errors.append(exc.message)
                logger.warning("Skipping malformed %s item: %s", connection.source_kind, exc.message)
                return
            except ConflictError as exc:
                if attempt == 2:
                    report.conflicts += 1
                    report.skipped += 1
                    report.errors.append(exc.message)
                    logger.warning("Skipping %s item after repeated conflict: %s", connection.source_kind, exc.message)

    async def _apply_item(self, session, connection, connector, raw, context, report, state) -> None:
        items = ThirdPartyItemRepository(session)
        notifications = NotificationRepository(session)
        tasks = TaskRepository(session)

        mapped = connector.map_item(raw, connection)
        state.seen_external_ids.add(mapped.external_id)

        stored = await items.upsert(mapped)
        state.active_item_ids.add(stored.row.third_party_item_id)
        if not stored.changed:
            report.untouched += 1
            return
        if stored.status == UpsertStatus.CREATED:
            report.created += 1
        else:
            report.updated += 1

        item_id = stored.row.third_party_item_id
        result = normalize(stored.row, context)

        task_row = None
        if result.task is not None:
            task_result = await tasks.upsert_from_third_party(
                connection.user_id, connection.source_kind, item_id, result.task
            )
            task_row = task_result.row
            if task_result.changed:
                report.tasks_written += 1

        if result.notification is not None:
            notification_result = await notifications.upsert_from_third_party(
                connection.user_id,
                connection.source_kind,
                item_id,
                result.notification,
                reopen=stored.source_advanced,
            )
            if notification_result.changed:
                report.notifications_written += 1
            if task_row is not None:
                await notifications.link_task(notification_result.row, task_row.task_id)

        await items.mark_processed(item_id)

    async def _mark_stale(self, session, connection, state: _RunState, report: SyncReport) -> None:
        items = ThirdPartyItemRepository(session)
        stale_items = await items.find_stale(connection.user_id, connection.source_kind, state.seen_external_ids)
        for row in stale_items:
            await items.mark_deleted(row.third_party_item_id)
        report.stale = len(stale_items)

        deleted = await NotificationRepository(session).mark_stale(
            connection.user_id, connection.source_kind, state.active_item_ids
        )
        done = await TaskRepository(session).mark_stale(
            connection.user_id, connection.source_kind, state.active_item_ids
        )
        report.notifications_written += deleted
        report.tasks_written += done

    # ------------------------------------------------------------------
    # Connection bookkeeping (own short transactions)
    # ------------------------------------------------------------------

    async def _record_success(self, connection_id: str) -> None:
        async with self._session_factory() as session:
            repo = IntegrationConnectionRepository(session)
            connection = await repo.get(connection_id)
            if connection is not None:
                await repo.mark_sync_succeeded(connection)
                await session.commit()

    async def _record_failure(self, connection_id: str, exc: BaseException) -> None:
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        try:
            async with self._session_factory() as session:
                repo = IntegrationConnectionRepository(session)
                connection = await repo.get(connection_id)
                if connection is None:
                    return
                if isinstance(exc, AuthExpiredError):
                    await repo.mark_failing(connection)
                else:
                    await repo.mark_sync_failed(connection, message)
                await session.commit()
        except OperationalError:
            logger.exception("Could not record sync failure for connection %s", connection_id)
