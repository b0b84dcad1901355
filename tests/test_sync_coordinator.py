"""Tests for the sync coordinator: fetch, store, normalize, upsert, stale marking."""

import asyncio

import pytest
from sqlalchemy import func, select

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.db.models.job import JobRow
from unibox.db.models.notification import NotificationRow
from unibox.db.models.task import TaskRow
from unibox.db.models.third_party_item import ThirdPartyItemRow
from unibox.errors.exceptions import AuthExpiredError, NotFoundError, TransientNetworkError
from unibox.integrations.connectors import ConnectorRegistry
from unibox.integrations.connectors.github import GithubNotificationConnector
from unibox.models.enums import (
    IntegrationConnectionStatus,
    JobStatus,
    JobType,
    NotificationStatus,
    SourceKind,
    TaskStatus,
    ThirdPartyItemStatus,
)
from unibox.models.notification import NotificationPatch
from unibox.repositories.notification_repo import NotificationRepository
from unibox.services.sync_coordinator import SyncCoordinator


def _job(connection: IntegrationConnectionRow, job_type: JobType = JobType.SYNC_SOURCE, event: dict | None = None):
    return JobRow(
        job_id="job_test",
        job_type=job_type,
        user_id=connection.user_id,
        connection_id=connection.connection_id,
        source_kind=connection.source_kind,
        serial_key=f"{connection.user_id}:{connection.source_kind}",
        status=JobStatus.RUNNING,
        attempts=1,
        max_attempts=3,
        payload={"event": event} if event is not None else {},
        trace_id="trace_test",
    )


async def _notifications(session_factory) -> list[NotificationRow]:
    async with session_factory() as session:
        result = await session.execute(select(NotificationRow).order_by(NotificationRow.title))
        return list(result.scalars().all())


async def _connection(session_factory, connection_id) -> IntegrationConnectionRow:
    async with session_factory() as session:
        return await session.get(IntegrationConnectionRow, connection_id)


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_issue_tracker_three_syncs(coordinator, session_factory, make_connection, github_api, github_notification):
    """Unread, then read at the source, then an identical payload that writes nothing."""
    connection = await make_connection()

    github_api["notifications"] = [github_notification("42", unread=True, updated_at="2026-03-01T10:00:00Z")]
    first = await coordinator.run(_job(connection))
    assert first.created == 1
    assert first.notifications_written == 1
    [notification] = await _notifications(session_factory)
    assert notification.status == NotificationStatus.UNREAD
    async with session_factory() as session:
        item = await session.get(ThirdPartyItemRow, notification.third_party_item_id)
    assert item.external_id == "42"
    assert item.status == ThirdPartyItemStatus.PROCESSED

    github_api["notifications"] = [github_notification("42", unread=False, updated_at="2026-03-01T12:00:00Z")]
    second = await coordinator.run(_job(connection))
    assert second.updated == 1
    [updated] = await _notifications(session_factory)
    assert updated.notification_id == notification.notification_id
    assert updated.status == NotificationStatus.READ

    third = await coordinator.run(_job(connection))
    assert third.untouched == 1
    assert third.notifications_written == 0
    [unchanged] = await _notifications(session_factory)
    assert unchanged.updated_at == updated.updated_at


@pytest.mark.asyncio
async def test_resync_is_idempotent(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification(str(i)) for i in range(3)]

    await coordinator.run(_job(connection))
    before = await _notifications(session_factory)
    again = await coordinator.run(_job(connection))
    after = await _notifications(session_factory)

    assert again.untouched == 3
    assert again.created == again.updated == 0
    assert [(n.notification_id, n.status, n.updated_at) for n in after] == [
        (n.notification_id, n.status, n.updated_at) for n in before
    ]


@pytest.mark.asyncio
async def test_malformed_item_skipped_alone(coordinator, session_factory, make_connection, github_api, github_notification):
    """Ten items, the fifth unreadable: nine land, one is skipped."""
    connection = await make_connection()
    batch = [github_notification(str(i), title=f"Item {i:02d}") for i in range(1, 11)]
    batch[4] = {"id": "5", "unread": "maybe"}
    github_api["notifications"] = batch

    report = await coordinator.run(_job(connection))

    assert report.fetched == 10
    assert report.created == 9
    assert report.skipped == 1
    assert len(report.errors) == 1
    assert len(await _notifications(session_factory)) == 9


@pytest.mark.asyncio
async def test_unreadable_batch_does_not_mark_stale(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification("old", title="Old")]
    await coordinator.run(_job(connection))

    github_api["notifications"] = [github_notification("new", title="New"), {"id": "broken"}]
    report = await coordinator.run(_job(connection))

    assert report.stale == 0
    statuses = {n.title: n.status for n in await _notifications(session_factory)}
    assert statuses == {"New": NotificationStatus.UNREAD, "Old": NotificationStatus.UNREAD}


@pytest.mark.asyncio
async def test_missing_items_marked_stale(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification("a", title="A"), github_notification("b", title="B")]
    await coordinator.run(_job(connection))

    github_api["notifications"] = [github_notification("a", title="A")]
    report = await coordinator.run(_job(connection))

    assert report.stale == 1
    statuses = {n.title: n.status for n in await _notifications(session_factory)}
    assert statuses == {"A": NotificationStatus.UNREAD, "B": NotificationStatus.DELETED}
    async with session_factory() as session:
        deleted = await session.execute(
            select(func.count()).select_from(ThirdPartyItemRow).where(
                ThirdPartyItemRow.status == ThirdPartyItemStatus.DELETED
            )
        )
    assert deleted.scalar_one() == 1


@pytest.mark.asyncio
async def test_discussion_creates_linked_task(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection(config={"create_tasks_from_discussions": True})
    github_api["notifications"] = [github_notification("7", subject_type="Discussion")]

    report = await coordinator.run(_job(connection))

    assert report.tasks_written == 1
    [notification] = await _notifications(session_factory)
    async with session_factory() as session:
        task = await session.get(TaskRow, notification.task_id)
    assert task.status == TaskStatus.ACTIVE
    assert task.third_party_item_id == notification.third_party_item_id


# ---------------------------------------------------------------------------
# Webhook jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_job_applies_single_item(coordinator, session_factory, make_connection):
    connection = await make_connection(source_kind=SourceKind.SLACK_STAR)
    event = {
        "type": "event_callback",
        "event": {
            "type": "star_added",
            "user": "U1",
            "item": {"type": "message", "channel": "C1", "message": {"ts": "1700000000.0001", "text": "Ship it"}},
            "event_ts": "1700000001.0000",
        },
    }

    report = await coordinator.run(_job(connection, JobType.WEBHOOK_EVENT, event))

    assert report.fetched == 1
    assert report.created == 1
    [notification] = await _notifications(session_factory)
    assert notification.title == "Ship it"
    assert notification.source_kind == SourceKind.SLACK_STAR


# ---------------------------------------------------------------------------
# Connection bookkeeping
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_success_validates_new_connection(coordinator, session_factory, make_connection):
    connection = await make_connection(status=IntegrationConnectionStatus.CREATED)
    await coordinator.run(_job(connection))

    stored = await _connection(session_factory, connection.connection_id)
    assert stored.status == IntegrationConnectionStatus.VALIDATED
    assert stored.last_sync_started_at is not None
    assert stored.last_sync_completed_at is not None


@pytest.mark.asyncio
async def test_disabled_connection_is_skipped(coordinator, make_connection, github_api):
    connection = await make_connection(enabled=False)
    report = await coordinator.run(_job(connection))
    assert report.skipped_reason
    assert github_api["calls"] == 0


@pytest.mark.asyncio
async def test_auth_expired_marks_connection_failing(coordinator, session_factory, make_connection, github_api):
    connection = await make_connection()
    github_api["status"] = 401

    with pytest.raises(AuthExpiredError):
        await coordinator.run(_job(connection))

    stored = await _connection(session_factory, connection.connection_id)
    assert stored.status == IntegrationConnectionStatus.FAILING
    assert stored.failure_message == "reconnect required"


@pytest.mark.asyncio
async def test_transient_failure_recorded_without_failing(coordinator, session_factory, make_connection, github_api):
    connection = await make_connection()
    github_api["status"] = 503

    with pytest.raises(TransientNetworkError):
        await coordinator.run(_job(connection))

    stored = await _connection(session_factory, connection.connection_id)
    assert stored.status == IntegrationConnectionStatus.VALIDATED
    assert "503" in stored.last_sync_failure_message


@pytest.mark.asyncio
async def test_unknown_connection(coordinator, make_connection):
    connection = await make_connection()
    job = _job(connection)
    job.connection_id = "conn_missing"
    with pytest.raises(NotFoundError):
        await coordinator.run(job)


class _HangingConnector(GithubNotificationConnector):
    async def fetch_items(self, connection, credentials):
        await asyncio.sleep(10)
        yield


@pytest.mark.asyncio
async def test_fetch_timeout_is_transient(session_factory, credential_provider, make_connection):
    coordinator = SyncCoordinator(
        session_factory,
        credential_provider,
        connectors=ConnectorRegistry(overrides={SourceKind.GITHUB_NOTIFICATION: _HangingConnector()}),
        fetch_timeout=0.05,
    )
    connection = await make_connection()

    with pytest.raises(TransientNetworkError):
        await coordinator.run(_job(connection))

    stored = await _connection(session_factory, connection.connection_id)
    assert stored.status == IntegrationConnectionStatus.VALIDATED
    assert "exceeded" in stored.last_sync_failure_message


# ---------------------------------------------------------------------------
# Source actions
# ---------------------------------------------------------------------------


def _source_action_job(connection: IntegrationConnectionRow, item_id: str, action: NotificationStatus) -> JobRow:
    job = _job(connection, JobType.SOURCE_ACTION)
    job.payload = {"action": action.value, "third_party_item_id": item_id}
    return job


async def _synced_item_id(coordinator, session_factory, connection) -> str:
    await coordinator.run(_job(connection))
    [notification] = await _notifications(session_factory)
    return notification.third_party_item_id


@pytest.mark.asyncio
async def test_source_action_delete_reaches_provider(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification("42")]
    item_id = await _synced_item_id(coordinator, session_factory, connection)
    before = await _connection(session_factory, connection.connection_id)

    report = await coordinator.run(_source_action_job(connection, item_id, NotificationStatus.DELETED))

    assert report.source_action == NotificationStatus.DELETED
    request = github_api["requests"][-1]
    assert request.method == "PATCH"
    assert request.url.path == "/notifications/threads/42"
    after = await _connection(session_factory, connection.connection_id)
    assert after.last_sync_started_at == before.last_sync_started_at


@pytest.mark.asyncio
async def test_source_action_unsubscribe_reaches_provider(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification("42")]
    item_id = await _synced_item_id(coordinator, session_factory, connection)

    report = await coordinator.run(_source_action_job(connection, item_id, NotificationStatus.UNSUBSCRIBED))

    assert report.source_action == NotificationStatus.UNSUBSCRIBED
    request = github_api["requests"][-1]
    assert request.method == "PUT"
    assert request.url.path == "/notifications/threads/42/subscription"


@pytest.mark.asyncio
async def test_source_action_for_missing_item_is_skipped(coordinator, make_connection, github_api):
    connection = await make_connection()
    report = await coordinator.run(_source_action_job(connection, "tpi_gone", NotificationStatus.DELETED))

    assert report.skipped_reason == "third-party item no longer stored"
    assert report.source_action is None
    assert github_api["calls"] == 0


@pytest.mark.asyncio
async def test_source_action_outcomes(coordinator, session_factory, make_connection, github_api, github_notification):
    """A thread already gone upstream is fine; a rejected credential fails the connection."""
    connection = await make_connection()
    github_api["notifications"] = [github_notification("42")]
    item_id = await _synced_item_id(coordinator, session_factory, connection)

    github_api["thread_status"] = 404
    report = await coordinator.run(_source_action_job(connection, item_id, NotificationStatus.DELETED))
    assert report.source_action == NotificationStatus.DELETED

    github_api["thread_status"] = 401
    with pytest.raises(AuthExpiredError):
        await coordinator.run(_source_action_job(connection, item_id, NotificationStatus.DELETED))
    stored = await _connection(session_factory, connection.connection_id)
    assert stored.status == IntegrationConnectionStatus.FAILING


# ---------------------------------------------------------------------------
# Upstream activity after a local edit
# ---------------------------------------------------------------------------


async def _mark_read(session_factory, notification_id: str) -> None:
    async with session_factory() as session:
        await NotificationRepository(session).apply_patch(notification_id, NotificationPatch(status=NotificationStatus.READ))
        await session.commit()


@pytest.mark.asyncio
async def test_new_activity_reopens_read_notification(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification("42", updated_at="2026-03-01T10:00:00Z")]
    await coordinator.run(_job(connection))
    [notification] = await _notifications(session_factory)
    await _mark_read(session_factory, notification.notification_id)

    github_api["notifications"] = [
        github_notification("42", updated_at="2026-03-01T15:00:00Z", title="Fix flaky sync test (new review)")
    ]
    await coordinator.run(_job(connection))

    [reopened] = await _notifications(session_factory)
    assert reopened.notification_id == notification.notification_id
    assert reopened.status == NotificationStatus.UNREAD


@pytest.mark.asyncio
async def test_edit_without_new_activity_keeps_local_read(coordinator, session_factory, make_connection, github_api, github_notification):
    connection = await make_connection()
    github_api["notifications"] = [github_notification("42", updated_at="2026-03-01T10:00:00Z")]
    await coordinator.run(_job(connection))
    [notification] = await _notifications(session_factory)
    await _mark_read(session_factory, notification.notification_id)

    github_api["notifications"] = [
        github_notification("42", updated_at="2026-03-01T10:00:00Z", title="Fix flaky sync test (renamed)")
    ]
    report = await coordinator.run(_job(connection))

    assert report.updated == 1
    [kept] = await _notifications(session_factory)
    assert kept.title == "Fix flaky sync test (renamed)"
    assert kept.status == NotificationStatus.READ
