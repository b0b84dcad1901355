"""Tests for the third-party item store and the notification/task repositories."""

from datetime import datetime, timedelta, timezone

import pytest

from unibox.errors.exceptions import NotFoundError
from unibox.integrations.normalized import NotificationDraft, TaskDraft, ThirdPartyItemIn
from unibox.models.enums import (
    NotificationStatus,
    SourceKind,
    TaskPriority,
    TaskStatus,
    ThirdPartyItemStatus,
    UpsertStatus,
)
from unibox.models.notification import NotificationFilter, NotificationPatch
from unibox.models.task import TaskFilter, TaskPatch
from unibox.repositories.base import resolve_source_status
from unibox.repositories.notification_repo import NotificationRepository
from unibox.repositories.task_repo import TaskRepository
from unibox.repositories.third_party_repo import ThirdPartyItemRepository

USER = "usr_u"
GH = SourceKind.GITHUB_NOTIFICATION


def _item(external_id: str = "42", **data) -> ThirdPartyItemIn:
    return ThirdPartyItemIn(
        source_kind=GH,
        external_id=external_id,
        user_id=USER,
        data={"id": external_id, "unread": True, **data},
    )


async def _stored_item(session, external_id: str = "42") -> str:
    result = await ThirdPartyItemRepository(session).upsert(_item(external_id))
    return result.row.third_party_item_id


def _unread(title: str = "Review PR") -> NotificationDraft:
    return NotificationDraft(title=title, status=NotificationStatus.UNREAD)


# ---------------------------------------------------------------------------
# Third-party item store
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_store_upsert_created_then_untouched(db_session):
    """Same payload on an already processed item is a no-op."""
    repo = ThirdPartyItemRepository(db_session)
    first = await repo.upsert(_item())
    assert first.status == UpsertStatus.CREATED
    assert first.row.third_party_item_id.startswith("tpi_")
    assert first.row.status == ThirdPartyItemStatus.NEW

    await repo.mark_processed(first.row.third_party_item_id)
    second = await repo.upsert(_item())
    assert second.status == UpsertStatus.UNTOUCHED
    assert not second.changed
    assert second.row.third_party_item_id == first.row.third_party_item_id


@pytest.mark.asyncio
async def test_store_upsert_updates_on_hash_change(db_session):
    repo = ThirdPartyItemRepository(db_session)
    first = await repo.upsert(_item())
    await repo.mark_processed(first.row.third_party_item_id)

    changed = await repo.upsert(_item(unread=False))
    assert changed.status == UpsertStatus.UPDATED
    assert changed.row.status == ThirdPartyItemStatus.NEW
    assert changed.row.data["unread"] is False


@pytest.mark.asyncio
async def test_store_upsert_reports_source_advance(db_session):
    repo = ThirdPartyItemRepository(db_session)
    t1 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    first = await repo.upsert(_item().model_copy(update={"source_updated_at": t1}))
    await repo.mark_processed(first.row.third_party_item_id)

    same_time = await repo.upsert(_item(title="renamed").model_copy(update={"source_updated_at": t1}))
    assert same_time.status == UpsertStatus.UPDATED
    assert not same_time.source_advanced

    await repo.mark_processed(first.row.third_party_item_id)
    later = await repo.upsert(_item(title="commented").model_copy(update={"source_updated_at": t1 + timedelta(hours=2)}))
    assert later.source_advanced

    undated = await repo.upsert(_item(title="undated"))
    assert not undated.source_advanced


@pytest.mark.asyncio
async def test_store_unprocessed_item_is_reprocessed(db_session):
    """An item never processed goes through the pipeline again even with the same hash."""
    repo = ThirdPartyItemRepository(db_session)
    await repo.upsert(_item())
    again = await repo.upsert(_item())
    assert again.status == UpsertStatus.UPDATED


@pytest.mark.asyncio
async def test_store_deleted_item_reappears(db_session):
    repo = ThirdPartyItemRepository(db_session)
    first = await repo.upsert(_item())
    await repo.mark_deleted(first.row.third_party_item_id)

    back = await repo.upsert(_item())
    assert back.status == UpsertStatus.UPDATED
    assert back.row.status == ThirdPartyItemStatus.NEW


@pytest.mark.asyncio
async def test_store_keys_are_per_user(db_session):
    repo = ThirdPartyItemRepository(db_session)
    mine = await repo.upsert(_item())
    theirs = await repo.upsert(
        ThirdPartyItemIn(source_kind=GH, external_id="42", user_id="usr_other", data={"id": "42"})
    )
    assert theirs.status == UpsertStatus.CREATED
    assert theirs.row.third_party_item_id != mine.row.third_party_item_id


@pytest.mark.asyncio
async def test_store_find_unprocessed_and_stale(db_session):
    repo = ThirdPartyItemRepository(db_session)
    a = await repo.upsert(_item("a"))
    b = await repo.upsert(_item("b"))
    await repo.mark_processed(a.row.third_party_item_id)

    unprocessed = await repo.find_unprocessed(USER, GH)
    assert [r.external_id for r in unprocessed] == ["b"]

    stale = await repo.find_stale(USER, GH, {"a"})
    assert [r.third_party_item_id for r in stale] == [b.row.third_party_item_id]


@pytest.mark.asyncio
async def test_store_mark_processed_records_error(db_session):
    repo = ThirdPartyItemRepository(db_session)
    row = (await repo.upsert(_item())).row
    await repo.mark_processed(row.third_party_item_id, error="bad title")
    assert row.processing_error == "bad title"

    with pytest.raises(NotFoundError):
        await repo.mark_processed("tpi_missing")


# ---------------------------------------------------------------------------
# Sticky status rule
# ---------------------------------------------------------------------------


def test_resolve_source_status():
    # Source unchanged: the local value stays
    assert resolve_source_status("read", "unread", "unread") == "read"
    # Source changed: the source wins
    assert resolve_source_status("read", "unread", "deleted") == "deleted"
    assert resolve_source_status("unread", None, "read") == "read"
    # New upstream activity reopens a local read or delete, never an unsubscribe
    assert resolve_source_status("read", "unread", "unread", reopen=True) == "unread"
    assert resolve_source_status("deleted", "unread", "unread", reopen=True) == "unread"
    assert resolve_source_status("unsubscribed", "unread", "unread", reopen=True) == "unsubscribed"
    assert resolve_source_status("unread", "read", "read", reopen=True) == "unread"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_notification_upsert_create_and_untouched(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)

    created = await repo.upsert_from_third_party(USER, GH, item_id, _unread())
    assert created.status == UpsertStatus.CREATED
    assert created.row.notification_id.startswith("ntf_")
    assert created.row.status == NotificationStatus.UNREAD

    again = await repo.upsert_from_third_party(USER, GH, item_id, _unread())
    assert again.status == UpsertStatus.UNTOUCHED


@pytest.mark.asyncio
async def test_local_edit_sticks_until_source_changes(db_session):
    """A user 'read' survives a re-sync that still says unread, but not a source change."""
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, GH, item_id, _unread())).row

    await repo.apply_patch(row.notification_id, NotificationPatch(status=NotificationStatus.READ))
    assert row.last_read_at is not None

    resync = await repo.upsert_from_third_party(USER, GH, item_id, _unread())
    assert resync.status == UpsertStatus.UNTOUCHED
    assert row.status == NotificationStatus.READ

    await repo.upsert_from_third_party(
        USER, GH, item_id, NotificationDraft(title="Review PR", status=NotificationStatus.DELETED)
    )
    assert row.status == NotificationStatus.DELETED


@pytest.mark.asyncio
async def test_source_terminal_status_beats_local_edit(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, GH, item_id, _unread())).row
    await repo.apply_patch(row.notification_id, NotificationPatch(status=NotificationStatus.READ))

    await repo.upsert_from_third_party(
        USER, GH, item_id, NotificationDraft(title="Review PR", status=NotificationStatus.UNSUBSCRIBED)
    )
    assert row.status == NotificationStatus.UNSUBSCRIBED


@pytest.mark.asyncio
async def test_draft_omitted_field_left_untouched(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    draft = NotificationDraft(
        title="Review PR", status=NotificationStatus.UNREAD, source_html_url="https://github.com/acme/api/pull/42"
    )
    row = (await repo.upsert_from_third_party(USER, GH, item_id, draft)).row

    await repo.upsert_from_third_party(USER, GH, item_id, _unread("Renamed"))
    assert row.title == "Renamed"
    assert row.source_html_url == "https://github.com/acme/api/pull/42"

    cleared = NotificationDraft(title="Renamed", status=NotificationStatus.UNREAD, source_html_url=None)
    await repo.upsert_from_third_party(USER, GH, item_id, cleared)
    assert row.source_html_url is None


@pytest.mark.asyncio
async def test_sync_never_touches_snooze(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, GH, item_id, _unread())).row
    until = datetime(2026, 3, 10, tzinfo=timezone.utc)
    await repo.apply_patch(row.notification_id, NotificationPatch(snoozed_until=until))

    await repo.upsert_from_third_party(USER, GH, item_id, _unread("New title"))
    assert row.snoozed_until == until


@pytest.mark.asyncio
async def test_notification_patch_clear_versus_absent(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, GH, item_id, _unread())).row
    until = datetime(2026, 3, 10, tzinfo=timezone.utc)
    await repo.apply_patch(row.notification_id, NotificationPatch(snoozed_until=until))

    result = await repo.apply_patch(row.notification_id, NotificationPatch(status=NotificationStatus.READ))
    assert result.updated
    assert row.snoozed_until == until

    await repo.apply_patch(row.notification_id, NotificationPatch(snoozed_until=None))
    assert row.snoozed_until is None

    noop = await repo.apply_patch(row.notification_id, NotificationPatch())
    assert not noop.updated


@pytest.mark.asyncio
async def test_notification_patch_not_found(db_session):
    repo = NotificationRepository(db_session)
    with pytest.raises(NotFoundError):
        await repo.apply_patch("ntf_missing", NotificationPatch(status=NotificationStatus.READ))


@pytest.mark.asyncio
async def test_notification_patch_scoped_to_user(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, GH, item_id, _unread())).row
    with pytest.raises(NotFoundError):
        await repo.apply_patch(row.notification_id, NotificationPatch(status=NotificationStatus.READ), user_id="usr_x")


@pytest.mark.asyncio
async def test_notification_patch_rejects_unknown_task(db_session):
    item_id = await _stored_item(db_session)
    repo = NotificationRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, GH, item_id, _unread())).row
    with pytest.raises(NotFoundError):
        await repo.apply_patch(row.notification_id, NotificationPatch(task_id="tsk_missing"))


@pytest.mark.asyncio
async def test_notification_mark_stale(db_session):
    kept_id = await _stored_item(db_session, "a")
    gone_id = await _stored_item(db_session, "b")
    repo = NotificationRepository(db_session)
    kept = (await repo.upsert_from_third_party(USER, GH, kept_id, _unread())).row
    gone = (await repo.upsert_from_third_party(USER, GH, gone_id, _unread())).row

    count = await repo.mark_stale(USER, GH, {kept_id})
    assert count == 1
    assert gone.status == NotificationStatus.DELETED
    assert kept.status == NotificationStatus.UNREAD


@pytest.mark.asyncio
async def test_notification_listing_hides_snoozed(db_session):
    a_id = await _stored_item(db_session, "a")
    b_id = await _stored_item(db_session, "b")
    repo = NotificationRepository(db_session)
    await repo.upsert_from_third_party(USER, GH, a_id, _unread("visible"))
    snoozed = (await repo.upsert_from_third_party(USER, GH, b_id, _unread("snoozed"))).row
    now = datetime(2026, 3, 2, tzinfo=timezone.utc)
    await repo.apply_patch(snoozed.notification_id, NotificationPatch(snoozed_until=now + timedelta(days=1)))

    listed = await repo.list_for_user(USER, NotificationFilter(), now=now)
    assert [n.title for n in listed] == ["visible"]

    everything = await repo.list_for_user(USER, NotificationFilter(include_snoozed=True), now=now)
    assert len(everything) == 2


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _task(status: TaskStatus = TaskStatus.ACTIVE, **fields) -> TaskDraft:
    return TaskDraft(title="Write notes", status=status, **fields)


@pytest.mark.asyncio
async def test_task_upsert_defaults_and_completion(db_session):
    item_id = await _stored_item(db_session)
    repo = TaskRepository(db_session)

    created = await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task(body=None))
    row = created.row
    assert row.task_id.startswith("tsk_")
    assert row.body == ""
    assert row.completed_at is None

    await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task(TaskStatus.DONE))
    assert row.status == TaskStatus.DONE
    assert row.completed_at is not None


@pytest.mark.asyncio
async def test_done_task_reopened_only_by_explicit_status(db_session):
    item_id = await _stored_item(db_session)
    repo = TaskRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task())).row
    await repo.apply_patch(row.task_id, TaskPatch(status=TaskStatus.DONE))

    await repo.apply_patch(row.task_id, TaskPatch(title="Write better notes"))
    assert row.status == TaskStatus.DONE

    await repo.apply_patch(row.task_id, TaskPatch(status=TaskStatus.ACTIVE))
    assert row.status == TaskStatus.ACTIVE
    assert row.completed_at is None


@pytest.mark.asyncio
async def test_local_task_done_survives_unchanged_source(db_session):
    item_id = await _stored_item(db_session)
    repo = TaskRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task())).row
    await repo.apply_patch(row.task_id, TaskPatch(status=TaskStatus.DONE))

    await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task())
    assert row.status == TaskStatus.DONE


@pytest.mark.asyncio
async def test_task_patch_clears_due_date(db_session):
    item_id = await _stored_item(db_session)
    repo = TaskRepository(db_session)
    due = datetime(2026, 3, 5, tzinfo=timezone.utc)
    row = (await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task(due_at=due))).row

    await repo.apply_patch(row.task_id, TaskPatch(priority=TaskPriority.P1))
    assert row.due_at == due
    assert row.priority == 1

    await repo.apply_patch(row.task_id, TaskPatch(due_at=None))
    assert row.due_at is None


@pytest.mark.asyncio
async def test_task_patch_not_found(db_session):
    with pytest.raises(NotFoundError):
        await TaskRepository(db_session).apply_patch("tsk_missing", TaskPatch(title="x"))


@pytest.mark.asyncio
async def test_task_mark_stale_completes(db_session):
    item_id = await _stored_item(db_session)
    repo = TaskRepository(db_session)
    row = (await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, item_id, _task())).row

    assert await repo.mark_stale(USER, SourceKind.TODOIST_ITEM, set()) == 1
    assert row.status == TaskStatus.DONE
    assert row.completed_at is not None


@pytest.mark.asyncio
async def test_task_listing_orders_by_priority(db_session):
    low_id = await _stored_item(db_session, "low")
    high_id = await _stored_item(db_session, "high")
    repo = TaskRepository(db_session)
    await repo.upsert_from_third_party(USER, SourceKind.TODOIST_ITEM, low_id, _task(priority=TaskPriority.P4))
    await repo.upsert_from_third_party(
        USER, SourceKind.TODOIST_ITEM, high_id, TaskDraft(title="Urgent", status=TaskStatus.ACTIVE, priority=TaskPriority.P1)
    )

    listed = await repo.list_for_user(USER, TaskFilter())
    assert [t.title for t in listed] == ["Urgent", "Write notes"]
