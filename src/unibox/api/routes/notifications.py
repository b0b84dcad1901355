"""Notification listing and inbox-side edits."""

from fastapi import APIRouter, Query

from unibox.dependencies import CurrentUserId, Inbox, TraceId
from unibox.models.enums import NotificationStatus, SourceKind
from unibox.models.notification import NotificationFilter, NotificationPatch

router = APIRouter(tags=["Notifications"])


@router.get("/notifications")
async def list_notifications(
    user_id: CurrentUserId,
    inbox: Inbox,
    status: list[NotificationStatus] | None = Query(None),
    source_kind: SourceKind | None = None,
    include_snoozed: bool = False,
    with_task: bool | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[dict]:
    filters = NotificationFilter(
        source_kind=source_kind,
        include_snoozed=include_snoozed,
        with_task=with_task,
        limit=limit,
        offset=offset,
        **({"status": status} if status else {}),
    )
    rows = await inbox.list_notifications(user_id, filters)
    return [r.model_dump(mode="json") for r in rows]


@router.patch("/notifications/{notification_id}")
async def patch_notification(
    notification_id: str,
    patch: NotificationPatch,
    user_id: CurrentUserId,
    inbox: Inbox,
    trace_id: TraceId,
) -> dict:
    """Absent fields are untouched; fields sent as null are cleared."""
    updated = await inbox.patch_notification(user_id, notification_id, patch, trace_id=trace_id)
    return updated.model_dump(mode="json")
