"""Manual sync trigger."""

from fastapi import APIRouter

from unibox.dependencies import CurrentUserId, Inbox, TraceId
from unibox.models.enums import SourceKind

router = APIRouter(tags=["Sync"])


@router.post("/sync", status_code=202)
async def sync_now(
    user_id: CurrentUserId,
    inbox: Inbox,
    trace_id: TraceId,
    source_kind: SourceKind | None = None,
) -> list[dict]:
    handles = await inbox.sync_now(user_id, source_kind=source_kind, trace_id=trace_id)
    return [h.model_dump(mode="json") for h in handles]
