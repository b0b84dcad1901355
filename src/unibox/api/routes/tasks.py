"""Task listing and inbox-side edits."""

from fastapi import APIRouter, Query

from unibox.dependencies import CurrentUserId, Inbox
from unibox.models.enums import SourceKind, TaskStatus
from unibox.models.task import TaskFilter, TaskPatch

router = APIRouter(tags=["Tasks"])


@router.get("/tasks")
async def list_tasks(
    user_id: CurrentUserId,
    inbox: Inbox,
    status: list[TaskStatus] | None = Query(None),
    source_kind: SourceKind | None = None,
    project: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[dict]:
    filters = TaskFilter(
        source_kind=source_kind,
        project=project,
        limit=limit,
        offset=offset,
        **({"status": status} if status else {}),
    )
    rows = await inbox.list_tasks(user_id, filters)
    return [r.model_dump(mode="json") for r in rows]


@router.patch("/tasks/{task_id}")
async def patch_task(
    task_id: str,
    patch: TaskPatch,
    user_id: CurrentUserId,
    inbox: Inbox,
) -> dict:
    updated = await inbox.patch_task(user_id, task_id, patch)
    return updated.model_dump(mode="json")
