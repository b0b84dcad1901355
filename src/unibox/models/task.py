"""Pydantic models for the Task entity."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from unibox.models.enums import SourceKind, TaskPriority, TaskStatus
from unibox.models.patch import PatchModel, reject_explicit_null


class TaskModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    user_id: str
    title: str
    body: str
    status: TaskStatus
    priority: TaskPriority
    due_at: datetime | None = None
    project: str
    tags: list[str] | None = None
    source_kind: SourceKind | None = None
    source_html_url: str | None = None
    completed_at: datetime | None = None
    third_party_item_id: str | None = None
    created_at: datetime
    updated_at: datetime


class TaskPatch(PatchModel):
    """Inbox-side edit of a task.

    Terminal tasks (done, deleted) are reopened only by a patch carrying an
    explicit ``status``.
    """

    status: TaskStatus | None = None
    title: str | None = None
    body: str | None = None
    priority: TaskPriority | None = None
    due_at: datetime | None = None
    project: str | None = None
    tags: list[str] | None = None

    @field_validator("status", "title", "priority", "project")
    @classmethod
    def _required_not_null(cls, v, info):
        return reject_explicit_null(v, info.field_name)


class TaskFilter(BaseModel):
    status: list[TaskStatus] = Field(default_factory=lambda: [TaskStatus.ACTIVE])
    source_kind: SourceKind | None = None
    project: str | None = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)
