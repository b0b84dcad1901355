"""Todoist item → task (plus an inbox notification for items in the Inbox project)."""

from __future__ import annotations

from typing import Any

from unibox.integrations.connectors.todoist import TodoistItem
from unibox.integrations.normalized import (
    NormalizationContext,
    NormalizationResult,
    NotificationDraft,
    TaskDraft,
)
from unibox.models.enums import NotificationStatus, TaskPriority, TaskStatus

TASK_URL = "https://todoist.com/showTask?id={id}"


def todoist_priority(value: int) -> TaskPriority:
    """Todoist 4 (urgent) .. 1 (normal) → P1 (highest) .. P4 (lowest)."""
    return TaskPriority(5 - value)


def normalize_todoist_item(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    record = TodoistItem.model_validate(data)
    html_url = TASK_URL.format(id=record.id)

    if record.is_deleted:
        task_status = TaskStatus.DELETED
    elif record.checked:
        task_status = TaskStatus.DONE
    else:
        task_status = TaskStatus.ACTIVE

    task = TaskDraft(
        title=record.content,
        status=task_status,
        body=record.description or None,
        priority=todoist_priority(record.priority),
        due_at=record.due.as_datetime() if record.due else None,
        project=record.project_name or "Inbox",
        tags=list(record.labels),
        source_html_url=html_url,
    )

    notification = None
    if record.is_inbox_project:
        if task_status == TaskStatus.ACTIVE:
            notification_status = NotificationStatus.UNREAD
        else:
            notification_status = NotificationStatus.DELETED
        notification = NotificationDraft(
            title=record.content,
            status=notification_status,
            source_html_url=html_url,
        )

    return NormalizationResult(notification=notification, task=task)
