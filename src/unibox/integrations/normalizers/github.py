"""GitHub notification → notification (and optional discussion task)."""

from __future__ import annotations

from typing import Any

from unibox.integrations.connectors.github import GithubNotification, html_url_from_api_url
from unibox.integrations.normalized import (
    NormalizationContext,
    NormalizationResult,
    NotificationDraft,
    TaskDraft,
)
from unibox.models.enums import NotificationStatus, TaskStatus


def normalize_github_notification(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    record = GithubNotification.model_validate(data)
    html_url = html_url_from_api_url(record.subject.url, record.repository.html_url)

    notification = NotificationDraft(
        title=record.subject.title,
        status=NotificationStatus.UNREAD if record.unread else NotificationStatus.READ,
        source_html_url=html_url,
        last_read_at=record.last_read_at,
    )

    task = None
    if record.subject.type == "Discussion" and context.option("create_tasks_from_discussions", False):
        task = TaskDraft(
            title=record.subject.title,
            status=TaskStatus.ACTIVE,
            body=f"{record.repository.full_name} ({record.reason})",
            source_html_url=html_url,
        )

    return NormalizationResult(notification=notification, task=task)
