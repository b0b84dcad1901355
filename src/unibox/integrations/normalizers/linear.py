"""Linear notification → notification."""

from __future__ import annotations

from typing import Any

from unibox.integrations.connectors.linear import LinearNotification
from unibox.integrations.normalized import NormalizationContext, NormalizationResult, NotificationDraft
from unibox.models.enums import NotificationStatus


def _title(record: LinearNotification) -> str:
    if record.issue is not None:
        return f"{record.issue.identifier} {record.issue.title}"
    if record.project is not None:
        return record.project.name
    return record.type.replace("_", " ").capitalize()


def normalize_linear_notification(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    record = LinearNotification.model_validate(data)

    # snoozedUntilAt is ignored: snooze is a local field owned by the user
    if record.archived_at is not None:
        status = NotificationStatus.DELETED
    elif record.read_at is None:
        status = NotificationStatus.UNREAD
    else:
        status = NotificationStatus.READ

    if record.issue is not None:
        html_url = record.issue.url
    elif record.project is not None:
        html_url = record.project.url
    else:
        html_url = None

    return NormalizationResult(
        notification=NotificationDraft(
            title=_title(record),
            status=status,
            source_html_url=html_url,
            last_read_at=record.read_at,
        )
    )
