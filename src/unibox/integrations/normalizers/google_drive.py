"""Google Drive comment → notification."""

from __future__ import annotations

from typing import Any

from unibox.integrations.connectors.google_drive import GoogleDriveComment
from unibox.integrations.normalized import NormalizationContext, NormalizationResult, NotificationDraft
from unibox.models.enums import NotificationStatus


def normalize_google_drive_comment(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    record = GoogleDriveComment.model_validate(data)

    if record.deleted:
        status = NotificationStatus.DELETED
    elif record.resolved:
        status = NotificationStatus.READ
    else:
        status = NotificationStatus.UNREAD

    return NormalizationResult(
        notification=NotificationDraft(
            title=f"{record.author.display_name} commented on {record.file_name}",
            status=status,
            source_html_url=record.file_url,
        )
    )
