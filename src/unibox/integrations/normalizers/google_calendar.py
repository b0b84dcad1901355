"""Google Calendar event → notification for events starting soon."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from unibox.integrations.connectors.google_calendar import GoogleCalendarEvent
from unibox.integrations.normalized import NormalizationContext, NormalizationResult, NotificationDraft
from unibox.models.enums import NotificationStatus

_ANSWERED = {"accepted", "declined"}


def normalize_google_calendar_event(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    """Only events whose start is in ``[now - 1h, now + window]`` are surfaced.

    An event outside the window yields nothing; the existing notification,
    if any, is left as it is.
    """
    record = GoogleCalendarEvent.model_validate(data)
    start = record.start.as_datetime()
    window_hours = int(context.option("calendar_window_hours", context.calendar_window_hours))

    if start is None:
        return NormalizationResult()
    if not (context.now - timedelta(hours=1) <= start <= context.now + timedelta(hours=window_hours)):
        return NormalizationResult()

    if record.status == "cancelled":
        status = NotificationStatus.DELETED
    elif record.self_response_status() in _ANSWERED:
        status = NotificationStatus.READ
    else:
        status = NotificationStatus.UNREAD

    return NormalizationResult(
        notification=NotificationDraft(
            title=record.summary,
            status=status,
            source_html_url=record.html_link,
        )
    )
