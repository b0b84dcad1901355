"""Normalization pipeline: stored third-party item → notification/task drafts.

Pure conversion with no DB access or I/O. Normalizers are dispatched by
source kind; the stored payload and the context fully decide the result.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from unibox.errors.exceptions import MalformedPayloadError
from unibox.integrations.normalized import NormalizationContext, NormalizationResult
from unibox.integrations.normalizers.github import normalize_github_notification
from unibox.integrations.normalizers.google_calendar import normalize_google_calendar_event
from unibox.integrations.normalizers.google_drive import normalize_google_drive_comment
from unibox.integrations.normalizers.linear import normalize_linear_notification
from unibox.integrations.normalizers.slack import normalize_slack_reaction, normalize_slack_star
from unibox.integrations.normalizers.todoist import normalize_todoist_item
from unibox.models.enums import SourceKind

Normalizer = Callable[[dict[str, Any], NormalizationContext], NormalizationResult]

NORMALIZERS: dict[SourceKind, Normalizer] = {
    SourceKind.GITHUB_NOTIFICATION: normalize_github_notification,
    SourceKind.LINEAR_NOTIFICATION: normalize_linear_notification,
    SourceKind.SLACK_STAR: normalize_slack_star,
    SourceKind.SLACK_REACTION: normalize_slack_reaction,
    SourceKind.GOOGLE_CALENDAR_EVENT: normalize_google_calendar_event,
    SourceKind.GOOGLE_DRIVE_COMMENT: normalize_google_drive_comment,
    SourceKind.TODOIST_ITEM: normalize_todoist_item,
}


class StoredItem(Protocol):
    source_kind: str
    data: dict[str, Any]


def normalize(item: StoredItem, context: NormalizationContext) -> NormalizationResult:
    """Run the normalizer registered for ``item.source_kind``.

    Raises:
        MalformedPayloadError: when the stored payload no longer fits the
            source schema, or no normalizer exists for the kind.
    """
    try:
        normalizer = NORMALIZERS[SourceKind(item.source_kind)]
    except (KeyError, ValueError) as exc:
        raise MalformedPayloadError(f"No normalizer for source kind: {item.source_kind}") from exc

    try:
        return normalizer(item.data or {}, context)
    except PydanticValidationError as exc:
        raise MalformedPayloadError(
            f"Stored {item.source_kind} payload failed normalization",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
