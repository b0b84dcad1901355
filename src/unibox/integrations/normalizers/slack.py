"""Slack star / reaction → notification (and optional follow-up task)."""

from __future__ import annotations

from typing import Any

from unibox.integrations.connectors.slack import SlackReaction, SlackStar
from unibox.integrations.normalized import (
    NormalizationContext,
    NormalizationResult,
    NotificationDraft,
    TaskDraft,
)
from unibox.models.enums import NotificationStatus, TaskStatus

_MAX_TITLE = 120


def _title(record: SlackStar | SlackReaction, fallback: str) -> str:
    message = record.item.message
    text = (message.text or "").strip() if message else ""
    if not text:
        return fallback
    first_line = text.splitlines()[0]
    if len(first_line) > _MAX_TITLE:
        return first_line[: _MAX_TITLE - 1] + "…"
    return first_line


def _result(record: SlackStar | SlackReaction, title: str, context: NormalizationContext) -> NormalizationResult:
    added = record.state == "added"
    permalink = record.item.message.permalink if record.item.message else None

    notification = NotificationDraft(
        title=title,
        status=NotificationStatus.UNREAD if added else NotificationStatus.DELETED,
        source_html_url=permalink,
    )
    task = None
    if context.option("create_tasks", False):
        task = TaskDraft(
            title=title,
            status=TaskStatus.ACTIVE if added else TaskStatus.DONE,
            source_html_url=permalink,
            tags=["slack"],
        )
    return NormalizationResult(notification=notification, task=task)


def normalize_slack_star(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    record = SlackStar.model_validate(data)
    return _result(record, _title(record, "Starred Slack message"), context)


def normalize_slack_reaction(data: dict[str, Any], context: NormalizationContext) -> NormalizationResult:
    record = SlackReaction.model_validate(data)
    if record.reaction != context.option("reaction_name", "eyes"):
        return NormalizationResult()
    return _result(record, _title(record, f":{record.reaction}: Slack message"), context)
