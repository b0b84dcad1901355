"""Todoist connector (task-list source): Sync API polling and webhooks."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.errors.exceptions import MalformedPayloadError
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import RawItem
from unibox.models.enums import NotificationStatus, SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)

_ITEM_EVENTS = {"item:added", "item:updated", "item:completed", "item:uncompleted", "item:deleted"}
# Sync API error code for an id that no longer exists
_ITEM_NOT_FOUND = 22


class TodoistDue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str
    is_recurring: bool = False

    def as_datetime(self) -> datetime | None:
        try:
            if "T" in self.date:
                parsed = datetime.fromisoformat(self.date.replace("Z", "+00:00"))
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
            day = date.fromisoformat(self.date)
        except ValueError:
            return None
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


class TodoistItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    content: str
    description: str = ""
    project_id: str
    project_name: str | None = None
    is_inbox_project: bool | None = None
    checked: bool = False
    is_deleted: bool = False
    # Todoist counts 4 as the most urgent
    priority: int = Field(1, ge=1, le=4)
    due: TodoistDue | None = None
    labels: list[str] = Field(default_factory=list)
    added_at: datetime
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class TodoistItemConnector(Connector):
    source_kind = SourceKind.TODOIST_ITEM
    item_schema = TodoistItem
    default_base_url = "https://api.todoist.com/sync/v9"
    supports_webhooks = True
    source_actions = frozenset({NotificationStatus.DELETED})

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        async with self.client() as client:
            response = await self._request(
                client,
                "POST",
                f"{self.base_url(connection)}/sync",
                credentials,
                data={"sync_token": "*", "resource_types": '["items","projects"]'},
            )
            body = self._json(response)

        if not isinstance(body, dict) or "items" not in body:
            raise MalformedPayloadError("Todoist sync response has no items")

        projects = {p.get("id"): p for p in body.get("projects", []) if isinstance(p, dict)}
        for item in body["items"]:
            project = projects.get(item.get("project_id")) if isinstance(item, dict) else None
            payload = dict(item) if isinstance(item, dict) else {"invalid": item}
            if project:
                payload["project_name"] = project.get("name")
                payload["is_inbox_project"] = bool(project.get("inbox_project"))
            yield RawItem(source_kind=self.source_kind, payload=payload)

    def decode_webhook(self, payload: dict[str, Any]) -> RawItem:
        event_name = payload.get("event_name")
        if event_name not in _ITEM_EVENTS or not isinstance(payload.get("event_data"), dict):
            raise MalformedPayloadError(f"Unsupported Todoist webhook event: {event_name}")
        data = dict(payload["event_data"])
        if event_name == "item:deleted":
            data["is_deleted"] = True
        return RawItem(source_kind=self.source_kind, payload=data)

    def webhook_account_id(self, payload: dict[str, Any]) -> str:
        user_id = payload.get("user_id")
        if not user_id:
            raise MalformedPayloadError("Todoist webhook has no user_id")
        return str(user_id)

    def external_id(self, record: TodoistItem) -> str:
        return record.id

    def source_updated_at(self, record: TodoistItem) -> datetime | None:
        return record.updated_at or record.completed_at or record.added_at

    async def delete_notification_from_source(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        external_id: str,
        data: dict[str, Any],
    ) -> None:
        """Delete the task through an ``item_delete`` Sync API command."""
        command_id = str(uuid.uuid4())
        commands = [{"type": "item_delete", "uuid": command_id, "args": {"id": external_id}}]
        async with self.client() as client:
            response = await self._request(
                client,
                "POST",
                f"{self.base_url(connection)}/sync",
                credentials,
                data={"commands": json.dumps(commands)},
            )
            body = self._json(response)

        outcome = (body.get("sync_status") or {}).get(command_id) if isinstance(body, dict) else None
        if outcome == "ok":
            return
        if isinstance(outcome, dict) and outcome.get("error_code") == _ITEM_NOT_FOUND:
            logger.info("Todoist item %s already gone", external_id)
            return
        raise MalformedPayloadError(
            f"Todoist rejected item_delete for {external_id}", details={"sync_status": outcome}
        )
