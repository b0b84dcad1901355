"""Slack connectors (chat source): starred messages and reactions.

Both kinds arrive primarily through the Events API (``star_added``,
``star_removed``, ``reaction_added``, ``reaction_removed`` callbacks) and can
be backfilled by polling ``stars.list`` / ``reactions.list``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.errors.exceptions import (
    AuthExpiredError,
    MalformedPayloadError,
    RateLimitedError,
)
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import RawItem
from unibox.models.enums import NotificationStatus, SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)

_AUTH_ERRORS = {"invalid_auth", "not_authed", "token_revoked", "token_expired", "account_inactive"}

# Removal already done upstream
_ALREADY_REMOVED = {"not_starred", "no_reaction", "message_not_found", "channel_not_found"}

STAR_EVENTS = {"star_added": "added", "star_removed": "removed"}
REACTION_EVENTS = {"reaction_added": "added", "reaction_removed": "removed"}


class SlackMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ts: str
    text: str | None = None
    user: str | None = None
    permalink: str | None = None


class SlackItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    channel: str | None = None
    ts: str | None = None
    message: SlackMessage | None = None

    @property
    def message_ts(self) -> str | None:
        return self.message.ts if self.message else self.ts


class SlackStar(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: Literal["added", "removed"]
    user: str | None = None
    item: SlackItem
    event_ts: str

    @property
    def updated_at(self) -> datetime:
        return _ts_to_datetime(self.event_ts)


class SlackReaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: Literal["added", "removed"]
    user: str | None = None
    reaction: str
    item: SlackItem
    event_ts: str

    @property
    def updated_at(self) -> datetime:
        return _ts_to_datetime(self.event_ts)


def _ts_to_datetime(ts: str) -> datetime:
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except ValueError as exc:
        raise MalformedPayloadError(f"Invalid Slack timestamp: {ts!r}") from exc


def _event_from_callback(payload: dict[str, Any]) -> dict[str, Any]:
    if payload.get("type") != "event_callback" or not isinstance(payload.get("event"), dict):
        raise MalformedPayloadError("Slack payload is not an event_callback")
    return payload["event"]


class _SlackConnector(Connector):
    default_base_url = "https://slack.com/api"
    supports_webhooks = True
    source_actions = frozenset({NotificationStatus.DELETED, NotificationStatus.UNSUBSCRIBED})

    async def _paginate(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        method: str,
    ) -> AsyncIterator[dict[str, Any]]:
        url = f"{self.base_url(connection)}/{method}"
        cursor = ""
        async with self.client() as client:
            while True:
                params = {"limit": str(self.page_size)}
                if cursor:
                    params["cursor"] = cursor
                body = await self._get_json(client, url, credentials, params=params)
                self._raise_api_error(body)
                for item in body.get("items", []):
                    yield item
                cursor = (body.get("response_metadata") or {}).get("next_cursor") or ""
                if not cursor:
                    break

    async def _post_action(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        method: str,
        form: dict[str, str],
    ) -> None:
        url = f"{self.base_url(connection)}/{method}"
        async with self.client() as client:
            response = await self._request(client, "POST", url, credentials, data=form)
            body = self._json(response)
        if isinstance(body, dict) and body.get("error") in _ALREADY_REMOVED:
            logger.info("Slack %s: item already removed (%s)", method, body["error"])
            return
        self._raise_api_error(body)

    async def unsubscribe_notification_from_source(self, connection, credentials, external_id, data) -> None:
        # Slack has no per-message subscription, so this removes the marker too
        await self.delete_notification_from_source(connection, credentials, external_id, data)

    @staticmethod
    def _raise_api_error(body: Any) -> None:
        if not isinstance(body, dict):
            raise MalformedPayloadError("Slack response is not an object")
        if body.get("ok"):
            return
        error = body.get("error", "unknown_error")
        if error in _AUTH_ERRORS:
            raise AuthExpiredError(f"Slack rejected the credential: {error}")
        if error == "ratelimited":
            raise RateLimitedError(60.0)
        raise MalformedPayloadError(f"Slack API error: {error}")

    def webhook_account_id(self, payload: dict[str, Any]) -> str:
        event = _event_from_callback(payload)
        user = event.get("user")
        if not user:
            raise MalformedPayloadError("Slack event has no user")
        return user


class SlackStarConnector(_SlackConnector):
    source_kind = SourceKind.SLACK_STAR
    item_schema = SlackStar

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        async for item in self._paginate(connection, credentials, "stars.list"):
            if item.get("type") != "message":
                continue
            yield RawItem(
                source_kind=self.source_kind,
                payload={
                    "state": "added",
                    "item": item,
                    "event_ts": str(item.get("date_create", "0")),
                },
            )

    def decode_webhook(self, payload: dict[str, Any]) -> RawItem:
        event = _event_from_callback(payload)
        state = STAR_EVENTS.get(event.get("type", ""))
        if state is None:
            raise MalformedPayloadError(f"Unsupported Slack star event: {event.get('type')}")
        return RawItem(
            source_kind=self.source_kind,
            payload={
                "state": state,
                "user": event.get("user"),
                "item": event.get("item"),
                "event_ts": event.get("event_ts"),
            },
        )

    def external_id(self, record: SlackStar) -> str:
        ts = record.item.message_ts
        if not record.item.channel or not ts:
            raise MalformedPayloadError("Slack star item lacks channel or ts")
        return f"{record.item.channel}:{ts}"

    async def delete_notification_from_source(self, connection, credentials, external_id, data) -> None:
        record = self.parse_record(data)
        await self._post_action(
            connection,
            credentials,
            "stars.remove",
            {"channel": record.item.channel or "", "timestamp": record.item.message_ts or ""},
        )


class SlackReactionConnector(_SlackConnector):
    """Tracks messages the user reacted to with the configured emoji (``reaction_name``)."""

    source_kind = SourceKind.SLACK_REACTION
    item_schema = SlackReaction

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        wanted = (connection.config or {}).get("reaction_name", "eyes")
        async for item in self._paginate(connection, credentials, "reactions.list"):
            message = item.get("message") or {}
            for reaction in message.get("reactions", []):
                if reaction.get("name") != wanted:
                    continue
                yield RawItem(
                    source_kind=self.source_kind,
                    payload={
                        "state": "added",
                        "reaction": wanted,
                        "item": {"type": "message", "channel": item.get("channel"), "message": message},
                        "event_ts": message.get("ts", "0"),
                    },
                )

    def decode_webhook(self, payload: dict[str, Any]) -> RawItem:
        event = _event_from_callback(payload)
        state = REACTION_EVENTS.get(event.get("type", ""))
        if state is None:
            raise MalformedPayloadError(f"Unsupported Slack reaction event: {event.get('type')}")
        return RawItem(
            source_kind=self.source_kind,
            payload={
                "state": state,
                "user": event.get("user"),
                "reaction": event.get("reaction"),
                "item": event.get("item"),
                "event_ts": event.get("event_ts"),
            },
        )

    def external_id(self, record: SlackReaction) -> str:
        ts = record.item.message_ts
        if not record.item.channel or not ts:
            raise MalformedPayloadError("Slack reaction item lacks channel or ts")
        return f"{record.item.channel}:{ts}:{record.reaction}"

    async def delete_notification_from_source(self, connection, credentials, external_id, data) -> None:
        record = self.parse_record(data)
        await self._post_action(
            connection,
            credentials,
            "reactions.remove",
            {
                "name": record.reaction,
                "channel": record.item.channel or "",
                "timestamp": record.item.message_ts or "",
            },
        )


def slack_event_source_kind(payload: dict[str, Any]) -> SourceKind:
    """Pick the source kind a Slack event callback belongs to."""
    event_type = _event_from_callback(payload).get("type", "")
    if event_type in STAR_EVENTS:
        return SourceKind.SLACK_STAR
    if event_type in REACTION_EVENTS:
        return SourceKind.SLACK_REACTION
    raise MalformedPayloadError(f"Unsupported Slack event: {event_type}")
