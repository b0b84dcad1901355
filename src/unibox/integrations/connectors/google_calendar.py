"""Google Calendar connector (calendar source)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import date, datetime, timedelta, timezone
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from unibox.config import settings
from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import RawItem
from unibox.models.enums import SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)


class EventTime(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    date_time: datetime | None = Field(None, alias="dateTime")
    day: date | None = Field(None, alias="date")

    def as_datetime(self) -> datetime | None:
        if self.date_time is not None:
            if self.date_time.tzinfo is None:
                return self.date_time.replace(tzinfo=timezone.utc)
            return self.date_time
        if self.day is not None:
            return datetime(self.day.year, self.day.month, self.day.day, tzinfo=timezone.utc)
        return None


class EventAttendee(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    email: str | None = None
    is_self: bool = Field(False, alias="self")
    response_status: str = Field("needsAction", alias="responseStatus")


class GoogleCalendarEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    status: str = "confirmed"
    summary: str = "(No title)"
    html_link: str | None = Field(None, alias="htmlLink")
    updated: datetime
    start: EventTime
    end: EventTime | None = None
    attendees: list[EventAttendee] = Field(default_factory=list)

    @property
    def updated_at(self) -> datetime:
        return self.updated

    def self_response_status(self) -> str | None:
        for attendee in self.attendees:
            if attendee.is_self:
                return attendee.response_status
        return None


class GoogleCalendarConnector(Connector):
    """Lists upcoming events from ``calendar_id`` (default ``primary``).

    Only the look-ahead window is fetched; the normalizer applies the exact
    window rule again so the stored payload alone decides the outcome.
    """

    source_kind = SourceKind.GOOGLE_CALENDAR_EVENT
    item_schema = GoogleCalendarEvent
    default_base_url = "https://www.googleapis.com/calendar/v3"

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        config = connection.config or {}
        calendar_id = quote(config.get("calendar_id", "primary"), safe="")
        window_hours = int(config.get("calendar_window_hours", settings.calendar_window_hours))
        now = datetime.now(timezone.utc)
        url = f"{self.base_url(connection)}/calendars/{calendar_id}/events"
        page_token: str | None = None

        async with self.client() as client:
            while True:
                params = {
                    "singleEvents": "true",
                    "showDeleted": "true",
                    "orderBy": "startTime",
                    "maxResults": str(self.page_size),
                    "timeMin": (now - timedelta(hours=1)).isoformat(),
                    "timeMax": (now + timedelta(hours=window_hours)).isoformat(),
                }
                if page_token:
                    params["pageToken"] = page_token
                body = await self._get_json(client, url, credentials, params=params)
                for event in body.get("items", []):
                    yield RawItem(source_kind=self.source_kind, payload=event)
                page_token = body.get("nextPageToken")
                if not page_token:
                    break

    def external_id(self, record: GoogleCalendarEvent) -> str:
        return record.id
