"""GitHub notifications connector (issue tracker source)."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.errors.exceptions import MalformedPayloadError
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import RawItem
from unibox.models.enums import NotificationStatus, SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)

_API_URL_RE = re.compile(
    r"^https://api\.github\.com/repos/(?P<repo>[^/]+/[^/]+)/(?P<kind>pulls|issues|commits|releases)/(?P<ref>[^/]+)$"
)
_ACCEPT = {"Accept": "application/vnd.github+json"}
_HTML_PATH = {"pulls": "pull", "issues": "issues", "commits": "commit", "releases": "releases"}


class GithubSubject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    url: str | None = None
    latest_comment_url: str | None = None
    type: str


class GithubRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: str
    html_url: str


class GithubNotification(BaseModel):
    """Subset of a GitHub notification thread the engine relies on."""

    model_config = ConfigDict(extra="ignore")

    id: str
    unread: bool
    reason: str
    updated_at: datetime
    last_read_at: datetime | None = None
    subject: GithubSubject
    repository: GithubRepository


def html_url_from_api_url(api_url: str | None, repository_html_url: str | None = None) -> str | None:
    """Translate a REST API subject URL into its github.com page."""
    if api_url:
        match = _API_URL_RE.match(api_url)
        if match:
            path = _HTML_PATH[match["kind"]]
            return f"https://github.com/{match['repo']}/{path}/{match['ref']}"
    return repository_html_url


def _next_page_url(link_header: str | None) -> str | None:
    if not link_header:
        return None
    for part in link_header.split(","):
        section = part.split(";")
        if len(section) == 2 and section[1].strip() == 'rel="next"':
            return section[0].strip()[1:-1]
    return None


class GithubNotificationConnector(Connector):
    """Pulls notification threads from ``GET /notifications``.

    Connection config:
        ``base_url`` (optional): GitHub Enterprise API root.
        ``create_tasks_from_discussions``: read by the normalizer.
    """

    source_kind = SourceKind.GITHUB_NOTIFICATION
    item_schema = GithubNotification
    default_base_url = "https://api.github.com"
    source_actions = frozenset({NotificationStatus.DELETED, NotificationStatus.UNSUBSCRIBED})

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        url: str | None = f"{self.base_url(connection)}/notifications"
        params: dict | None = {"all": "false", "per_page": str(self.page_size), "page": "1"}
        headers = _ACCEPT

        async with self.client() as client:
            while url:
                response = await self._request(client, "GET", url, credentials, params=params, headers=headers)
                threads = self._json(response)
                if not isinstance(threads, list):
                    raise MalformedPayloadError("GitHub notifications page is not a list")
                logger.debug("Fetched %d GitHub notifications for %s", len(threads), connection.connection_id)
                for thread in threads:
                    yield RawItem(source_kind=self.source_kind, payload=thread)

                # The next link already carries the query string
                url = _next_page_url(response.headers.get("Link"))
                params = None

    def external_id(self, record: GithubNotification) -> str:
        return record.id

    async def delete_notification_from_source(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        external_id: str,
        data: dict[str, Any],
    ) -> None:
        """Mark the thread read (``PATCH /notifications/threads/{id}``) so it leaves the unread listing."""
        async with self.client() as client:
            await self._request(
                client,
                "PATCH",
                f"{self.base_url(connection)}/notifications/threads/{external_id}",
                credentials,
                headers=_ACCEPT,
                ok_statuses=(404,),
            )

    async def unsubscribe_notification_from_source(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        external_id: str,
        data: dict[str, Any],
    ) -> None:
        """Ignore the thread so later activity stops notifying the user."""
        async with self.client() as client:
            await self._request(
                client,
                "PUT",
                f"{self.base_url(connection)}/notifications/threads/{external_id}/subscription",
                credentials,
                headers=_ACCEPT,
                json={"ignored": True},
                ok_statuses=(404,),
            )
