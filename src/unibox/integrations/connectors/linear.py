"""Linear notifications connector (issue tracker source, GraphQL)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.errors.exceptions import AuthExpiredError, MalformedPayloadError
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import RawItem
from unibox.models.enums import SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUERY = """
query Notifications($first: Int!, $after: String) {
  notifications(first: $first, after: $after) {
    nodes {
      id
      type
      readAt
      updatedAt
      snoozedUntilAt
      archivedAt
      ... on IssueNotification {
        issue { id identifier title url state { name type } }
      }
      ... on ProjectNotification {
        project { id name url }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


class LinearIssueRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    identifier: str
    title: str
    url: str
    state: dict | None = None


class LinearProjectRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: str


class LinearNotification(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    type: str
    read_at: datetime | None = Field(None, alias="readAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    snoozed_until_at: datetime | None = Field(None, alias="snoozedUntilAt")
    archived_at: datetime | None = Field(None, alias="archivedAt")
    issue: LinearIssueRef | None = None
    project: LinearProjectRef | None = None


class LinearNotificationConnector(Connector):
    """Pulls inbox notifications through Linear's GraphQL API with cursor pagination."""

    source_kind = SourceKind.LINEAR_NOTIFICATION
    item_schema = LinearNotification
    default_base_url = "https://api.linear.app"

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        url = f"{self.base_url(connection)}/graphql"
        cursor: str | None = None

        async with self.client() as client:
            while True:
                response = await self._request(
                    client,
                    "POST",
                    url,
                    credentials,
                    json={"query": NOTIFICATIONS_QUERY, "variables": {"first": self.page_size, "after": cursor}},
                )
                body = self._json(response)
                self._raise_graphql_errors(body)
                try:
                    page = body["data"]["notifications"]
                    nodes = page["nodes"]
                    page_info = page["pageInfo"]
                except (KeyError, TypeError) as exc:
                    raise MalformedPayloadError("Unexpected Linear notifications response shape") from exc

                for node in nodes:
                    yield RawItem(source_kind=self.source_kind, payload=node)

                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")

    @staticmethod
    def _raise_graphql_errors(body: dict) -> None:
        errors = body.get("errors") if isinstance(body, dict) else None
        if not errors:
            return
        codes = {(err.get("extensions") or {}).get("code") for err in errors}
        if "AUTHENTICATION_ERROR" in codes:
            raise AuthExpiredError("Linear rejected the credential")
        raise MalformedPayloadError("Linear GraphQL errors", details={"errors": errors})

    def external_id(self, record: LinearNotification) -> str:
        return record.id
