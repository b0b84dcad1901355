"""Google Drive comments connector (file-share source)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.integrations.connectors.base import Connector
from unibox.integrations.normalized import RawItem
from unibox.models.enums import SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)

_COMMENT_FIELDS = "comments(id,content,author(displayName,emailAddress),modifiedTime,resolved,deleted),nextPageToken"


class DriveCommentAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    display_name: str = Field("Someone", alias="displayName")
    email_address: str | None = Field(None, alias="emailAddress")


class GoogleDriveComment(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    file_id: str
    file_name: str
    file_url: str | None = None
    content: str = ""
    author: DriveCommentAuthor = Field(default_factory=DriveCommentAuthor)
    modified_time: datetime = Field(..., alias="modifiedTime")
    resolved: bool = False
    deleted: bool = False

    @property
    def updated_at(self) -> datetime:
        return self.modified_time


class GoogleDriveCommentConnector(Connector):
    """Lists comments on the files listed in connection config ``file_ids``."""

    source_kind = SourceKind.GOOGLE_DRIVE_COMMENT
    item_schema = GoogleDriveComment
    default_base_url = "https://www.googleapis.com/drive/v3"

    async def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        base = self.base_url(connection)
        file_ids: list[str] = (connection.config or {}).get("file_ids", [])

        async with self.client() as client:
            for file_id in file_ids:
                file_url = f"{base}/files/{quote(file_id, safe='')}"
                meta = await self._get_json(client, file_url, credentials, params={"fields": "name,webViewLink"})
                page_token: str | None = None
                while True:
                    params = {"fields": _COMMENT_FIELDS, "pageSize": str(self.page_size), "includeDeleted": "true"}
                    if page_token:
                        params["pageToken"] = page_token
                    body = await self._get_json(client, f"{file_url}/comments", credentials, params=params)
                    for comment in body.get("comments", []):
                        yield RawItem(
                            source_kind=self.source_kind,
                            payload={
                                **comment,
                                "file_id": file_id,
                                "file_name": meta.get("name", file_id),
                                "file_url": meta.get("webViewLink"),
                            },
                        )
                    page_token = body.get("nextPageToken")
                    if not page_token:
                        break

    def external_id(self, record: GoogleDriveComment) -> str:
        return f"{record.file_id}:{record.id}"
