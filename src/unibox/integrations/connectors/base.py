"""Abstract base class for source connectors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from unibox.config import settings
from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.errors.exceptions import (
    AuthExpiredError,
    MalformedPayloadError,
    RateLimitedError,
    TransientNetworkError,
    UnsupportedOperationError,
)
from unibox.integrations.normalized import RawItem, ThirdPartyItemIn
from unibox.models.enums import NotificationStatus, SourceKind
from unibox.models.integration_connection import Credentials

logger = logging.getLogger(__name__)

_DEFAULT_RETRY_AFTER = 60.0


def parse_retry_after(value: str | None, default: float = _DEFAULT_RETRY_AFTER) -> float:
    """Parse a ``Retry-After`` header given either as seconds or as an HTTP date."""
    if not value:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    delta = (when - datetime.now(when.tzinfo)).total_seconds()
    return max(delta, 0.0)


class Connector(ABC):
    """Fetches raw items from one external source kind and maps them for storage.

    Connectors are stateless beyond the per-call credentials and never write
    to the database. ``fetch_items`` is a lazy, finite async iterator; if it
    fails part way the whole fetch is retried from the start by the job layer.
    """

    source_kind: ClassVar[SourceKind]
    # Pydantic schema of one native record; unknown fields are ignored
    item_schema: ClassVar[type[BaseModel]]
    default_base_url: ClassVar[str] = ""
    supports_webhooks: ClassVar[bool] = False
    # Inbox statuses this connector can push back to the provider
    source_actions: ClassVar[frozenset[NotificationStatus]] = frozenset()

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
    ):
        self._transport = transport
        self.timeout = timeout or settings.connector_timeout_seconds
        self.page_size = page_size or settings.connector_page_size

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @abstractmethod
    def fetch_items(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> AsyncIterator[RawItem]:
        """Yield every raw item currently visible to the connection."""
        ...

    def decode_webhook(self, payload: dict[str, Any]) -> RawItem:
        """Turn a pushed payload into a single raw item."""
        raise UnsupportedOperationError(f"{self.source_kind} does not accept webhooks")

    def webhook_account_id(self, payload: dict[str, Any]) -> str:
        """Provider-side account id a pushed payload belongs to, used to find the connection."""
        raise UnsupportedOperationError(f"{self.source_kind} does not accept webhooks")

    async def delete_notification_from_source(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        external_id: str,
        data: dict[str, Any],
    ) -> None:
        """Clear the item on the provider side after the user deleted its notification.

        ``data`` is the stored raw record. An item already gone upstream is not an error.
        """
        raise UnsupportedOperationError(f"{self.source_kind} cannot delete items at the source")

    async def unsubscribe_notification_from_source(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
        external_id: str,
        data: dict[str, Any],
    ) -> None:
        """Stop future activity on the item from reaching the user."""
        raise UnsupportedOperationError(f"{self.source_kind} cannot unsubscribe at the source")

    def supports_source_action(self, status: NotificationStatus | str) -> bool:
        return status in self.source_actions

    @abstractmethod
    def external_id(self, record: BaseModel) -> str:
        ...

    def source_updated_at(self, record: BaseModel) -> datetime | None:
        return getattr(record, "updated_at", None)

    def map_item(self, raw: RawItem, connection: IntegrationConnectionRow) -> ThirdPartyItemIn:
        """Validate one raw item against the source schema and key it.

        Raises:
            MalformedPayloadError: for this item only; callers skip it.
        """
        if raw.source_kind != self.source_kind:
            raise MalformedPayloadError(
                f"{self.source_kind} connector received a {raw.source_kind} item"
            )
        record = self.parse_record(raw.payload)
        return ThirdPartyItemIn(
            source_kind=self.source_kind,
            external_id=self.external_id(record),
            user_id=connection.user_id,
            connection_id=connection.connection_id,
            data=record.model_dump(mode="json", by_alias=True, exclude_none=True),
            source_updated_at=self.source_updated_at(record),
        )

    @classmethod
    def parse_record(cls, payload: dict[str, Any]) -> BaseModel:
        try:
            return cls.item_schema.model_validate(payload)
        except PydanticValidationError as exc:
            raise MalformedPayloadError(
                f"Invalid {cls.source_kind} payload",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

    async def test_connection(
        self,
        connection: IntegrationConnectionRow,
        credentials: Credentials,
    ) -> bool:
        """Return True if the credentials can list at least one page."""
        try:
            async for _ in self.fetch_items(connection, credentials):
                break
            return True
        except (AuthExpiredError, TransientNetworkError, RateLimitedError, MalformedPayloadError) as exc:
            logger.warning("%s connection test failed for %s: %s", self.source_kind, connection.connection_id, exc)
            return False

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def base_url(self, connection: IntegrationConnectionRow) -> str:
        return ((connection.config or {}).get("base_url") or self.default_base_url).rstrip("/")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        credentials: Credentials,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request, mapping failures onto the sync error taxonomy.

        Statuses listed in ``ok_statuses`` are returned as-is instead of raising.
        """
        headers = {**credentials.get_headers(), **kwargs.pop("headers", {})}
        ok_statuses = kwargs.pop("ok_statuses", ())
        try:
            response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{self.source_kind} request timed out: {url}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{self.source_kind} transport error: {exc}") from exc

        status = response.status_code
        if status in ok_statuses:
            return response
        if status in (401, 403):
            raise AuthExpiredError(
                f"{self.source_kind} rejected the credential (HTTP {status})",
                details={"url": url},
            )
        if status == 429:
            raise RateLimitedError(parse_retry_after(response.headers.get("Retry-After")))
        if status >= 500:
            raise TransientNetworkError(
                f"{self.source_kind} returned HTTP {status}",
                details={"url": url, "body": response.text[:500]},
            )
        if status >= 400:
            raise MalformedPayloadError(
                f"{self.source_kind} returned HTTP {status}",
                details={"url": url, "body": response.text[:500]},
            )
        return response

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        credentials: Credentials,
        **kwargs: Any,
    ) -> Any:
        response = await self._request(client, "GET", url, credentials, **kwargs)
        return self._json(response)

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"Non-JSON response from {self.source_kind}") from exc
