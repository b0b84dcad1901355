"""Base repository with common CRUD operations."""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.db.base import Base
from unibox.models.enums import NotificationStatus, UpsertStatus

T = TypeVar("T", bound=Base)


@dataclass
class UpsertResult(Generic[T]):
    """Outcome of an insert-or-update keyed on a natural key."""

    status: UpsertStatus
    row: T
    # The source reported a later update time than the stored one
    source_advanced: bool = False

    @property
    def changed(self) -> bool:
        return self.status != UpsertStatus.UNTOUCHED


@dataclass
class UpdateResult(Generic[T]):
    """Outcome of a patch on an existing row."""

    updated: bool
    row: T


class BaseRepository(Generic[T]):
    """Generic async repository for SQLAlchemy models.

    Repositories flush but never commit; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession, model_class: type[T]):
        self.session = session
        self.model_class = model_class

    async def get_by_id(self, pk_field: str, pk_value: str, for_update: bool = False) -> T | None:
        """Get a single record by primary key."""
        stmt = select(self.model_class).where(
            getattr(self.model_class, pk_field) == pk_value
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **kwargs: Any) -> T:
        """Create and persist a new record."""
        row = self.model_class(**kwargs)
        self.session.add(row)
        await self.session.flush()
        return row


def resolve_source_status(current: str, previous_source: str | None, incoming: str, reopen: bool = False) -> str:
    """Pick the status to store when the source reports ``incoming``.

    A status the source has not changed since the last sync leaves the
    stored value alone, so a local edit sticks. A changed source status,
    terminal ones included, replaces it.

    With ``reopen`` (the item saw new activity upstream) an unread report
    also replaces a local read or delete. An unsubscribe stays.
    """
    if incoming == previous_source:
        if reopen and incoming == NotificationStatus.UNREAD and current != NotificationStatus.UNSUBSCRIBED:
            return incoming
        return current
    return incoming
