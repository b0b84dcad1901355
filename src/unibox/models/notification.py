"""Pydantic models for the Notification entity."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from unibox.models.enums import NotificationStatus, SourceKind
from unibox.models.patch import PatchModel, reject_explicit_null


class NotificationModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    notification_id: str
    user_id: str
    title: str
    source_kind: SourceKind
    third_party_item_id: str | None = None
    source_html_url: str | None = None
    status: NotificationStatus
    snoozed_until: datetime | None = None
    last_read_at: datetime | None = None
    task_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def is_snoozed(self) -> bool:
        """Snoozed while ``snoozed_until`` is still in the future."""
        return self.snoozed_until is not None and self.snoozed_until > datetime.now(timezone.utc)

    @computed_field
    @property
    def effective_status(self) -> NotificationStatus:
        """Status consumers should display.

        An expired snooze on a read notification brings it back as unread; the
        stored row is never rewritten for that.
        """
        if (
            self.snoozed_until is not None
            and not self.is_snoozed
            and self.status == NotificationStatus.READ
            and (self.last_read_at is None or self.last_read_at < self.snoozed_until)
        ):
            return NotificationStatus.UNREAD
        return self.status


class NotificationPatch(PatchModel):
    """Inbox-side edit of a notification."""

    status: NotificationStatus | None = None
    snoozed_until: datetime | None = None
    task_id: str | None = None

    @field_validator("status")
    @classmethod
    def _status_not_null(cls, v):
        return reject_explicit_null(v, "status")


class NotificationFilter(BaseModel):
    """Listing filter for a user's notifications."""

    status: list[NotificationStatus] = Field(
        default_factory=lambda: [NotificationStatus.UNREAD, NotificationStatus.READ]
    )
    source_kind: SourceKind | None = None
    include_snoozed: bool = False
    with_task: bool | None = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)
