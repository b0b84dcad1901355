"""Notification storage table."""

from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from unibox.db.base import Base, TimestampMixin, UTCDateTime


class NotificationRow(Base, TimestampMixin):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("user_id", "third_party_item_id", name="uq_notification_user_item"),
    )

    notification_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    source_kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Weak reference: deleting the raw item severs provenance, keeps the notification
    third_party_item_id: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("third_party_items.third_party_item_id", ondelete="SET NULL"),
        nullable=True,
    )
    source_html_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unread", index=True)
    source_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    snoozed_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    task_id: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("tasks.task_id", ondelete="SET NULL"),
        nullable=True,
    )
