"""Task storage table."""

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from unibox.db.base import Base, TimestampMixin, UTCDateTime


class TaskRow(Base, TimestampMixin):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("user_id", "third_party_item_id", name="uq_task_user_item"),
    )

    task_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    source_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    due_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    project: Mapped[str] = mapped_column(String(200), nullable=False, default="Inbox")
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    source_kind: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    source_html_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    third_party_item_id: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("third_party_items.third_party_item_id", ondelete="SET NULL"),
        nullable=True,
    )
