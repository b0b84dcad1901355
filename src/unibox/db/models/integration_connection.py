"""Integration connection table."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from unibox.db.base import Base, TimestampMixin, UTCDateTime


class IntegrationConnectionRow(Base, TimestampMixin):
    """A user's connection to one external source kind."""

    __tablename__ = "integration_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "source_kind", name="uq_connection_user_source"),
    )

    connection_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    source_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="created")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    credential_ref: Mapped[str | None] = mapped_column(String(256), nullable=True)
    failure_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_sync_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_sync_failure_message: Mapped[str | None] = mapped_column(Text, nullable=True)
