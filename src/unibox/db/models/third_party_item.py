"""Third-party item table: raw, source-tagged payloads."""

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from unibox.db.base import Base, TimestampMixin, UTCDateTime


class ThirdPartyItemRow(Base, TimestampMixin):
    __tablename__ = "third_party_items"
    __table_args__ = (
        UniqueConstraint("source_kind", "external_id", "user_id", name="uq_third_party_item_source_key"),
    )

    third_party_item_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    source_kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(256), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    connection_id: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("integration_connections.connection_id", ondelete="SET NULL"),
        nullable=True,
    )
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    source_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new", index=True)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
