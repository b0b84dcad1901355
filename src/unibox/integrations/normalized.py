"""Normalized data models: canonical intermediates between connectors and Unibox.

Connectors produce ``RawItem`` and map it into ``ThirdPartyItemIn``; the
pipeline turns a stored third-party item into drafts; the repositories turn
drafts into rows.
"""

import hashlib
import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from unibox.models.enums import NotificationStatus, SourceKind, TaskPriority, TaskStatus
from unibox.models.patch import PatchModel, reject_explicit_null


def content_hash(data: dict[str, Any]) -> str:
    """sha256 over the canonical JSON form of a payload."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class RawItem(BaseModel):
    """One native record as the provider returned it (polling) or pushed it (webhook)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    source_kind: SourceKind
    payload: dict[str, Any]


class ThirdPartyItemIn(BaseModel):
    """A raw item validated and keyed, ready for the third-party item store."""

    model_config = ConfigDict(extra="forbid")

    source_kind: SourceKind
    external_id: str = Field(..., min_length=1)
    user_id: str
    connection_id: str | None = None
    data: dict[str, Any]
    source_updated_at: datetime | None = None

    @property
    def content_hash(self) -> str:
        return content_hash(self.data)


class NotificationDraft(PatchModel):
    """Candidate notification produced by a normalizer.

    ``title`` and ``status`` are always carried; optional fields are carried
    only when the normalizer passes them.
    """

    title: str
    status: NotificationStatus
    source_html_url: str | None = None
    last_read_at: datetime | None = None


class TaskDraft(PatchModel):
    """Candidate task produced by a normalizer."""

    title: str
    status: TaskStatus
    body: str | None = None
    priority: TaskPriority | None = None
    due_at: datetime | None = None
    project: str | None = None
    tags: list[str] | None = None
    source_html_url: str | None = None

    @field_validator("priority", "project")
    @classmethod
    def _not_null(cls, v, info):
        return reject_explicit_null(v, info.field_name)


class NormalizationContext(BaseModel):
    """Inputs besides the payload that a normalizer may read.

    Passing the reference time in keeps normalizers pure.
    """

    model_config = ConfigDict(frozen=True)

    now: datetime
    connection_config: dict[str, Any] = Field(default_factory=dict)
    calendar_window_hours: int = 24

    def option(self, key: str, default: Any = None) -> Any:
        return self.connection_config.get(key, default)


class NormalizationResult(BaseModel):
    notification: NotificationDraft | None = None
    task: TaskDraft | None = None

    @property
    def is_empty(self) -> bool:
        return self.notification is None and self.task is None
