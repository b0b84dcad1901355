"""Pydantic models for sync jobs and their queue messages."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from unibox.models.common import ErrorDetail
from unibox.models.enums import JobStatus, JobType, SourceKind


class JobMessage(BaseModel):
    """What travels through the queue backend. The JobRow stays authoritative."""

    model_config = ConfigDict(extra="forbid")

    job_id: str
    serial_key: str


class JobHandle(BaseModel):
    """Returned to callers that enqueue work (sync_now, webhook ingress)."""

    job_id: str
    status: JobStatus
    job_type: JobType
    source_kind: SourceKind
    deduplicated: bool = False


class SyncReport(BaseModel):
    """Outcome counters of one sync run."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    untouched: int = 0
    skipped: int = 0
    conflicts: int = 0
    stale: int = 0
    notifications_written: int = 0
    tasks_written: int = 0
    source_action: str | None = None
    skipped_reason: str | None = None
    errors: list[str] = Field(default_factory=list)


class JobStatusModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    job_type: JobType
    status: JobStatus
    user_id: str
    connection_id: str | None = None
    source_kind: SourceKind
    attempts: int
    max_attempts: int
    next_run_at: datetime | None = None
    result: SyncReport | None = None
    errors: list[ErrorDetail] | None = None
    trace_id: str
    created_at: datetime
    updated_at: datetime


class DeadLetterEnvelope(BaseModel):
    """What the operator error channel receives for a dead-lettered job."""

    schema_version: str = "1.0"
    event_type: str = "job.dead_lettered"
    event_id: str
    occurred_at: datetime
    job_id: str
    user_id: str
    source_kind: SourceKind
    attempts: int
    last_error: ErrorDetail | None = None
    trace_id: str
    signature: str | None = None
