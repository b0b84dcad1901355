"""String enums shared by the ORM rows, API models and the sync engine."""

from enum import IntEnum, StrEnum


class SourceKind(StrEnum):
    """One tag per integration; selects the connector and the normalizer."""

    GITHUB_NOTIFICATION = "github_notification"
    LINEAR_NOTIFICATION = "linear_notification"
    SLACK_STAR = "slack_star"
    SLACK_REACTION = "slack_reaction"
    GOOGLE_CALENDAR_EVENT = "google_calendar_event"
    GOOGLE_DRIVE_COMMENT = "google_drive_comment"
    TODOIST_ITEM = "todoist_item"


class ThirdPartyItemStatus(StrEnum):
    NEW = "new"
    PROCESSED = "processed"
    DELETED = "deleted"


class NotificationStatus(StrEnum):
    UNREAD = "unread"
    READ = "read"
    DELETED = "deleted"
    UNSUBSCRIBED = "unsubscribed"


class TaskStatus(StrEnum):
    ACTIVE = "active"
    DONE = "done"
    DELETED = "deleted"


class TaskPriority(IntEnum):
    P1 = 1
    P2 = 2
    P3 = 3
    P4 = 4


class IntegrationConnectionStatus(StrEnum):
    CREATED = "created"
    VALIDATED = "validated"
    FAILING = "failing"
    DISABLED = "disabled"


class JobType(StrEnum):
    SYNC_SOURCE = "sync_source"
    WEBHOOK_EVENT = "webhook_event"
    SOURCE_ACTION = "source_action"


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


class UpsertStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNTOUCHED = "untouched"


TERMINAL_NOTIFICATION_STATUSES = frozenset({NotificationStatus.DELETED, NotificationStatus.UNSUBSCRIBED})
TERMINAL_TASK_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.DELETED})
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.DEAD_LETTERED})
