"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.db.models.third_party_item import ThirdPartyItemRow
from unibox.db.models.task import TaskRow
from unibox.db.models.notification import NotificationRow
from unibox.db.models.job import JobRow

__all__ = [
    "IntegrationConnectionRow",
    "ThirdPartyItemRow",
    "TaskRow",
    "NotificationRow",
    "JobRow",
]
