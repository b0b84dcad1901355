"""Connector registry: maps a source kind to a lazily imported class path."""

from unibox.models.enums import SourceKind

AVAILABLE_CONNECTORS: dict[SourceKind, str] = {
    # Issue trackers
    SourceKind.GITHUB_NOTIFICATION: "unibox.integrations.connectors.github.GithubNotificationConnector",
    SourceKind.LINEAR_NOTIFICATION: "unibox.integrations.connectors.linear.LinearNotificationConnector",
    # Chat
    SourceKind.SLACK_STAR: "unibox.integrations.connectors.slack.SlackStarConnector",
    SourceKind.SLACK_REACTION: "unibox.integrations.connectors.slack.SlackReactionConnector",
    # Calendar
    SourceKind.GOOGLE_CALENDAR_EVENT: "unibox.integrations.connectors.google_calendar.GoogleCalendarConnector",
    # File share
    SourceKind.GOOGLE_DRIVE_COMMENT: "unibox.integrations.connectors.google_drive.GoogleDriveCommentConnector",
    # Task lists
    SourceKind.TODOIST_ITEM: "unibox.integrations.connectors.todoist.TodoistItemConnector",
}

# Webhook providers and the source kinds they may push
WEBHOOK_PROVIDERS: dict[str, tuple[SourceKind, ...]] = {
    "slack": (SourceKind.SLACK_STAR, SourceKind.SLACK_REACTION),
    "todoist": (SourceKind.TODOIST_ITEM,),
}


def import_connector(dotted_path: str):
    """Import a connector class from its dotted module path."""
    import importlib

    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


class ConnectorRegistry:
    """Instantiates one connector per source kind, on first use.

    ``overrides`` lets callers (tests, alternative deployments) plug in
    pre-built connector instances for given kinds.
    """

    def __init__(self, overrides: dict | None = None, **connector_kwargs):
        self._connectors: dict = dict(overrides or {})
        self._connector_kwargs = connector_kwargs

    def get(self, source_kind: SourceKind | str):
        kind = SourceKind(source_kind)
        if kind not in self._connectors:
            dotted = AVAILABLE_CONNECTORS.get(kind)
            if not dotted:
                raise ValueError(f"Unknown source kind: {source_kind}")
            cls = import_connector(dotted)
            self._connectors[kind] = cls(**self._connector_kwargs)
        return self._connectors[kind]


def webhook_source_kind(provider: str, payload: dict) -> SourceKind:
    """Source kind a pushed payload belongs to, for providers that push several."""
    kinds = WEBHOOK_PROVIDERS.get(provider)
    if not kinds:
        raise ValueError(f"Unknown webhook provider: {provider}")
    if provider == "slack":
        from unibox.integrations.connectors.slack import slack_event_source_kind

        return slack_event_source_kind(payload)
    return kinds[0]
