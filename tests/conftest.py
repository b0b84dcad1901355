"""Shared test fixtures."""

from datetime import datetime, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from unibox.config import Settings
from unibox.db.engine import create_db_engine, create_schema, create_session_factory
from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.integrations.connectors import ConnectorRegistry
from unibox.integrations.connectors.github import GithubNotificationConnector
from unibox.models.enums import IntegrationConnectionStatus, SourceKind
from unibox.models.integration_connection import Credentials
from unibox.services.credentials import StaticCredentialProvider
from unibox.services.id_generator import generate_id
from unibox.services.sync_coordinator import SyncCoordinator
from unibox.services.webhook_signatures import HmacSha256Verifier, SlackSignatureVerifier
from unibox.workers.orchestrator import JobOrchestrator
from unibox.workers.queue import InMemoryQueueBackend

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
SLACK_SECRET = "slack-test-secret"
TODOIST_SECRET = "todoist-test-secret"


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite so each session gets its own connection."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'unibox_test.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    """Fast retries, small bounds."""
    return Settings(
        job_max_attempts=3,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        busy_key_requeue_delay_seconds=0.01,
        worker_concurrency=4,
        worker_poll_timeout_seconds=0.05,
        sync_interval_seconds=300,
    )


@pytest.fixture
def queue_backend():
    return InMemoryQueueBackend()


@pytest.fixture
def github_api():
    """Mutable GitHub fake: set ``github_api["notifications"]`` to what /notifications returns.

    Thread endpoints answer ``thread_status``; every request lands in ``requests``.
    """
    state = {"notifications": [], "status": 200, "headers": {}, "calls": 0, "thread_status": None, "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["calls"] += 1
        state["requests"].append(request)
        if request.url.path.startswith("/notifications/threads/"):
            status = state["thread_status"] or (205 if request.method == "PATCH" else 200)
            return httpx.Response(status, json={} if status == 200 else None)
        if request.url.path != "/notifications":
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(state["status"], json=state["notifications"], headers=state["headers"])

    state["transport"] = httpx.MockTransport(handler)
    return state


@pytest.fixture
def connectors(github_api):
    return ConnectorRegistry(
        overrides={
            SourceKind.GITHUB_NOTIFICATION: GithubNotificationConnector(transport=github_api["transport"]),
        }
    )


@pytest.fixture
def credential_provider():
    return StaticCredentialProvider(default=Credentials(access_token="test-token"))


@pytest.fixture
def coordinator(session_factory, credential_provider, connectors):
    return SyncCoordinator(
        session_factory,
        credential_provider,
        connectors=connectors,
        fetch_timeout=5.0,
        clock=lambda: NOW,
    )


@pytest.fixture
def orchestrator(session_factory, queue_backend, coordinator, test_settings):
    return JobOrchestrator(session_factory, queue_backend, coordinator, config=test_settings)


@pytest.fixture
def make_connection(session_factory):
    """Factory: insert and commit an integration connection row."""

    async def _make(
        user_id: str = "usr_u",
        source_kind: SourceKind = SourceKind.GITHUB_NOTIFICATION,
        status: IntegrationConnectionStatus = IntegrationConnectionStatus.VALIDATED,
        enabled: bool = True,
        config: dict | None = None,
    ) -> IntegrationConnectionRow:
        row = IntegrationConnectionRow(
            connection_id=generate_id("conn_"),
            user_id=user_id,
            source_kind=source_kind,
            status=status,
            enabled=enabled,
            config=config or {},
            credential_ref="TEST_TOKEN",
        )
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    return _make


@pytest.fixture
def github_notification():
    """Factory for a GitHub notification thread payload."""

    def _build(
        thread_id: str = "42",
        unread: bool = True,
        updated_at: str = "2026-03-01T10:00:00Z",
        title: str = "Fix flaky sync test",
        subject_type: str = "PullRequest",
    ) -> dict:
        return {
            "id": thread_id,
            "unread": unread,
            "reason": "review_requested",
            "updated_at": updated_at,
            "last_read_at": None if unread else updated_at,
            "subject": {
                "title": title,
                "url": f"https://api.github.com/repos/acme/api/pulls/{thread_id}",
                "latest_comment_url": None,
                "type": subject_type,
            },
            "repository": {"full_name": "acme/api", "html_url": "https://github.com/acme/api"},
        }

    return _build


@pytest.fixture
def app(session_factory, orchestrator):
    """Create a test application instance wired to the test DB and in-memory queue."""
    from unibox.main import create_app

    _app = create_app()
    _app.state.db_session_factory = session_factory
    _app.state.redis = None
    _app.state.orchestrator = orchestrator
    _app.state.webhook_verifiers = {
        "slack": SlackSignatureVerifier(SLACK_SECRET),
        "todoist": HmacSha256Verifier(TODOIST_SECRET, "X-Todoist-Hmac-SHA256", encoding="base64"),
    }
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
