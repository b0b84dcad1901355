"""API tests: sync trigger, job polling, notifications, tasks, connections."""

import pytest

from unibox.models.enums import IntegrationConnectionStatus, SourceKind

USER = {"X-User-Id": "usr_u"}
OTHER = {"X-User-Id": "usr_other"}


async def _sync_and_run(client, orchestrator, **params) -> list[dict]:
    response = await client.post("/api/v1/sync", headers=USER, params=params)
    assert response.status_code == 202
    handles = response.json()
    for _ in handles:
        assert await orchestrator.run_once()
    return handles


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_user_header_required(client):
    response = await client.get("/api/v1/notifications")
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "AUTHENTICATION_ERROR"
    assert body["error"]["trace_id"] == response.headers["X-Trace-Id"]


@pytest.mark.asyncio
async def test_trace_id_propagates(client):
    response = await client.get("/api/v1/notifications", headers={**USER, "X-Trace-Id": "trc_given"})
    assert response.headers["X-Trace-Id"] == "trc_given"


# ---------------------------------------------------------------------------
# Sync and jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_now_runs_job(client, orchestrator, make_connection, github_api, github_notification):
    await make_connection()
    github_api["notifications"] = [github_notification("42")]

    [handle] = await _sync_and_run(client, orchestrator)
    assert handle["job_type"] == "sync_source"
    assert handle["status"] == "queued"

    job = (await client.get(f"/api/v1/jobs/{handle['job_id']}", headers=USER)).json()
    assert job["status"] == "completed"
    assert job["result"]["created"] == 1

    notifications = (await client.get("/api/v1/notifications", headers=USER)).json()
    assert len(notifications) == 1
    assert notifications[0]["status"] == "unread"
    assert notifications[0]["source_html_url"] == "https://github.com/acme/api/pull/42"


@pytest.mark.asyncio
async def test_sync_now_unknown_source(client, make_connection):
    await make_connection()
    response = await client.post("/api/v1/sync", headers=USER, params={"source_kind": "todoist_item"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_job_hidden_from_other_users(client, orchestrator, make_connection):
    await make_connection()
    [handle] = await _sync_and_run(client, orchestrator)
    response = await client.get(f"/api/v1/jobs/{handle['job_id']}", headers=OTHER)
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_patch_notification_sticks_across_resync(
    client, orchestrator, make_connection, github_api, github_notification
):
    await make_connection()
    github_api["notifications"] = [github_notification("42")]
    await _sync_and_run(client, orchestrator)
    [notification] = (await client.get("/api/v1/notifications", headers=USER)).json()

    response = await client.patch(
        f"/api/v1/notifications/{notification['notification_id']}", headers=USER, json={"status": "read"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "read"
    assert response.json()["last_read_at"] is not None

    await _sync_and_run(client, orchestrator)
    [after] = (await client.get("/api/v1/notifications", headers=USER)).json()
    assert after["status"] == "read"


@pytest.mark.asyncio
async def test_snooze_hides_then_clear_restores(client, orchestrator, make_connection, github_api, github_notification):
    await make_connection()
    github_api["notifications"] = [github_notification("42")]
    await _sync_and_run(client, orchestrator)
    [notification] = (await client.get("/api/v1/notifications", headers=USER)).json()
    url = f"/api/v1/notifications/{notification['notification_id']}"

    snoozed = await client.patch(url, headers=USER, json={"snoozed_until": "2999-01-01T00:00:00Z"})
    assert snoozed.json()["is_snoozed"] is True
    assert (await client.get("/api/v1/notifications", headers=USER)).json() == []
    listed = (await client.get("/api/v1/notifications", headers=USER, params={"include_snoozed": True})).json()
    assert len(listed) == 1

    cleared = await client.patch(url, headers=USER, json={"snoozed_until": None})
    assert cleared.json()["snoozed_until"] is None
    assert len((await client.get("/api/v1/notifications", headers=USER)).json()) == 1


@pytest.mark.asyncio
async def test_patch_notification_errors(client, orchestrator, make_connection, github_api, github_notification):
    await make_connection()
    github_api["notifications"] = [github_notification("42")]
    await _sync_and_run(client, orchestrator)
    [notification] = (await client.get("/api/v1/notifications", headers=USER)).json()
    url = f"/api/v1/notifications/{notification['notification_id']}"

    missing = await client.patch("/api/v1/notifications/ntf_missing", headers=USER, json={"status": "read"})
    assert missing.status_code == 404
    assert (await client.patch(url, headers=OTHER, json={"status": "read"})).status_code == 404
    assert (await client.patch(url, headers=USER, json={"status": None})).status_code == 422
    assert (await client.patch(url, headers=USER, json={"colour": "red"})).status_code == 422


async def _synced_notification(client, orchestrator, make_connection, github_api, github_notification) -> dict:
    await make_connection()
    github_api["notifications"] = [github_notification("42")]
    await _sync_and_run(client, orchestrator)
    [notification] = (await client.get("/api/v1/notifications", headers=USER)).json()
    return notification


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,method,path",
    [
        ("deleted", "PATCH", "/notifications/threads/42"),
        ("unsubscribed", "PUT", "/notifications/threads/42/subscription"),
    ],
)
async def test_terminal_patch_is_pushed_to_source(
    client, orchestrator, make_connection, github_api, github_notification, status, method, path
):
    notification = await _synced_notification(client, orchestrator, make_connection, github_api, github_notification)

    response = await client.patch(
        f"/api/v1/notifications/{notification['notification_id']}", headers=USER, json={"status": status}
    )
    assert response.status_code == 200
    assert orchestrator.backend.pending == 1

    assert await orchestrator.run_once()
    request = github_api["requests"][-1]
    assert (request.method, request.url.path) == (method, path)

    # Resyncing after the push leaves the local state alone
    github_api["notifications"] = []
    await _sync_and_run(client, orchestrator)
    listed = (await client.get("/api/v1/notifications", headers=USER, params={"status": status})).json()
    assert [n["notification_id"] for n in listed] == [notification["notification_id"]]


@pytest.mark.asyncio
async def test_read_patch_stays_local(client, orchestrator, make_connection, github_api, github_notification):
    notification = await _synced_notification(client, orchestrator, make_connection, github_api, github_notification)
    calls = github_api["calls"]

    url = f"/api/v1/notifications/{notification['notification_id']}"
    await client.patch(url, headers=USER, json={"status": "read"})
    assert orchestrator.backend.pending == 0

    # Deleting twice queues one push
    await client.patch(url, headers=USER, json={"status": "deleted"})
    await client.patch(url, headers=USER, json={"status": "deleted"})
    assert orchestrator.backend.pending == 1
    assert github_api["calls"] == calls


@pytest.mark.asyncio
async def test_list_notifications_filters_by_status(
    client, orchestrator, make_connection, github_api, github_notification
):
    await make_connection()
    github_api["notifications"] = [github_notification("1", title="A"), github_notification("2", title="B")]
    await _sync_and_run(client, orchestrator)
    github_api["notifications"] = [github_notification("1", title="A")]
    await _sync_and_run(client, orchestrator)

    live = (await client.get("/api/v1/notifications", headers=USER)).json()
    assert [n["title"] for n in live] == ["A"]
    deleted = (await client.get("/api/v1/notifications", headers=USER, params={"status": "deleted"})).json()
    assert [n["title"] for n in deleted] == ["B"]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_task_listing_and_patch(client, orchestrator, make_connection, github_api, github_notification):
    await make_connection(config={"create_tasks_from_discussions": True})
    github_api["notifications"] = [github_notification("9", subject_type="Discussion", title="RFC: queues")]
    await _sync_and_run(client, orchestrator)

    [task] = (await client.get("/api/v1/tasks", headers=USER)).json()
    assert task["title"] == "RFC: queues"
    assert task["priority"] == 4
    assert task["project"] == "Inbox"

    url = f"/api/v1/tasks/{task['task_id']}"
    done = await client.patch(url, headers=USER, json={"status": "done"})
    assert done.json()["completed_at"] is not None
    assert (await client.get("/api/v1/tasks", headers=USER)).json() == []

    retitled = await client.patch(url, headers=USER, json={"title": "RFC: job queues"})
    assert retitled.json()["status"] == "done"

    reopened = await client.patch(url, headers=USER, json={"status": "active", "due_at": "2026-04-01T00:00:00Z"})
    assert reopened.json()["status"] == "active"
    assert reopened.json()["completed_at"] is None
    cleared = await client.patch(url, headers=USER, json={"due_at": None})
    assert cleared.json()["due_at"] is None


@pytest.mark.asyncio
async def test_task_patch_rejects_clearing_title(client):
    response = await client.patch("/api/v1/tasks/tsk_any", headers=USER, json={"title": None})
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_list_connections(client):
    response = await client.post(
        "/api/v1/connections",
        headers=USER,
        json={"source_kind": "github_notification", "credential_ref": "GITHUB_TOKEN_USR_U"},
    )
    assert response.status_code == 201
    created = response.json()
    assert created["connection_id"].startswith("conn_")
    assert created["status"] == "created"
    assert created["sync_status_label"] == "never synced"

    duplicate = await client.post("/api/v1/connections", headers=USER, json={"source_kind": "github_notification"})
    assert duplicate.status_code == 409

    listed = (await client.get("/api/v1/connections", headers=USER)).json()
    assert [c["connection_id"] for c in listed] == [created["connection_id"]]
    assert (await client.get("/api/v1/connections", headers=OTHER)).json() == []


@pytest.mark.asyncio
async def test_new_credential_lifts_failing_state(client, make_connection):
    connection = await make_connection(status=IntegrationConnectionStatus.FAILING)
    url = f"/api/v1/connections/{connection.connection_id}"

    disabled = await client.patch(url, headers=USER, json={"enabled": False})
    assert disabled.json()["status"] == "failing"
    assert disabled.json()["enabled"] is False

    reconnected = await client.patch(url, headers=USER, json={"credential_ref": "NEW_TOKEN", "enabled": True})
    assert reconnected.json()["status"] == "created"


@pytest.mark.asyncio
async def test_connection_test_endpoint(client, make_connection, github_api):
    connection = await make_connection(status=IntegrationConnectionStatus.CREATED)
    url = f"/api/v1/connections/{connection.connection_id}/test"

    ok = await client.post(url, headers=USER)
    assert ok.json()["status"] == "validated"

    github_api["status"] = 401
    failing = await client.post(url, headers=USER)
    assert failing.json()["status"] == "failing"
    assert failing.json()["failure_message"] == "reconnect required"


@pytest.mark.asyncio
async def test_connection_test_unexpected_response(client, make_connection, github_api):
    """A provider answer that is not a notification page fails the connection instead of erroring."""
    connection = await make_connection(status=IntegrationConnectionStatus.CREATED)
    github_api["status"] = 404

    response = await client.post(f"/api/v1/connections/{connection.connection_id}/test", headers=USER)
    assert response.status_code == 200
    assert response.json()["status"] == "failing"


@pytest.mark.asyncio
async def test_failing_connection_not_synced(client, make_connection):
    await make_connection(status=IntegrationConnectionStatus.FAILING)
    response = await client.post("/api/v1/sync", headers=USER)
    assert response.json() == []


@pytest.mark.asyncio
async def test_sync_source_filter(client, orchestrator, make_connection):
    await make_connection()
    await make_connection(source_kind=SourceKind.TODOIST_ITEM)
    response = await client.post("/api/v1/sync", headers=USER, params={"source_kind": "github_notification"})
    assert [h["source_kind"] for h in response.json()] == ["github_notification"]


@pytest.mark.asyncio
async def test_overlong_trace_id_replaced(client):
    response = await client.get("/api/v1/notifications", headers={**USER, "X-Trace-Id": "x" * 500})
    assert response.headers["X-Trace-Id"].startswith("trc_")
