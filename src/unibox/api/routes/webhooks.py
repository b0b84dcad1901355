"""Webhook ingress: verify, decode, enqueue, answer 202."""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from unibox.dependencies import DBSession, Orchestrator, TraceId
from unibox.errors.exceptions import NotFoundError, ValidationError
from unibox.integrations.connectors import WEBHOOK_PROVIDERS, webhook_source_kind
from unibox.repositories.integration_connection_repo import IntegrationConnectionRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


@router.post("/webhooks/{provider}", status_code=202)
async def receive_webhook(
    provider: str,
    request: Request,
    db: DBSession,
    orchestrator: Orchestrator,
    trace_id: TraceId,
):
    """Accept a pushed event and queue a sync job for the item it names.

    Events for accounts with no connection are acknowledged and dropped so
    the provider does not keep redelivering them.
    """
    if provider not in WEBHOOK_PROVIDERS:
        raise NotFoundError("Webhook provider", provider)

    body = await request.body()
    request.app.state.webhook_verifiers[provider].verify(request.headers, body)

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ValidationError("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    # Slack endpoint ownership handshake
    if provider == "slack" and payload.get("type") == "url_verification":
        return JSONResponse(status_code=200, content={"challenge": payload.get("challenge")})

    source_kind = webhook_source_kind(provider, payload)
    connector = orchestrator.coordinator.connectors.get(source_kind)
    account_id = connector.webhook_account_id(payload)

    connection = await IntegrationConnectionRepository(db).find_by_provider_user(source_kind, account_id)
    if connection is None or not connection.enabled:
        logger.info("Dropping %s webhook for unknown or disabled account %s", source_kind, account_id)
        return {"status": "ignored"}

    mapped = connector.map_item(connector.decode_webhook(payload), connection)
    # The orchestrator writes the job in its own session
    await db.commit()
    handle = await orchestrator.enqueue_webhook(connection, mapped.external_id, payload, trace_id)
    return handle.model_dump(mode="json")
