"""Integration connection management."""

from fastapi import APIRouter

from unibox.dependencies import CurrentUserId, Inbox
from unibox.models.integration_connection import IntegrationConnectionCreate, IntegrationConnectionPatch

router = APIRouter(tags=["Connections"])


@router.get("/connections")
async def list_connections(user_id: CurrentUserId, inbox: Inbox) -> list[dict]:
    rows = await inbox.list_connections(user_id)
    return [r.model_dump(mode="json") for r in rows]


@router.post("/connections", status_code=201)
async def create_connection(
    data: IntegrationConnectionCreate,
    user_id: CurrentUserId,
    inbox: Inbox,
) -> dict:
    created = await inbox.create_connection(user_id, data)
    return created.model_dump(mode="json")


@router.patch("/connections/{connection_id}")
async def update_connection(
    connection_id: str,
    patch: IntegrationConnectionPatch,
    user_id: CurrentUserId,
    inbox: Inbox,
) -> dict:
    updated = await inbox.update_connection(user_id, connection_id, patch)
    return updated.model_dump(mode="json")


@router.post("/connections/{connection_id}/test")
async def test_connection(connection_id: str, user_id: CurrentUserId, inbox: Inbox) -> dict:
    tested = await inbox.test_connection(user_id, connection_id)
    return tested.model_dump(mode="json")
