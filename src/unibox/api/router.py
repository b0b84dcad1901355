"""Master API router mounted at /api/v1."""

from fastapi import APIRouter
from unibox.api.routes import (
    connections,
    health,
    jobs,
    notifications,
    sync,
    tasks,
    webhooks,
)

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(sync.router)
api_router.include_router(notifications.router)
api_router.include_router(tasks.router)
api_router.include_router(jobs.router)
api_router.include_router(connections.router)
api_router.include_router(webhooks.router)
