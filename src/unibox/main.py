"""FastAPI application factory and lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from unibox.config import settings
from unibox.logging_config import configure_logging

# Configure logging at import time
configure_logging(log_level=settings.log_level, local_mode=settings.local_mode)

logger = logging.getLogger(__name__)


def build_queue_backend():
    """In-memory queue in local mode, Redis otherwise. Returns (backend, redis)."""
    from unibox.workers.queue import InMemoryQueueBackend, RedisQueueBackend

    if settings.local_mode:
        return InMemoryQueueBackend(), None

    import redis.asyncio as aioredis

    redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return RedisQueueBackend(redis, queue_name=settings.queue_name), redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    from unibox.db.engine import create_db_engine, create_schema, create_session_factory
    from unibox.events.error_channel import build_error_channel
    from unibox.integrations.connectors import ConnectorRegistry
    from unibox.services.credentials import EnvCredentialProvider
    from unibox.services.sync_coordinator import SyncCoordinator
    from unibox.workers.orchestrator import JobOrchestrator
    from unibox.workers.scheduler import run_scheduler

    engine = create_db_engine()

    # Auto-create tables for SQLite (local dev, no migrations)
    if settings.local_mode:
        await create_schema(engine)
        logger.info("SQLite tables created (local mode)")

    session_factory = create_session_factory(engine)
    backend, redis = build_queue_backend()

    coordinator = SyncCoordinator(
        session_factory,
        EnvCredentialProvider(),
        connectors=ConnectorRegistry(),
    )
    orchestrator = JobOrchestrator(
        session_factory,
        backend,
        coordinator,
        error_channel=build_error_channel(settings),
        config=settings,
    )

    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.redis = redis
    app.state.orchestrator = orchestrator

    await orchestrator.start(requeue_queued=settings.local_mode)
    scheduler_task = asyncio.create_task(run_scheduler(orchestrator))

    logger.info("Unibox API started (db=%s, queue=%s)", engine.dialect.name, "memory" if redis is None else "redis")
    yield

    # Shutdown
    scheduler_task.cancel()
    try:
        await scheduler_task
    except asyncio.CancelledError:
        pass
    await orchestrator.stop()
    await backend.close()
    await engine.dispose()
    logger.info("Unibox API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Unibox API",
        version="0.4.0",
        description="Universal inbox: notifications and tasks synchronized from external services.",
        lifespan=lifespan,
    )

    from unibox.services.webhook_signatures import build_verifiers
    app.state.webhook_verifiers = build_verifiers(settings)

    from unibox.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    # Register error handlers
    from unibox.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    # Import and mount routers
    from unibox.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
