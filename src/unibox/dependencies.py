"""FastAPI dependency injection providers."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from unibox.errors.exceptions import AuthenticationError
from unibox.services.inbox import InboxService
from unibox.workers.orchestrator import JobOrchestrator


async def get_db(request: Request) -> AsyncGenerator:
    """Yield a database session from the app's session factory."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_orchestrator(request: Request) -> JobOrchestrator:
    """Return the process-wide orchestrator built in the lifespan."""
    return request.app.state.orchestrator


def get_trace_id(request: Request) -> str:
    """Extract trace_id from request state (set by middleware)."""
    return getattr(request.state, "trace_id", "unknown")


def get_current_user_id(request: Request) -> str:
    """User id asserted by the authenticating gateway in ``X-User-Id``."""
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        raise AuthenticationError("X-User-Id header required")
    return user_id


async def get_inbox_service(
    db: AsyncSession = Depends(get_db),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> InboxService:
    return InboxService(db, orchestrator)


# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
Orchestrator = Annotated[JobOrchestrator, Depends(get_orchestrator)]
TraceId = Annotated[str, Depends(get_trace_id)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
Inbox = Annotated[InboxService, Depends(get_inbox_service)]
