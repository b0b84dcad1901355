"""Health check endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text

from unibox.db.models.job import JobRow

router = APIRouter()

SERVICE_NAME = "unibox"
SERVICE_VERSION = "0.4.0"


@router.get("/health")
async def health_check():
    """Return service health status."""
    return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}


@router.get("/health/live")
async def liveness():
    """Liveness check: always 200 while the process is running."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(request: Request):
    """Readiness check: database, Redis and the sync worker pool.

    Also reports the job backlog by status so a stuck queue shows up next to
    the connectivity checks.
    """
    checks: dict[str, str] = {}
    jobs: dict[str, int] = {}
    overall_ok = True

    try:
        async with request.app.state.db_session_factory() as session:
            await session.execute(text("SELECT 1"))
            rows = await session.execute(select(JobRow.status, func.count()).group_by(JobRow.status))
            jobs = {str(status): count for status, count in rows.all()}
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"
        overall_ok = False

    # Redis is absent in local mode (in-memory queue)
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
            overall_ok = False
    else:
        checks["redis"] = "disabled"

    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        checks["workers"] = "not started"
        overall_ok = False
    else:
        checks["workers"] = "ok"

    return JSONResponse(
        status_code=200 if overall_ok else 503,
        content={
            "status": "ready" if overall_ok else "not_ready",
            "checks": checks,
            "active_workers": orchestrator.active_workers if orchestrator is not None else 0,
            "jobs": jobs,
        },
    )
