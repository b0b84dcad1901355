"""Background scheduler for periodic connection syncs."""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def run_scheduler(orchestrator, poll_interval: float | None = None) -> None:
    """Background task that periodically enqueues overdue sync jobs."""
    interval = poll_interval or orchestrator.config.scheduler_poll_interval_seconds
    logger.info("Sync scheduler started (poll_interval=%ss)", interval)

    while True:
        try:
            count = await orchestrator.schedule_due_syncs()
            if count:
                logger.info("Scheduler enqueued %d sync jobs", count)
            await asyncio.sleep(interval)

        except asyncio.CancelledError:
            logger.info("Sync scheduler stopped")
            break
        except Exception as exc:
            logger.exception("Scheduler error: %s", exc)
            # Continue running despite errors
            await asyncio.sleep(interval)
