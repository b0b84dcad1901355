"""Job orchestrator: enqueue, worker pool, per-key serialization and retries.

Job lifecycle::

    queued -> running -> completed | failed
    running -> queued            (retryable error, attempts left; cancellation)
    running -> dead_lettered     (retryable error, attempts exhausted)
    running -> completed         (requeue superseded by a newer queued job for the item)

Rate limits and cancellations requeue without spending an attempt.

The job row is the source of truth. Queue messages only point at it, so a
duplicate or stale message is dropped when the row is no longer ``queued``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unibox.config import Settings, settings as default_settings
from unibox.db.base import utcnow
from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.db.models.job import JobRow
from unibox.errors.exceptions import (
    ConflictError,
    RateLimitedError,
    SyncError,
    TransientStorageError,
    UniboxError,
)
from unibox.events.error_channel import ErrorChannel, LoggingErrorChannel, build_envelope
from unibox.logging_config import bind_job_context, clear_request_context
from unibox.models.enums import JobStatus, JobType, NotificationStatus
from unibox.models.job import JobHandle, JobMessage, SyncReport
from unibox.repositories.integration_connection_repo import IntegrationConnectionRepository
from unibox.repositories.job_repo import JobRepository
from unibox.services.id_generator import generate_id
from unibox.services.sync_coordinator import SyncCoordinator
from unibox.workers.queue import QueueBackend

logger = logging.getLogger(__name__)

_MAX_ERROR_HISTORY = 10


def serial_key(user_id: str, source_kind: str) -> str:
    return f"{user_id}:{source_kind}"


def dedup_key(source_kind: str, user_id: str, external_id: str) -> str:
    return f"{source_kind}:{user_id}:{external_id}"


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Exponential back-off: ``base * 2**(attempt - 1)``, capped at ``maximum``."""
    return min(base * (2 ** max(attempt - 1, 0)), maximum)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, SyncError):
        return exc.retryable
    if isinstance(exc, ConflictError):
        return True
    # Unexpected exceptions are treated as transient
    return not isinstance(exc, UniboxError)


def _to_handle(job: JobRow, deduplicated: bool = False) -> JobHandle:
    return JobHandle(
        job_id=job.job_id,
        status=job.status,
        job_type=job.job_type,
        source_kind=job.source_kind,
        deduplicated=deduplicated,
    )


class JobOrchestrator:
    """Owns the worker pool for one process.

    Built once at startup with its collaborators and passed to whoever needs
    to enqueue work; there is no module-level instance.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        backend: QueueBackend,
        coordinator: SyncCoordinator,
        error_channel: ErrorChannel | None = None,
        config: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.backend = backend
        self.coordinator = coordinator
        self.error_channel = error_channel or LoggingErrorChannel()
        self.config = config or default_settings
        self._workers: list[asyncio.Task] = []
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue_sync(
        self,
        connection: IntegrationConnectionRow,
        trace_id: str,
        skip_if_pending: bool = False,
    ) -> JobHandle | None:
        """Queue a full polling sync for one connection.

        With ``skip_if_pending`` nothing is queued (and None returned) while a
        periodic sync for the connection is already queued or running.
        """
        async with self.session_factory() as session:
            repo = JobRepository(session)
            if skip_if_pending and await repo.has_pending_for_connection(connection.connection_id):
                return None
            job = await repo.create(
                job_id=generate_id("job_"),
                job_type=JobType.SYNC_SOURCE,
                user_id=connection.user_id,
                connection_id=connection.connection_id,
                source_kind=connection.source_kind,
                serial_key=serial_key(connection.user_id, connection.source_kind),
                status=JobStatus.QUEUED,
                attempts=0,
                max_attempts=self.config.job_max_attempts,
                payload={},
                trace_id=trace_id,
            )
            await session.commit()

        await self.backend.enqueue(JobMessage(job_id=job.job_id, serial_key=job.serial_key))
        logger.info("Queued sync job %s for %s/%s", job.job_id, connection.user_id, connection.source_kind)
        return _to_handle(job)

    async def enqueue_webhook(
        self,
        connection: IntegrationConnectionRow,
        external_id: str,
        event: dict,
        trace_id: str,
    ) -> JobHandle:
        """Queue a webhook-triggered sync for one pushed item.

        While a job for the same item is still queued, the newer event replaces
        its payload and no second job is created. Two concurrent inserts for
        one item collide on the queued-dedup index; the loser folds its event
        into the winner.
        """
        key = dedup_key(connection.source_kind, connection.user_id, external_id)
        for attempt in (1, 2):
            async with self.session_factory() as session:
                repo = JobRepository(session)
                existing = await repo.find_queued_by_dedup(key)
                if existing is not None:
                    existing.payload = {"event": event}
                    existing.trace_id = trace_id
                    await session.commit()
                    logger.info("Webhook for %s collapsed into queued job %s", key, existing.job_id)
                    return _to_handle(existing, deduplicated=True)

                try:
                    job = await repo.create(
                        job_id=generate_id("job_"),
                        job_type=JobType.WEBHOOK_EVENT,
                        user_id=connection.user_id,
                        connection_id=connection.connection_id,
                        source_kind=connection.source_kind,
                        serial_key=serial_key(connection.user_id, connection.source_kind),
                        dedup_key=key,
                        status=JobStatus.QUEUED,
                        attempts=0,
                        max_attempts=self.config.job_max_attempts,
                        payload={"event": event},
                        trace_id=trace_id,
                    )
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    if attempt == 2:
                        raise ConflictError(f"Could not queue a webhook job for {key}") from exc
                    logger.info("Concurrent webhook job for %s, folding into it", key)
                    continue

            await self.backend.enqueue(JobMessage(job_id=job.job_id, serial_key=job.serial_key))
            return _to_handle(job)

    async def enqueue_source_action(
        self,
        connection: IntegrationConnectionRow,
        third_party_item_id: str,
        action: NotificationStatus,
        trace_id: str,
    ) -> JobHandle:
        """Queue pushing a local delete or unsubscribe back to the provider.

        Shares the serial key of the connection's syncs.
        """
        async with self.session_factory() as session:
            job = await JobRepository(session).create(
                job_id=generate_id("job_"),
                job_type=JobType.SOURCE_ACTION,
                user_id=connection.user_id,
                connection_id=connection.connection_id,
                source_kind=connection.source_kind,
                serial_key=serial_key(connection.user_id, connection.source_kind),
                status=JobStatus.QUEUED,
                attempts=0,
                max_attempts=self.config.job_max_attempts,
                payload={"action": str(action), "third_party_item_id": third_party_item_id},
                trace_id=trace_id,
            )
            await session.commit()

        await self.backend.enqueue(JobMessage(job_id=job.job_id, serial_key=job.serial_key))
        logger.info("Queued %s push job %s for item %s", action, job.job_id, third_party_item_id)
        return _to_handle(job)

    async def schedule_due_syncs(self) -> int:
        """Queue a periodic sync for every connection that is due. Returns the count."""
        interval = self.config.sync_interval_seconds
        async with self.session_factory() as session:
            due = await IntegrationConnectionRepository(session).list_due(interval)

        enqueued = 0
        for connection in due:
            # Lease per connection so several scheduler instances don't double-queue
            if await self.backend.acquire_key(f"scheduler:{connection.connection_id}", interval) is None:
                continue
            handle = await self.enqueue_sync(
                connection, trace_id=f"scheduler_{connection.connection_id}", skip_if_pending=True
            )
            if handle is not None:
                enqueued += 1
        return enqueued

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    @property
    def active_workers(self) -> int:
        return sum(1 for task in self._workers if not task.done())

    async def start(self, concurrency: int | None = None, requeue_queued: bool = False) -> None:
        await self.recover(requeue_queued=requeue_queued)
        self._stopping.clear()
        count = concurrency or self.config.worker_concurrency
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"unibox-worker-{i}") for i in range(count)
        ]
        logger.info("Started %d sync workers", count)

    async def stop(self) -> None:
        self._stopping.set()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Sync workers stopped")

    async def recover(self, requeue_queued: bool = False) -> int:
        """Put jobs left ``running`` by a dead process back in the queue.

        With ``requeue_queued`` (in-process backend) queued jobs are re-sent too,
        since their messages did not survive the restart.
        """
        async with self.session_factory() as session:
            repo = JobRepository(session)
            stranded = []
            for job in await repo.list_by_status(JobStatus.RUNNING, limit=1000):
                if await self._supersede(repo, job):
                    continue
                job.status = JobStatus.QUEUED
                await session.flush()
                stranded.append(job)
            queued = await repo.list_by_status(JobStatus.QUEUED, limit=1000) if requeue_queued else stranded
            await session.commit()

        for job in queued:
            await self.backend.enqueue(JobMessage(job_id=job.job_id, serial_key=job.serial_key))
        if queued:
            logger.info("Recovered %d job(s)", len(queued))
        return len(queued)

    async def run_once(self, timeout: float = 0.1) -> bool:
        """Dequeue and process one message. Returns False when the queue was empty."""
        message = await self.backend.dequeue(timeout)
        if message is None:
            return False
        await self.process_message(message)
        return True

    async def _worker_loop(self, index: int) -> None:
        poll = self.config.worker_poll_timeout_seconds
        while not self._stopping.is_set():
            try:
                message = await self.backend.dequeue(poll)
                if message is not None:
                    await self.process_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                # The loop must survive anything a single job throws
                logger.exception("Worker %d: unexpected error", index)
                await asyncio.sleep(poll)

    async def process_message(self, message: JobMessage) -> None:
        """Run one leased message under its serial-key lease."""
        token = await self.backend.acquire_key(message.serial_key, self.config.serial_key_ttl_seconds)
        if token is None:
            await self.backend.nack(message.job_id, delay=self.config.busy_key_requeue_delay_seconds)
            return
        try:
            await self._run_job(message.job_id)
        finally:
            await self.backend.release_key(message.serial_key, token)

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    async def _run_job(self, job_id: str) -> None:
        job = await self._claim(job_id)
        if job is None:
            await self.backend.ack(job_id)
            return

        bind_job_context(job.job_id, job.user_id, job.source_kind, job.attempts)
        try:
            report = await self.coordinator.run(job)
        except asyncio.CancelledError:
            await self._requeue_cancelled(job)
            raise
        except Exception as exc:
            await self._handle_failure(job, exc)
        else:
            await self._complete(job, report)
        finally:
            clear_request_context()

    async def _claim(self, job_id: str) -> JobRow | None:
        async with self.session_factory() as session:
            job = await JobRepository(session).get(job_id, for_update=True)
            if job is None or job.status != JobStatus.QUEUED:
                return None
            job.status = JobStatus.RUNNING
            job.attempts += 1
            job.next_run_at = None
            await session.commit()
            return job

    async def _complete(self, job: JobRow, report: SyncReport) -> None:
        await self._transition(job.job_id, status=JobStatus.COMPLETED, result=report.model_dump(mode="json"))
        await self.backend.ack(job.job_id)
        logger.info("Job %s completed", job.job_id)

    async def _handle_failure(self, job: JobRow, exc: Exception) -> None:
        if isinstance(exc, OperationalError):
            exc = TransientStorageError("Storage unavailable", details={"error": str(exc)})
        error = self._error_detail(job, exc)

        if not is_retryable(exc):
            logger.warning("Job %s failed: %s", job.job_id, error["message"])
            await self._transition(job.job_id, status=JobStatus.FAILED, error=error)
            await self.backend.ack(job.job_id)
            return

        # A provider back-off does not count against the attempt budget
        if isinstance(exc, RateLimitedError):
            await self._retry(job, error, exc.retry_after, refund_attempt=True)
            return

        if job.attempts >= job.max_attempts:
            dead = await self._transition(job.job_id, status=JobStatus.DEAD_LETTERED, error=error)
            await self.backend.ack(job.job_id)
            if dead is not None:
                await self._report_dead_letter(dead, error)
            return

        delay = backoff_delay(job.attempts, self.config.retry_base_delay_seconds, self.config.retry_max_delay_seconds)
        await self._retry(job, error, delay)

    async def _retry(self, job: JobRow, error: dict, delay: float, refund_attempt: bool = False) -> None:
        logger.warning(
            "Job %s attempt %d/%d failed, retrying in %.1fs: %s",
            job.job_id, job.attempts, job.max_attempts, delay, error["message"],
        )
        requeued = await self._transition(
            job.job_id,
            status=JobStatus.QUEUED,
            error=error,
            next_run_at=utcnow() + timedelta(seconds=delay),
            refund_attempt=refund_attempt,
        )
        if requeued is not None and requeued.status == JobStatus.COMPLETED:
            await self.backend.ack(job.job_id)
        else:
            await self.backend.nack(job.job_id, delay=delay)

    async def _requeue_cancelled(self, job: JobRow) -> None:
        logger.info("Job %s cancelled, returning it to the queue", job.job_id)
        requeued = await self._transition(job.job_id, status=JobStatus.QUEUED, refund_attempt=True)
        if requeued is not None and requeued.status == JobStatus.COMPLETED:
            await self.backend.ack(job.job_id)
        else:
            await self.backend.nack(job.job_id, delay=0)

    async def _transition(
        self,
        job_id: str,
        status: JobStatus,
        error: dict | None = None,
        result: dict | None = None,
        next_run_at=None,
        refund_attempt: bool = False,
    ) -> JobRow | None:
        """Move a running job to ``status``; None when it was no longer running.

        A job headed back to ``queued`` is completed instead when a newer job
        for the same pushed item is already queued.
        """
        async with self.session_factory() as session:
            repo = JobRepository(session)
            job = await repo.get(job_id, for_update=True)
            if job is None or job.status != JobStatus.RUNNING:
                return None
            if error is not None:
                job.errors = ((job.errors or []) + [error])[-_MAX_ERROR_HISTORY:]
            if refund_attempt:
                job.attempts = max(job.attempts - 1, 0)
            if status == JobStatus.QUEUED and await self._supersede(repo, job):
                await session.commit()
                return job
            job.status = status
            job.next_run_at = next_run_at
            if result is not None:
                job.result = result
            await session.commit()
            return job

    @staticmethod
    async def _supersede(repo: JobRepository, job: JobRow) -> bool:
        """Complete ``job`` if another job for its pushed item is already queued."""
        if not job.dedup_key:
            return False
        newer = await repo.find_queued_by_dedup(job.dedup_key)
        if newer is None or newer.job_id == job.job_id:
            return False
        job.status = JobStatus.COMPLETED
        job.next_run_at = None
        job.result = SyncReport(skipped_reason=f"superseded by queued job {newer.job_id}").model_dump(mode="json")
        logger.info("Job %s superseded by queued job %s", job.job_id, newer.job_id)
        return True

    async def _report_dead_letter(self, job: JobRow, error: dict) -> None:
        try:
            await self.error_channel.report(build_envelope(job, error))
        except Exception:
            logger.exception("Error channel failed for dead-lettered job %s", job.job_id)

    @staticmethod
    def _error_detail(job: JobRow, exc: BaseException) -> dict:
        if isinstance(exc, UniboxError):
            code, message, details = exc.code, exc.message, exc.details
        else:
            code, message, details = "WORKER_ERROR", str(exc) or type(exc).__name__, None
        return {
            "code": code,
            "message": message,
            "details": details,
            "trace_id": job.trace_id,
            "timestamp": utcnow().isoformat(),
        }
