"""Queue backends: Redis for deployments, in-process for local mode and tests.

A message only carries the job id and its serial key; the job row in the
database stays authoritative for status, attempts and payload.
"""

import asyncio
import heapq
import itertools
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque

from unibox.models.job import JobMessage

logger = logging.getLogger(__name__)

# Compare-and-delete: only the holder of the token may drop the lease
_RELEASE_LEASE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class QueueBackend(ABC):
    """Delivery of job messages plus short-lived per-key leases."""

    @abstractmethod
    async def enqueue(self, message: JobMessage, delay: float = 0) -> None:
        """Make the message deliverable after ``delay`` seconds."""
        ...

    @abstractmethod
    async def dequeue(self, timeout: float) -> JobMessage | None:
        """Lease the next ready message, waiting up to ``timeout`` seconds."""
        ...

    @abstractmethod
    async def ack(self, job_id: str) -> None:
        """Drop a leased message for good."""
        ...

    @abstractmethod
    async def nack(self, job_id: str, delay: float = 0) -> None:
        """Return a leased message to the queue after ``delay`` seconds."""
        ...

    @abstractmethod
    async def acquire_key(self, key: str, ttl: float) -> str | None:
        """Take an exclusive lease on ``key``.

        Returns the lease token, or None when someone else holds the key.
        """
        ...

    @abstractmethod
    async def release_key(self, key: str, token: str) -> None:
        """Drop the lease, unless it expired and another holder took the key since."""
        ...

    async def close(self) -> None:
        return None


class InMemoryQueueBackend(QueueBackend):
    """asyncio-only backend; state lives and dies with the process."""

    def __init__(self) -> None:
        self._ready: deque[JobMessage] = deque()
        self._delayed: list[tuple[float, int, JobMessage]] = []
        self._in_flight: dict[str, JobMessage] = {}
        self._leases: dict[str, tuple[str, float]] = {}
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

    async def enqueue(self, message: JobMessage, delay: float = 0) -> None:
        if delay > 0:
            heapq.heappush(self._delayed, (time.monotonic() + delay, next(self._seq), message))
        else:
            self._ready.append(message)
        self._wakeup.set()

    async def dequeue(self, timeout: float) -> JobMessage | None:
        deadline = time.monotonic() + timeout
        while True:
            self._promote_due()
            if self._ready:
                message = self._ready.popleft()
                self._in_flight[message.job_id] = message
                return message

            now = time.monotonic()
            if now >= deadline:
                return None
            wait = deadline - now
            if self._delayed:
                wait = min(wait, max(self._delayed[0][0] - now, 0.0))
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    async def ack(self, job_id: str) -> None:
        self._in_flight.pop(job_id, None)

    async def nack(self, job_id: str, delay: float = 0) -> None:
        message = self._in_flight.pop(job_id, None)
        if message is not None:
            await self.enqueue(message, delay)

    async def acquire_key(self, key: str, ttl: float) -> str | None:
        now = time.monotonic()
        held = self._leases.get(key)
        if held is not None and held[1] > now:
            return None
        token = uuid.uuid4().hex
        self._leases[key] = (token, now + ttl)
        return token

    async def release_key(self, key: str, token: str) -> None:
        held = self._leases.get(key)
        if held is not None and held[0] == token:
            del self._leases[key]

    @property
    def pending(self) -> int:
        """Messages ready or delayed (not counting leased ones)."""
        return len(self._ready) + len(self._delayed)

    def _promote_due(self) -> None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, message = heapq.heappop(self._delayed)
            self._ready.append(message)


class RedisQueueBackend(QueueBackend):
    """Ready list + delayed sorted set + processing hash, ``SET NX EX`` leases.

    Expects a ``redis.asyncio`` client created with ``decode_responses=True``.
    """

    def __init__(self, redis, queue_name: str = "unibox:jobs"):
        self.redis = redis
        self.ready_key = f"{queue_name}:ready"
        self.delayed_key = f"{queue_name}:delayed"
        self.processing_key = f"{queue_name}:processing"
        self.lease_prefix = f"{queue_name}:lease:"

    async def enqueue(self, message: JobMessage, delay: float = 0) -> None:
        body = message.model_dump_json()
        if delay > 0:
            await self.redis.zadd(self.delayed_key, {body: time.time() + delay})
        else:
            await self.redis.rpush(self.ready_key, body)

    async def dequeue(self, timeout: float) -> JobMessage | None:
        await self._promote_due()
        popped = await self.redis.blpop([self.ready_key], timeout=max(int(timeout), 1))
        if not popped:
            return None
        _, body = popped
        try:
            message = JobMessage.model_validate(json.loads(body))
        except ValueError:
            logger.error("Dropping undecodable queue message: %r", body)
            return None
        await self.redis.hset(self.processing_key, message.job_id, body)
        return message

    async def ack(self, job_id: str) -> None:
        await self.redis.hdel(self.processing_key, job_id)

    async def nack(self, job_id: str, delay: float = 0) -> None:
        body = await self.redis.hget(self.processing_key, job_id)
        if body is None:
            return
        await self.redis.hdel(self.processing_key, job_id)
        await self.enqueue(JobMessage.model_validate(json.loads(body)), delay)

    async def acquire_key(self, key: str, ttl: float) -> str | None:
        token = uuid.uuid4().hex
        locked = await self.redis.set(f"{self.lease_prefix}{key}", token, nx=True, ex=max(int(ttl), 1))
        return token if locked else None

    async def release_key(self, key: str, token: str) -> None:
        await self.redis.eval(_RELEASE_LEASE, 1, f"{self.lease_prefix}{key}", token)

    async def close(self) -> None:
        await self.redis.aclose()

    async def _promote_due(self) -> None:
        due = await self.redis.zrangebyscore(self.delayed_key, 0, time.time())
        for body in due:
            # zrem is the claim: only the instance that removes it requeues it
            if await self.redis.zrem(self.delayed_key, body):
                await self.redis.rpush(self.ready_key, body)
