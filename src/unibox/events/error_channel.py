"""Operator error channel for dead-lettered jobs.

The orchestrator reports each dead letter exactly once; channels only
deliver it. A delivery failure is logged and never re-raised into the
worker loop.
"""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod

import httpx

from unibox.db.base import utcnow
from unibox.models.job import DeadLetterEnvelope
from unibox.services.id_generator import generate_id

logger = logging.getLogger(__name__)


def _sign_payload(body: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 signature over the raw JSON body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_envelope(job, last_error: dict | None) -> DeadLetterEnvelope:
    """Build the (unsigned) dead-letter envelope for a job row."""
    return DeadLetterEnvelope(
        event_id=generate_id("evt_"),
        occurred_at=utcnow(),
        job_id=job.job_id,
        user_id=job.user_id,
        source_kind=job.source_kind,
        attempts=job.attempts,
        last_error=last_error,
        trace_id=job.trace_id,
    )


class ErrorChannel(ABC):
    @abstractmethod
    async def report(self, envelope: DeadLetterEnvelope) -> None:
        ...


class LoggingErrorChannel(ErrorChannel):
    """Writes dead letters to the structured error log."""

    async def report(self, envelope: DeadLetterEnvelope) -> None:
        logger.error(
            "Job %s dead-lettered after %d attempts (user=%s, source=%s): %s",
            envelope.job_id,
            envelope.attempts,
            envelope.user_id,
            envelope.source_kind,
            envelope.last_error.message if envelope.last_error else "no error recorded",
        )


class WebhookErrorChannel(ErrorChannel):
    """POSTs a signed envelope to an operator URL, with retry on 5xx."""

    def __init__(
        self,
        url: str,
        secret: str,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.secret = secret
        self.max_retries = max_retries
        self._transport = transport
        self._fallback = LoggingErrorChannel()

    async def report(self, envelope: DeadLetterEnvelope) -> None:
        await self._fallback.report(envelope)
        result = await self._deliver(envelope)
        if result["error"]:
            logger.warning("Dead-letter delivery to %s failed: %s", self.url, result["error"])

    async def _deliver(self, envelope: DeadLetterEnvelope) -> dict:
        body_dict = envelope.model_dump(mode="json", exclude={"signature"})
        body_bytes = json.dumps(body_dict, separators=(",", ":")).encode("utf-8")
        signature = _sign_payload(body_bytes, self.secret)
        body_dict["signature"] = signature

        signed_body = json.dumps(body_dict, separators=(",", ":")).encode("utf-8")

        headers = {
            "Content-Type": "application/json",
            "X-Unibox-Signature": f"sha256={signature}",
            "X-Unibox-Event": envelope.event_type,
        }

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                    resp = await client.post(self.url, content=signed_body, headers=headers)
                if resp.status_code < 300:
                    return {"url": self.url, "status": resp.status_code, "error": None}
                if resp.status_code >= 500 and attempt < self.max_retries - 1:
                    continue
                return {"url": self.url, "status": resp.status_code, "error": f"HTTP {resp.status_code}"}
            except httpx.HTTPError as exc:
                if attempt < self.max_retries - 1:
                    continue
                return {"url": self.url, "status": None, "error": str(exc)}

        return {"url": self.url, "status": None, "error": "max retries exceeded"}


def build_error_channel(settings) -> ErrorChannel:
    if settings.dead_letter_webhook_url:
        return WebhookErrorChannel(settings.dead_letter_webhook_url, settings.dead_letter_webhook_secret)
    return LoggingErrorChannel()
