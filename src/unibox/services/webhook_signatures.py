"""Inbound webhook authenticity checks.

An unset secret disables verification for that provider (local development)
and is logged on every request.
"""

import base64
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping

from unibox.errors.exceptions import SignatureError

logger = logging.getLogger(__name__)


class SignatureVerifier(ABC):
    @abstractmethod
    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        """Raise SignatureError when the request is not authentic."""
        ...


class SlackSignatureVerifier(SignatureVerifier):
    """Slack ``v0`` scheme: HMAC-SHA256 over ``v0:{timestamp}:{body}`` with a replay window.

    See: https://api.slack.com/authentication/verifying-requests-from-slack
    """

    def __init__(self, signing_secret: str, max_age_seconds: int = 300, clock: Callable[[], float] = time.time):
        self.signing_secret = signing_secret
        self.max_age_seconds = max_age_seconds
        self.clock = clock

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        if not self.signing_secret:
            logger.warning("Slack signing secret not configured, skipping verification")
            return

        timestamp = headers.get("x-slack-request-timestamp", "")
        signature = headers.get("x-slack-signature", "")

        # Reject requests older than the replay window
        try:
            if abs(self.clock() - int(timestamp)) > self.max_age_seconds:
                raise SignatureError("Request timestamp too old")
        except (ValueError, TypeError) as exc:
            raise SignatureError("Invalid timestamp") from exc

        sig_basestring = f"v0:{timestamp}:".encode("utf-8") + body
        expected = "v0=" + hmac.new(
            self.signing_secret.encode("utf-8"),
            sig_basestring,
            hashlib.sha256,
        ).hexdigest()

        if not hmac.compare_digest(expected, signature):
            raise SignatureError()


class HmacSha256Verifier(SignatureVerifier):
    """HMAC-SHA256 over the raw body, carried in one header.

    ``encoding`` is ``hex`` (GitHub-style ``sha256=<hex>`` with ``prefix``)
    or ``base64`` (Todoist's ``X-Todoist-Hmac-SHA256``).
    """

    def __init__(self, secret: str, header: str, prefix: str = "", encoding: str = "hex"):
        self.secret = secret
        self.header = header.lower()
        self.prefix = prefix
        self.encoding = encoding

    def sign(self, body: bytes) -> str:
        digest = hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).digest()
        if self.encoding == "base64":
            return self.prefix + base64.b64encode(digest).decode("ascii")
        return self.prefix + digest.hex()

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        if not self.secret:
            logger.warning("Webhook secret for %s not configured, skipping verification", self.header)
            return
        provided = headers.get(self.header, "")
        if not provided or not hmac.compare_digest(self.sign(body), provided):
            raise SignatureError()


def build_verifiers(settings) -> dict[str, SignatureVerifier]:
    """One verifier per webhook provider."""
    return {
        "slack": SlackSignatureVerifier(settings.slack_signing_secret, settings.webhook_max_age_seconds),
        "todoist": HmacSha256Verifier(
            settings.todoist_client_secret, "X-Todoist-Hmac-SHA256", encoding="base64"
        ),
    }
