"""Custom exception classes for Unibox."""


class UniboxError(Exception):
    """Base exception for Unibox."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(UniboxError):
    """Schema or request validation failure."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(UniboxError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class AuthenticationError(UniboxError):
    """Caller identity missing."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__("AUTHENTICATION_ERROR", message, status_code=401)


class ConflictError(UniboxError):
    """Resource state conflict, e.g. a concurrent upsert on the same key."""

    def __init__(self, message: str, details=None):
        super().__init__("CONFLICT", message, details, status_code=409)


class UnsupportedOperationError(UniboxError):
    """The connector or entity does not support the requested operation."""

    def __init__(self, message: str):
        super().__init__("UNSUPPORTED_OPERATION", message, status_code=400)


class SignatureError(UniboxError):
    """Inbound webhook failed authenticity checks."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__("INVALID_SIGNATURE", message, status_code=403)


# ---------------------------------------------------------------------------
# Sync taxonomy
# ---------------------------------------------------------------------------


class SyncError(UniboxError):
    """Error raised while synchronizing a source.

    ``retryable`` tells the job layer whether the run may be re-queued.
    """

    retryable: bool = False

    def __init__(self, code: str, message: str, details=None, status_code: int = 502):
        super().__init__(code, message, details, status_code=status_code)


class AuthExpiredError(SyncError):
    """Credential for the connection is invalid or expired. Reconnect required."""

    retryable = False

    def __init__(self, message: str = "Credential expired, reconnect required", details=None):
        super().__init__("AUTH_EXPIRED", message, details, status_code=401)


class RateLimitedError(SyncError):
    """Provider asked us to back off for ``retry_after`` seconds."""

    retryable = True

    def __init__(self, retry_after: float, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(
            "RATE_LIMITED",
            message or f"Rate limited, retry after {retry_after:.0f}s",
            {"retry_after": retry_after},
            status_code=429,
        )


class TransientNetworkError(SyncError):
    """Network failure or timeout talking to the provider."""

    retryable = True

    def __init__(self, message: str, details=None):
        super().__init__("TRANSIENT_NETWORK", message, details, status_code=503)


class TransientStorageError(SyncError):
    """Database unavailable or transaction aborted by the storage layer."""

    retryable = True

    def __init__(self, message: str, details=None):
        super().__init__("TRANSIENT_STORAGE", message, details, status_code=503)


class MalformedPayloadError(SyncError):
    """A single item could not be decoded. Skipped, never retried."""

    retryable = False

    def __init__(self, message: str, details=None):
        super().__init__("MALFORMED_PAYLOAD", message, details, status_code=422)


class DeadLetteredError(SyncError):
    """A job exhausted its retry budget."""

    retryable = False

    def __init__(self, job_id: str, attempts: int, last_error: str | None = None):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(
            "DEAD_LETTERED",
            f"Job '{job_id}' dead-lettered after {attempts} attempts",
            {"last_error": last_error},
        )
