"""FastAPI exception handlers producing ErrorResponse bodies."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from unibox.errors.exceptions import SignatureError, SyncError, UniboxError
from unibox.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            details=details,
            trace_id=getattr(request.state, "trace_id", "unknown"),
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app."""

    @app.exception_handler(UniboxError)
    async def unibox_error_handler(request: Request, exc: UniboxError):
        if isinstance(exc, SignatureError):
            logger.warning("Webhook signature rejected on %s: %s", request.url.path, exc)
        elif isinstance(exc, SyncError):
            # Only reached from request-time provider calls (connection tests, webhook decoding)
            logger.info("Provider call failed on %s: %s %s", request.url.path, exc.code, exc.message)
        return _error_response(request, exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Custom validator errors carry the raised exception in ``ctx``; keep the JSON-safe parts
        details = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        return _error_response(request, 422, "VALIDATION_ERROR", "Request validation failed", details)
