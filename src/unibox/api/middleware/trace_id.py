"""Trace ID middleware for request/response propagation."""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from unibox.logging_config import bind_request_context, clear_request_context
from unibox.services.id_generator import generate_id

# ErrorDetail.trace_id bound; job rows store the same value
MAX_TRACE_ID_LENGTH = 128


class TraceIdMiddleware(BaseHTTPMiddleware):
    """Take X-Trace-Id from the caller (or mint one) and bind it for logs, jobs and errors."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get("x-trace-id", "").strip()
        if not trace_id or len(trace_id) > MAX_TRACE_ID_LENGTH:
            trace_id = generate_id("trc_")
        request.state.trace_id = trace_id
        bind_request_context(trace_id, request.headers.get("x-user-id"))

        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Trace-Id"] = trace_id
        return response
