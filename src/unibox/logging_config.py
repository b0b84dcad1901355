"""Structured logging configuration using structlog.

Request handlers and sync jobs share one contextvars scope per task, so a
log line emitted anywhere below the middleware or the worker loop carries
the trace id, and for jobs the job identity as well.
"""

import logging
import sys

import structlog

# Libraries that log every request or statement at INFO
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")


def configure_logging(log_level: str = "info", local_mode: bool = False) -> None:
    """Route stdlib and structlog records through one structlog formatter.

    Args:
        log_level: Logging level string (debug/info/warning/error).
        local_mode: Colored console output for local runs; JSON lines otherwise.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if local_mode:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_request_context(trace_id: str, user_id: str | None = None) -> None:
    """Bind the request's trace id (and caller, when known) to the current context."""
    ctx = {"trace_id": trace_id}
    if user_id:
        ctx["user_id"] = user_id
    structlog.contextvars.bind_contextvars(**ctx)


def bind_job_context(job_id: str, user_id: str, source_kind: str, attempt: int) -> None:
    """Bind the running job's identity so every log line of the job carries it."""
    structlog.contextvars.bind_contextvars(
        job_id=job_id,
        user_id=user_id,
        source_kind=source_kind,
        attempt=attempt,
    )


def clear_request_context() -> None:
    """Clear bound context variables after a request or job."""
    structlog.contextvars.clear_contextvars()
