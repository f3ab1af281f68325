"""Structured logging with structlog.

Every entry is JSON (console rendering with LOG_FORMAT=console) and carries
whatever correlation context is bound for the current request, chat stream
or Celery task:

    request_id, user_id, path, method     set by the middlewares
    thread_id, stream_id                  set while a chat generation runs
    task_name, task_id                    set by configure_task_logging

Provider keys must never reach a log line. Call sites go through
services.redact.safe_kv, and mask_provider_keys scrubs anything key-shaped
that slips into a string field (an upstream error body echoing the key,
for instance).

    logger = get_logger(__name__)
    logger.info("thread_created", thread_id="abc")
"""

import logging
import os
import re
import sys
from contextvars import ContextVar

import structlog

_CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "path",
    "method",
    "thread_id",
    "stream_id",
    "task_name",
    "task_id",
)
_context: dict[str, ContextVar[str | None]] = {
    field: ContextVar(field, default=None) for field in _CONTEXT_FIELDS
}

_REQUEST_FIELDS = ("request_id", "user_id", "path", "method", "thread_id", "stream_id")
_TASK_FIELDS = ("request_id", "user_id", "task_name", "task_id")

# sk-/sk-ant-/sk-or-v1- (OpenAI, Anthropic, OpenRouter), AIza (Google), fc- (Firecrawl)
_PROVIDER_KEY_RE = re.compile(
    r"\b(sk-[A-Za-z0-9_\-]{16,}|AIza[0-9A-Za-z_\-]{30,}|fc-[0-9a-f]{24,})"
)
MASKED_KEY = "[redacted-key]"

_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "celery.redirected")


def _set(**values: str | None) -> None:
    for field, value in values.items():
        _context[field].set(value)


def add_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Inject bound context. Explicit event fields win."""
    for field, var in _context.items():
        value = var.get()
        if value and field not in event_dict:
            event_dict[field] = value
    return event_dict


def mask_provider_keys(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    for field, value in event_dict.items():
        if isinstance(value, str) and _PROVIDER_KEY_RE.search(value):
            event_dict[field] = _PROVIDER_KEY_RE.sub(MASKED_KEY, value)
    return event_dict


def configure_logging(json_format: bool | None = None, level: str | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Runs at import time of the API app and in each worker process, before
    settings are validated, so it reads LOG_FORMAT and LOG_LEVEL directly.
    """
    if json_format is None:
        json_format = os.environ.get("LOG_FORMAT", "json").lower() != "console"
    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        mask_provider_keys,
    ]
    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# =============================================================================
# Request and chat context
# =============================================================================


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind request context. The request id always resets; other fields only when given."""
    _set(request_id=request_id)
    _set(**{k: v for k, v in {"user_id": user_id, "path": path, "method": method}.items() if v})


def set_chat_context(thread_id: str | None, stream_id: str | None = None) -> None:
    _set(thread_id=thread_id, stream_id=stream_id)


def clear_request_context() -> None:
    _set(**dict.fromkeys(_REQUEST_FIELDS))


def get_request_id() -> str | None:
    return _context["request_id"].get()


# =============================================================================
# Celery task context
# =============================================================================


def configure_task_logging(
    request_id: str | None = None,
    task_name: str | None = None,
    task_id: str | None = None,
) -> None:
    """Bind task context at the start of a task.

    Args:
        request_id: Correlation id of the API request that enqueued the task.
        task_name: Registered Celery task name.
        task_id: Celery task id (self.request.id).
    """
    _set(request_id=request_id, task_name=task_name, task_id=task_id)


def clear_task_context() -> None:
    _set(**dict.fromkeys(_TASK_FIELDS))
