"""X-Request-ID middleware for request correlation and access logging.

Added last so it runs first: every response, auth failures included,
carries the header, and every log line of the request is bound to the id.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from onechat.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# UUIDs or short tokens of alphanumerics, dots, hyphens and underscores
VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    """Use a well-formed incoming id (UUIDs lowercased), else mint a uuid4."""
    if incoming and len(incoming.encode("utf-8")) <= MAX_REQUEST_ID_LENGTH:
        try:
            return str(uuid.UUID(incoming)) if len(incoming) == 36 else _checked(incoming)
        except ValueError:
            pass
    return str(uuid.uuid4())


def _checked(value: str) -> str:
    if not VALID_REQUEST_ID_PATTERN.match(value):
        raise ValueError(value)
    return value


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach X-Request-ID to request state, logs and the response.

    Args:
        app: The ASGI application.
        log_requests: Emit one request_completed entry per request.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)

            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, viewer.user_id)

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )
            return response

        except Exception:
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()
