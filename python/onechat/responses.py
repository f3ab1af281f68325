"""API response envelope helpers and exception handlers.

All API responses use a consistent envelope:
- Success: { "data": ... }
- Error: { "error": { "code": "type:surface", "message": "...", "cause": "...", "request_id": "..." } }

Errors on log-only surfaces (database) are logged server side and answered
with a generic message; their cause never reaches the caller.
"""

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from onechat.errors import GENERIC_ERROR_MESSAGE, ApiError, ErrorVisibility, get_message_by_error_code
from onechat.logging import get_logger, get_request_id

logger = get_logger(__name__)


def success_response(data: Any) -> dict[str, Any]:
    """Create a success response envelope.

    Args:
        data: The response data to wrap.

    Returns:
        Dict with "data" key containing the response.
    """
    return {"data": data}


def error_response(
    code: str,
    message: str,
    cause: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        code: The ``type:surface`` error code.
        message: Human-readable error message.
        cause: Optional detail for the caller.
        request_id: Optional request ID for correlation (auto-populated from context if None).

    Returns:
        Dict with "error" key containing code, message, cause and request_id.
    """
    if request_id is None:
        request_id = get_request_id()

    error: dict[str, Any] = {"code": code, "message": message}
    if cause:
        error["cause"] = cause
    if request_id:
        error["request_id"] = request_id

    return {"error": error}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    if exc.visibility == ErrorVisibility.LOG:
        logger.error(
            "api_error_logged",
            code=exc.code,
            cause=exc.cause,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.code, GENERIC_ERROR_MESSAGE),
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.cause),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle Starlette/FastAPI HTTPException and return proper JSON response."""
    status_to_code = {
        400: "bad_request:api",
        401: "unauthorized:auth",
        403: "forbidden:auth",
        404: "not_found:chat",
        405: "bad_request:api",
        413: "file_too_large:files",
        415: "unsupported_file_type:files",
        422: "bad_request:api",
        429: "rate_limit:api",
    }
    code = status_to_code.get(exc.status_code, "internal_server_error:api")
    message = str(exc.detail) if exc.detail else get_message_by_error_code(code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation failures (including malformed JSON) as bad_request:api."""
    errors = exc.errors()
    cause = None
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        cause = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))

    return JSONResponse(
        status_code=400,
        content=error_response(
            "bad_request:api", get_message_by_error_code("bad_request:api"), cause
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500 with internal_server_error:api.

    Logs the exception server-side but never leaks details to client.
    """
    logger.exception("Unhandled exception: %s", exc)

    return JSONResponse(
        status_code=500,
        content=error_response("internal_server_error:api", GENERIC_ERROR_MESSAGE),
    )
