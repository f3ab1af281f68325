"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token + internal header verification
- get_viewer: Dependency for routes that require a signed-in user
- get_optional_viewer: Dependency for public share reads, where a signed-in
  owner may see more than an anonymous visitor
"""

import hmac
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from onechat.auth.verifier import TokenVerifier
from onechat.errors import ApiError, UnauthorizedError, get_message_by_error_code
from onechat.logging import get_logger
from onechat.responses import error_response

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-onechat-internal"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/health/ready", "/docs", "/redoc", "/openapi.json"}
# Prefixes readable anonymously; a valid token still identifies the viewer
OPTIONAL_AUTH_PREFIXES = ("/share/",)


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (JWT sub claim).
    """

    user_id: str


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path
    2. Verify internal header (if required)
    3. Extract and parse bearer token (optional on share paths)
    4. Verify token via TokenVerifier
    5. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        path = request.url.path
        request.state.viewer = None

        if path in PUBLIC_PATHS:
            return await call_next(request)

        if self.requires_internal_header:
            rejected = self._verify_internal_header(request)
            if rejected:
                return rejected

        optional = path.startswith(OPTIONAL_AUTH_PREFIXES)
        if optional and not request.headers.get(AUTHORIZATION_HEADER):
            return await call_next(request)

        token, rejected = self._extract_bearer_token(request)
        if rejected:
            return rejected

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            if optional and e.status_code == 401:
                return await call_next(request)
            return self._error_json_response(e.code, e.cause, e.status_code)

        request.state.viewer = Viewer(user_id=str(payload["sub"]))
        return await call_next(request)

    def _verify_internal_header(self, request: Request) -> JSONResponse | None:
        """Verify the internal header using constant-time comparison."""
        header_value = request.headers.get(INTERNAL_HEADER)

        if header_value is None:
            logger.warning(
                "auth_failure", reason="internal_header_missing", request_path=request.url.path
            )
            return self._error_json_response("forbidden:auth", "Internal API access required", 403)

        if not self.internal_secret:
            logger.error("internal_secret_not_configured")
            return self._error_json_response("internal_server_error:auth", None, 500)

        if not hmac.compare_digest(header_value.encode(), self.internal_secret.encode()):
            logger.warning(
                "auth_failure", reason="internal_header_mismatch", request_path=request.url.path
            )
            return self._error_json_response("forbidden:auth", "Internal API access required", 403)

        return None

    def _extract_bearer_token(self, request: Request) -> tuple[str, JSONResponse | None]:
        """Returns:
        Tuple of (token, error_response). Token is empty string if error.
        """
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            logger.warning("auth_failure", reason="missing_header", request_path=request.url.path)
            return "", self._error_json_response("unauthorized:auth", None, 401)

        token = auth_header[7:].strip() if auth_header.lower().startswith("bearer ") else ""
        if not token:
            logger.warning(
                "auth_failure", reason="invalid_header_format", request_path=request.url.path
            )
            return "", self._error_json_response(
                "unauthorized:auth", "Invalid authorization header format", 401
            )

        return token, None

    def _error_json_response(self, code: str, cause: str | None, status_code: int) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, get_message_by_error_code(code), cause),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        UnauthorizedError: If no viewer is attached to the request.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise UnauthorizedError()
    return viewer


def get_optional_viewer(request: Request) -> Viewer | None:
    """The viewer if the request carried a valid token, else None."""
    return getattr(request.state, "viewer", None)
