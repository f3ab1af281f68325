"""API error definitions.

Every API error is identified by a ``"{type}:{surface}"`` code. The type
decides the HTTP status, the surface decides whether the message is shown to
the caller or only logged.
"""

from enum import Enum


class ErrorType(str, Enum):
    """Error categories. Each maps to one HTTP status code."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    FILE_TOO_LARGE = "file_too_large"
    UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
    UPLOAD_FAILED = "upload_failed"
    MODEL_NOT_FOUND = "model_not_found"
    API_KEY_MISSING = "api_key_missing"
    INTERNAL = "internal_server_error"


class Surface(str, Enum):
    """Part of the application an error originated from."""

    AUTH = "auth"
    API = "api"
    CHAT = "chat"
    STREAM = "stream"
    DATABASE = "database"
    FILES = "files"
    MODELS = "models"
    THREAD = "thread"
    ATTACHMENT = "attachment"


class ErrorVisibility(str, Enum):
    """How much of an error reaches the caller."""

    RESPONSE = "response"
    LOG = "log"


ERROR_TYPE_TO_STATUS: dict[ErrorType, int] = {
    ErrorType.BAD_REQUEST: 400,
    ErrorType.UNAUTHORIZED: 401,
    ErrorType.FORBIDDEN: 403,
    ErrorType.NOT_FOUND: 404,
    ErrorType.RATE_LIMIT: 429,
    ErrorType.FILE_TOO_LARGE: 413,
    ErrorType.UNSUPPORTED_FILE_TYPE: 415,
    ErrorType.UPLOAD_FAILED: 422,
    ErrorType.MODEL_NOT_FOUND: 404,
    ErrorType.API_KEY_MISSING: 503,
    ErrorType.INTERNAL: 500,
}

VISIBILITY_BY_SURFACE: dict[Surface, ErrorVisibility] = {
    Surface.DATABASE: ErrorVisibility.LOG,
    Surface.AUTH: ErrorVisibility.RESPONSE,
    Surface.API: ErrorVisibility.RESPONSE,
    Surface.CHAT: ErrorVisibility.RESPONSE,
    Surface.STREAM: ErrorVisibility.RESPONSE,
    Surface.FILES: ErrorVisibility.RESPONSE,
    Surface.MODELS: ErrorVisibility.RESPONSE,
    Surface.THREAD: ErrorVisibility.RESPONSE,
    Surface.ATTACHMENT: ErrorVisibility.RESPONSE,
}

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again later."
DATABASE_ERROR_MESSAGE = "An error occurred while executing a database query."

ERROR_MESSAGES: dict[str, str] = {
    "unauthorized:auth": "You need to sign in before continuing.",
    "forbidden:auth": "Your account does not have access to this feature.",
    "bad_request:api": "The request couldn't be processed. Please check your input and try again.",
    "rate_limit:api": "You have exceeded the request limit. Please try again later.",
    "unauthorized:chat": "You need to sign in to access this chat. Please sign in and try again.",
    "not_found:chat": "The requested chat was not found. Please check the chat ID and try again.",
    "forbidden:chat": "This chat belongs to another user. Please check the chat ID and try again.",
    "rate_limit:chat": "You have exceeded your maximum number of messages. Please try again later.",
    "model_not_found:models": "The requested AI model was not found. Please select a different model.",
    "api_key_missing:models": "API key is missing for the selected model. Please contact support.",
    "unauthorized:files": "You need to sign in to upload files. Please sign in and try again.",
    "file_too_large:files": "File is too large. Maximum file size is 8MB.",
    "unsupported_file_type:files": "This file type is not supported by the selected model.",
    "upload_failed:files": "File upload failed. Please try again.",
    "unauthorized:thread": (
        "You need to sign in to access this thread. Please sign in and try again."
    ),
    "not_found:thread": (
        "The requested thread was not found. Please check the thread ID and try again."
    ),
    "forbidden:thread": (
        "This thread belongs to another user. Please check the thread ID and try again."
    ),
    "not_found:attachment": (
        "The requested attachment was not found. Please check the attachment ID and try again."
    ),
    "forbidden:attachment": (
        "This attachment belongs to another user. Please check the attachment ID and try again."
    ),
    "unauthorized:attachment": (
        "You need to sign in to access this attachment. Please sign in and try again."
    ),
}


def get_message_by_error_code(code: str) -> str:
    """Return the user-facing message for an error code.

    Database errors always get the same message so query details never
    leak through the message text.
    """
    if "database" in code:
        return DATABASE_ERROR_MESSAGE
    return ERROR_MESSAGES.get(code, GENERIC_ERROR_MESSAGE)


def parse_error_code(code: str) -> tuple[ErrorType, Surface]:
    """Split a ``type:surface`` code into its enum parts.

    Raises:
        ValueError: If the code is malformed or names an unknown type/surface.
    """
    type_part, sep, surface_part = code.partition(":")
    if not sep:
        raise ValueError(f"Malformed error code: {code!r}")
    return ErrorType(type_part), Surface(surface_part)


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The ``type:surface`` error code
        type: The error type enum value
        surface: The surface enum value
        message: Human-readable error message
        cause: Optional detail shown to the caller (omitted for log-only surfaces)
        status_code: HTTP status code (derived from type)
    """

    def __init__(self, code: str, cause: str | None = None):
        self.type, self.surface = parse_error_code(code)
        self.code = f"{self.type.value}:{self.surface.value}"
        self.cause = cause
        self.message = get_message_by_error_code(self.code)
        self.status_code = ERROR_TYPE_TO_STATUS.get(self.type, 500)
        super().__init__(self.message)

    @property
    def visibility(self) -> ErrorVisibility:
        return VISIBILITY_BY_SURFACE.get(self.surface, ErrorVisibility.RESPONSE)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, surface: Surface = Surface.API, cause: str | None = None):
        super().__init__(f"{ErrorType.NOT_FOUND.value}:{surface.value}", cause)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, surface: Surface = Surface.API, cause: str | None = None):
        super().__init__(f"{ErrorType.FORBIDDEN.value}:{surface.value}", cause)


class UnauthorizedError(ApiError):
    """Authentication failure error."""

    def __init__(self, surface: Surface = Surface.AUTH, cause: str | None = None):
        super().__init__(f"{ErrorType.UNAUTHORIZED.value}:{surface.value}", cause)


class BadRequestError(ApiError):
    """Invalid request error."""

    def __init__(self, surface: Surface = Surface.API, cause: str | None = None):
        super().__init__(f"{ErrorType.BAD_REQUEST.value}:{surface.value}", cause)
