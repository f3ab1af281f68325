"""LLM error classification and normalization.

Classifies provider-specific errors into normalized error classes. Called by
the router after catching adapter exceptions; supports OpenAI, Anthropic,
Google and OpenRouter error patterns.
"""

from enum import Enum

from onechat.errors import ApiError
from onechat.logging import get_logger

logger = get_logger(__name__)


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications."""

    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


# Error class -> (api error code, user-facing cause)
_API_ERROR_MAP: dict[LLMErrorClass, tuple[str, str]] = {
    LLMErrorClass.INVALID_KEY: (
        "unauthorized:models",
        "The provider rejected the API key. Please check your key.",
    ),
    LLMErrorClass.RATE_LIMIT: (
        "rate_limit:chat",
        "The provider is rate limiting requests. Please try again shortly.",
    ),
    LLMErrorClass.CONTEXT_TOO_LARGE: (
        "bad_request:chat",
        "The conversation is too long for this model.",
    ),
    LLMErrorClass.TIMEOUT: (
        "internal_server_error:stream",
        "The model took too long to respond.",
    ),
    LLMErrorClass.PROVIDER_DOWN: (
        "internal_server_error:stream",
        "The model provider is unavailable.",
    ),
    LLMErrorClass.MODEL_NOT_AVAILABLE: (
        "model_not_found:models",
        "The selected model is not available.",
    ),
}


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        provider: The provider that returned the error (if known)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return _API_ERROR_MAP[self.error_class][1]

    def to_api_error(self) -> ApiError:
        code, cause = _API_ERROR_MAP[self.error_class]
        return ApiError(code, cause)


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Classify provider error into normalized error class.

    Args:
        provider: One of "openai", "anthropic", "google", "openrouter"
        status_code: HTTP status code (if available)
        json_body: Parsed JSON error response (if available)
        exception: The exception that was raised (if any)

    Returns:
        The appropriate LLMErrorClass for this error.
    """
    if exception is not None:
        exception_type = type(exception).__name__
        if "Timeout" in exception_type or "timeout" in str(exception).lower():
            return LLMErrorClass.TIMEOUT
        if "Network" in exception_type or "Connection" in exception_type:
            return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    if provider in ("openai", "openrouter"):
        return _classify_openai_error(status_code, json_body)
    elif provider == "anthropic":
        return _classify_anthropic_error(status_code, json_body)
    elif provider == "google":
        return _classify_google_error(status_code, json_body)
    else:
        logger.warning("unknown_provider_for_error_classification", provider=provider)
        return LLMErrorClass.PROVIDER_DOWN


def _classify_openai_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """Classify OpenAI-compatible errors (OpenAI and OpenRouter).

    - 401 or 403 → INVALID_KEY
    - 402 (OpenRouter out of credits) → RATE_LIMIT
    - 429 → RATE_LIMIT
    - 400 + context_length_exceeded / "maximum context length" → CONTEXT_TOO_LARGE
    - 404 or model not found → MODEL_NOT_AVAILABLE
    - 5xx → PROVIDER_DOWN
    """
    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY

    if status_code in (402, 429):
        return LLMErrorClass.RATE_LIMIT

    if status_code == 404:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    if status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN

    if status_code == 400 and json_body:
        error = json_body.get("error") or {}
        if not isinstance(error, dict):
            error = {}
        error_code = str(error.get("code") or "")
        error_message = str(error.get("message") or "").lower()

        if error_code == "context_length_exceeded":
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "maximum context length" in error_message:
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "model" in error_message and "not found" in error_message:
            return LLMErrorClass.MODEL_NOT_AVAILABLE

    return LLMErrorClass.PROVIDER_DOWN


def _classify_anthropic_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """Classify Anthropic-specific errors.

    - 401 or 403 → INVALID_KEY
    - 429 or 529 overloaded → RATE_LIMIT
    - 400 invalid_request_error + "too long" → CONTEXT_TOO_LARGE
    - 404 → MODEL_NOT_AVAILABLE
    - 5xx → PROVIDER_DOWN
    """
    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY

    if status_code in (429, 529):
        return LLMErrorClass.RATE_LIMIT

    if status_code == 404:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    if status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN

    if status_code == 400 and json_body:
        error = json_body.get("error", {})
        error_type = error.get("type", "")
        error_message = error.get("message", "").lower()

        if error_type == "invalid_request_error" and "too long" in error_message:
            return LLMErrorClass.CONTEXT_TOO_LARGE

    return LLMErrorClass.PROVIDER_DOWN


def _classify_google_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """Classify Gemini API errors.

    - 401 or 403 or "API_KEY_INVALID" in body → INVALID_KEY
    - 429 or "RESOURCE_EXHAUSTED" → RATE_LIMIT
    - "exceeds the maximum" in message → CONTEXT_TOO_LARGE
    - 404 or "model not found" → MODEL_NOT_AVAILABLE
    - 5xx → PROVIDER_DOWN
    """
    body_str = str(json_body).lower() if json_body else ""

    if "api_key_invalid" in body_str:
        return LLMErrorClass.INVALID_KEY

    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY

    if status_code == 429 or "resource_exhausted" in body_str:
        return LLMErrorClass.RATE_LIMIT

    if "exceeds the maximum" in body_str:
        return LLMErrorClass.CONTEXT_TOO_LARGE

    if status_code == 404 or "model not found" in body_str:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    return LLMErrorClass.PROVIDER_DOWN
