"""LLM router for adapter selection and error normalization.

- Resolves adapter based on provider name
- Checks feature flags for provider availability
- Wraps adapter calls with error normalization (one place, not per adapter)
- Emits llm.request.started / llm.request.finished / llm.request.failed events
  through safe_kv() so prompts and keys never reach the logs

Error handling:
- Provider 401/403 → E_LLM_INVALID_KEY
- Provider 429 → E_LLM_RATE_LIMIT
- Timeout → E_LLM_TIMEOUT
- Context too large → E_LLM_CONTEXT_TOO_LARGE
- Other → E_LLM_PROVIDER_DOWN
"""

import time
from collections.abc import AsyncIterator

import httpx

from onechat.logging import get_logger
from onechat.services.llm.adapter import LLMAdapter
from onechat.services.llm.anthropic_adapter import AnthropicAdapter
from onechat.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from onechat.services.llm.gemini_adapter import GeminiAdapter
from onechat.services.llm.openai_adapter import OpenAIAdapter
from onechat.services.llm.openrouter_adapter import OpenRouterAdapter
from onechat.services.llm.types import (
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
)
from onechat.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 120


def _base_log_fields(
    provider: str,
    req: LLMRequest,
    key_mode: str,
    streaming: bool,
    call_ctx: LLMCallContext | None,
) -> dict:
    """Build base log fields for LLM events."""
    fields: dict = {
        "provider": provider,
        "model_name": req.model_name,
        "key_mode": key_mode,
        "streaming": streaming,
        "tool_count": len(req.tools),
        "llm_operation": call_ctx.operation.value if call_ctx else LLMOperation.OTHER.value,
    }
    if call_ctx and call_ctx.operation == LLMOperation.CHAT_SEND:
        if call_ctx.thread_id:
            fields["thread_id"] = call_ctx.thread_id
        if call_ctx.assistant_message_id:
            fields["assistant_message_id"] = call_ctx.assistant_message_id
        if call_ctx.stream_id:
            fields["stream_id"] = call_ctx.stream_id
    return fields


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Parse JSON from an error response, None when the body isn't JSON.

    Streaming responses must be read before their body is available.
    """
    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        return None


class LLMRouter:
    """Routes LLM requests to the provider adapters.

    Provider names match the routing layer: "openai", "anthropic",
    "google" and "openrouter".
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        enable_openai: bool = True,
        enable_anthropic: bool = True,
        enable_google: bool = True,
        enable_openrouter: bool = True,
        app_url: str = "http://localhost:3000",
        app_title: str = "OneChat",
    ):
        """Initialize router with shared HTTP client and feature flags.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            enable_openai: Whether OpenAI provider is enabled.
            enable_anthropic: Whether Anthropic provider is enabled.
            enable_google: Whether Google provider is enabled.
            enable_openrouter: Whether the OpenRouter aggregator is enabled.
            app_url: Attribution URL sent to OpenRouter.
            app_title: Attribution title sent to OpenRouter.
        """
        self._client = client
        self._feature_flags = {
            "openai": enable_openai,
            "anthropic": enable_anthropic,
            "google": enable_google,
            "openrouter": enable_openrouter,
        }
        self._adapters: dict[str, LLMAdapter] = {
            "openai": OpenAIAdapter(client),
            "anthropic": AnthropicAdapter(client),
            "google": GeminiAdapter(client),
            "openrouter": OpenRouterAdapter(client, app_url=app_url, app_title=app_title),
        }

    def resolve_adapter(self, provider: str) -> LLMAdapter:
        """Get adapter for provider, checking feature flags.

        Raises:
            LLMError: If provider is unknown or disabled.
        """
        if provider not in self._adapters:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Unknown provider: {provider}",
                provider=provider,
            )

        if not self._is_provider_enabled(provider):
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Provider {provider} is disabled",
                provider=provider,
            )

        return self._adapters[provider]

    def _is_provider_enabled(self, provider: str) -> bool:
        return self._feature_flags.get(provider, False)

    def is_provider_available(self, provider: str) -> bool:
        """Check if a provider is available (known and enabled)."""
        return provider in self._adapters and self._is_provider_enabled(provider)

    def _normalize(
        self, provider: str, exc: Exception, base: dict, start: float, streaming: bool
    ) -> LLMError:
        """Classify an adapter exception, log llm.request.failed, return the LLMError."""
        latency_ms = int((time.monotonic() - start) * 1000)
        extra: dict = {}

        if isinstance(exc, httpx.TimeoutException):
            error = LLMError(
                LLMErrorClass.TIMEOUT,
                "Stream timed out" if streaming else "Request timed out",
                provider=provider,
            )
        elif isinstance(exc, httpx.HTTPStatusError):
            json_body = _safe_parse_json(exc.response)
            error_class = classify_provider_error(
                provider, exc.response.status_code, json_body, None
            )
            extra["status_code"] = exc.response.status_code
            extra["provider_request_id"] = exc.response.headers.get(
                "x-request-id"
            ) or exc.response.headers.get("request-id")
            error = LLMError(
                error_class,
                f"Provider returned HTTP {exc.response.status_code}",
                provider=provider,
            )
        elif isinstance(exc, httpx.NetworkError):
            error = LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Network error during stream" if streaming else "Network error",
                provider=provider,
            )
        else:
            error = LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                f"Unexpected error: {type(exc).__name__}",
                provider=provider,
            )

        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                latency_ms=latency_ms,
                **extra,
            ),
        )
        return error

    async def generate(
        self,
        provider: str,
        req: LLMRequest,
        api_key: str,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        key_mode: str = "unknown",
        call_context: LLMCallContext | None = None,
    ) -> LLMResponse:
        """Non-streaming LLM generation with error normalization.

        Args:
            provider: Provider name.
            req: The LLM request.
            api_key: API key for the provider.
            timeout_s: Request timeout in seconds.
            key_mode: Key resolution mode for logging (platform/byok).
            call_context: Observability metadata for this call.

        Returns:
            LLMResponse with generated text and usage info.

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(provider)
        base = _base_log_fields(provider, req, key_mode, streaming=False, call_ctx=call_context)

        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in req.messages)),
        )

        start = time.monotonic()

        try:
            response = await adapter.generate(req, api_key=api_key, timeout_s=timeout_s)
        except LLMError:
            raise
        except Exception as e:
            raise self._normalize(provider, e, base, start, streaming=False) from e

        usage = response.usage
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
                provider_request_id=response.provider_request_id,
                tool_calls=len(response.tool_calls),
            ),
        )
        return response

    async def generate_stream(
        self,
        provider: str,
        req: LLMRequest,
        api_key: str,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        key_mode: str = "unknown",
        call_context: LLMCallContext | None = None,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming LLM generation with error normalization.

        Yields:
            LLMChunk objects until terminal chunk (done=True).

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(provider)
        base = _base_log_fields(provider, req, key_mode, streaming=True, call_ctx=call_context)

        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in req.messages)),
        )

        start = time.monotonic()

        try:
            async for chunk in adapter.generate_stream(req, api_key=api_key, timeout_s=timeout_s):
                if chunk.done:
                    usage = chunk.usage
                    logger.info(
                        "llm.request.finished",
                        **safe_kv(
                            **base,
                            outcome="success",
                            latency_ms=int((time.monotonic() - start) * 1000),
                            tokens_input=usage.prompt_tokens if usage else None,
                            tokens_output=usage.completion_tokens if usage else None,
                            tokens_total=usage.total_tokens if usage else None,
                            provider_request_id=chunk.provider_request_id,
                            tool_calls=len(chunk.tool_calls),
                        ),
                    )
                yield chunk
        except LLMError:
            raise
        except Exception as e:
            raise self._normalize(provider, e, base, start, streaming=True) from e
