"""LLM adapter layer for provider-agnostic LLM integration.

Unified interface for calling OpenAI, Anthropic, Gemini and OpenRouter
models:

- Provider adapters with async support (non-streaming + streaming)
- Tool calling and reasoning deltas in provider-neutral form
- Error classification and normalization
- Prompt rendering (provider-agnostic)
- Feature-flag enforcement

Usage:
    from onechat.services.llm import LLMRouter, LLMRequest, Turn

    router = LLMRouter(httpx_client)
    request = LLMRequest(
        model_name="gpt-4.1-mini",
        messages=[Turn(role="user", content="Hello!")],
        max_tokens=100,
    )
    response = await router.generate("openai", request, api_key="sk-...")

Rules:
- No retries inside adapters
- No DB access inside adapters
- No logging of request/response bodies
- Raw provider errors bubble up to router for classification
"""

from onechat.services.llm.adapter import LLMAdapter
from onechat.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from onechat.services.llm.prompt import (
    PromptTooLargeError,
    get_system_prompt,
    render_prompt,
    validate_prompt_size,
)
from onechat.services.llm.router import LLMRouter
from onechat.services.llm.types import (
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    ToolCall,
    ToolDefinition,
    Turn,
)

__all__ = [
    # Core types
    "Turn",
    "ToolCall",
    "ToolDefinition",
    "LLMRequest",
    "LLMResponse",
    "LLMChunk",
    "LLMUsage",
    "LLMOperation",
    "LLMCallContext",
    # Adapter interface
    "LLMAdapter",
    # Router
    "LLMRouter",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "classify_provider_error",
    # Prompt rendering
    "get_system_prompt",
    "render_prompt",
    "validate_prompt_size",
    "PromptTooLargeError",
]
