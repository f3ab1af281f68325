"""Shared type definitions for the LLM adapter layer.

- Turn: Provider-agnostic conversation turn
- ToolCall / ToolDefinition: function calling, in provider-neutral form
- LLMRequest: Request to LLM adapter
- LLMUsage: Token usage from provider response
- LLMResponse: Complete response from non-streaming call
- LLMChunk: Single chunk from streaming response

Streaming invariants:
- Chunks with done=False MUST have usage=None
- Exactly ONE terminal chunk with done=True
- Terminal chunk MAY have usage and provider_request_id (if provider returns them)
- Tool calls are assembled by the adapter and delivered whole on the
  terminal chunk, never as partial argument fragments
- If provider stream ends without terminal marker: raise PROVIDER_DOWN
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model.

    Attributes:
        id: Provider call id; echoed back on the tool result turn
        name: Registered tool name
        arguments: Parsed JSON arguments
    """

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call. parameters is a JSON schema object."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", "assistant" or "tool"
        content: The text content of the turn
        tool_calls: Calls made by an assistant turn
        tool_call_id: For tool turns, the call this result answers
        name: For tool turns, the tool that produced the result
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class LLMUsage:
    """Token usage from provider response.

    All fields are optional as not all providers return all metrics,
    and streaming responses may not include usage data.
    """

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMRequest:
    """Request to LLM adapter.

    Attributes:
        model_name: The upstream model identifier
        messages: List of Turn objects (system turn first if present)
        max_tokens: Maximum tokens in the completion
        temperature: Sampling temperature, None uses provider default
        top_p: Nucleus sampling, None uses provider default
        tools: Tools the model may call
        provider_options: Per-provider option blocks keyed by provider name
        reasoning_effort: Aggregator reasoning effort (low/medium/high)
        search_grounding: Enable the provider's native search (Google only)
    """

    model_name: str
    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None
    top_p: float | None = None
    tools: tuple[ToolDefinition, ...] = ()
    provider_options: dict[str, Any] = field(default_factory=dict)
    reasoning_effort: str | None = None
    search_grounding: bool = False


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from non-streaming call."""

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class LLMChunk:
    """Single chunk from streaming response.

    Streaming invariants:
    - done=False: delta_text / delta_reasoning contain new text, usage MUST be None
    - done=True: This is the terminal chunk. delta_text may be empty.
                 usage, provider_request_id and tool_calls may be populated.

    Attributes:
        delta_text: New answer text in this chunk (may be empty)
        done: Whether this is the final chunk
        delta_reasoning: New reasoning/thinking text (may be empty)
        usage: Token usage (only on terminal chunk, if provider returns it)
        provider_request_id: Provider's request ID (only on terminal chunk)
        tool_calls: Completed tool calls (only on terminal chunk)
    """

    delta_text: str
    done: bool
    delta_reasoning: str = ""
    usage: LLMUsage | None = None
    provider_request_id: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()

    def __post_init__(self):
        """Validate streaming invariants."""
        if not self.done and self.usage is not None:
            raise ValueError("Non-terminal chunks (done=False) must have usage=None")
        if not self.done and self.tool_calls:
            raise ValueError("Non-terminal chunks (done=False) must not carry tool calls")


class LLMOperation(str, Enum):
    """What an LLM call is for. Drives observability fields."""

    CHAT_SEND = "chat_send"
    TITLE = "title"
    OTHER = "other"


@dataclass(frozen=True)
class LLMCallContext:
    """Observability metadata attached to one LLM call."""

    operation: LLMOperation
    thread_id: str | None = None
    assistant_message_id: str | None = None
    stream_id: str | None = None
