"""OpenAI LLM adapter implementation.

- Endpoint: POST https://api.openai.com/v1/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json
- Streaming: Server-Sent Events with data: {...} format
- Terminal event: data: [DONE]
- Usage arrives in a final chunk with empty choices (stream_options.include_usage)

Request body:
{
  "model": "<model_name>",
  "messages": [{"role": "system", "content": "..."}, ...],
  "max_completion_tokens": 1024,
  "temperature": 0.7,
  "tools": [{"type": "function", "function": {...}}],
  "reasoning_effort": "medium",
  "stream": false
}

Tool calls stream as fragments keyed by index:
  delta.tool_calls[i] = {"index": 0, "id": "call_1", "function": {"name": "...", "arguments": "{\\"q"}}
Fragments are concatenated per index and parsed once the stream finishes.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from onechat.logging import get_logger
from onechat.services.llm.adapter import LLMAdapter, parse_sse_json, sse_data
from onechat.services.llm.errors import LLMError, LLMErrorClass
from onechat.services.llm.types import (
    LLMChunk,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    ToolCall,
    Turn,
)

logger = get_logger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _usage_from(data: dict | None) -> LLMUsage | None:
    if not data:
        return None
    return LLMUsage(
        prompt_tokens=data.get("prompt_tokens"),
        completion_tokens=data.get("completion_tokens"),
        total_tokens=data.get("total_tokens"),
    )


class OpenAIAdapter(LLMAdapter):
    """OpenAI API adapter for chat completions.

    Also the base for OpenAI-compatible endpoints; subclasses override the
    URL, headers and the provider-specific body extras.
    """

    provider = "openai"
    chat_url = OPENAI_CHAT_URL

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Non-streaming chat completion."""
        headers = self._build_headers(api_key)
        body = self._build_request_body(req, stream=False)

        response = await self._client.post(
            self.chat_url,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        )
        response.raise_for_status()

        data = response.json()
        return self._parse_response(data, response.headers)

    async def generate_stream(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming chat completion using Server-Sent Events."""
        headers = self._build_headers(api_key)
        body = self._build_request_body(req, stream=True)

        async with self._client.stream(
            "POST",
            self.chat_url,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        ) as response:
            response.raise_for_status()

            provider_request_id = response.headers.get("x-request-id")
            usage: LLMUsage | None = None
            pending_calls: dict[int, dict[str, str]] = {}
            received_done = False

            async for line in response.aiter_lines():
                data_str = sse_data(line)
                if data_str is None:
                    continue

                if data_str == "[DONE]":
                    received_done = True
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=usage,
                        provider_request_id=provider_request_id,
                        tool_calls=self._finish_tool_calls(pending_calls),
                    )
                    break

                data = parse_sse_json(data_str)
                if data is None:
                    continue

                if data.get("usage"):
                    usage = _usage_from(data["usage"])
                provider_request_id = provider_request_id or data.get("id")

                choices = data.get("choices") or []
                if not choices:
                    continue

                delta = choices[0].get("delta") or {}
                for fragment in delta.get("tool_calls") or []:
                    self._accumulate_tool_call(pending_calls, fragment)

                delta_text = delta.get("content") or ""
                delta_reasoning = self._reasoning_delta(delta)
                if delta_text or delta_reasoning:
                    yield LLMChunk(
                        delta_text=delta_text,
                        delta_reasoning=delta_reasoning,
                        done=False,
                    )

            if not received_done:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    f"{self.provider} stream ended without [DONE] marker",
                    provider=self.provider,
                )

    def _build_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        """Build request body from LLMRequest."""
        body: dict = {
            "model": req.model_name,
            "messages": [self._turn_to_message(turn) for turn in req.messages],
            "max_completion_tokens": req.max_tokens,
            "stream": stream,
        }
        if stream:
            body["stream_options"] = {"include_usage": True}

        if req.temperature is not None:
            body["temperature"] = req.temperature
        if req.top_p is not None:
            body["top_p"] = req.top_p

        if req.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in req.tools
            ]

        self._apply_provider_options(body, req)
        return body

    def _apply_provider_options(self, body: dict, req: LLMRequest) -> None:
        options = req.provider_options.get("openai") or {}
        if options.get("reasoningEffort"):
            body["reasoning_effort"] = options["reasoningEffort"]
            # reasoning models reject sampling parameters
            body.pop("temperature", None)
            body.pop("top_p", None)

    def _turn_to_message(self, turn: Turn) -> dict[str, Any]:
        """Convert Turn to OpenAI message format.

        OpenAI uses the same role names as our Turn type.
        """
        message: dict[str, Any] = {"role": turn.role, "content": turn.content}
        if turn.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in turn.tool_calls
            ]
        if turn.role == "tool":
            message["tool_call_id"] = turn.tool_call_id
        return message

    def _reasoning_delta(self, delta: dict) -> str:
        return ""

    @staticmethod
    def _accumulate_tool_call(pending: dict[int, dict[str, str]], fragment: dict) -> None:
        index = fragment.get("index", 0)
        entry = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if fragment.get("id"):
            entry["id"] = fragment["id"]
        function = fragment.get("function") or {}
        if function.get("name"):
            entry["name"] = function["name"]
        entry["arguments"] += function.get("arguments") or ""

    @staticmethod
    def _finish_tool_calls(pending: dict[int, dict[str, str]]) -> tuple[ToolCall, ...]:
        return tuple(
            ToolCall(
                id=entry["id"] or f"call_{index}",
                name=entry["name"],
                arguments=_parse_arguments(entry["arguments"]),
            )
            for index, entry in sorted(pending.items())
            if entry["name"]
        )

    def _parse_response(self, data: dict, headers: httpx.Headers) -> LLMResponse:
        """Parse non-streaming response."""
        choices = data.get("choices", [])
        if not choices:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                f"{self.provider} response missing choices",
                provider=self.provider,
            )

        message = choices[0].get("message") or {}
        text = message.get("content") or ""
        tool_calls = tuple(
            ToolCall(
                id=call.get("id", ""),
                name=(call.get("function") or {}).get("name", ""),
                arguments=_parse_arguments((call.get("function") or {}).get("arguments")),
            )
            for call in message.get("tool_calls") or []
        )

        provider_request_id = headers.get("x-request-id") or data.get("id")

        return LLMResponse(
            text=text,
            usage=_usage_from(data.get("usage")),
            provider_request_id=provider_request_id,
            tool_calls=tool_calls,
        )
