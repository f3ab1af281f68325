"""Anthropic LLM adapter implementation.

- Endpoint: POST https://api.anthropic.com/v1/messages
- Headers: x-api-key: <key>, anthropic-version: 2023-06-01, Content-Type: application/json

Turn conversion:
- System turn extracted to separate "system" field
- Assistant tool calls become tool_use content blocks
- Tool results become user turns holding a tool_result block

Streaming events:
- message_start: request id and input token count
- content_block_start: opens a text, thinking or tool_use block
- content_block_delta: text_delta, thinking_delta or input_json_delta
- message_delta: output token count
- message_stop: terminal
"""

import json
from collections.abc import AsyncIterator
from typing import Any

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

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _combine_usage(input_tokens: int | None, output_tokens: int | None) -> LLMUsage | None:
    if input_tokens is None and output_tokens is None:
        return None
    total = None
    if input_tokens is not None and output_tokens is not None:
        total = input_tokens + output_tokens
    return LLMUsage(
        prompt_tokens=input_tokens,
        completion_tokens=output_tokens,
        total_tokens=total,
    )


class AnthropicAdapter(LLMAdapter):
    """Anthropic API adapter for the messages endpoint."""

    provider = "anthropic"

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Non-streaming message generation."""
        headers = self._build_headers(api_key)
        body = self._build_request_body(req, stream=False)

        response = await self._client.post(
            ANTHROPIC_MESSAGES_URL,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        )
        response.raise_for_status()

        data = response.json()
        return self._parse_response(data)

    async def generate_stream(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming message generation using Server-Sent Events."""
        headers = self._build_headers(api_key)
        body = self._build_request_body(req, stream=True)

        async with self._client.stream(
            "POST",
            ANTHROPIC_MESSAGES_URL,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        ) as response:
            response.raise_for_status()

            provider_request_id: str | None = None
            input_tokens: int | None = None
            output_tokens: int | None = None
            tool_blocks: dict[int, dict[str, str]] = {}
            received_stop = False

            async for line in response.aiter_lines():
                if not line:
                    continue

                # Anthropic SSE format: "event: <type>\ndata: {...}"
                if line.startswith("event: "):
                    if line[7:] == "message_stop":
                        received_stop = True
                        yield LLMChunk(
                            delta_text="",
                            done=True,
                            usage=_combine_usage(input_tokens, output_tokens),
                            provider_request_id=provider_request_id,
                            tool_calls=self._finish_tool_calls(tool_blocks),
                        )
                        break
                    continue

                data = parse_sse_json(sse_data(line))
                if data is None:
                    continue

                event_type = data.get("type", "")

                if event_type == "message_start":
                    message = data.get("message", {})
                    provider_request_id = message.get("id")
                    input_tokens = (message.get("usage") or {}).get("input_tokens")
                    continue

                if event_type == "content_block_start":
                    block = data.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        tool_blocks[data.get("index", 0)] = {
                            "id": block.get("id", ""),
                            "name": block.get("name", ""),
                            "input": "",
                        }
                    continue

                if event_type == "content_block_delta":
                    delta = data.get("delta", {})
                    delta_type = delta.get("type")
                    if delta_type == "text_delta" and delta.get("text"):
                        yield LLMChunk(delta_text=delta["text"], done=False)
                    elif delta_type == "thinking_delta" and delta.get("thinking"):
                        yield LLMChunk(delta_text="", delta_reasoning=delta["thinking"], done=False)
                    elif delta_type == "input_json_delta":
                        block = tool_blocks.get(data.get("index", 0))
                        if block is not None:
                            block["input"] += delta.get("partial_json", "")
                    continue

                if event_type == "message_delta":
                    usage_data = data.get("usage") or {}
                    if "output_tokens" in usage_data:
                        output_tokens = usage_data["output_tokens"]
                    continue

            if not received_stop:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Anthropic stream ended without message_stop event",
                    provider="anthropic",
                )

    def _build_headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        """Build request body from LLMRequest.

        Extracts system turn to separate field.
        """
        system_prompt = None
        messages = []

        for turn in req.messages:
            if turn.role == "system":
                system_prompt = turn.content
            else:
                messages.append(self._turn_to_message(turn))

        body: dict = {
            "model": req.model_name,
            "max_tokens": req.max_tokens,
            "messages": messages,
            "stream": stream,
        }

        if system_prompt:
            body["system"] = system_prompt

        if req.temperature is not None:
            body["temperature"] = req.temperature
        if req.top_p is not None:
            body["top_p"] = req.top_p

        if req.tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in req.tools
            ]

        thinking = (req.provider_options.get("anthropic") or {}).get("thinking")
        if thinking and thinking.get("type") == "enabled":
            budget = int(thinking.get("budgetTokens", 0))
            # budget must stay below max_tokens; sampling params are rejected with thinking on
            body["thinking"] = {"type": "enabled", "budget_tokens": min(budget, req.max_tokens - 1)}
            body.pop("temperature", None)
            body.pop("top_p", None)

        return body

    def _turn_to_message(self, turn: Turn) -> dict[str, Any]:
        """Convert Turn to Anthropic message format."""
        if turn.role == "tool":
            return {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": turn.tool_call_id,
                        "content": turn.content,
                    }
                ],
            }

        if turn.tool_calls:
            blocks: list[dict[str, Any]] = []
            if turn.content:
                blocks.append({"type": "text", "text": turn.content})
            for call in turn.tool_calls:
                blocks.append(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                )
            return {"role": "assistant", "content": blocks}

        return {
            "role": turn.role,
            "content": turn.content,
        }

    @staticmethod
    def _finish_tool_calls(blocks: dict[int, dict[str, str]]) -> tuple[ToolCall, ...]:
        calls = []
        for _, block in sorted(blocks.items()):
            try:
                arguments = json.loads(block["input"]) if block["input"] else {}
            except json.JSONDecodeError:
                arguments = {}
            calls.append(ToolCall(id=block["id"], name=block["name"], arguments=arguments))
        return tuple(calls)

    def _parse_response(self, data: dict) -> LLMResponse:
        """Parse non-streaming response."""
        text_parts = []
        tool_calls = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        arguments=block.get("input") or {},
                    )
                )

        usage_data = data.get("usage") or {}
        usage = _combine_usage(usage_data.get("input_tokens"), usage_data.get("output_tokens"))

        return LLMResponse(
            text="".join(text_parts),
            usage=usage,
            provider_request_id=data.get("id"),
            tool_calls=tuple(tool_calls),
        )
