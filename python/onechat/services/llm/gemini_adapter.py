"""Gemini LLM adapter implementation.

- Non-streaming: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
- Streaming: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:streamGenerateContent?alt=sse

Auth:
- Header: x-goog-api-key: <key>
- NEVER put key in query param

Turn conversion:
- System turn → systemInstruction.parts[0].text
- "assistant" role → "model" role
- Assistant tool calls → functionCall parts; tool results → functionResponse parts

Options:
- provider_options["google"]["thinkingConfig"] → generationConfig.thinkingConfig
- search_grounding → tools: [{"googleSearch": {}}]
- Parts flagged "thought": true are reasoning, not answer text

Streaming terminal: an event whose candidate carries finishReason STOP or MAX_TOKENS.
"""

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

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

TERMINAL_FINISH_REASONS = frozenset({"STOP", "MAX_TOKENS"})


def _usage_from(metadata: dict | None) -> LLMUsage | None:
    if not metadata:
        return None
    return LLMUsage(
        prompt_tokens=metadata.get("promptTokenCount"),
        completion_tokens=metadata.get("candidatesTokenCount"),
        total_tokens=metadata.get("totalTokenCount"),
    )


def _split_parts(parts: list[dict]) -> tuple[str, str, list[ToolCall]]:
    """(answer text, thought text, function calls) from candidate parts."""
    text = ""
    reasoning = ""
    calls: list[ToolCall] = []
    for part in parts:
        if "functionCall" in part:
            call = part["functionCall"]
            calls.append(
                ToolCall(
                    id=call.get("id") or call.get("name", ""),
                    name=call.get("name", ""),
                    arguments=call.get("args") or {},
                )
            )
        elif "text" in part:
            if part.get("thought"):
                reasoning += part["text"]
            else:
                text += part["text"]
    return text, reasoning, calls


class GeminiAdapter(LLMAdapter):
    """Google Gemini API adapter."""

    provider = "google"

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Non-streaming content generation."""
        url = f"{GEMINI_BASE_URL}/{req.model_name}:generateContent"
        headers = self._build_headers(api_key)
        body = self._build_request_body(req)

        response = await self._client.post(
            url,
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
        """Streaming content generation using Server-Sent Events."""
        url = f"{GEMINI_BASE_URL}/{req.model_name}:streamGenerateContent?alt=sse"
        headers = self._build_headers(api_key)
        body = self._build_request_body(req)

        async with self._client.stream(
            "POST",
            url,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        ) as response:
            response.raise_for_status()

            received_stop = False
            usage: LLMUsage | None = None
            tool_calls: list[ToolCall] = []

            async for line in response.aiter_lines():
                data = parse_sse_json(sse_data(line))
                if data is None:
                    continue

                if data.get("usageMetadata"):
                    usage = _usage_from(data["usageMetadata"])

                candidates = data.get("candidates", [])
                if not candidates:
                    continue

                candidate = candidates[0]
                parts = (candidate.get("content") or {}).get("parts", [])
                delta_text, delta_reasoning, calls = _split_parts(parts)
                tool_calls.extend(calls)

                if delta_text or delta_reasoning:
                    yield LLMChunk(
                        delta_text=delta_text, delta_reasoning=delta_reasoning, done=False
                    )

                if candidate.get("finishReason") in TERMINAL_FINISH_REASONS:
                    received_stop = True
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=usage,
                        provider_request_id=data.get("responseId"),
                        tool_calls=tuple(tool_calls),
                    )
                    break

            if not received_stop:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Gemini stream ended without STOP finish reason",
                    provider="google",
                )

    def _build_headers(self, api_key: str) -> dict[str, str]:
        """Build request headers.

        Note: API key goes in header, NEVER in query param.
        """
        return {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest) -> dict:
        """Build request body from LLMRequest.

        Extracts system turn to systemInstruction and maps roles.
        """
        system_prompt = None
        contents = []

        for turn in req.messages:
            if turn.role == "system":
                system_prompt = turn.content
            else:
                contents.append(self._turn_to_content(turn))

        generation_config: dict[str, Any] = {"maxOutputTokens": req.max_tokens}
        if req.temperature is not None:
            generation_config["temperature"] = req.temperature
        if req.top_p is not None:
            generation_config["topP"] = req.top_p

        thinking = (req.provider_options.get("google") or {}).get("thinkingConfig")
        if thinking:
            generation_config["thinkingConfig"] = thinking

        body: dict = {
            "contents": contents,
            "generationConfig": generation_config,
        }

        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        tools: list[dict[str, Any]] = []
        if req.tools:
            tools.append(
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.parameters,
                        }
                        for tool in req.tools
                    ]
                }
            )
        if req.search_grounding:
            tools.append({"googleSearch": {}})
        if tools:
            body["tools"] = tools

        return body

    def _turn_to_content(self, turn: Turn) -> dict:
        """Convert Turn to Gemini content format."""
        if turn.role == "tool":
            return {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": turn.name or "",
                            "response": {"content": turn.content},
                        }
                    }
                ],
            }

        role = "model" if turn.role == "assistant" else turn.role
        parts: list[dict[str, Any]] = []
        if turn.content:
            parts.append({"text": turn.content})
        for call in turn.tool_calls:
            parts.append({"functionCall": {"name": call.name, "args": call.arguments}})
        if not parts:
            parts.append({"text": ""})
        return {"role": role, "parts": parts}

    def _parse_response(self, data: dict) -> LLMResponse:
        """Parse non-streaming response."""
        candidates = data.get("candidates", [])
        if not candidates:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Gemini response missing candidates",
                provider="google",
            )

        parts = (candidates[0].get("content") or {}).get("parts", [])
        text, _, calls = _split_parts(parts)

        return LLMResponse(
            text=text,
            usage=_usage_from(data.get("usageMetadata")),
            provider_request_id=data.get("responseId"),
            tool_calls=tuple(calls),
        )
