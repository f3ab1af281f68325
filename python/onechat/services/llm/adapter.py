"""Provider adapter interface and shared wire helpers.

One adapter per wire format (openai, anthropic, gemini; openrouter reuses
openai). The router owns key resolution and error classification, so an
adapter only turns an LLMRequest into an HTTP call and the provider's reply
into LLMResponse / LLMChunk values. Adapters never retry, never touch the
database and never log request or response bodies.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx

from onechat.services.llm.types import LLMChunk, LLMRequest, LLMResponse

CONNECT_TIMEOUT_S = 10.0
SSE_DATA_PREFIX = "data: "


def sse_data(line: str) -> str | None:
    """Payload of an SSE ``data:`` line, None for blank, comment and event lines."""
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX) :]


def parse_sse_json(payload: str | None) -> dict[str, Any] | None:
    """Decode one SSE payload. Keep-alives and malformed frames yield None."""
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class LLMAdapter(ABC):
    provider: str = ""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @staticmethod
    def _timeout(timeout_s: int) -> httpx.Timeout:
        return httpx.Timeout(timeout_s, connect=CONNECT_TIMEOUT_S)

    @abstractmethod
    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Single non-streaming completion (used for titles and tool-less calls).

        Raises:
            httpx.HTTPStatusError, httpx.TimeoutException, httpx.NetworkError
        """

    @abstractmethod
    async def generate_stream(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        """Yield text, reasoning and tool-call chunks, ending with done=True.

        A stream that closes without the provider's terminal marker raises
        LLMError(PROVIDER_DOWN) so a truncated answer is never stored
        as complete.
        """
        yield  # type: ignore[misc]
