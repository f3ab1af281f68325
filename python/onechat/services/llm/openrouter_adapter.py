"""OpenRouter LLM adapter implementation.

OpenRouter speaks the OpenAI chat completions dialect at its own endpoint.

- Endpoint: POST https://openrouter.ai/api/v1/chat/completions
- Headers: Authorization: Bearer <key>, HTTP-Referer, X-Title (app attribution)
- Reasoning models take {"reasoning": {"effort": "low|medium|high"}}; the
  reasoning text streams back in delta.reasoning
"""

import httpx

from onechat.services.llm.openai_adapter import OpenAIAdapter
from onechat.services.llm.types import LLMRequest

OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterAdapter(OpenAIAdapter):
    """Aggregator adapter: one key, every catalog model."""

    provider = "openrouter"
    chat_url = OPENROUTER_CHAT_URL

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        app_url: str = "http://localhost:3000",
        app_title: str = "OneChat",
    ):
        super().__init__(client)
        self._app_url = app_url
        self._app_title = app_title

    def _build_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._app_url,
            "X-Title": self._app_title,
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        body = super()._build_request_body(req, stream)
        # OpenRouter still documents max_tokens
        body["max_tokens"] = body.pop("max_completion_tokens")
        return body

    def _apply_provider_options(self, body: dict, req: LLMRequest) -> None:
        if req.reasoning_effort:
            body["reasoning"] = {"effort": req.reasoning_effort}

    def _reasoning_delta(self, delta: dict) -> str:
        return delta.get("reasoning") or ""
