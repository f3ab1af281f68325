"""Provider-specific request options.

Builds the per-provider option blocks (reasoning effort, thinking budgets,
search grounding) and the tool registrations for one chat request.

Option blocks are emitted only when all of these hold:
- the model's own provider is openai, google or anthropic
- the model is not routed through the aggregator
- the model declares the reasoning capability

A missing capability silently omits the block; gating is the caller's job.
"""

from enum import Enum
from typing import Any

from onechat.services.api_keys import ApiKeys
from onechat.services.catalog import IMAGE_GENERATION_MODEL, Effort, ModelConfig
from onechat.services.tools import build_image_generation_tool, build_web_search_tool

EFFORT_PERCENTAGE_MAP: dict[str, float] = {
    "low": 0.2,
    "medium": 0.5,
    "high": 0.8,
}


class SearchMode(str, Enum):
    """How a request searches the web.

    native: the provider's built-in grounding flag (no tool registered)
    tool: the webSearch tool is registered
    """

    OFF = "off"
    NATIVE = "native"
    TOOL = "tool"


def compute_thinking_budget(config: ModelConfig, effort: Effort) -> int:
    """Absolute thinking-token budget: floor(max_tokens * effort percentage)."""
    return int(config.max_tokens * EFFORT_PERCENTAGE_MAP[effort])


def create_provider_options(
    config: ModelConfig | None,
    effort: Effort = "medium",
    *,
    routed_via_aggregator: bool = False,
) -> dict[str, Any]:
    """Provider option blocks for a model and reasoning effort.

    Args:
        config: The resolved model, or None.
        effort: Qualitative reasoning effort.
        routed_via_aggregator: True when the call goes through OpenRouter
            even though the model is native.

    Returns:
        A map of provider name to option block; empty when nothing applies.
    """
    if config is None or config.api_provider is not None or routed_via_aggregator:
        return {}
    if not config.capabilities.reasoning:
        return {}

    if config.provider == "openai":
        return {"openai": {"reasoningEffort": effort, "reasoningSummary": "auto"}}

    if config.provider == "google":
        return {"google": {"thinkingConfig": {"includeThoughts": True}}}

    if config.provider == "anthropic":
        return {
            "anthropic": {
                "thinking": {
                    "type": "enabled",
                    "budgetTokens": compute_thinking_budget(config, effort),
                }
            }
        }

    return {}


def use_native_search(config: ModelConfig | None, mode: SearchMode | str) -> bool:
    """Whether the provider's built-in search flag should be set."""
    if config is None or SearchMode(mode) != SearchMode.NATIVE:
        return False
    return config.capabilities.native_search


def create_tools_config(
    model_key: str,
    search_mode: SearchMode | str,
    user_id: str,
    api_keys: ApiKeys | None = None,
    *,
    platform_openai_key: str | None = None,
) -> dict[str, Any]:
    """Tool registrations for a request.

    Returns ``{"tools": {...}}`` with ``generateImage`` for the image model or
    ``webSearch`` for tool-mode search; ``{}`` when neither applies. The two
    never fire together: the image model takes no search tool.
    """
    tools: dict[str, Any] = {}

    if model_key == IMAGE_GENERATION_MODEL:
        openai_key = (api_keys.openai if api_keys else None) or platform_openai_key
        tools["generateImage"] = build_image_generation_tool(user_id, openai_key)
    elif SearchMode(search_mode) == SearchMode.TOOL:
        tools["webSearch"] = build_web_search_tool()

    return {"tools": tools} if tools else {}
