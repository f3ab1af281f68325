"""Model availability and routing resolution.

Given a credential set, decides which catalog models are usable, which model
is the best default, and which concrete provider, upstream model id and
credential a request for a model should use.

Availability rule:
- An aggregator (OpenRouter) key grants every model.
- Otherwise the key's provider prefix must match a held native key.

One named override is checked before the rule: models in DIRECT_ONLY_MODELS
need their direct provider key and are never granted by the aggregator.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from onechat.errors import ApiError
from onechat.services.api_keys import AGGREGATOR_PROVIDER, API_PROVIDERS, ApiKeys
from onechat.services.catalog import (
    DEFAULT_MODEL,
    DEFAULT_MODEL_PRIORITY,
    IMAGE_GENERATION_MODEL,
    MODEL_CATALOG,
    ModelConfig,
    get_model_by_key,
    get_openrouter_model,
)

# model key -> provider whose direct key is required
DIRECT_ONLY_MODELS: dict[str, str] = {
    IMAGE_GENERATION_MODEL: "openai",
}

PROVIDER_DISPLAY_NAMES = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google AI",
    "openrouter": "OpenRouter",
}


def has_aggregator_access(keys: ApiKeys) -> bool:
    return bool(keys.openrouter)


def get_required_providers_for_model(model_key: str) -> list[str]:
    """Providers named by a model key's prefix."""
    prefix, _, _ = model_key.partition(":")
    return [prefix] if prefix in API_PROVIDERS else []


def can_use_model_via_keys(model_key: str, keys: ApiKeys) -> bool:
    """General availability rule, without the direct-only override."""
    if has_aggregator_access(keys):
        return True
    required = get_required_providers_for_model(model_key)
    if not required:
        return False
    return all(keys.get(provider) for provider in required)


def direct_only_override(model_key: str, keys: ApiKeys) -> bool | None:
    """Decision for direct-only models, or None when the model is not one."""
    provider = DIRECT_ONLY_MODELS.get(model_key)
    if provider is None:
        return None
    return bool(keys.get(provider))


def can_use_model(model_key: str, keys: ApiKeys) -> bool:
    override = direct_only_override(model_key, keys)
    if override is not None:
        return override
    return can_use_model_via_keys(model_key, keys)


def get_best_available_default_model(keys: ApiKeys) -> str:
    """First usable model in DEFAULT_MODEL_PRIORITY, else DEFAULT_MODEL."""
    if not keys.any():
        return DEFAULT_MODEL
    for model_key in DEFAULT_MODEL_PRIORITY:
        if can_use_model(model_key, keys):
            return model_key
    return DEFAULT_MODEL


def get_available_model_keys(keys: ApiKeys) -> list[str]:
    return [key for key in MODEL_CATALOG if can_use_model(key, keys)]


def derive_routing_preference(keys: ApiKeys) -> bool | None:
    """Default aggregator-only flag for a credential set.

    True when only the aggregator key is held, False when any native key is
    held, None when there are no keys at all.
    """
    if not keys.any():
        return None
    native = [p for p in keys.providers() if p != AGGREGATOR_PROVIDER]
    return not native


@dataclass(frozen=True)
class ResolvedModel:
    """Concrete call target for a model key."""

    model_key: str
    config: ModelConfig
    call_provider: str
    call_model_id: str
    api_key: str
    search_grounding: bool = False
    reasoning_effort: str | None = None

    @property
    def routed_via_aggregator(self) -> bool:
        return self.call_provider == AGGREGATOR_PROVIDER


def resolve_model(
    model_key: str,
    keys: ApiKeys,
    *,
    force_openrouter: bool = False,
    search: bool = False,
    effort: str | None = None,
) -> ResolvedModel:
    """Resolve a model key to provider, upstream model id and credential.

    Args:
        model_key: Catalog model key.
        keys: The caller's credential set.
        force_openrouter: Route through the aggregator regardless of the
            model's own provider.
        search: Enable provider-native search grounding (Google only).
        effort: Reasoning effort forwarded to aggregator-routed reasoning models.

    Raises:
        ApiError: model_not_found:models for unknown keys or providers.
        ApiError: api_key_missing:models when the needed credential is absent.
    """
    config = get_model_by_key(model_key)
    if config is None:
        raise ApiError(
            "model_not_found:models", f'Model "{model_key}" is not available or supported'
        )

    provider = AGGREGATOR_PROVIDER if force_openrouter else config.routing_provider
    if provider not in PROVIDER_DISPLAY_NAMES:
        raise ApiError(
            "model_not_found:models", f'Provider "{provider}" is not supported or configured'
        )

    api_key = keys.get(provider)
    if not api_key:
        raise ApiError(
            "api_key_missing:models",
            f"{PROVIDER_DISPLAY_NAMES[provider]} API key is required to use this model",
        )

    model_id = config.id
    search_grounding = False
    reasoning_effort = None

    if provider == "anthropic":
        model_id = model_id.replace("-reasoning", "")
    elif provider == "google":
        model_id = model_id.replace("-thinking", "")
        search_grounding = search
    elif provider == AGGREGATOR_PROVIDER:
        model_id = get_openrouter_model(config)
        if config.capabilities.reasoning:
            reasoning_effort = effort or "medium"

    return ResolvedModel(
        model_key=model_key,
        config=config,
        call_provider=provider,
        call_model_id=model_id,
        api_key=api_key,
        search_grounding=search_grounding,
        reasoning_effort=reasoning_effort,
    )


def model_from_message(message: dict[str, Any]) -> str | None:
    """Model key recorded on a message, checking annotations as a fallback."""
    model = message.get("model")
    if model:
        return model
    for annotation in message.get("annotations") or []:
        if isinstance(annotation, dict) and annotation.get("type") == "model":
            if annotation.get("model"):
                return annotation["model"]
    return None


def resolve_initial_model(
    messages: Sequence[dict[str, Any]],
    cookie_model: str | None,
    default_model: str = DEFAULT_MODEL,
) -> str:
    """Pick the model a chat view starts with.

    Precedence: the latest assistant message's model, then the cookie model,
    then the default. Keys not in the catalog are skipped.
    """
    for message in reversed(messages):
        if message.get("role") != "assistant":
            continue
        candidate = model_from_message(message)
        if candidate and get_model_by_key(candidate) is not None:
            return candidate
        break

    if cookie_model and get_model_by_key(cookie_model) is not None:
        return cookie_model

    return default_model
