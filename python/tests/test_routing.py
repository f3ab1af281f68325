"""Tests for model availability and routing resolution."""

import pytest

from onechat.errors import ApiError
from onechat.services.api_keys import ApiKeys
from onechat.services.catalog import DEFAULT_MODEL, IMAGE_GENERATION_MODEL, MODEL_CATALOG
from onechat.services.routing import (
    can_use_model,
    derive_routing_preference,
    get_available_model_keys,
    get_best_available_default_model,
    model_from_message,
    resolve_initial_model,
    resolve_model,
)

OPENAI_KEY = "sk-" + "o" * 40
ANTHROPIC_KEY = "sk-" + "a" * 40
GOOGLE_KEY = "AIza" + "g" * 35
OPENROUTER_KEY = "sk-" + "r" * 40


class TestAvailability:
    def test_no_keys_means_nothing_usable(self):
        assert get_available_model_keys(ApiKeys()) == []

    def test_native_key_grants_its_provider(self):
        keys = ApiKeys(anthropic=ANTHROPIC_KEY)
        available = get_available_model_keys(keys)

        assert available
        assert all(key.startswith("anthropic:") for key in available)

    def test_aggregator_key_grants_everything_but_direct_only(self):
        keys = ApiKeys(openrouter=OPENROUTER_KEY)
        available = set(get_available_model_keys(keys))

        assert available == set(MODEL_CATALOG) - {IMAGE_GENERATION_MODEL}

    def test_image_model_needs_direct_openai_key(self):
        assert not can_use_model(IMAGE_GENERATION_MODEL, ApiKeys(openrouter=OPENROUTER_KEY))
        assert can_use_model(IMAGE_GENERATION_MODEL, ApiKeys(openai=OPENAI_KEY))

    def test_aggregator_models_need_aggregator_key(self):
        key = "openrouter:deepseek/deepseek-r1-0528:free"
        assert not can_use_model(key, ApiKeys(openai=OPENAI_KEY))
        assert can_use_model(key, ApiKeys(openrouter=OPENROUTER_KEY))


class TestDefaultModel:
    def test_no_keys_gets_default(self):
        assert get_best_available_default_model(ApiKeys()) == DEFAULT_MODEL

    def test_first_usable_in_priority(self):
        assert (
            get_best_available_default_model(ApiKeys(anthropic=ANTHROPIC_KEY))
            == "anthropic:claude-sonnet-4-0"
        )
        assert (
            get_best_available_default_model(ApiKeys(google=GOOGLE_KEY))
            == "google:gemini-2.5-flash-preview-05-20"
        )

    def test_aggregator_only_picks_top_priority(self):
        assert get_best_available_default_model(ApiKeys(openrouter=OPENROUTER_KEY)) == DEFAULT_MODEL

    @pytest.mark.parametrize(
        "keys,expected",
        [
            (ApiKeys(), None),
            (ApiKeys(openrouter=OPENROUTER_KEY), True),
            (ApiKeys(openai=OPENAI_KEY), False),
            (ApiKeys(openai=OPENAI_KEY, openrouter=OPENROUTER_KEY), False),
        ],
    )
    def test_derive_routing_preference(self, keys, expected):
        assert derive_routing_preference(keys) is expected


class TestResolveModel:
    def test_unknown_model(self):
        with pytest.raises(ApiError) as exc:
            resolve_model("openai:nope", ApiKeys(openai=OPENAI_KEY))
        assert exc.value.code == "model_not_found:models"

    def test_missing_key(self):
        with pytest.raises(ApiError) as exc:
            resolve_model("anthropic:claude-sonnet-4-0", ApiKeys(openai=OPENAI_KEY))
        assert exc.value.code == "api_key_missing:models"
        assert "Anthropic" in exc.value.cause

    def test_native_openai(self):
        resolved = resolve_model("openai:gpt-4o", ApiKeys(openai=OPENAI_KEY))

        assert resolved.call_provider == "openai"
        assert resolved.call_model_id == "gpt-4o"
        assert resolved.api_key == OPENAI_KEY
        assert not resolved.routed_via_aggregator

    def test_anthropic_reasoning_suffix_stripped(self):
        resolved = resolve_model(
            "anthropic:claude-sonnet-4-0-reasoning", ApiKeys(anthropic=ANTHROPIC_KEY)
        )
        assert resolved.call_model_id == "claude-sonnet-4-0"

    def test_google_search_grounding(self):
        resolved = resolve_model(
            "google:gemini-2.0-flash", ApiKeys(google=GOOGLE_KEY), search=True
        )
        assert resolved.search_grounding is True

    def test_search_ignored_off_google(self):
        resolved = resolve_model("openai:gpt-4o", ApiKeys(openai=OPENAI_KEY), search=True)
        assert resolved.search_grounding is False

    def test_force_openrouter_maps_upstream_id_and_effort(self):
        resolved = resolve_model(
            "openai:o4-mini",
            ApiKeys(openrouter=OPENROUTER_KEY),
            force_openrouter=True,
            effort="high",
        )

        assert resolved.routed_via_aggregator
        assert resolved.call_model_id == "openai/o4-mini"
        assert resolved.api_key == OPENROUTER_KEY
        assert resolved.reasoning_effort == "high"

    def test_aggregator_reasoning_defaults_to_medium(self):
        resolved = resolve_model(
            "openrouter:deepseek/deepseek-r1-0528:free", ApiKeys(openrouter=OPENROUTER_KEY)
        )
        assert resolved.reasoning_effort == "medium"

    def test_aggregator_non_reasoning_has_no_effort(self):
        resolved = resolve_model(
            "openrouter:meta-llama/llama-4-scout:free", ApiKeys(openrouter=OPENROUTER_KEY)
        )
        assert resolved.reasoning_effort is None


class TestInitialModel:
    def test_latest_assistant_model_wins(self):
        messages = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "model": "anthropic:claude-sonnet-4-0"},
            {"role": "user", "content": "again"},
        ]
        assert resolve_initial_model(messages, "openai:gpt-4o") == "anthropic:claude-sonnet-4-0"

    def test_annotation_fallback(self):
        message = {"role": "assistant", "annotations": [{"type": "model", "model": "openai:o3"}]}
        assert model_from_message(message) == "openai:o3"

    def test_unknown_message_model_falls_back_to_cookie(self):
        messages = [{"role": "assistant", "model": "retired:model"}]
        assert resolve_initial_model(messages, "openai:gpt-4o") == "openai:gpt-4o"

    def test_unknown_cookie_falls_back_to_default(self):
        assert resolve_initial_model([], "retired:model") == DEFAULT_MODEL
