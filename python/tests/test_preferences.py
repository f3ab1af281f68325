"""Tests for preference containers and persistence adapters."""

import json
from unittest.mock import MagicMock

import pytest
from fastapi import Response
from redis.exceptions import RedisError

from onechat.services.persistence import CookiePersistence, MemoryPersistence, RedisPersistence
from onechat.services.preferences import (
    CHAT_MODEL_COOKIE,
    PINNED_THREADS_COOKIE,
    ModelPreferences,
    PinnedThreadsStore,
    UserSettings,
    UserSettingsStore,
)
from tests.support.fake_redis import FakeRedis


# =============================================================================
# Adapters
# =============================================================================


class TestCookiePersistence:
    def test_reads_overlay_writes(self):
        cookies = CookiePersistence({"a": "1"})
        cookies.set("b", "2")
        cookies.remove("a")

        assert cookies.get("a") is None
        assert cookies.get("b") == "2"
        assert cookies.pending_writes == [("b", "2"), ("a", None)]

    def test_apply_sets_and_deletes_cookies(self):
        cookies = CookiePersistence({}, secure=True)
        cookies.set("chat-model", "openai:gpt-4o")
        cookies.remove("stale")
        response = Response()

        cookies.apply(response)

        headers = response.headers.getlist("set-cookie")
        assert any(h.startswith("chat-model=") and "Secure" in h for h in headers)
        assert any(h.startswith("stale=") and "Max-Age=0" in h for h in headers)
        assert cookies.pending_writes == []


class TestRedisPersistence:
    def test_namespaced_keys_with_ttl(self):
        client = FakeRedis()
        adapter = RedisPersistence(client, "ns", ttl_s=60)

        adapter.set("name", "value")

        assert client.get("ns:name") == "value"
        assert client.ttl("ns:name") == 60
        assert adapter.get("name") == "value"

        adapter.remove("name")
        assert adapter.get("name") is None

    def test_redis_errors_degrade_to_absent(self):
        client = MagicMock()
        client.get.side_effect = RedisError("down")
        client.set.side_effect = RedisError("down")
        adapter = RedisPersistence(client, "ns")

        assert adapter.get("name") is None
        adapter.set("name", "value")


# =============================================================================
# Containers
# =============================================================================


class TestModelPreferences:
    def test_unknown_cookie_model_is_ignored(self):
        prefs = ModelPreferences(MemoryPersistence({CHAT_MODEL_COOKIE: "retired:model"}))
        assert prefs.selected_model is None

    def test_known_model(self):
        prefs = ModelPreferences(MemoryPersistence())
        prefs.set_selected_model("openai:gpt-4o")
        assert prefs.selected_model == "openai:gpt-4o"

    def test_routing_round_trip(self):
        prefs = ModelPreferences(MemoryPersistence())
        assert prefs.routing is None

        prefs.set_routing(True)
        assert prefs.routing is True

        prefs.clear_routing()
        assert prefs.routing is None

    def test_has_keys_is_per_user(self):
        prefs = ModelPreferences(MemoryPersistence())
        prefs.set_has_keys("u1", True)

        assert prefs.has_keys("u1") is True
        assert prefs.has_keys("u2") is None


class TestPinnedThreads:
    def test_toggle_pins_then_unpins(self):
        store = PinnedThreadsStore(MemoryPersistence())

        assert store.toggle("t1") == ["t1"]
        assert store.toggle("t2") == ["t1", "t2"]
        assert store.toggle("t1") == ["t2"]

    def test_pin_is_idempotent(self):
        store = PinnedThreadsStore(MemoryPersistence())
        store.pin("t1")
        assert store.pin("t1") == ["t1"]

    @pytest.mark.parametrize("raw", ["{bad", '{"a": 1}'])
    def test_corrupt_value_reads_as_empty(self, raw):
        store = PinnedThreadsStore(MemoryPersistence({PINNED_THREADS_COOKIE: raw}))
        assert store.pinned == []

    def test_persisted_as_json_array(self):
        adapter = MemoryPersistence()
        PinnedThreadsStore(adapter).pin("t1")
        assert json.loads(adapter.get(PINNED_THREADS_COOKIE)) == ["t1"]


class TestUserSettings:
    def test_defaults(self):
        assert UserSettingsStore(MemoryPersistence()).settings == UserSettings()

    def test_update_merges(self):
        store = UserSettingsStore(MemoryPersistence())
        store.update(name="Ada")
        settings = store.update(response_style="concise")

        assert settings.name == "Ada"
        assert settings.response_style == "concise"
        assert store.settings == settings

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(ValueError):
            UserSettingsStore(MemoryPersistence()).update(favorite_color="blue")

    def test_traits(self):
        store = UserSettingsStore(MemoryPersistence())
        store.add_trait("curious")
        store.add_trait("direct")
        settings = store.remove_trait("curious")

        assert settings.traits == ["direct"]

    def test_reset(self):
        store = UserSettingsStore(MemoryPersistence())
        store.update(name="Ada")
        assert store.reset() == UserSettings()
        assert store.settings == UserSettings()
