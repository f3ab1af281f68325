"""Per-user preference state containers.

Each container owns its state transitions and reads/writes through an
injected PersistenceAdapter, so the same logic runs against cookies, a
server session, or memory.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Literal

from onechat.logging import get_logger
from onechat.services.catalog import get_model_by_key
from onechat.services.persistence import PersistenceAdapter

logger = get_logger(__name__)

CHAT_MODEL_COOKIE = "chat-model"
MODEL_ROUTING_COOKIE = "model-routing"
PINNED_THREADS_COOKIE = "pinned-threads"
USER_SETTINGS_KEY = "user-settings-storage"


def has_keys_cookie_name(user_id: str) -> str:
    return f"has-api-keys-{user_id}"


def _parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    return value == "true"


class ModelPreferences:
    """Selected model, aggregator-routing flag and the has-keys indicator."""

    def __init__(self, adapter: PersistenceAdapter):
        self._adapter = adapter

    @property
    def selected_model(self) -> str | None:
        """Cookie model if it names a catalog model."""
        value = self._adapter.get(CHAT_MODEL_COOKIE)
        if value and get_model_by_key(value) is not None:
            return value
        return None

    def set_selected_model(self, model_key: str) -> None:
        self._adapter.set(CHAT_MODEL_COOKIE, model_key)

    @property
    def routing(self) -> bool | None:
        """True restricts calls to the aggregator; None when never set."""
        return _parse_bool(self._adapter.get(MODEL_ROUTING_COOKIE))

    def set_routing(self, restricted_to_aggregator: bool) -> None:
        self._adapter.set(MODEL_ROUTING_COOKIE, "true" if restricted_to_aggregator else "false")

    def clear_routing(self) -> None:
        self._adapter.remove(MODEL_ROUTING_COOKIE)

    def has_keys(self, user_id: str) -> bool | None:
        return _parse_bool(self._adapter.get(has_keys_cookie_name(user_id)))

    def set_has_keys(self, user_id: str, has_keys: bool) -> None:
        self._adapter.set(has_keys_cookie_name(user_id), "true" if has_keys else "false")

    def clear_has_keys(self, user_id: str) -> None:
        self._adapter.remove(has_keys_cookie_name(user_id))


class PinnedThreadsStore:
    """Pinned thread ids, persisted as a JSON array, in pin order."""

    def __init__(self, adapter: PersistenceAdapter):
        self._adapter = adapter

    @property
    def pinned(self) -> list[str]:
        raw = self._adapter.get(PINNED_THREADS_COOKIE)
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("pinned_threads_corrupt")
            return []
        if not isinstance(value, list):
            return []
        return [str(v) for v in value]

    def _save(self, thread_ids: list[str]) -> None:
        self._adapter.set(PINNED_THREADS_COOKIE, json.dumps(thread_ids))

    def is_pinned(self, thread_id: str) -> bool:
        return thread_id in self.pinned

    def pin(self, thread_id: str) -> list[str]:
        ids = self.pinned
        if thread_id not in ids:
            ids.append(thread_id)
            self._save(ids)
        return ids

    def unpin(self, thread_id: str) -> list[str]:
        ids = [tid for tid in self.pinned if tid != thread_id]
        self._save(ids)
        return ids

    def toggle(self, thread_id: str) -> list[str]:
        if self.is_pinned(thread_id):
            return self.unpin(thread_id)
        return self.pin(thread_id)


ResponseStyle = Literal["concise", "detailed", "balanced"]


@dataclass
class UserSettings:
    name: str = ""
    occupation: str = ""
    traits: list[str] = field(default_factory=list)
    additional_context: str = ""
    response_style: ResponseStyle = "balanced"
    use_personalization: bool = True


_SETTINGS_FIELDS = {f.name for f in fields(UserSettings)}


class UserSettingsStore:
    """User personalization settings, persisted as one JSON document."""

    def __init__(self, adapter: PersistenceAdapter):
        self._adapter = adapter

    @property
    def settings(self) -> UserSettings:
        raw = self._adapter.get(USER_SETTINGS_KEY)
        if not raw:
            return UserSettings()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("user_settings_corrupt")
            return UserSettings()
        return UserSettings(**{k: v for k, v in data.items() if k in _SETTINGS_FIELDS})

    def _save(self, settings: UserSettings) -> UserSettings:
        self._adapter.set(USER_SETTINGS_KEY, json.dumps(asdict(settings)))
        return settings

    def update(self, **changes) -> UserSettings:
        """Merge changes into the stored settings.

        Raises:
            ValueError: If a change names an unknown setting.
        """
        unknown = set(changes) - _SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        current = asdict(self.settings)
        current.update(changes)
        return self._save(UserSettings(**current))

    def reset(self) -> UserSettings:
        self._adapter.remove(USER_SETTINGS_KEY)
        return UserSettings()

    def add_trait(self, trait: str) -> UserSettings:
        settings = self.settings
        settings.traits.append(trait)
        return self._save(settings)

    def remove_trait(self, trait: str) -> UserSettings:
        settings = self.settings
        settings.traits = [t for t in settings.traits if t != trait]
        return self._save(settings)
