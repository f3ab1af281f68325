"""Per-user credential store.

Keys are stored as one JSON object under ``onechat-api-keys-{user_id}``,
each value XOR-obfuscated with the user id. Saving a key validates it first
and persists nothing when validation fails. Every successful save or remove
refreshes the ``has-api-keys-{user_id}`` indicator.
"""

import json

import httpx

from onechat.logging import get_logger
from onechat.services.api_keys import (
    AGGREGATOR_PROVIDER,
    API_PROVIDERS,
    PROVIDER_CONFIGS,
    ApiKeys,
    ApiProvider,
    KeyValidationError,
    KeyValidationResult,
    decrypt_key,
    encrypt_key,
    get_key_storage_key,
    obfuscate_key,
    validate_api_key,
)
from onechat.services.persistence import PersistenceAdapter
from onechat.services.preferences import ModelPreferences
from onechat.services.redact import safe_kv
from onechat.services.routing import derive_routing_preference, get_best_available_default_model

logger = get_logger(__name__)


class ApiKeyStore:
    """Credential store for one user.

    Args:
        user_id: Owner of the keys; also the obfuscation pad.
        storage: Where the obfuscated key map lives.
        cookies: Where model/routing/has-keys preferences live.
        client: HTTP client for live validation calls.
    """

    def __init__(
        self,
        user_id: str,
        storage: PersistenceAdapter,
        cookies: PersistenceAdapter,
        client: httpx.AsyncClient | None = None,
        *,
        app_url: str = "http://localhost:3000",
        app_title: str = "OneChat",
    ):
        self.user_id = user_id
        self._storage = storage
        self._prefs = ModelPreferences(cookies)
        self._client = client
        self._app_url = app_url
        self._app_title = app_title

    @property
    def _storage_key(self) -> str:
        return get_key_storage_key(self.user_id)

    def _load_stored(self) -> dict[str, str]:
        raw = self._storage.get(self._storage_key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("api_key_store_corrupt", user_id=self.user_id)
            return {}
        return {p: v for p, v in data.items() if p in API_PROVIDERS and v}

    def _write_stored(self, stored: dict[str, str]) -> None:
        if stored:
            self._storage.set(self._storage_key, json.dumps(stored))
        else:
            self._storage.remove(self._storage_key)

    def get_keys(self) -> ApiKeys:
        stored = self._load_stored()
        return ApiKeys.from_dict({p: decrypt_key(v, self.user_id) for p, v in stored.items()})

    def has_keys(self) -> bool:
        """Cookie indicator when set, otherwise derived from stored keys."""
        flag = self._prefs.has_keys(self.user_id)
        if flag is not None:
            return flag
        return self.get_keys().any()

    def get_obfuscated_keys(self) -> dict[str, str]:
        keys = self.get_keys()
        return {p: obfuscate_key(keys.get(p)) for p in keys.providers()}  # type: ignore[arg-type]

    def routing_preference(self) -> bool | None:
        """Aggregator-only flag: the stored cookie value, else the derived default."""
        stored = self._prefs.routing
        if stored is not None:
            return stored
        return derive_routing_preference(self.get_keys())

    async def validate_key(self, provider: ApiProvider, key: str) -> KeyValidationResult:
        if self._client is None:
            raise RuntimeError("ApiKeyStore has no HTTP client for validation")
        return await validate_api_key(
            self._client, provider, key, app_url=self._app_url, app_title=self._app_title
        )

    async def save_key(self, provider: ApiProvider, key: str) -> str:
        """Validate and persist a key.

        On success the best default model for the new credential set becomes
        the selected model and the has-keys indicator is set.

        Returns:
            The newly selected model key.

        Raises:
            KeyValidationError: If validation fails; nothing is persisted.
        """
        key = key.strip()
        result = await self.validate_key(provider, key)
        if not result.is_valid:
            logger.info("api_key_rejected", **safe_kv(user_id=self.user_id, provider=provider))
            raise KeyValidationError(
                provider, result.error or f"Invalid {PROVIDER_CONFIGS[provider].name} key"
            )

        stored = self._load_stored()
        stored[provider] = encrypt_key(key, self.user_id)
        self._write_stored(stored)

        updated = self.get_keys()
        best_model = get_best_available_default_model(updated)
        self._prefs.set_selected_model(best_model)
        self._prefs.set_has_keys(self.user_id, True)

        logger.info(
            "api_key_saved",
            **safe_kv(
                user_id=self.user_id,
                provider=provider,
                key_fingerprint=obfuscate_key(key),
                selected_model=best_model,
            ),
        )
        return best_model

    def remove_key(self, provider: ApiProvider) -> None:
        """Delete one provider's key.

        Removing the aggregator key resets routing to native providers.
        """
        stored = self._load_stored()
        stored.pop(provider, None)
        self._write_stored(stored)
        self._prefs.set_has_keys(self.user_id, bool(stored))
        if provider == AGGREGATOR_PROVIDER:
            self._prefs.set_routing(False)
        logger.info("api_key_removed", user_id=self.user_id, provider=provider)

    def clear_all_keys(self) -> None:
        self._storage.remove(self._storage_key)
        self._prefs.clear_has_keys(self.user_id)
        self._prefs.clear_routing()
        logger.info("api_keys_cleared", user_id=self.user_id)
