"""BYOK credential primitives.

Provider configuration, key format checks, live validation against the
provider APIs, and the display/storage transforms for keys.

The storage transform (encrypt_key / decrypt_key) is a reversible XOR with
the user id. It is obfuscation only: anyone holding the stored value and the
user id recovers the key. Stored values depend on this exact transform, so it
must not be changed without a migration of existing stored keys.
"""

import re
from dataclasses import dataclass, fields, replace
from typing import Literal

import httpx

from onechat.logging import get_logger
from onechat.services.redact import safe_kv

logger = get_logger(__name__)

ApiProvider = Literal["openai", "anthropic", "google", "openrouter"]

API_PROVIDERS: tuple[ApiProvider, ...] = ("openai", "anthropic", "google", "openrouter")
NATIVE_PROVIDERS: tuple[ApiProvider, ...] = ("openai", "anthropic", "google")
AGGREGATOR_PROVIDER: ApiProvider = "openrouter"

VALIDATION_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class ApiKeys:
    """A user's credential set: one optional key per provider."""

    openai: str | None = None
    anthropic: str | None = None
    google: str | None = None
    openrouter: str | None = None

    def get(self, provider: str) -> str | None:
        if provider not in API_PROVIDERS:
            return None
        return getattr(self, provider)

    def with_key(self, provider: ApiProvider, key: str | None) -> "ApiKeys":
        return replace(self, **{provider: key})

    def providers(self) -> list[ApiProvider]:
        """Providers with a key present, in canonical order."""
        return [f.name for f in fields(self) if getattr(self, f.name)]  # type: ignore[misc]

    def any(self) -> bool:
        return bool(self.providers())

    @classmethod
    def from_dict(cls, data: dict[str, str | None]) -> "ApiKeys":
        return cls(**{p: data.get(p) or None for p in API_PROVIDERS})


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    key_prefix: str
    key_pattern: re.Pattern[str]
    description: str
    validation_endpoint: str


@dataclass(frozen=True)
class KeyValidationResult:
    is_valid: bool
    error: str | None = None


class KeyValidationError(Exception):
    """Raised by save operations when a key fails format or live validation."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(message)


_OPENAI_STYLE_PATTERN = re.compile(r"^sk-[A-Za-z0-9_-]{32,}$")

PROVIDER_CONFIGS: dict[ApiProvider, ProviderConfig] = {
    "openai": ProviderConfig(
        name="OpenAI",
        key_prefix="sk-",
        key_pattern=_OPENAI_STYLE_PATTERN,
        description="o4-mini, GPT-4o, GPT-4.1, o3, and ImageGen",
        validation_endpoint="https://api.openai.com/v1/models",
    ),
    "anthropic": ProviderConfig(
        name="Anthropic",
        key_prefix="sk-",
        key_pattern=_OPENAI_STYLE_PATTERN,
        description="Claude 4 Sonnet and Claude 3.7 Sonnet",
        validation_endpoint="https://api.anthropic.com/v1/models",
    ),
    "google": ProviderConfig(
        name="Google AI",
        key_prefix="AIza",
        key_pattern=re.compile(r"^AIza[A-Za-z0-9_-]{35,}$"),
        description="Gemini 2.5 Pro, 2.5 Flash, and 2.0 Flash",
        validation_endpoint="https://generativelanguage.googleapis.com/v1beta/models",
    ),
    "openrouter": ProviderConfig(
        name="OpenRouter",
        key_prefix="sk-",
        key_pattern=_OPENAI_STYLE_PATTERN,
        description="Access all the models with one key",
        validation_endpoint="https://openrouter.ai/api/v1/credits",
    ),
}


def validate_key_format(provider: ApiProvider, key: str) -> bool:
    return bool(PROVIDER_CONFIGS[provider].key_pattern.match(key))


def _validation_request(
    provider: ApiProvider, key: str, *, app_url: str, app_title: str
) -> tuple[str, dict[str, str], dict[str, str]]:
    """Build (url, headers, params) for a provider's validation call."""
    config = PROVIDER_CONFIGS[provider]
    headers = {"Content-Type": "application/json"}
    params: dict[str, str] = {}

    if provider == "openai":
        headers["Authorization"] = f"Bearer {key}"
    elif provider == "anthropic":
        headers["x-api-key"] = key
        headers["anthropic-version"] = "2023-06-01"
    elif provider == "google":
        params["key"] = key
    elif provider == "openrouter":
        headers["Authorization"] = f"Bearer {key}"
        headers["HTTP-Referer"] = app_url
        headers["X-Title"] = app_title

    return config.validation_endpoint, headers, params


async def validate_api_key(
    client: httpx.AsyncClient,
    provider: ApiProvider,
    key: str,
    *,
    app_url: str = "http://localhost:3000",
    app_title: str = "OneChat",
) -> KeyValidationResult:
    """Check a key's format, then confirm it against the provider API.

    Outcomes:
        - malformed format: rejected without a network call
        - HTTP 401/400: invalid credential
        - HTTP 403: insufficient permission
        - other non-2xx: generic validation failure
        - transport failure: network error

    Never raises for validation failures; the result carries the reason.
    """
    config = PROVIDER_CONFIGS[provider]

    if not validate_key_format(provider, key):
        return KeyValidationResult(
            is_valid=False,
            error=f"Invalid {config.name} key format. Must start with {config.key_prefix}",
        )

    url, headers, params = _validation_request(
        provider, key, app_url=app_url, app_title=app_title
    )

    try:
        response = await client.get(
            url, headers=headers, params=params, timeout=VALIDATION_TIMEOUT_S
        )
    except httpx.HTTPError as e:
        logger.warning(
            "api_key_validation_network_error",
            **safe_kv(provider=provider, error_type=type(e).__name__),
        )
        return KeyValidationResult(
            is_valid=False,
            error=f"Network error while validating {config.name} key.",
        )

    status = response.status_code
    logger.info(
        "api_key_validation_completed",
        **safe_kv(provider=provider, status_code=status, key_fingerprint=obfuscate_key(key)),
    )

    if status in (400, 401):
        return KeyValidationResult(
            is_valid=False,
            error=f"Invalid {config.name} API key. Please check your key.",
        )
    if status == 403:
        return KeyValidationResult(
            is_valid=False,
            error=f"{config.name} API key lacks required permissions.",
        )
    if not response.is_success:
        return KeyValidationResult(
            is_valid=False,
            error=f"Failed to validate {config.name} key. Please try again.",
        )

    return KeyValidationResult(is_valid=True)


def get_key_storage_key(user_id: str) -> str:
    return f"onechat-api-keys-{user_id}"


def obfuscate_key(key: str) -> str:
    """Display form: first 6 and last 4 characters, at most 20 stars between."""
    if len(key) <= 8:
        return key
    hidden_count = len(key) - 10
    return f"{key[:6]}{'*' * min(max(hidden_count, 0), 20)}{key[-4:]}"


def encrypt_key(key: str, user_id: str) -> str:
    """XOR each character with the user id, cycled. Obfuscation only."""
    pad = user_id or "x"
    return "".join(chr(ord(char) ^ ord(pad[i % len(pad)])) for i, char in enumerate(key))


def decrypt_key(encrypted_key: str, user_id: str) -> str:
    """Inverse of encrypt_key (XOR is its own inverse)."""
    return encrypt_key(encrypted_key, user_id)
