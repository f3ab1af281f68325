"""Application settings loaded from environment variables.

Environment Configuration:
    ONECHAT_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    ONECHAT_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (cache, streams, shares, rate limits)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration (required outside the test environment):
    AUTH_JWKS_URL: Full URL to the identity provider JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

Provider Configuration:
    ENABLE_OPENAI / ENABLE_ANTHROPIC / ENABLE_GOOGLE / ENABLE_OPENROUTER
    OPENAI_API_KEY: Platform key for image generation and voice fallback
    FIRECRAWL_API_KEY: Key for the web-search tool
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - AUTH_JWKS_URL, AUTH_ISSUER, AUTH_AUDIENCES are required outside test
    - ONECHAT_INTERNAL_SECRET is required in staging and prod only
    """

    onechat_env: Environment = Field(default=Environment.LOCAL, alias="ONECHAT_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    onechat_internal_secret: str | None = Field(default=None, alias="ONECHAT_INTERNAL_SECRET")

    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")
    app_title: str = Field(default="OneChat", alias="APP_TITLE")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Auth settings
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # Provider feature flags
    enable_openai: bool = Field(default=True, alias="ENABLE_OPENAI")
    enable_anthropic: bool = Field(default=True, alias="ENABLE_ANTHROPIC")
    enable_google: bool = Field(default=True, alias="ENABLE_GOOGLE")
    enable_openrouter: bool = Field(default=True, alias="ENABLE_OPENROUTER")

    # Platform keys (optional)
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    firecrawl_api_key: str | None = Field(default=None, alias="FIRECRAWL_API_KEY")

    # Blob storage
    storage_url: str | None = Field(default=None, alias="STORAGE_URL")
    storage_service_key: str | None = Field(default=None, alias="STORAGE_SERVICE_KEY")
    storage_bucket: str = Field(default="attachments", alias="STORAGE_BUCKET")
    max_upload_bytes: int = Field(default=8 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")  # 8 MB
    signed_url_expiry_s: int = Field(default=300, alias="SIGNED_URL_EXPIRY_S")

    # Rate limits
    rate_limit_rpm: int = Field(default=20, alias="RATE_LIMIT_RPM")
    voice_limit_per_hour: int = Field(default=5, alias="VOICE_LIMIT_PER_HOUR")

    # LLM call settings
    llm_timeout_s: int = Field(default=120, alias="LLM_TIMEOUT_S")

    cookie_secure: bool = Field(default=False, alias="COOKIE_SECURE")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the current environment."""
        if self.onechat_env != Environment.TEST:
            missing_auth = []
            if not self.auth_jwks_url:
                missing_auth.append("AUTH_JWKS_URL")
            if not self.auth_issuer:
                missing_auth.append("AUTH_ISSUER")
            if not self.auth_audiences:
                missing_auth.append("AUTH_AUDIENCES")

            if missing_auth:
                raise ValueError(
                    f"Missing required auth settings: {', '.join(missing_auth)}. "
                    "Set these environment variables or use ONECHAT_ENV=test."
                )

        if self.onechat_env in (Environment.STAGING, Environment.PROD):
            if not self.onechat_internal_secret:
                raise ValueError(
                    f"ONECHAT_INTERNAL_SECRET is required for ONECHAT_ENV={self.onechat_env.value}"
                )

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.onechat_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
