"""Model catalog schemas."""

from dataclasses import asdict

from pydantic import BaseModel, Field

from onechat.services.api_keys import ApiKeys
from onechat.services.catalog import ModelConfig, get_model_accept_types


class ModelOut(BaseModel):
    key: str
    id: str
    name: str
    provider: str
    api_provider: str | None = None
    description: str
    max_tokens: int
    context_window: int
    capabilities: dict[str, bool]
    supported_file_types: list[str]
    accept_types: list[str]
    tier: str
    performance: dict[str, str]
    pricing: dict[str, float] | None = None

    @classmethod
    def from_config(cls, config: ModelConfig) -> "ModelOut":
        return cls(
            key=config.key,
            id=config.id,
            name=config.name,
            provider=config.provider,
            api_provider=config.api_provider,
            description=config.description,
            max_tokens=config.max_tokens,
            context_window=config.context_window,
            capabilities=asdict(config.capabilities),
            supported_file_types=list(config.supported_file_types),
            accept_types=get_model_accept_types(config.key),
            tier=config.tier,
            performance=asdict(config.performance),
            pricing=asdict(config.pricing) if config.pricing else None,
        )


class AvailabilityRequest(BaseModel):
    """Credential set to evaluate. Omitted providers count as missing."""

    openai: str | None = None
    anthropic: str | None = None
    google: str | None = None
    openrouter: str | None = None

    def to_keys(self) -> ApiKeys:
        return ApiKeys.from_dict(self.model_dump())


class AvailabilityOut(BaseModel):
    available_models: list[str]
    default_model: str
    routing_preference: bool | None = Field(
        default=None, description="True when only the aggregator key is present"
    )
