"""Static model catalog.

Maps a model key (``"{api_provider or provider}:{id}"``) to its ModelConfig.
The table is built at import time and never mutated; every function here is
a pure lookup or filter over it.

Capability flags:
- vision, tools, native_search, pdf, reasoning, effort, image come straight
  from the catalog entries
- streaming is true for every model
- search is true when the model can search at all (native grounding or the
  web-search tool)
- coding is true for every text model (everything but the image model)
- multimodal is true when the model accepts images or PDFs
"""

from dataclasses import dataclass, field, fields
from typing import Literal

Provider = Literal["openai", "anthropic", "google", "openrouter", "deepseek", "meta"]
Tier = Literal["premium", "standard", "budget"]
Speed = Literal["fast", "medium", "slow"]
Quality = Literal["high", "medium", "low"]
Effort = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class ModelCapabilities:
    streaming: bool = True
    vision: bool = False
    tools: bool = False
    search: bool = False
    native_search: bool = False
    pdf: bool = False
    reasoning: bool = False
    coding: bool = True
    multimodal: bool = False
    effort: bool = False
    image: bool = False


@dataclass(frozen=True)
class ModelPricing:
    """Advisory price per 1K tokens. Never enforced."""

    input: float
    output: float


@dataclass(frozen=True)
class ModelPerformance:
    speed: Speed
    quality: Quality


@dataclass(frozen=True)
class ModelConfig:
    """One callable model variant."""

    id: str
    name: str
    provider: Provider
    description: str
    max_tokens: int
    context_window: int
    capabilities: ModelCapabilities
    supported_file_types: tuple[str, ...]
    performance: ModelPerformance
    tier: Tier
    api_provider: Provider | None = None
    pricing: ModelPricing | None = None
    enabled: bool = True

    @property
    def key(self) -> str:
        return f"{self.api_provider or self.provider}:{self.id}"

    @property
    def routing_provider(self) -> Provider:
        """Provider whose API this model is called through by default."""
        return self.api_provider or self.provider


@dataclass(frozen=True)
class PricingCeiling:
    input: float
    output: float


@dataclass(frozen=True)
class PerformanceFilter:
    speed: tuple[Speed, ...] | None = None
    quality: tuple[Quality, ...] | None = None


@dataclass(frozen=True)
class ModelFilters:
    """Catalog filter. Dimensions are ANDed; a None dimension matches everything."""

    providers: tuple[Provider, ...] | None = None
    capabilities: dict[str, bool | None] = field(default_factory=dict)
    max_pricing: PricingCeiling | None = None
    min_context_window: int | None = None
    tiers: tuple[Tier, ...] | None = None
    performance: PerformanceFilter | None = None


SUPPORTS_IMAGE_TYPES = ("png", "jpeg", "gif", "webp", "heic")
SUPPORTS_PDF_TYPES = ("pdf",)
SUPPORTS_TEXT_TYPES = ("txt",)

_TEXT_AND_IMAGES = SUPPORTS_TEXT_TYPES + SUPPORTS_IMAGE_TYPES
_TEXT_IMAGES_PDF = SUPPORTS_TEXT_TYPES + SUPPORTS_IMAGE_TYPES + SUPPORTS_PDF_TYPES


def _caps(
    *,
    vision: bool,
    tools: bool,
    pdf: bool,
    reasoning: bool,
    effort: bool = False,
    native_search: bool = False,
    image: bool = False,
) -> ModelCapabilities:
    return ModelCapabilities(
        vision=vision,
        tools=tools,
        search=native_search or tools,
        native_search=native_search,
        pdf=pdf,
        reasoning=reasoning,
        coding=not image,
        multimodal=vision or pdf,
        effort=effort,
        image=image,
    )


_MODELS: tuple[ModelConfig, ...] = (
    # OpenRouter free models
    ModelConfig(
        id="meta-llama/llama-4-scout:free",
        name="Llama 4 Scout",
        provider="meta",
        api_provider="openrouter",
        description="17B active parameters, 16 experts, 10M token context",
        max_tokens=100_000,
        context_window=10_000_000,
        capabilities=_caps(vision=True, tools=True, pdf=False, reasoning=False),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(0.19, 0.49),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="meta-llama/llama-4-maverick:free",
        name="Llama 4 Maverick",
        provider="meta",
        api_provider="openrouter",
        description="17B active parameters, 128 experts, 1M token context",
        max_tokens=100_000,
        context_window=1_000_000,
        capabilities=_caps(vision=True, tools=True, pdf=False, reasoning=False),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(0.19, 0.49),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="deepseek/deepseek-r1-0528:free",
        name="DeepSeek R1",
        provider="deepseek",
        api_provider="openrouter",
        description="DeepSeek Reasoner R1 May 2024 version",
        max_tokens=100_000,
        context_window=64_000,
        capabilities=_caps(vision=False, tools=False, pdf=True, reasoning=True),
        supported_file_types=SUPPORTS_TEXT_TYPES,
        pricing=ModelPricing(0.14, 2.19),
        performance=ModelPerformance("slow", "high"),
        tier="standard",
    ),
    ModelConfig(
        id="qwen/qwen3-30b-a3b:free",
        name="Qwen 3 30B",
        provider="openrouter",
        api_provider="openrouter",
        description="Qwen 3.3 model with 30B parameters",
        max_tokens=100_000,
        context_window=128_000,
        capabilities=_caps(vision=True, tools=False, pdf=True, reasoning=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(0.4, 0.8),
        performance=ModelPerformance("medium", "high"),
        tier="standard",
    ),
    # OpenAI
    ModelConfig(
        id="o4-mini",
        name="o4 mini",
        provider="openai",
        description="Next-generation reasoning model with enhanced capabilities",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=False, reasoning=True, effort=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(1.1, 4.4),
        performance=ModelPerformance("medium", "high"),
        tier="standard",
    ),
    ModelConfig(
        id="gpt-4o",
        name="GPT 4o",
        provider="openai",
        description="Multimodal GPT-4 with vision and audio capabilities",
        max_tokens=16_384,
        context_window=128_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(2.5, 10),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="gpt-4o-mini",
        name="GPT 4o-mini",
        provider="openai",
        description="Efficient version of GPT-4o with lower cost",
        max_tokens=16_384,
        context_window=128_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(0.15, 0.6),
        performance=ModelPerformance("fast", "high"),
        tier="budget",
    ),
    ModelConfig(
        id="gpt-4.1",
        name="GPT 4.1",
        provider="openai",
        description="Latest GPT model with 1M token context window",
        max_tokens=100_000,
        context_window=1_000_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(2, 8),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="gpt-4.1-mini",
        name="GPT 4.1 Mini",
        provider="openai",
        description="Efficient version of GPT-4.1 with balanced performance",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(0.4, 1.6),
        performance=ModelPerformance("fast", "high"),
        tier="standard",
    ),
    ModelConfig(
        id="gpt-4.1-nano",
        name="GPT 4.1 Nano",
        provider="openai",
        description="Ultra-fast, cost-effective model for high-volume tasks",
        max_tokens=50_000,
        context_window=128_000,
        capabilities=_caps(vision=True, tools=True, pdf=False, reasoning=False),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(0.1, 0.4),
        performance=ModelPerformance("fast", "medium"),
        tier="budget",
    ),
    ModelConfig(
        id="o3",
        name="o3",
        provider="openai",
        description="Most capable reasoning model for complex tasks",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(10, 40),
        performance=ModelPerformance("slow", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="o3-mini",
        name="o3 mini",
        provider="openai",
        description="Efficient reasoning model at o1-mini cost and latency",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=False, tools=True, pdf=False, reasoning=True, effort=True),
        supported_file_types=SUPPORTS_TEXT_TYPES,
        pricing=ModelPricing(1.1, 4.4),
        performance=ModelPerformance("medium", "high"),
        tier="standard",
    ),
    ModelConfig(
        id="gpt-imagegen",
        name="GPT ImageGen",
        provider="openai",
        description="Specialized model for image generation tasks",
        max_tokens=4096,
        context_window=8000,
        capabilities=_caps(vision=True, tools=True, pdf=False, reasoning=False, image=True),
        supported_file_types=_TEXT_AND_IMAGES,
        pricing=ModelPricing(1, 2),
        performance=ModelPerformance("medium", "high"),
        tier="standard",
    ),
    # Google
    ModelConfig(
        id="gemini-2.5-flash-preview-05-20",
        name="Gemini 2.5 Flash",
        provider="google",
        description="Fast, efficient Gemini model with multimodal capabilities",
        max_tokens=100_000,
        context_window=1_000_000,
        capabilities=_caps(
            vision=True, tools=True, pdf=True, reasoning=True, effort=True, native_search=True
        ),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(0.15, 0.6),
        performance=ModelPerformance("fast", "high"),
        tier="budget",
    ),
    ModelConfig(
        id="gemini-2.5-pro-preview-06-05",
        name="Gemini 2.5 Pro",
        provider="google",
        description="Advanced Gemini model with enhanced reasoning",
        max_tokens=100_000,
        context_window=1_000_000,
        capabilities=_caps(
            vision=True, tools=True, pdf=True, reasoning=True, effort=True, native_search=True
        ),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(1.25, 10),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="gemini-2.0-flash",
        name="Gemini 2.0 Flash",
        provider="google",
        description="Next-generation fast Gemini model",
        max_tokens=100_000,
        context_window=1_000_000,
        capabilities=_caps(
            vision=True, tools=True, pdf=True, reasoning=False, native_search=True
        ),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(0.1, 0.4),
        performance=ModelPerformance("fast", "high"),
        tier="budget",
    ),
    ModelConfig(
        id="gemini-2.0-flash-lite",
        name="Gemini 2.0 Flash Lite",
        provider="google",
        description="Lightweight version of Gemini 2.0 Flash",
        max_tokens=50_000,
        context_window=500_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=False),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(0.05, 0.2),
        performance=ModelPerformance("fast", "medium"),
        tier="budget",
    ),
    # Anthropic
    ModelConfig(
        id="claude-sonnet-4-0",
        name="Claude 4 Sonnet",
        provider="anthropic",
        description="Latest Claude model with enhanced capabilities",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=False),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(3, 15),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="claude-sonnet-4-0-reasoning",
        name="Claude 4 Sonnet (Reasoning)",
        provider="anthropic",
        description="Claude 4 Sonnet optimized for reasoning tasks",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True, effort=True),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(3, 15),
        performance=ModelPerformance("slow", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="claude-3-7-sonnet-latest",
        name="Claude 3.7 Sonnet",
        provider="anthropic",
        description="Enhanced Claude 3.5 with improved capabilities",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=False),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(3, 15),
        performance=ModelPerformance("medium", "high"),
        tier="premium",
    ),
    ModelConfig(
        id="claude-3-7-sonnet-latest-reasoning",
        name="Claude 3.7 Sonnet (Reasoning)",
        provider="anthropic",
        description="Claude 3.7 Sonnet optimized for reasoning tasks",
        max_tokens=100_000,
        context_window=200_000,
        capabilities=_caps(vision=True, tools=True, pdf=True, reasoning=True, effort=True),
        supported_file_types=_TEXT_IMAGES_PDF,
        pricing=ModelPricing(3, 15),
        performance=ModelPerformance("slow", "high"),
        tier="premium",
    ),
)

MODEL_CATALOG: dict[str, ModelConfig] = {model.key: model for model in _MODELS}

DEFAULT_MODEL = "openai:gpt-4.1-mini"
DEFAULT_CHAT_MODEL = "openai:gpt-4.1-nano"
IMAGE_GENERATION_MODEL = "openai:gpt-imagegen"

# First usable entry wins when picking a default for a credential set.
DEFAULT_MODEL_PRIORITY: tuple[str, ...] = (
    "openai:gpt-4.1-mini",
    "anthropic:claude-sonnet-4-0",
    "google:gemini-2.5-flash-preview-05-20",
    "openrouter:meta-llama/llama-4-maverick:free",
)

RECOMMENDED_MODELS: tuple[str, ...] = (
    "google:gemini-2.5-flash-preview-05-20",
    "google:gemini-2.5-pro-preview-06-05",
    "openai:gpt-imagegen",
    "openai:o4-mini",
    "anthropic:claude-sonnet-4-0",
    "anthropic:claude-3-7-sonnet-latest",
    "openrouter:deepseek/deepseek-r1-0528:free",
)

# Upstream ids used when a native model is called through OpenRouter.
OPENROUTER_MODEL_MAP: dict[str, str] = {
    "o4-mini": "openai/o4-mini",
    "gpt-4o": "openai/gpt-4o",
    "gpt-4o-mini": "openai/gpt-4o-mini",
    "gpt-4.1": "openai/gpt-4.1",
    "gpt-4.1-mini": "openai/gpt-4.1-mini",
    "gpt-4.1-nano": "openai/gpt-4.1-nano",
    "o3": "openai/o3",
    "o3-mini": "openai/o3-mini",
    "gemini-2.5-flash-preview-05-20": "google/gemini-2.5-flash-preview-05-20",
    "gemini-2.5-pro-preview-06-05": "google/gemini-2.5-pro-preview",
    "gemini-2.0-flash": "google/gemini-2.0-flash-001",
    "gemini-2.0-flash-lite": "google/gemini-2.0-flash-lite-001",
    "claude-sonnet-4-0": "anthropic/claude-sonnet-4",
    "claude-sonnet-4-0-reasoning": "anthropic/claude-sonnet-4",
    "claude-3-7-sonnet-latest": "anthropic/claude-3.7-sonnet",
    "claude-3-7-sonnet-latest-reasoning": "anthropic/claude-3.7-sonnet:thinking",
}

EXTENSION_TO_MIME_TYPE: dict[str, tuple[str, ...]] = {
    # Images
    "png": ("image/png",),
    "jpeg": ("image/jpeg",),
    "jpg": ("image/jpeg",),
    "gif": ("image/gif",),
    "webp": ("image/webp",),
    "svg": ("image/svg+xml",),
    "heic": ("image/heic",),
    # Documents
    "pdf": ("application/pdf",),
    "txt": ("text/plain",),
    "md": ("text/markdown",),
    "doc": ("application/msword",),
    "docx": ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
    "ppt": ("application/vnd.ms-powerpoint",),
    "pptx": ("application/vnd.openxmlformats-officedocument.presentationml.presentation",),
    # Spreadsheets
    "xls": ("application/vnd.ms-excel",),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",),
    "csv": ("text/csv",),
    # Archives
    "zip": ("application/zip",),
    "rar": ("application/x-rar-compressed",),
    "tar": ("application/x-tar",),
    "gz": ("application/gzip",),
}

CAPABILITY_NAMES = frozenset(f.name for f in fields(ModelCapabilities))


def _matches(model: ModelConfig, filters: ModelFilters) -> bool:
    if filters.providers is not None and model.provider not in filters.providers:
        return False

    for name, expected in filters.capabilities.items():
        if expected is None:
            continue
        if getattr(model.capabilities, name, None) != expected:
            return False

    # Unpriced models always pass the pricing ceiling
    if filters.max_pricing is not None and model.pricing is not None:
        if (
            model.pricing.input > filters.max_pricing.input
            or model.pricing.output > filters.max_pricing.output
        ):
            return False

    if filters.min_context_window and model.context_window < filters.min_context_window:
        return False

    if filters.tiers is not None and model.tier not in filters.tiers:
        return False

    if filters.performance is not None:
        if filters.performance.speed and model.performance.speed not in filters.performance.speed:
            return False
        if (
            filters.performance.quality
            and model.performance.quality not in filters.performance.quality
        ):
            return False

    return True


def get_available_models(filters: ModelFilters | None = None) -> list[ModelConfig]:
    """Return catalog models matching every given filter dimension, in catalog order."""
    models = list(MODEL_CATALOG.values())
    if filters is None:
        return models
    return [model for model in models if _matches(model, filters)]


def get_model_by_key(model_key: str | None) -> ModelConfig | None:
    """Look up a model by key. Unknown or empty keys return None."""
    if not model_key:
        return None
    return MODEL_CATALOG.get(model_key)


def get_models_by_provider(provider: str) -> list[ModelConfig]:
    return [m for m in MODEL_CATALOG.values() if m.provider == provider]


def get_models_by_tier(tier: str) -> list[ModelConfig]:
    return [m for m in MODEL_CATALOG.values() if m.tier == tier]


def get_models_by_capability(capability: str) -> list[ModelConfig]:
    """Models with the named capability flag set.

    Raises:
        ValueError: If the capability name is unknown.
    """
    if capability not in CAPABILITY_NAMES:
        raise ValueError(f"Unknown capability: {capability}")
    return [m for m in MODEL_CATALOG.values() if getattr(m.capabilities, capability)]


def get_recommended_models() -> list[ModelConfig]:
    return [MODEL_CATALOG[key] for key in RECOMMENDED_MODELS]


def get_api_provider(model_key: str) -> str:
    """Provider whose API serves the model. Unknown keys fall back to openai."""
    model = get_model_by_key(model_key)
    if model is None:
        return "openai"
    return model.routing_provider


def get_display_provider(model_key: str) -> str:
    model = get_model_by_key(model_key)
    return model.provider if model is not None else "openai"


def get_openrouter_model(model: ModelConfig) -> str:
    """Upstream model id to send to OpenRouter for this model."""
    if model.api_provider == "openrouter":
        return model.id
    return OPENROUTER_MODEL_MAP.get(model.id, model.id)


def get_model_accept_types(model_key: str) -> list[str]:
    """MIME types a model accepts as attachments, in declaration order."""
    model = get_model_by_key(model_key)
    if model is None:
        return []

    mime_types: list[str] = []
    for extension in model.supported_file_types:
        for mime_type in EXTENSION_TO_MIME_TYPE.get(extension, ()):
            if mime_type not in mime_types:
                mime_types.append(mime_type)
    return mime_types


def model_supports_file_type(model_key: str, mime_type: str) -> bool:
    return mime_type in get_model_accept_types(model_key)


def calculate_token_cost(model_key: str, input_tokens: int, output_tokens: int) -> float | None:
    """Advisory cost in dollars for a token count. None when the model is unpriced."""
    model = get_model_by_key(model_key)
    if model is None or model.pricing is None:
        return None
    return (input_tokens / 1000) * model.pricing.input + (
        output_tokens / 1000
    ) * model.pricing.output
