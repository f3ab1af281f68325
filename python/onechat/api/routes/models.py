"""Model catalog routes.

Routes are transport-only: each calls exactly one service function.

- GET /models: Catalog filtered by provider, capability, tier and context window
- GET /models/{model_key}: One model
- POST /models/availability: Which models a credential set can use, and its default

Response envelope: {"data": ...}
"""

from typing import Annotated

from fastapi import APIRouter, Query

from onechat.errors import ApiError
from onechat.responses import success_response
from onechat.schemas.models import AvailabilityOut, AvailabilityRequest, ModelOut
from onechat.services import catalog as catalog_service
from onechat.services import routing as routing_service

router = APIRouter(tags=["models"])


@router.get("/models")
def list_models(
    provider: Annotated[list[str] | None, Query()] = None,
    capability: Annotated[list[str] | None, Query()] = None,
    tier: Annotated[list[str] | None, Query()] = None,
    min_context_window: Annotated[int | None, Query(ge=0)] = None,
) -> dict:
    """List catalog models. Every given filter must match; unknown capability
    names match nothing.

    Returns:
        {"data": [ModelOut, ...]}
    """
    filters = catalog_service.ModelFilters(
        providers=tuple(provider) if provider else None,
        capabilities={name: True for name in capability or []},
        tiers=tuple(tier) if tier else None,
        min_context_window=min_context_window,
    )
    models = catalog_service.get_available_models(filters)
    return success_response([ModelOut.from_config(m).model_dump(mode="json") for m in models])


@router.post("/models/availability")
def model_availability(body: AvailabilityRequest) -> dict:
    """Models usable with the given keys, plus the best default.

    Returns:
        {"data": AvailabilityOut}
    """
    keys = body.to_keys()
    result = AvailabilityOut(
        available_models=routing_service.get_available_model_keys(keys),
        default_model=routing_service.get_best_available_default_model(keys),
        routing_preference=routing_service.derive_routing_preference(keys),
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/models/{model_key:path}")
def get_model(model_key: str) -> dict:
    """Errors:
    model_not_found:models (404): Unknown key.
    """
    config = catalog_service.get_model_by_key(model_key)
    if config is None:
        raise ApiError("model_not_found:models", f'Model "{model_key}" is not available')
    return success_response(ModelOut.from_config(config).model_dump(mode="json"))
