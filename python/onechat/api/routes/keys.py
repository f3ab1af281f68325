"""BYOK API key routes.

Routes are transport-only: each calls exactly one key store operation.

- POST /keys/validate: Live-check a key without storing it
- GET /keys: Obfuscated keys and routing state
- PUT /keys/{provider}: Validate and store a key
- DELETE /keys/{provider}: Remove one key
- DELETE /keys: Remove all keys

Security invariants:
- Plaintext keys never appear in responses or logs
- A key that fails validation is never stored
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from onechat.api.deps import get_cookies, get_key_store
from onechat.errors import BadRequestError
from onechat.responses import success_response
from onechat.schemas.keys import (
    KeysOut,
    KeyValidationOut,
    SaveKeyOut,
    SaveKeyRequest,
    ValidateKeyRequest,
)
from onechat.services.api_keys import ApiProvider, KeyValidationError
from onechat.services.key_store import ApiKeyStore
from onechat.services.persistence import CookiePersistence

router = APIRouter(tags=["keys"])


@router.post("/keys/validate")
async def validate_key(
    body: ValidateKeyRequest,
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
) -> dict:
    result = await store.validate_key(body.provider, body.key)
    return success_response(
        KeyValidationOut(is_valid=result.is_valid, error=result.error).model_dump()
    )


@router.get("/keys")
def list_keys(store: Annotated[ApiKeyStore, Depends(get_key_store)]) -> dict:
    """Returns:
    {"data": KeysOut} with keys shown as prefix...suffix only.
    """
    result = KeysOut(
        keys=store.get_obfuscated_keys(),
        has_keys=store.has_keys(),
        routing_preference=store.routing_preference(),
    )
    return success_response(result.model_dump())


@router.put("/keys/{provider}")
async def save_key(
    provider: ApiProvider,
    body: SaveKeyRequest,
    response: Response,
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
) -> dict:
    """Validate and store a key. The best default model becomes selected.

    Errors:
        bad_request:api (400): The key failed format or live validation.
    """
    try:
        selected_model = await store.save_key(provider, body.key)
    except KeyValidationError as e:
        raise BadRequestError(cause=e.message) from e

    cookies.apply(response)
    return success_response(
        SaveKeyOut(provider=provider, selected_model=selected_model).model_dump()
    )


@router.delete("/keys/{provider}", status_code=204)
def remove_key(
    provider: ApiProvider,
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
) -> Response:
    store.remove_key(provider)
    response = Response(status_code=204)
    cookies.apply(response)
    return response


@router.delete("/keys", status_code=204)
def clear_keys(
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
) -> Response:
    store.clear_all_keys()
    response = Response(status_code=204)
    cookies.apply(response)
    return response
