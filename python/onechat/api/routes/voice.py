"""Voice routes.

- POST /voice/session: Mint a realtime transcription client secret
- POST /voice/speech: Text-to-speech with the viewer's own key
"""

from typing import Annotated

import httpx
from fastapi import APIRouter, Depends

from onechat.api.deps import get_http_client, get_key_store, get_rate_limiter, get_viewer
from onechat.auth.middleware import Viewer
from onechat.config import get_settings
from onechat.responses import success_response
from onechat.schemas.voice import SpeechOut, SpeechRequest, TranscriptionSessionOut
from onechat.services import voice as voice_service
from onechat.services.key_store import ApiKeyStore
from onechat.services.rate_limit import RateLimiter

router = APIRouter(prefix="/voice", tags=["voice"])


@router.post("/session")
async def create_session(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> dict:
    """Errors:
    rate_limit:api (429): Platform-key user over the hourly limit.
    internal_server_error:api (500): No key configured or provider failure.
    """
    session = await voice_service.create_transcription_session(
        client,
        viewer.user_id,
        store.get_keys().openai,
        limiter,
        platform_api_key=get_settings().openai_api_key,
    )
    out = TranscriptionSessionOut(
        session_id=session.session_id,
        client_secret=session.client_secret,
        expiry=session.expiry,
        model_name=session.model_name,
    )
    return success_response(out.model_dump())


@router.post("/speech")
async def create_speech(
    body: SpeechRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
) -> dict:
    keys = store.get_keys()
    result = await voice_service.text_to_speech(
        client,
        body.text,
        voice=body.voice,
        model=body.model,
        speed=body.speed,
        api_key=keys.openai if body.provider == "openai" else keys.google,
        provider=body.provider,
    )
    out = SpeechOut(
        audio=result.audio,
        format=result.format,
        voice=result.voice,
        text_length=result.text_length,
    )
    return success_response(out.model_dump())
