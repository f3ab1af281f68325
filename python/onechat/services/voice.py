"""Voice: realtime transcription sessions and text-to-speech.

Transcription runs in the browser against the OpenAI realtime API; this
service only mints the short-lived client secret. Users without their own
OpenAI key fall back to the platform key and are limited to
VOICE_LIMIT_PER_HOUR sessions per sliding hour.

Text-to-speech needs the user's own key:
- openai: /v1/audio/speech, returned as mp3
- google: Gemini generateContent with AUDIO modality; the raw PCM16 it
  returns is wrapped in a 24 kHz mono WAV container
"""

import base64
import io
import wave
from dataclasses import dataclass
from typing import Literal

import httpx

from onechat.errors import ApiError
from onechat.logging import get_logger
from onechat.services.rate_limit import RateLimiter
from onechat.services.redact import safe_kv

logger = get_logger(__name__)

OPENAI_REALTIME_SESSIONS_URL = "https://api.openai.com/v1/realtime/sessions"
OPENAI_SPEECH_URL = "https://api.openai.com/v1/audio/speech"
GEMINI_GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

REALTIME_CONFIG = {
    "model": "gpt-4o-mini-realtime-preview",
    "input_audio_format": "pcm16",
    "input_audio_transcription": {"model": "whisper-1", "language": "en"},
    "turn_detection": {
        "type": "server_vad",
        "threshold": 0.7,
        "prefix_padding_ms": 300,
        "silence_duration_ms": 200,
    },
}

OPENAI_TTS_FORMAT = "mp3"
GEMINI_SAMPLE_RATE = 24000
GEMINI_CHANNELS = 1

TTSProvider = Literal["openai", "google"]
TTSModel = Literal[
    "gpt-4o-mini-tts",
    "tts-1",
    "tts-1-hd",
    "gemini-2.5-flash-preview-tts",
    "gemini-2.5-pro-preview-tts",
]

VOICE_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class TranscriptionSession:
    session_id: str
    client_secret: str
    expiry: int | None
    model_name: str | None


@dataclass(frozen=True)
class SpeechResult:
    audio: str  # base64
    format: str
    voice: str
    text_length: int


def _voice_error(cause: str) -> ApiError:
    return ApiError("internal_server_error:api", cause)


async def create_transcription_session(
    client: httpx.AsyncClient,
    user_id: str,
    api_key: str | None,
    limiter: RateLimiter,
    *,
    platform_api_key: str | None = None,
) -> TranscriptionSession:
    """Mint a realtime transcription client secret.

    Args:
        client: Shared HTTP client.
        user_id: The caller, used as the rate-limit identity.
        api_key: The user's own OpenAI key, if any.
        limiter: Rate limiter; only consulted when the platform key is used.
        platform_api_key: Fallback OpenAI key.

    Raises:
        ApiError(rate_limit:api): Platform-key user over the hourly limit.
        ApiError(internal_server_error:api): No key configured, or the
            provider call failed.
    """
    if not api_key and not platform_api_key:
        raise _voice_error("OpenAI API key not configured")

    if not api_key:
        limiter.check_voice_limit(user_id)

    effective_key = api_key or platform_api_key
    try:
        response = await client.post(
            OPENAI_REALTIME_SESSIONS_URL,
            headers={
                "Authorization": f"Bearer {effective_key}",
                "Content-Type": "application/json",
            },
            json=REALTIME_CONFIG,
            timeout=VOICE_TIMEOUT_S,
        )
    except httpx.HTTPError as e:
        logger.error("voice_session_request_failed", error_type=type(e).__name__)
        raise _voice_error("Failed to generate transcription token") from e

    if not response.is_success:
        logger.error(
            "voice_session_provider_error",
            **safe_kv(status_code=response.status_code, key_mode="byok" if api_key else "platform"),
        )
        raise _voice_error(f"Failed to create transcription session: {response.status_code}")

    data = response.json()
    secret = (data.get("client_secret") or {}).get("value")
    if not secret:
        raise _voice_error("Invalid response from OpenAI API")

    logger.info("voice_session_created", key_mode="byok" if api_key else "platform")
    return TranscriptionSession(
        session_id=data.get("id", ""),
        client_secret=secret,
        expiry=data["client_secret"].get("expires_at"),
        model_name=data.get("model"),
    )


def pcm16_to_wav(pcm: bytes, sample_rate: int = GEMINI_SAMPLE_RATE, channels: int = GEMINI_CHANNELS) -> bytes:
    """Wrap raw little-endian 16-bit PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


async def _openai_speech(
    client: httpx.AsyncClient, text: str, voice: str, model: str, speed: float, api_key: str
) -> bytes:
    response = await client.post(
        OPENAI_SPEECH_URL,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json={
            "model": model,
            "input": text,
            "voice": voice,
            "response_format": OPENAI_TTS_FORMAT,
            "speed": speed,
        },
        timeout=VOICE_TIMEOUT_S,
    )
    if not response.is_success:
        logger.error("voice_tts_provider_error", provider="openai", status_code=response.status_code)
        raise _voice_error(f"Failed to generate speech: {response.status_code}")
    return response.content


async def _gemini_speech(
    client: httpx.AsyncClient, text: str, voice: str, model: str, api_key: str
) -> bytes:
    response = await client.post(
        GEMINI_GENERATE_URL.format(model=model),
        params={"key": api_key},
        headers={"Content-Type": "application/json"},
        json={
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
            },
        },
        timeout=VOICE_TIMEOUT_S,
    )
    if not response.is_success:
        logger.error("voice_tts_provider_error", provider="google", status_code=response.status_code)
        raise _voice_error(f"Failed to generate speech: {response.status_code}")

    data = response.json()
    try:
        encoded = data["candidates"][0]["content"]["parts"][0]["inlineData"]["data"]
    except (KeyError, IndexError, TypeError):
        encoded = None
    if not encoded:
        raise _voice_error("Invalid response from Gemini API")
    return pcm16_to_wav(base64.b64decode(encoded))


async def text_to_speech(
    client: httpx.AsyncClient,
    text: str,
    *,
    voice: str = "alloy",
    model: TTSModel = "gpt-4o-mini-tts",
    speed: float = 1.0,
    api_key: str | None = None,
    provider: TTSProvider = "openai",
) -> SpeechResult:
    """Synthesize speech with the user's own key.

    Returns:
        Base64 audio: mp3 from OpenAI, WAV from Gemini.

    Raises:
        ApiError(internal_server_error:api): Missing key or provider failure.
    """
    if not api_key:
        name = "OpenAI" if provider == "openai" else "Google AI"
        raise _voice_error(f"{name} API key not configured")

    try:
        if provider == "openai":
            audio = await _openai_speech(client, text, voice, model, speed, api_key)
            fmt = OPENAI_TTS_FORMAT
        else:
            audio = await _gemini_speech(client, text, voice, model, api_key)
            fmt = "wav"
    except httpx.HTTPError as e:
        logger.error("voice_tts_request_failed", provider=provider, error_type=type(e).__name__)
        raise _voice_error("Failed to generate speech") from e

    logger.info("voice_tts_generated", provider=provider, text_chars=len(text), audio_bytes=len(audio))
    return SpeechResult(
        audio=base64.b64encode(audio).decode("ascii"),
        format=fmt,
        voice=voice,
        text_length=len(text),
    )
