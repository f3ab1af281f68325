"""Voice schemas."""

from typing import Literal

from pydantic import BaseModel, Field

from onechat.services.voice import TTSModel, TTSProvider


class TranscriptionSessionOut(BaseModel):
    session_id: str
    client_secret: str
    expiry: int | None = None
    model_name: str | None = None


class SpeechRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4096)
    voice: str = "alloy"
    model: TTSModel = "gpt-4o-mini-tts"
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    provider: TTSProvider = "openai"


class SpeechOut(BaseModel):
    audio: str
    format: Literal["mp3", "wav"]
    voice: str
    text_length: int
