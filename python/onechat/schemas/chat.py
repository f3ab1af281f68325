"""Chat request schemas."""

from typing import Literal

from pydantic import BaseModel, Field

from onechat.schemas.thread import MessageIn

EFFORTS = Literal["low", "medium", "high"]


class ChatRequest(BaseModel):
    """POST /chat body.

    ``id`` names the thread; it is created on first use.
    """

    id: str = Field(..., min_length=1)
    message: MessageIn
    selected_model: str = Field(..., min_length=1)
    effort: EFFORTS = "medium"
    enable_search: bool = False


class StopStreamOut(BaseModel):
    stream_id: str | None
    published: bool
