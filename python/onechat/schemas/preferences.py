"""Per-user preference schemas."""

from pydantic import BaseModel, Field

from onechat.services.preferences import ResponseStyle


class PinnedThreadsOut(BaseModel):
    pinned_thread_ids: list[str]


class UserSettingsOut(BaseModel):
    name: str
    occupation: str
    traits: list[str]
    additional_context: str
    response_style: ResponseStyle
    use_personalization: bool


class UpdateUserSettingsRequest(BaseModel):
    """Partial update; unset fields keep their stored value."""

    name: str | None = Field(default=None, max_length=100)
    occupation: str | None = Field(default=None, max_length=100)
    traits: list[str] | None = Field(default=None, max_length=50)
    additional_context: str | None = Field(default=None, max_length=3000)
    response_style: ResponseStyle | None = None
    use_personalization: bool | None = None
