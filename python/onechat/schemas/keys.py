"""Credential (BYOK) schemas.

No key ever leaves the backend in clear: reads return obfuscated keys only.
"""

from pydantic import BaseModel, Field, field_validator

from onechat.services.api_keys import ApiProvider


class ValidateKeyRequest(BaseModel):
    provider: ApiProvider
    key: str = Field(..., min_length=1)

    @field_validator("key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API key is empty")
        return v


class SaveKeyRequest(BaseModel):
    key: str = Field(..., min_length=1)

    @field_validator("key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API key is empty")
        return v


class KeyValidationOut(BaseModel):
    is_valid: bool
    error: str | None = None


class KeysOut(BaseModel):
    """Obfuscated keys keyed by provider, plus the derived routing state."""

    keys: dict[str, str]
    has_keys: bool
    routing_preference: bool | None


class SaveKeyOut(BaseModel):
    provider: ApiProvider
    selected_model: str
