"""Preference routes. All state lives in cookies on the viewer's browser.

- GET /preferences/pinned
- POST /preferences/pinned/{thread_id}/toggle
- GET /preferences/model, PUT /preferences/model
- GET /preferences/settings, PATCH /preferences/settings, DELETE /preferences/settings
"""

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from onechat.api.deps import get_cookies, get_viewer
from onechat.auth.middleware import Viewer
from onechat.errors import ApiError
from onechat.responses import success_response
from onechat.schemas.preferences import (
    PinnedThreadsOut,
    UpdateUserSettingsRequest,
    UserSettingsOut,
)
from onechat.services.catalog import get_model_by_key
from onechat.services.persistence import CookiePersistence
from onechat.services.preferences import ModelPreferences, PinnedThreadsStore, UserSettingsStore

router = APIRouter(prefix="/preferences", tags=["preferences"])

Cookies = Annotated[CookiePersistence, Depends(get_cookies)]


class SelectModelRequest(BaseModel):
    model_key: str = Field(..., min_length=1)


def _pinned_payload(ids: list[str]) -> dict:
    return success_response(PinnedThreadsOut(pinned_thread_ids=ids).model_dump())


@router.get("/pinned")
def get_pinned(viewer: Annotated[Viewer, Depends(get_viewer)], cookies: Cookies) -> dict:
    return _pinned_payload(PinnedThreadsStore(cookies).pinned)


@router.post("/pinned/{thread_id}/toggle")
def toggle_pinned(
    thread_id: str,
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    cookies: Cookies,
) -> dict:
    ids = PinnedThreadsStore(cookies).toggle(thread_id)
    cookies.apply(response)
    return _pinned_payload(ids)


@router.get("/model")
def get_model_preference(viewer: Annotated[Viewer, Depends(get_viewer)], cookies: Cookies) -> dict:
    prefs = ModelPreferences(cookies)
    return success_response({"selected_model": prefs.selected_model, "routing": prefs.routing})


@router.put("/model")
def set_model_preference(
    body: SelectModelRequest,
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    cookies: Cookies,
) -> dict:
    """Errors:
    model_not_found:models (404): Unknown key.
    """
    if get_model_by_key(body.model_key) is None:
        raise ApiError("model_not_found:models", f'Model "{body.model_key}" is not available')
    prefs = ModelPreferences(cookies)
    prefs.set_selected_model(body.model_key)
    cookies.apply(response)
    return success_response({"selected_model": body.model_key, "routing": prefs.routing})


@router.get("/settings")
def get_user_settings(viewer: Annotated[Viewer, Depends(get_viewer)], cookies: Cookies) -> dict:
    settings = UserSettingsStore(cookies).settings
    return success_response(UserSettingsOut(**asdict(settings)).model_dump())


@router.patch("/settings")
def update_user_settings(
    body: UpdateUserSettingsRequest,
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    cookies: Cookies,
) -> dict:
    settings = UserSettingsStore(cookies).update(**body.model_dump(exclude_unset=True))
    cookies.apply(response)
    return success_response(UserSettingsOut(**asdict(settings)).model_dump())


@router.delete("/settings")
def reset_user_settings(
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    cookies: Cookies,
) -> dict:
    settings = UserSettingsStore(cookies).reset()
    cookies.apply(response)
    return success_response(UserSettingsOut(**asdict(settings)).model_dump())
