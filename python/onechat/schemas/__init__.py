"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from onechat.schemas.attachment import ConfirmUploadRequest, CreateUploadRequest, UploadOut
from onechat.schemas.chat import ChatRequest, StopStreamOut
from onechat.schemas.keys import (
    KeysOut,
    KeyValidationOut,
    SaveKeyOut,
    SaveKeyRequest,
    ValidateKeyRequest,
)
from onechat.schemas.models import AvailabilityOut, AvailabilityRequest, ModelOut
from onechat.schemas.preferences import (
    PinnedThreadsOut,
    UpdateUserSettingsRequest,
    UserSettingsOut,
)
from onechat.schemas.thread import (
    AttachmentOut,
    AttachmentStatsOut,
    BranchOutRequest,
    BranchOutResult,
    CreatePartialShareRequest,
    GenerateTitleRequest,
    GroupedThreadsOut,
    MessageIn,
    MessageOut,
    PartialShareOut,
    PartialThreadOut,
    RenameThreadRequest,
    RetryOut,
    ThreadOut,
    ThreadWithMessagesOut,
)
from onechat.schemas.voice import SpeechOut, SpeechRequest, TranscriptionSessionOut

__all__ = [
    "AttachmentOut",
    "AttachmentStatsOut",
    "AvailabilityOut",
    "AvailabilityRequest",
    "BranchOutRequest",
    "BranchOutResult",
    "ChatRequest",
    "ConfirmUploadRequest",
    "CreatePartialShareRequest",
    "CreateUploadRequest",
    "GenerateTitleRequest",
    "GroupedThreadsOut",
    "KeyValidationOut",
    "KeysOut",
    "MessageIn",
    "MessageOut",
    "ModelOut",
    "PartialShareOut",
    "PartialThreadOut",
    "PinnedThreadsOut",
    "RenameThreadRequest",
    "RetryOut",
    "SaveKeyOut",
    "SaveKeyRequest",
    "SpeechOut",
    "SpeechRequest",
    "StopStreamOut",
    "ThreadOut",
    "ThreadWithMessagesOut",
    "TranscriptionSessionOut",
    "UpdateUserSettingsRequest",
    "UploadOut",
    "UserSettingsOut",
    "ValidateKeyRequest",
]
