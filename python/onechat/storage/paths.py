"""Storage path building.

All object paths are built here so the test-run prefix is applied exactly
once.

Path layout:
    - Uploads:          {user_id}/attachments/{attachment_id}/{safe_file_name}
    - Generated images: {user_id}/generated-images/{message_id}-{suffix}.png
    - Test runs prepend test_runs/{run_id}/
"""

import os
import re
from uuid import uuid4

TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _get_test_prefix() -> str:
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def safe_file_name(file_name: str) -> str:
    """Collapse characters outside [A-Za-z0-9._-] to '_'. Never empty."""
    cleaned = _UNSAFE_CHARS.sub("_", os.path.basename(file_name)).strip("._")
    return cleaned or "file"


def build_attachment_path(user_id: str, attachment_id: str, file_name: str) -> str:
    return f"{_get_test_prefix()}{user_id}/attachments/{attachment_id}/{safe_file_name(file_name)}"


def build_generated_image_path(user_id: str, message_id: str) -> str:
    suffix = uuid4().hex[:8]
    return f"{_get_test_prefix()}{user_id}/generated-images/{message_id}-{suffix}.png"
