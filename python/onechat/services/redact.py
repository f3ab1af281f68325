"""Redaction helpers and the structured-log key guard.

Never-log policy:
- API keys (plaintext or obfuscated storage form)
- Bearer tokens
- Rendered prompts and message content
- Partial-share tokens

Allowed (with suffix):
- _chars, _length: length of text
- _sha256, _hash: hash of text
- _fingerprint: obfuscated display form of a key
"""

import hashlib
import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "prompt",
        "content",
        "api_key",
        "bearer",
        "token",
        "secret",
        "password",
        "message_text",
        "raw_body",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_length", "_chars", "_fingerprint")


def hash_text(value: str) -> str:
    """Stable SHA-256 hex digest used for log correlation."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def redact_text(value: str, keep: int = 0) -> str:
    """Mask text, optionally keeping a short prefix.

    Args:
        value: Text to redact.
        keep: Number of leading characters to preserve (0 = full redact).

    Returns:
        prefix + '***', or just '***'.
    """
    if not value or keep <= 0 or keep >= len(value):
        return "***"
    return value[:keep] + "***"


def _has_redacted_suffix(key: str) -> bool:
    return any(key.endswith(suffix) for suffix in REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Return kwargs after checking that no forbidden log key is present.

    Raises ValueError in local/test so offending call sites fail loudly. In
    staging/prod a ``safe_kv_violation`` warning is emitted instead.

    Usage:
        logger.info("llm.request.finished", **safe_kv(
            provider="anthropic",
            model_name="claude-sonnet-4-0",
            prompt_chars=1234,
        ))

    Args:
        _env: Override for ONECHAT_ENV (test-only). If None, reads from env.
        **kwargs: Log fields to validate.

    Raises:
        ValueError: In local/test, if a forbidden key is used.
    """
    violations = [
        key for key in kwargs if key in FORBIDDEN_KEYS and not _has_redacted_suffix(key)
    ]

    if violations:
        msg = f"Forbidden log keys without redacted suffix: {violations}"
        env = _env or os.environ.get("ONECHAT_ENV", "local")
        if env in ("local", "test"):
            raise ValueError(msg)
        structlog.get_logger("onechat.services.redact").warning(
            "safe_kv_violation", forbidden_keys=violations
        )

    return kwargs
