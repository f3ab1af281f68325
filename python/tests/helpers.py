"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- User id helper
- SSE body parsing
"""

import json
import time
from uuid import uuid4

import httpx
import jwt

from onechat.services.llm import LLMRouter
from onechat.services.rate_limit import RateLimiter
from tests.support.test_verifier import MockJwtVerifier

DEFAULT_ISSUER = "test-issuer"
DEFAULT_AUDIENCE = "test-audience"
DEFAULT_EXPIRES_IN = 3600


def mint_test_token(
    user_id: str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = DEFAULT_ISSUER,
    audience: str = DEFAULT_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid test JWT for ``user_id``."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, MockJwtVerifier.get_private_key(), algorithm="RS256")


def mint_expired_token(user_id: str) -> str:
    return mint_test_token(user_id=user_id, expires_in=-3600)


def mint_token_with_bad_signature(user_id: str) -> str:
    """Mint a token signed with a different key."""
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_key_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": DEFAULT_ISSUER,
        "aud": DEFAULT_AUDIENCE,
        "iat": now,
        "exp": now + DEFAULT_EXPIRES_IN,
    }
    return jwt.encode(payload, private_key_bytes, algorithm="RS256")


def auth_headers(user_id: str, **token_kwargs) -> dict[str, str]:
    """Headers dict with a valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_user_id() -> str:
    return f"user-{uuid4().hex[:12]}"


def wire_app_state(app, redis_client, storage) -> None:
    """Populate app.state the way the lifespan does, with test doubles."""
    http_client = httpx.AsyncClient()
    app.state.httpx_client = http_client
    app.state.llm_router = LLMRouter(http_client)
    app.state.redis_client = redis_client
    app.state.pubsub_client = None
    app.state.storage = storage
    app.state.rate_limiter = RateLimiter(redis_client=redis_client, rpm_limit=20)


def parse_sse(body: str | list[str]) -> list[tuple[str, dict]]:
    """Split an SSE body (or a list of event strings) into (event, data) pairs.

    Comment lines such as keepalives are dropped.
    """
    if isinstance(body, list):
        body = "".join(body)
    events = []
    for block in body.split("\n\n"):
        name = None
        data = None
        for line in block.splitlines():
            if line.startswith("event: "):
                name = line[len("event: ") :]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: ") :])
        if name is not None:
            events.append((name, data))
    return events
