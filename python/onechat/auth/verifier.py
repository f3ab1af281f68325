"""Bearer-token verification against the identity provider's JWKS.

The API never issues tokens. It accepts RS256/ES256 access tokens from the
configured issuer whose audience is one of AUTH_AUDIENCES, and the ``sub``
claim becomes the OneChat user id that owns threads, keys and attachments.

Test verifiers live in tests/support/test_verifier.py.
"""

import threading
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from onechat.errors import ApiError, UnauthorizedError
from onechat.logging import get_logger

logger = get_logger(__name__)

CLOCK_SKEW_SECONDS = 60
ALGORITHMS = ["RS256", "ES256"]

# Most specific first; anything else is a generic invalid_token.
_REJECTIONS: tuple[tuple[type[InvalidTokenError], str, str], ...] = (
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        """Return the token's claims.

        Raises:
            UnauthorizedError: unauthorized:auth for any rejected token.
            ApiError: internal_server_error:auth when the JWKS is unreachable.
        """
        ...


def _reject(exc: InvalidTokenError) -> UnauthorizedError:
    for exc_type, reason, cause in _REJECTIONS:
        if isinstance(exc, exc_type):
            logger.warning("auth_failure", reason=reason)
            return UnauthorizedError(cause=cause)
    logger.warning("auth_failure", reason="invalid_token", error=str(exc))
    return UnauthorizedError(cause="Invalid token")


class JwksVerifier:
    """JWKS-backed verifier.

    Signing keys are cached for ``cache_ttl`` seconds. An unknown ``kid``
    forces one refetch, so a key rotation at the provider does not lock
    users out until the cache expires.
    """

    def __init__(self, jwks_url: str, issuer: str, audiences: list[str], cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl
        self._jwks_client: PyJWKClient | None = None
        self._lock = threading.Lock()

    def _client(self, refresh: bool = False) -> PyJWKClient:
        with self._lock:
            if refresh or self._jwks_client is None:
                self._jwks_client = PyJWKClient(
                    self.jwks_url, cache_keys=True, lifespan=self.cache_ttl
                )
            return self._jwks_client

    def verify(self, token: str) -> dict[str, Any]:
        try:
            signing_key = self._signing_key(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
            raise ApiError(
                "internal_server_error:auth", "Authentication service unavailable"
            ) from e

        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"]},
            )
        except InvalidTokenError as e:
            raise _reject(e) from e

        if not claims.get("sub"):
            logger.warning("auth_failure", reason="missing_sub")
            raise UnauthorizedError(cause="Invalid token: missing sub")
        return claims

    def _signing_key(self, token: str) -> Any:
        try:
            return self._client().get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" not in str(e) and "kid" not in str(e).lower():
                raise
        logger.info("jwks_refresh_on_kid_miss")
        try:
            return self._client(refresh=True).get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", reason="kid_not_found")
            raise UnauthorizedError(cause="Invalid token: signing key not found") from e
