# =============================================================================
# Identity Verification
# =============================================================================
#
# Turns an opaque bearer credential into a subject id. Two providers:
#   - JWTIdentityVerifier:    networkless verification with PyJWT
#   - RemoteIdentityVerifier: token introspection over HTTP (httpx)
#
# Failure contract:
#   - bad/missing/expired credential      -> Unauthenticated (401, no retry)
#   - provider unreachable/slow/erroring  -> InfraFailure (5xx)
#
# =============================================================================

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
import jwt

from orgguard.config import Settings, get_settings
from orgguard.core.errors import InfraFailure, Unauthenticated

logger = logging.getLogger(__name__)

MISSING_HEADER_MESSAGE = "Missing or invalid authorization header"


def parse_bearer(header: str | None) -> str:
    """
    Extract the token from an `Authorization: Bearer <token>` header.

    Raises:
        Unauthenticated: header absent or not a bearer credential
    """
    if not header:
        raise Unauthenticated(MISSING_HEADER_MESSAGE)
    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated(MISSING_HEADER_MESSAGE)
    return token


class IdentityVerifier(ABC):
    """Verifies a credential with the identity provider."""

    @abstractmethod
    async def verify(self, token: str) -> str:
        """
        Return the subject id the token was issued to.

        Raises:
            Unauthenticated: token invalid or expired
            InfraFailure: provider unreachable
        """
        pass


# =============================================================================
# Local JWT verification
# =============================================================================


class JWTIdentityVerifier(IdentityVerifier):
    """Verify signed JWTs locally."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: str | None = None,
        issuer: str | None = None,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience or None
        self.issuer = issuer or None

    async def verify(self, token: str) -> str:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            raise Unauthenticated("Invalid session token")

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise Unauthenticated("Invalid session token")
        return subject


# =============================================================================
# Remote introspection
# =============================================================================


class RemoteIdentityVerifier(IdentityVerifier):
    """
    Ask the identity provider whether a token is valid.

    The call is bounded by `timeout` seconds; a slow provider is an
    infrastructure failure, never a credential failure.
    """

    def __init__(
        self,
        verify_url: str,
        api_key: str = "",
        timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.verify_url = verify_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def verify(self, token: str) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.verify_url, json={"token": token}, headers=headers)
        except httpx.TimeoutException as e:
            raise InfraFailure("Identity provider timed out") from e
        except httpx.HTTPError as e:
            raise InfraFailure("Identity provider unreachable") from e

        if response.status_code in (400, 401, 403, 404):
            raise Unauthenticated("Invalid session token")
        if response.status_code != 200:
            logger.error(f"Identity provider returned {response.status_code}")
            raise InfraFailure("Identity provider error", upstream_status=response.status_code)

        data = self._json(response)
        if data.get("active") is False:
            raise Unauthenticated("Invalid session token")

        subject = data.get("sub") or data.get("user_id")
        if not subject:
            raise Unauthenticated("Invalid session token")
        return str(subject)

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise InfraFailure("Identity provider returned malformed response") from e
        if not isinstance(data, dict):
            raise InfraFailure("Identity provider returned malformed response")
        return data


def create_identity_verifier(settings: Settings | None = None) -> IdentityVerifier:
    """Build the verifier selected by `identity_provider`."""
    settings = settings or get_settings()

    if settings.identity_provider == "jwt":
        return JWTIdentityVerifier(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    if settings.identity_provider == "remote":
        if not settings.identity_verify_url:
            raise ValueError("IDENTITY_VERIFY_URL must be set for the remote identity provider")
        return RemoteIdentityVerifier(
            verify_url=settings.identity_verify_url,
            api_key=settings.identity_api_key,
            timeout=settings.identity_timeout_seconds,
        )
    raise ValueError(f"Unknown identity provider: {settings.identity_provider!r}")
