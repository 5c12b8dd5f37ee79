"""
Cloudflare Access token verification.

Requests reaching the chat endpoint carry a signed assertion in the
``cf-access-jwt-assertion`` header. The token is checked against the team's
published key set, the expected issuer (TEAM_DOMAIN) and the expected
audience (POLICY_AUD).

The outcome is a value, never an exception:

- ``Authenticated(identity)`` when the token verifies
- ``Rejected(reason, status_code)`` otherwise, rendered as a plain-text 403

Verification failures include the underlying reason in the response body so
that misconfigured clients can be diagnosed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Union

import httpx
from fastapi import Request, status
from fastapi.responses import PlainTextResponse
from jose import JWTError, jwk, jwt

from ..config import Settings
from ..models import Identity
from .jwks import RemoteKeySet

logger = logging.getLogger(__name__)

ACCESS_JWT_HEADER = "cf-access-jwt-assertion"

MISSING_AUDIENCE_MESSAGE = "Missing required audience"
MISSING_TOKEN_MESSAGE = "Missing required CF Access JWT"

ALGORITHMS = ["RS256"]


@dataclass(frozen=True)
class Authenticated:
    identity: Identity


@dataclass(frozen=True)
class Rejected:
    reason: str
    status_code: int = status.HTTP_403_FORBIDDEN

    def to_response(self) -> PlainTextResponse:
        return PlainTextResponse(self.reason, status_code=self.status_code)


VerificationOutcome = Union[Authenticated, Rejected]


async def verify_access_jwt(
    request: Request,
    settings: Settings,
    key_set: RemoteKeySet,
) -> VerificationOutcome:
    """
    Verify the Access JWT included in the request headers.

    Fails closed: a missing POLICY_AUD rejects every request instead of
    skipping the audience check.

    Args:
        request: Incoming request
        settings: Application settings (issuer and audience)
        key_set: Key set for TEAM_DOMAIN

    Returns:
        Authenticated with the caller identity, or Rejected with the reason
    """
    if not settings.POLICY_AUD:
        logger.error("Rejecting request: POLICY_AUD is not configured")
        return Rejected(MISSING_AUDIENCE_MESSAGE)

    token = request.headers.get(ACCESS_JWT_HEADER)
    if not token:
        return Rejected(MISSING_TOKEN_MESSAGE)

    try:
        claims = await decode_access_token(token, settings, key_set)
    except (JWTError, httpx.HTTPError, ValueError) as e:
        message = str(e) or type(e).__name__
        logger.warning(
            "Access token rejected",
            extra={"reason": message, "path": request.url.path},
        )
        return Rejected(f"Invalid token: {message}")

    return Authenticated(
        Identity(email=claims.get("email"), subject=claims.get("sub"))
    )


async def decode_access_token(token: str, settings: Settings, key_set: RemoteKeySet) -> Dict[str, Any]:
    """
    Verify signature, issuer, audience and expiry, and return the claims.

    Raises:
        JWTError: If token is invalid, expired, or signature doesn't match
        httpx.HTTPError: If the key set cannot be fetched
        ValueError: If the key set document is invalid
    """
    signing_key = await key_set.get_signing_key(token)

    try:
        public_key = jwk.construct(signing_key, algorithm=ALGORITHMS[0])
    except Exception as e:
        raise JWTError(f"Failed to construct public key from JWK: {e}")

    return jwt.decode(
        token,
        public_key.to_pem().decode("utf-8"),
        algorithms=ALGORITHMS,
        audience=settings.POLICY_AUD,
        issuer=settings.TEAM_DOMAIN,
        options={
            "verify_signature": True,
            "verify_aud": True,
            "verify_iss": True,
            "verify_exp": True,
            "verify_nbf": True,
            "verify_iat": True,
            "require_aud": True,
            "require_iss": True,
            "require_exp": True,
            "leeway": 10,
        },
    )
