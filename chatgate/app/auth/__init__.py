"""
Authentication Package

Verifies Cloudflare Access assertions presented to the chat endpoint.

Modules:
- access: Token verification and the Authenticated/Rejected outcome
- jwks: Remote key set fetching and caching
"""

from .access import (
    ACCESS_JWT_HEADER,
    Authenticated,
    Rejected,
    VerificationOutcome,
    verify_access_jwt,
)
from .jwks import RemoteKeySet, clear_key_set_cache, get_remote_key_set

__all__ = [
    "ACCESS_JWT_HEADER",
    "Authenticated",
    "Rejected",
    "RemoteKeySet",
    "VerificationOutcome",
    "clear_key_set_cache",
    "get_remote_key_set",
    "verify_access_jwt",
]
