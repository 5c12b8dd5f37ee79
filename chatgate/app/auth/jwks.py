"""
Remote key set for Access token verification.

This module handles:
- Fetching and caching the Access JWKS (JSON Web Key Set)
- Selecting the signing key for a token by its ``kid`` header
- A process-wide registry of key sets keyed by URL and cache lifetime
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

# Minimum seconds between forced refreshes triggered by unknown key ids
REFRESH_COOLDOWN_SECONDS = 30.0


class RemoteKeySet:
    """
    Lazily fetched, time-cached JWKS document.

    Attributes:
        url: JWKS endpoint
        cache_seconds: How long a fetched document is reused
    """

    def __init__(
        self,
        url: str,
        cache_seconds: int = 3600,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.cache_seconds = cache_seconds
        self._http_client = http_client
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the JWKS document, reusing the cached copy while it is fresh.

        Args:
            force_refresh: If True, bypass cache and fetch fresh JWKS

        Returns:
            JWKS document containing keys

        Raises:
            httpx.HTTPError: If JWKS endpoint is unreachable
            ValueError: If response is invalid
        """
        now = time.monotonic()
        if (
            not force_refresh
            and self._jwks is not None
            and (now - self._fetched_at) < self.cache_seconds
        ):
            return self._jwks

        if self._http_client is not None:
            response = await self._http_client.get(self.url, timeout=10.0)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.url, timeout=10.0)
        response.raise_for_status()

        jwks_data = response.json()
        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._fetched_at = now
        logger.info(
            "Fetched Access key set",
            extra={"jwks_url": self.url, "key_count": len(jwks_data["keys"])},
        )
        return jwks_data

    async def get_signing_key(self, token: str) -> Dict[str, Any]:
        """
        Return the JWK whose ``kid`` matches the token header.

        An unknown ``kid`` triggers one refetch (rate limited by
        REFRESH_COOLDOWN_SECONDS) to pick up rotated keys.

        Raises:
            JWTError: If the header is malformed or no key matches
            httpx.HTTPError: If JWKS endpoint is unreachable
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise JWTError(f"Failed to decode token header: {e}")

        kid = header.get("kid")
        if not kid:
            raise JWTError("Token header missing 'kid' (Key ID)")

        key = _find_key(await self.fetch_jwks(), kid)
        if key is None and (time.monotonic() - self._fetched_at) >= REFRESH_COOLDOWN_SECONDS:
            logger.info("Unknown key id, refreshing Access key set", extra={"kid": kid})
            key = _find_key(await self.fetch_jwks(force_refresh=True), kid)

        if key is None:
            raise JWTError(f"No matching key found in key set for kid '{kid}'")
        return key

    def clear(self) -> None:
        self._jwks = None
        self._fetched_at = 0.0


def _find_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
    for key in jwks.get("keys", []):
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


# =============================================================================
# Process-wide registry
# =============================================================================

_key_sets: Dict[Tuple[str, int], RemoteKeySet] = {}


def get_remote_key_set(url: str, cache_seconds: int = 3600) -> RemoteKeySet:
    """
    Get the shared RemoteKeySet for ``url`` and ``cache_seconds``, creating
    it on first use.

    Two concurrent first calls may both construct one; the last write wins
    and both instances are valid.
    """
    registry_key = (url, cache_seconds)
    key_set = _key_sets.get(registry_key)
    if key_set is None:
        key_set = RemoteKeySet(url, cache_seconds=cache_seconds)
        _key_sets[registry_key] = key_set
    return key_set


def clear_key_set_cache() -> None:
    """Forget every cached key set."""
    _key_sets.clear()
