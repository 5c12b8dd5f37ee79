"""
Tests for the remote key set (chatgate/app/auth/jwks.py).
"""

import httpx
import pytest
from jose import JWTError

from chatgate.app.auth import jwks as jwks_module
from chatgate.app.auth.jwks import RemoteKeySet, clear_key_set_cache, get_remote_key_set
from chatgate.app.tests.conftest import TEST_KID, create_access_token, create_jwks


URL = "https://test-team.cloudflareaccess.com/cdn-cgi/access/certs"


def make_key_set(responses, cache_seconds=3600):
    """
    Key set whose endpoint answers with ``responses`` in order.

    Each entry is a ``(status_code, json_body)`` pair; the last one repeats.
    """
    seen = []

    def handler(request):
        seen.append(request)
        status_code, body = responses[min(len(seen), len(responses)) - 1]
        return httpx.Response(status_code, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteKeySet(URL, cache_seconds=cache_seconds, http_client=client), seen


@pytest.mark.asyncio
async def test_fetch_is_cached():
    key_set, seen = make_key_set([(200, create_jwks())])

    first = await key_set.fetch_jwks()
    second = await key_set.fetch_jwks()

    assert first == second
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_expired_cache_is_refetched():
    key_set, seen = make_key_set([(200, create_jwks())], cache_seconds=0)

    await key_set.fetch_jwks()
    await key_set.fetch_jwks()

    assert len(seen) == 2


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache():
    key_set, seen = make_key_set([(200, create_jwks())])

    await key_set.fetch_jwks()
    await key_set.fetch_jwks(force_refresh=True)

    assert len(seen) == 2


@pytest.mark.asyncio
async def test_invalid_document_raises_value_error():
    key_set, _ = make_key_set([(200, {"not": "a key set"})])

    with pytest.raises(ValueError):
        await key_set.fetch_jwks()


@pytest.mark.asyncio
async def test_http_error_propagates():
    key_set, _ = make_key_set([(500, None)])

    with pytest.raises(httpx.HTTPStatusError):
        await key_set.fetch_jwks()


@pytest.mark.asyncio
async def test_signing_key_selected_by_kid():
    key_set, _ = make_key_set([(200, create_jwks())])

    key = await key_set.get_signing_key(create_access_token())

    assert key["kid"] == TEST_KID
    assert key["kty"] == "RSA"


@pytest.mark.asyncio
async def test_unknown_kid_refreshes_for_rotated_keys(monkeypatch):
    monkeypatch.setattr(jwks_module, "REFRESH_COOLDOWN_SECONDS", 0.0)
    key_set, seen = make_key_set([
        (200, create_jwks(kid="old-key")),
        (200, create_jwks(kid="new-key")),
    ])

    key = await key_set.get_signing_key(create_access_token(kid="new-key"))

    assert key["kid"] == "new-key"
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_unknown_kid_refresh_respects_cooldown():
    key_set, seen = make_key_set([(200, create_jwks(kid="old-key"))])

    with pytest.raises(JWTError):
        await key_set.get_signing_key(create_access_token(kid="new-key"))

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_malformed_token_header_raises():
    key_set, seen = make_key_set([(200, create_jwks())])

    with pytest.raises(JWTError):
        await key_set.get_signing_key("garbage")

    assert seen == []


@pytest.mark.asyncio
async def test_non_object_key_entries_are_skipped():
    document = create_jwks()
    document["keys"] = ["junk", 42, None] + document["keys"]
    key_set, _ = make_key_set([(200, document)])

    key = await key_set.get_signing_key(create_access_token())

    assert key["kid"] == TEST_KID


@pytest.mark.asyncio
async def test_key_set_without_object_entries_has_no_match():
    key_set, _ = make_key_set([(200, {"keys": ["junk", 42, [TEST_KID]]})])

    with pytest.raises(JWTError):
        await key_set.get_signing_key(create_access_token())

def test_registry_shares_instances_per_url():
    first = get_remote_key_set(URL)
    second = get_remote_key_set(URL)
    other = get_remote_key_set("https://other.cloudflareaccess.com/cdn-cgi/access/certs")

    assert first is second
    assert other is not first

    clear_key_set_cache()

    assert get_remote_key_set(URL) is not first


def test_registry_honours_cache_seconds_per_entry():
    short = get_remote_key_set(URL, 60)
    long = get_remote_key_set(URL, 3600)

    assert short is not long
    assert short.cache_seconds == 60
    assert long.cache_seconds == 3600
    assert get_remote_key_set(URL, 60) is short
