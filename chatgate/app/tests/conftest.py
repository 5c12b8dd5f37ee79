"""
Shared fixtures for the chat gateway tests.

Provides an RSA key pair and JWKS for minting Access tokens, a key set
backed by httpx.MockTransport, a fake Workers AI client and a TestClient
with all collaborators overridden.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm

from chatgate.app.auth.jwks import RemoteKeySet, clear_key_set_cache
from chatgate.app.config import Settings
from chatgate.app.main import create_app
from chatgate.app.routes import get_asset_fetcher, get_inference_client, get_key_set


TEAM_DOMAIN = "https://test-team.cloudflareaccess.com"
POLICY_AUD = "test-policy-aud"
TEST_KID = "test-key-id-2024"


def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    return private_key, private_pem.decode()


TEST_PRIVATE_KEY, TEST_PRIVATE_PEM = generate_test_keys()
OTHER_PRIVATE_KEY, OTHER_PRIVATE_PEM = generate_test_keys()


def create_jwks(kid: str = TEST_KID, private_key=TEST_PRIVATE_KEY) -> Dict[str, Any]:
    """JWKS document holding the public half of ``private_key``."""
    key = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    key.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return {"keys": [key]}


def create_access_token(
    email: Optional[str] = "user@example.com",
    sub: Optional[str] = "user-sub-123",
    aud: str = POLICY_AUD,
    iss: str = TEAM_DOMAIN,
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
    private_pem: str = TEST_PRIVATE_PEM,
) -> str:
    """Create an Access-style RS256 token."""
    now = datetime.now(timezone.utc)
    payload = {
        "iss": iss,
        "aud": aud,
        "iat": now,
        "exp": now + timedelta(minutes=exp_delta_minutes),
    }
    if email is not None:
        payload["email"] = email
    if sub is not None:
        payload["sub"] = sub

    return jwt.encode(payload, private_pem, algorithm="RS256", headers={"kid": kid})


class ChunkStream(httpx.AsyncByteStream):
    """Async body that yields pre-defined chunks."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


SSE_CHUNKS = [
    b'data: {"response":"Hel"}\n\n',
    b'data: {"response":"lo"}\n\n',
    b"data: [DONE]\n\n",
]


class FakeWorkersAI:
    """Records run() calls and answers with a canned event stream."""

    def __init__(self, status_code: int = 200, headers=None, chunks=None, error: Optional[Exception] = None):
        self.status_code = status_code
        self.headers = headers or {"content-type": "text/event-stream"}
        self.chunks = SSE_CHUNKS if chunks is None else chunks
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def run(self, model, inputs, gateway=None):
        self.calls.append({"model": model, "inputs": inputs, "gateway": gateway})
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            stream=ChunkStream(list(self.chunks)),
        )


class FakeAssets:
    """AssetFetcher that echoes the requested path."""

    def __init__(self):
        self.requests = []

    async def fetch(self, request):
        self.requests.append((request.method, request.url.path))
        return PlainTextResponse(f"asset:{request.url.path}", headers={"x-asset": "1"})


def make_settings(**overrides) -> Settings:
    values = {
        "TEAM_DOMAIN": TEAM_DOMAIN,
        "POLICY_AUD": POLICY_AUD,
        "CF_ACCOUNT_ID": "test-account",
        "CF_API_TOKEN": "test-api-token",
        "LOG_LEVEL": "DEBUG",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_key_set_cache():
    clear_key_set_cache()
    yield
    clear_key_set_cache()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def jwks_requests():
    """Requests seen by the mock JWKS endpoint."""
    return []


@pytest.fixture
def key_set(settings, jwks_requests):
    """RemoteKeySet served by httpx.MockTransport."""
    def handler(request: httpx.Request) -> httpx.Response:
        jwks_requests.append(request)
        return httpx.Response(200, json=create_jwks())

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteKeySet(settings.key_set_url, http_client=client)


@pytest.fixture
def fake_inference():
    return FakeWorkersAI()


@pytest.fixture
def fake_assets():
    return FakeAssets()


@pytest.fixture
def app(settings, key_set, fake_inference, fake_assets):
    """Application with every external collaborator replaced."""
    app = create_app(settings)
    app.dependency_overrides[get_key_set] = lambda: key_set
    app.dependency_overrides[get_inference_client] = lambda: fake_inference
    app.dependency_overrides[get_asset_fetcher] = lambda: fake_assets
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"cf-access-jwt-assertion": create_access_token()}
