"""Test fixtures for Reacher API tests.

Upstream services are mocked with httpx MockTransport: the JWKS endpoint serves
a generated RSA key, the email verifier echoes the address it was asked about.
The database is in-memory SQLite (aiosqlite).
"""

import base64
import uuid
from datetime import UTC, datetime, timedelta

import httpx
import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient

from reacher_api.app import create_app
from reacher_api.config import Settings
from reacher_api.context import ReacherContext

TEST_DOMAIN = "reacher-test.eu.auth0.com"
TEST_ISSUER = f"https://{TEST_DOMAIN}/"
TEST_AUDIENCE = "https://api.reacher.test"
TEST_JWKS_URL = f"https://{TEST_DOMAIN}/.well-known/jwks.json"
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_VERIFIER_ENDPOINT = "https://verifier.test"
TEST_CLIENT_IP = "203.0.113.7"


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url=TEST_DATABASE_URL,
        auth0_domain=TEST_DOMAIN,
        auth0_audience=TEST_AUDIENCE,
        verifier_endpoint=TEST_VERIFIER_ENDPOINT,
    )
    values.update(overrides)
    return Settings(**values)


def _generate_key_pair() -> tuple[str, str]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


def _int_to_b64url(value: int) -> str:
    byte_length = (value.bit_length() + 7) // 8
    value_bytes = value.to_bytes(byte_length, byteorder="big")
    return base64.urlsafe_b64encode(value_bytes).rstrip(b"=").decode("ascii")


def public_key_to_jwk(public_pem: str, kid: str) -> dict:
    """Convert a PEM public key to a JWKS entry."""
    public_key = serialization.load_pem_public_key(public_pem.encode("utf-8"))
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "use": "sig",
        "alg": "RS256",
        "n": _int_to_b64url(numbers.n),
        "e": _int_to_b64url(numbers.e),
    }


@pytest.fixture(scope="session")
def rsa_key_pair():
    """Generate a test RSA key pair (private PEM, public PEM)."""
    return _generate_key_pair()


@pytest.fixture(scope="session")
def other_key_pair():
    """A second key pair, for signatures the JWKS does not vouch for."""
    return _generate_key_pair()


@pytest.fixture
def test_kid():
    return f"test-key-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def jwk_from_public_key(rsa_key_pair, test_kid):
    _, public_pem = rsa_key_pair
    return public_key_to_jwk(public_pem, test_kid)


@pytest.fixture
def jwks_response(jwk_from_public_key):
    """A JWKS response body with one signing key."""
    return {"keys": [jwk_from_public_key]}


def create_test_token(
    private_key_pem: str,
    kid: str | None,
    *,
    sub: str = "auth0|5d1f0c3a8e1b2c0001a1b2c3",
    issuer: str = TEST_ISSUER,
    audience: str | list[str] = TEST_AUDIENCE,
    expires_in: int = 900,
    algorithm: str = "RS256",
    scope: str = "openid profile email",
) -> str:
    """Create a test access token shaped like the identity provider's."""
    now = datetime.now(UTC)
    payload = {
        "iss": issuer,
        "sub": sub,
        "aud": audience,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "azp": "test-client-id",
        "scope": scope,
    }
    headers = {"kid": kid} if kid is not None else None
    return jwt.encode(payload, private_key_pem, algorithm=algorithm, headers=headers)


def make_jwks_transport(jwks_body, *, status_code: int = 200):
    """MockTransport serving ``jwks_body``; returns (transport, list of requests seen)."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status_code, json=jwks_body)

    return httpx.MockTransport(handler), calls


def make_verifier_transport(*, status_code: int = 200, fail_for: set[str] | None = None):
    """MockTransport echoing the verified address; returns (transport, list of addresses seen)."""
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        email = request.url.params["to_email"]
        calls.append(email)
        if fail_for and email in fail_for:
            return httpx.Response(500, text="boom")
        return httpx.Response(
            status_code,
            json={"input": email, "is_reachable": "safe", "misc": {"is_disposable": False}},
        )

    return httpx.MockTransport(handler), calls


@pytest.fixture
def jwks_transport(jwks_response):
    return make_jwks_transport(jwks_response)


@pytest.fixture
def verifier_transport():
    return make_verifier_transport()


@pytest_asyncio.fixture
async def context(jwks_transport, verifier_transport):
    """A ReacherContext wired to mock upstreams and a fresh in-memory database."""
    ctx = ReacherContext(
        make_settings(),
        jwks_transport=jwks_transport[0],
        verifier_transport=verifier_transport[0],
    )
    await ctx.create_tables()
    yield ctx
    await ctx.dispose()


@pytest_asyncio.fixture
async def client(context):
    """Async HTTP client for testing against the FastAPI app."""
    app = create_app(context=context)
    async with AsyncClient(
        transport=ASGITransport(app=app, client=(TEST_CLIENT_IP, 4321)),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def auth_headers(rsa_key_pair, test_kid):
    private_pem, _ = rsa_key_pair
    token = create_test_token(private_pem, test_kid)
    return {"Authorization": f"Bearer {token}"}
