"""JWKS signing key cache: fetches public keys from the identity provider.

Features:
- Keys cached by kid for the lifetime of the process (no TTL)
- One in-flight fetch per kid; concurrent callers share its result
- Upstream rate ceiling (default 5 fetches per rolling minute); callers over
  the ceiling wait for a free slot up to ``max_queue_wait`` seconds, then fail
- Failures are never cached
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from jwt import PyJWK
from jwt.exceptions import PyJWTError

from reacher_api.errors import KeyFetchError, MissingKeyId, RateExceeded
from reacher_api.ratelimit import InMemoryStore, RateLimit, RateLimitStore

logger = logging.getLogger("reacher_api.jwks")

_FETCH_BUCKET = "jwks:fetch"


@dataclass(frozen=True, slots=True)
class SigningKey:
    """A public signing key published by the identity provider."""

    kid: str
    public_key: str
    key: Any = field(repr=False, compare=False)


def _is_signing_key(key_data: dict) -> bool:
    """RSA signature keys that carry a kid and either an x5c chain or a modulus/exponent."""
    return (
        key_data.get("use") == "sig"
        and key_data.get("kty") == "RSA"
        and bool(key_data.get("kid"))
        and (bool(key_data.get("x5c")) or ("n" in key_data and "e" in key_data))
    )


def _load_public_key(key_data: dict) -> Any:
    if "n" in key_data and "e" in key_data:
        return PyJWK(key_data, algorithm="RS256").key
    cert = x509.load_der_x509_certificate(base64.b64decode(key_data["x5c"][0]))
    return cert.public_key()


def parse_signing_keys(jwks_data: dict) -> dict[str, SigningKey]:
    """Extract usable signing keys from a JWKS document, keyed by kid."""
    keys: dict[str, SigningKey] = {}
    for key_data in jwks_data.get("keys", []):
        if not isinstance(key_data, dict) or not _is_signing_key(key_data):
            continue
        kid = key_data["kid"]
        try:
            public_key = _load_public_key(key_data)
            pem = public_key.public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            ).decode("utf-8")
        except (PyJWTError, ValueError, TypeError, KeyError):
            logger.warning("Failed to parse JWK with kid=%s", kid)
            continue
        keys[kid] = SigningKey(kid=kid, public_key=pem, key=public_key)
    return keys


class SigningKeyCache:
    """Fetches and memoizes JWKS signing keys by kid.

    Args:
        jwks_url: URL of the JWKS endpoint.
        requests_per_minute: Upstream fetch ceiling per rate window (default 5).
        rate_window: Length of the rolling rate window in seconds (default 60).
        max_queue_wait: Longest a fetch may wait for a free slot (default 10).
        http_timeout: HTTP request timeout in seconds (default 10).
        rate_store: Sliding window store for the fetch ceiling.
    """

    def __init__(
        self,
        jwks_url: str,
        *,
        requests_per_minute: int = 5,
        rate_window: float = 60.0,
        max_queue_wait: float = 10.0,
        http_timeout: float = 10.0,
        rate_store: RateLimitStore | None = None,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._jwks_url = jwks_url
        self._limit = RateLimit(max_requests=requests_per_minute, window_seconds=rate_window)
        self._max_queue_wait = max_queue_wait
        self._http_timeout = http_timeout
        self._store = rate_store or InMemoryStore()
        self._transport = _transport
        self._keys: dict[str, SigningKey] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def cached(self, kid: str) -> SigningKey | None:
        return self._keys.get(kid)

    async def get_signing_key(self, kid: str | None) -> SigningKey:
        """Get a signing key by kid, fetching the JWKS on a cache miss.

        Raises:
            MissingKeyId: If kid is empty. No upstream call is made.
            KeyFetchError: If the JWKS cannot be fetched or lacks the kid.
            RateExceeded: If the fetch ceiling stays exhausted past max_queue_wait.
        """
        if not kid:
            raise MissingKeyId()

        key = self._keys.get(kid)
        if key is not None:
            return key

        task = self._inflight.get(kid)
        if task is None:
            task = asyncio.ensure_future(self._load(kid))
            self._inflight[kid] = task
            task.add_done_callback(lambda t: self._forget(kid, t))
        # the fetch is shared with other waiters; cancelling one caller leaves it running
        return await asyncio.shield(task)

    def _forget(self, kid: str, task: asyncio.Task) -> None:
        if self._inflight.get(kid) is task:
            del self._inflight[kid]
        if not task.cancelled():
            task.exception()

    async def _load(self, kid: str) -> SigningKey:
        await self._acquire_fetch_slot()
        jwks_data = await self._fetch()

        keys = parse_signing_keys(jwks_data)
        if not keys:
            raise KeyFetchError("The JWKS endpoint did not contain any signing keys")

        key = keys.get(kid)
        if key is None:
            raise KeyFetchError(f"Unable to find a signing key that matches '{kid}'")

        self._keys[kid] = key
        logger.debug("Cached signing key kid=%s (%d keys published)", kid, len(keys))
        return key

    async def _acquire_fetch_slot(self) -> None:
        """Wait for room under the upstream fetch ceiling."""
        deadline = time.monotonic() + self._max_queue_wait
        while True:
            allowed, _, retry_after = self._store.hit(_FETCH_BUCKET, self._limit)
            if allowed:
                return
            if time.monotonic() + retry_after > deadline:
                logger.warning("JWKS fetch ceiling reached, retry in %.1fs", retry_after)
                raise RateExceeded(
                    "Too many signing key requests. Please try again later.",
                    retry_after=retry_after,
                )
            await asyncio.sleep(retry_after)

    async def _fetch(self) -> dict:
        """Fetch the JWKS document."""
        kwargs: dict = {"timeout": self._http_timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                response = await client.get(self._jwks_url)
                response.raise_for_status()
                jwks_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("JWKS endpoint %s returned %d", self._jwks_url, e.response.status_code)
            raise KeyFetchError(f"JWKS endpoint returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch JWKS from %s: %s", self._jwks_url, e)
            raise KeyFetchError(f"Failed to fetch JWKS: {e}")
        except ValueError:
            raise KeyFetchError("JWKS endpoint returned invalid JSON")

        if not isinstance(jwks_data, dict):
            raise KeyFetchError("JWKS endpoint returned invalid JSON")
        return jwks_data
