"""Client for the external email verification service.

The service is a black box: ``GET <endpoint>/?to_email=<email>`` returns a JSON
verdict, which is passed back to callers verbatim.
"""

import asyncio
import logging
from typing import Any

import httpx

from reacher_api.errors import UpstreamError

logger = logging.getLogger("reacher_api.checker")


class EmailVerifierClient:
    """Async HTTP client for the email verification service.

    Args:
        endpoint: Base URL of the verifier.
        http_timeout: HTTP request timeout in seconds (default 10).
    """

    def __init__(
        self,
        endpoint: str,
        *,
        http_timeout: float = 10.0,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = endpoint.rstrip("/") + "/"
        self._http_timeout = http_timeout
        self._transport = _transport

    def _client(self) -> httpx.AsyncClient:
        # no pool timeout: a large batch queues for connections instead of failing
        kwargs: dict = {"timeout": httpx.Timeout(self._http_timeout, pool=None)}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def check(self, to_email: str, from_email: str | None = None) -> Any:
        """Verify one address.

        Raises:
            UpstreamError: If the verifier is unreachable, errors, or returns non-JSON.
        """
        async with self._client() as client:
            return await self._check(client, to_email, from_email)

    async def check_many(self, emails: list[str]) -> list[Any]:
        """Verify addresses concurrently; results are in input order.

        Fails as a whole on the first error.
        """
        async with self._client() as client:
            return list(await asyncio.gather(*(self._check(client, email) for email in emails)))

    async def _check(
        self, client: httpx.AsyncClient, to_email: str, from_email: str | None = None,
    ) -> Any:
        params = {"to_email": to_email}
        if from_email:
            params["from_email"] = from_email

        try:
            response = await client.get(self._url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Verifier %s returned %d", self._url, e.response.status_code)
            raise UpstreamError(f"Verifier returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("Verifier %s unreachable: %s", self._url, type(e).__name__)
            raise UpstreamError("Verifier unreachable")
        except ValueError:
            raise UpstreamError("Verifier returned invalid JSON")
