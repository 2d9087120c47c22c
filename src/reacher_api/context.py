"""Application context: the process-wide state every request shares.

One instance per process, rebuilt on cold start. Handlers receive it
explicitly; nothing here is a module-level global.
"""

from contextlib import AbstractAsyncContextManager

import httpx
from sqlmodel.ext.asyncio.session import AsyncSession

from reacher_api.checker import EmailVerifierClient
from reacher_api.config import Settings
from reacher_api.db import create_engine, create_session_factory, create_tables, get_session
from reacher_api.jwks import SigningKeyCache
from reacher_api.ratelimit import InMemoryStore
from reacher_api.verifier import JWTVerifier


class ReacherContext:
    """Holds settings, the database engine, the signing key cache and upstream clients.

    Args:
        settings: Validated application settings.
        jwks_transport: httpx transport for the JWKS endpoint (tests).
        verifier_transport: httpx transport for the email verifier (tests).
    """

    def __init__(
        self,
        settings: Settings,
        *,
        jwks_transport: httpx.AsyncBaseTransport | None = None,
        verifier_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._engine = create_engine(settings.database_url)
        self._session_factory = create_session_factory(self._engine)
        self.rate_limit_store = InMemoryStore()
        self.key_cache = SigningKeyCache(
            settings.jwks_url,
            requests_per_minute=settings.jwks_requests_per_minute,
            max_queue_wait=settings.jwks_max_queue_wait,
            http_timeout=settings.http_timeout,
            _transport=jwks_transport,
        )
        self.jwt_verifier = JWTVerifier(
            self.key_cache,
            issuer=settings.issuer,
            audience=settings.auth0_audience,
        )
        self.email_verifier = EmailVerifierClient(
            settings.verifier_endpoint,
            http_timeout=settings.http_timeout,
            _transport=verifier_transport,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def get_session(self) -> AbstractAsyncContextManager[AsyncSession]:
        """Context manager yielding a session that commits on exit."""
        return get_session(self._session_factory)

    async def create_tables(self) -> None:
        await create_tables(self._engine)

    async def dispose(self) -> None:
        """Dispose of the engine connection pool."""
        await self._engine.dispose()
