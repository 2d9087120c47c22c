"""Pipeline stages: rate limiting, CORS and bearer token checks.

Each function here is a factory: it takes configuration and returns a stage
bound to it.
"""

from collections.abc import Callable, Sequence

from reacher_api.errors import RateExceeded
from reacher_api.pipeline import Exchange, Next, Stage
from reacher_api.ratelimit import InMemoryStore, RateLimit, RateLimitStore, parse_rate_limit
from reacher_api.verifier import JWTVerifier

DEFAULT_RATE_LIMIT = RateLimit(max_requests=100, window_seconds=15 * 60)

DEFAULT_ALLOW_METHODS = ("GET", "HEAD", "PUT", "PATCH", "POST", "DELETE")


def client_key(exchange: Exchange) -> str:
    """Rate limit key for the requesting client address."""
    return f"ip:{exchange.request.client_host or 'unknown'}"


def rate_limit(
    limit: RateLimit | str = DEFAULT_RATE_LIMIT,
    *,
    store: RateLimitStore | None = None,
    key_func: Callable[[Exchange], str] = client_key,
) -> Stage:
    """Create a stage allowing at most ``limit.max_requests`` per window per client.

    Stages created with the same store share their counters.
    """
    if isinstance(limit, str):
        limit = parse_rate_limit(limit)
    store = store or InMemoryStore()

    async def rate_limit_stage(exchange: Exchange, call_next: Next) -> None:
        allowed, remaining, retry_after = store.hit(key_func(exchange), limit)
        exchange.response.headers["X-RateLimit-Limit"] = str(limit.max_requests)
        exchange.response.headers["X-RateLimit-Remaining"] = str(remaining)
        if not allowed:
            await call_next(RateExceeded(retry_after=retry_after))
            return
        await call_next()

    return rate_limit_stage


def cors(
    *,
    allow_origin: str = "*",
    allow_methods: Sequence[str] = DEFAULT_ALLOW_METHODS,
    allow_headers: Sequence[str] | None = None,
    max_age: int | None = None,
) -> Stage:
    """Create a CORS stage.

    Adds ``Access-Control-Allow-Origin`` to every response. Preflight
    (``OPTIONS``) requests are answered with 204 and go no further. Without
    ``allow_headers`` the preflight's requested headers are reflected.
    """
    methods = ",".join(m.upper() for m in allow_methods)

    async def cors_stage(exchange: Exchange, call_next: Next) -> None:
        exchange.response.headers["Access-Control-Allow-Origin"] = allow_origin
        if allow_origin != "*":
            exchange.response.headers["Vary"] = "Origin"

        if exchange.request.method != "OPTIONS":
            await call_next()
            return

        headers = {"Access-Control-Allow-Methods": methods}
        if allow_headers is not None:
            headers["Access-Control-Allow-Headers"] = ",".join(allow_headers)
        else:
            requested = exchange.request.header("Access-Control-Request-Headers")
            if requested:
                headers["Access-Control-Allow-Headers"] = requested
        if max_age is not None:
            headers["Access-Control-Max-Age"] = str(max_age)
        exchange.send(204, headers=headers)

    return cors_stage


def check_jwt(verifier: JWTVerifier) -> Stage:
    """Create a stage that requires a valid bearer token.

    On success the token's claims are stored on ``exchange.claims``.
    """

    async def check_jwt_stage(exchange: Exchange, call_next: Next) -> None:
        exchange.claims = await verifier.validate(exchange.request.header("Authorization"))
        await call_next()

    return check_jwt_stage
