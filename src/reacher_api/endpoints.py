"""API endpoints: each handler wrapped in its middleware pipeline.

| endpoint      | pipeline                        |
|---------------|---------------------------------|
| user          | cors, check_jwt                 |
| users         | cors, check_jwt                 |
| verify_demo   | rate_limit                      |
| verify_bulk   | rate_limit, cors, check_jwt     |

The demo and bulk endpoints share one rate limit stage, so their requests
count against the same per-client window.
"""

from dataclasses import dataclass

from reacher_api import handlers
from reacher_api.context import ReacherContext
from reacher_api.middleware import check_jwt, cors, rate_limit
from reacher_api.pipeline import Exchange, Handler, chain
from reacher_api.schemas import BulkVerifyResponse, ListUsersResponse, UserResponse


@dataclass(frozen=True, slots=True)
class Endpoints:
    """Pipeline-wrapped endpoints. Each takes an Exchange and leaves a response on it."""

    user: Handler
    users: Handler
    verify_demo: Handler
    verify_bulk: Handler


def create_endpoints(ctx: ReacherContext) -> Endpoints:
    """Build the endpoints bound to an application context."""
    limiter = rate_limit(ctx.settings.rate_limit, store=ctx.rate_limit_store)
    allow_cors = cors()
    require_jwt = check_jwt(ctx.jwt_verifier)

    @chain(allow_cors, require_jwt)
    async def user(exchange: Exchange) -> UserResponse:
        """Fetch or create the caller's user record."""
        async with ctx.get_session() as session:
            record = await handlers.upsert_user(session, exchange.claims.sub)
        return handlers.user_response(record)

    @chain(allow_cors, require_jwt)
    async def users(exchange: Exchange) -> ListUsersResponse:
        """List every user."""
        async with ctx.get_session() as session:
            records = await handlers.list_users(session)
        return ListUsersResponse(users=[handlers.user_response(r) for r in records])

    @chain(limiter)
    async def verify_demo(exchange: Exchange):
        """Verify one address from the ``toEmail`` query param."""
        query = exchange.request.query
        return await handlers.verify_demo(
            ctx.email_verifier, query.get("toEmail"), query.get("fromEmail"),
        )

    @chain(limiter, allow_cors, require_jwt)
    async def verify_bulk(exchange: Exchange) -> BulkVerifyResponse:
        """Verify a named batch of addresses from the JSON body."""
        body = exchange.request.json()
        if not isinstance(body, dict):
            body = {}
        return await handlers.verify_bulk(ctx.email_verifier, body.get("name"), body.get("emails"))

    return Endpoints(user=user, users=users, verify_demo=verify_demo, verify_bulk=verify_bulk)
