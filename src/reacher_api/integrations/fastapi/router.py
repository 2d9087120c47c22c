"""FastAPI API router: mounts the pipeline endpoints as ASGI routes.

Each route converts the Starlette request into an Exchange, runs the endpoint,
and turns whatever the pipeline left on the exchange into a Starlette response.

`/api/user` upserts the caller on any method; listing every user lives on
`GET /api/users` so the two operations do not share one route.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from reacher_api.context import ReacherContext
from reacher_api.endpoints import create_endpoints
from reacher_api.integrations.fastapi.proxy import get_client_ip
from reacher_api.pipeline import JSON_MEDIA_TYPE, Exchange, Handler
from reacher_api.pipeline import Request as ExchangeRequest

_USER_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def to_exchange(request: Request, *, trust_proxy: bool = False) -> Exchange:
    """Build an Exchange from a Starlette request (reads the whole body)."""
    return Exchange(
        ExchangeRequest(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            query=dict(request.query_params),
            body=await request.body(),
            client_host=get_client_ip(request, trust_proxy),
        )
    )


def to_response(exchange: Exchange) -> Response:
    """Render the exchange's response according to its media type."""
    response = exchange.response
    if response.media_type is None:
        return Response(status_code=response.status_code, headers=response.headers)
    if response.media_type == JSON_MEDIA_TYPE:
        return JSONResponse(
            content=response.body, status_code=response.status_code, headers=response.headers,
        )
    return Response(
        content=response.body,
        status_code=response.status_code,
        headers=response.headers,
        media_type=response.media_type,
    )


def create_api_router(ctx: ReacherContext) -> APIRouter:
    """Create the /api router bound to an application context."""
    endpoints = create_endpoints(ctx)
    trust_proxy = ctx.settings.trust_proxy
    router = APIRouter(prefix="/api", tags=["api"])

    async def serve(request: Request, endpoint: Handler) -> Response:
        exchange = await to_exchange(request, trust_proxy=trust_proxy)
        await endpoint(exchange)
        return to_response(exchange)

    @router.api_route("/user", methods=_USER_METHODS)
    async def user_endpoint(request: Request) -> Response:
        """Fetch or create the authenticated user."""
        return await serve(request, endpoints.user)

    @router.api_route("/users", methods=["GET", "OPTIONS"])
    async def users_endpoint(request: Request) -> Response:
        """List all users."""
        return await serve(request, endpoints.users)

    @router.get("/verify/demo")
    async def verify_demo_endpoint(request: Request) -> Response:
        """Verify one address (rate limited, no auth)."""
        return await serve(request, endpoints.verify_demo)

    @router.api_route("/verify/bulk", methods=["POST", "OPTIONS"])
    async def verify_bulk_endpoint(request: Request) -> Response:
        """Verify a named batch of addresses."""
        return await serve(request, endpoints.verify_bulk)

    return router
