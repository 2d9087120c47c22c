"""FastAPI integration for the Reacher API."""

from reacher_api.integrations.fastapi.router import create_api_router, to_exchange, to_response

__all__ = [
    "create_api_router",
    "to_exchange",
    "to_response",
]
