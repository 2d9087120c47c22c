"""ASGI application factory.

Run:  uvicorn --factory reacher_api.app:create_app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from reacher_api.config import Settings
from reacher_api.context import ReacherContext
from reacher_api.integrations.fastapi import create_api_router


def create_app(settings: Settings | None = None, *, context: ReacherContext | None = None) -> FastAPI:
    """Create the FastAPI app.

    Settings are read from the environment when neither ``settings`` nor
    ``context`` is given, so missing configuration fails here, at startup.

    Raises:
        ConfigError: If required environment variables are missing.
    """
    if context is None:
        context = ReacherContext(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.create_tables()
        yield
        await context.dispose()

    app = FastAPI(title="Reacher API", lifespan=lifespan)
    app.state.context = context
    app.include_router(create_api_router(context))

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
