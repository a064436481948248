from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from content_hub.api.v1 import get_api_router
from content_hub.core.config import get_settings
from content_hub.core.db import create_engine, create_session_factory
from content_hub.core.jobs import build_queue_client
from content_hub.core.logging import configure_logging, level_from_name


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level), fmt=settings.log_format)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue_client = build_queue_client(settings)
        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.queue_client = queue_client
        try:
            yield
        finally:
            queue_client.close()
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
