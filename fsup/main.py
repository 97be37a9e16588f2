from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from fsup.api.v1 import get_api_router
from fsup.core.config import get_settings
from fsup.core.db import create_engine, create_schema, create_session_factory
from fsup.core.jobs import DetachedTaskRunner
from fsup.core.logging import configure_logging, get_logger
from fsup.core.storage import get_storage

logger = get_logger(component="app")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=settings.log_level)
    storage = get_storage(settings)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.database_auto_create:
            await create_schema(engine)
        runner = DetachedTaskRunner()
        app.state.settings = settings
        app.state.storage = storage
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.runner = runner
        logger.info("app_started", environment=settings.environment, storage_root=str(settings.storage_root))
        try:
            yield
        finally:
            await runner.shutdown(grace_s=settings.thumbnail_timeout_s)
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
