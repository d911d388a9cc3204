from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from metricatlas import __version__
from metricatlas.api.routes import health, metrics, runs, sources
from metricatlas.config import Settings, get_settings
from metricatlas.logging import configure_logging
from metricatlas.store import MetricStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    store = MetricStore(settings.database_url, echo=settings.debug)
    await store.initialize()
    app.state.store = store
    try:
        yield
    finally:
        await store.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="MetricAtlas API",
        version=__version__,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.cors_origins],
            allow_methods=["GET"],
            allow_headers=["*"],
        )

    app.include_router(metrics.router, prefix=settings.api_prefix, tags=["metrics"])
    app.include_router(sources.router, prefix=settings.api_prefix, tags=["sources"])
    app.include_router(runs.router, prefix=settings.api_prefix, tags=["runs"])
    app.include_router(health.router, tags=["health"])
    return app
