from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from lighthouse.apps.api.errors import http_exception_handler, unhandled_exception_handler
from lighthouse.apps.api.routes.billing import router as billing_router
from lighthouse.apps.api.routes.health import router as health_router
from lighthouse.apps.api.routes.ops import router as ops_router
from lighthouse.core.config import get_settings
from lighthouse.core.logging import configure_logging
from lighthouse.services.runtime import build_monitoring_runtime, start_loops, stop_loops

API_VERSION = "v1"


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Single-process deployments run the scheduler and sweeper alongside request serving.
    runtime = None
    if get_settings().background_workers_enabled:
        runtime = build_monitoring_runtime()
        start_loops(runtime)
    app.state.monitoring_runtime = runtime
    try:
        yield
    finally:
        if runtime is not None:
            await stop_loops(runtime)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name, lifespan=_lifespan)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(ops_router, prefix=f"/{API_VERSION}")
    app.include_router(billing_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
