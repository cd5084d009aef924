from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import handle_http_exception, router
from logging_config import configure_logging
from services.monitor import build_default_engine


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    engine = build_default_engine()
    await engine.start()
    try:
        yield
    finally:
        await engine.stop()
        build_default_engine.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Silo Moisture Monitor",
        description="Moisture and temperature telemetry, alerting and logsheet history for two storage silos.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    return app

app = create_app()
