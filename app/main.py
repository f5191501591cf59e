from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.collector import build_default_collector


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    collector = build_default_collector()
    await collector.start()
    try:
        yield
    finally:
        await collector.shutdown()
        build_default_collector.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Sensor Readings Collector",
        description=(
            "Polls environmental sensor providers, stores canonical readings "
            "and exports them to the archive on a fixed schedule."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
