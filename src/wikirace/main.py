"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from wikirace.config import get_settings
from wikirace.dependencies import get_store
from wikirace.health.router import router as health_router
from wikirace.middleware import setup_middleware
from wikirace.rankings.router import router as rankings_router
from wikirace.redis_client import close_redis, init_redis
from wikirace.rooms.router import router as rooms_router
from wikirace.workers.reaper import StaleRoomReaper
from wikirace.ws.router import router as ws_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_redis(settings.redis_url)

    # In-process reaper; deployments may run the standalone runner instead
    stop = asyncio.Event()
    reaper_task: asyncio.Task[None] | None = None
    if settings.reaper_enabled:
        reaper = StaleRoomReaper(
            get_store(),
            inactivity_timeout_seconds=settings.room_inactivity_timeout_seconds,
            interval_seconds=settings.reaper_interval_seconds,
        )
        reaper_task = asyncio.create_task(reaper.run(stop))

    yield

    stop.set()
    if reaper_task is not None:
        try:
            await asyncio.wait_for(reaper_task, timeout=5)
        except asyncio.TimeoutError:
            reaper_task.cancel()
            logger.warning("reaper_shutdown_timeout")

    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="WikiRace API",
        description="Room coordination and rankings for the WikiRace multiplayer game",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(rooms_router)
    app.include_router(rankings_router)
    app.include_router(ws_router)

    return app


app = create_app()
