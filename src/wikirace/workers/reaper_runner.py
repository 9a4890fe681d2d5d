"""Standalone runner for the stale room reaper.

Runs independently of any client or API process.

Usage: python -m wikirace.workers.reaper_runner
"""

from __future__ import annotations

import asyncio
import signal

import redis.asyncio as aioredis
import structlog

from wikirace.config import get_settings
from wikirace.middleware.logging import setup_logging
from wikirace.store.documents import DocumentStore
from wikirace.workers.reaper import StaleRoomReaper

logger = structlog.get_logger()


async def main() -> None:
    """Run the reaper until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings, component="reaper")

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=5,
    )
    reaper = StaleRoomReaper(
        DocumentStore(redis_client, max_retries=settings.store_max_retries),
        inactivity_timeout_seconds=settings.room_inactivity_timeout_seconds,
        interval_seconds=settings.reaper_interval_seconds,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await reaper.run(stop)
    finally:
        await redis_client.aclose()
        logger.info("reaper_runner_stopped")


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
