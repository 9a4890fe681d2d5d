"""Client-side coalescing of click-count reports.

Every navigation step bumps a local counter; the store only sees the latest
value once the player has been idle for ``delay`` seconds (trailing
debounce), which bounds write volume during bursts of clicking.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from wikirace.errors import RaceError

logger = structlog.get_logger()


class ProgressDebouncer:
    """Trailing debounce in front of ``RoomCoordinator.report_progress``."""

    def __init__(self, send: Callable[[int], Awaitable[object]], delay: float = 1.5) -> None:
        self._send = send
        self.delay = delay
        self._pending: int | None = None
        self._sent = 0
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int | None:
        return self._pending

    @property
    def last_sent(self) -> int:
        return self._sent

    def record(self, clicks: int) -> None:
        """Note the latest click count and restart the quiet-period timer."""
        self._pending = clicks if self._pending is None else max(self._pending, clicks)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.create_task(self._fire_later())

    async def _fire_later(self) -> None:
        await asyncio.sleep(self.delay)
        self._timer = None
        task = asyncio.create_task(self._emit())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _emit(self) -> None:
        clicks = self._pending
        if clicks is None or clicks <= self._sent:
            return
        self._pending = None
        try:
            await self._send(clicks)
        except RaceError as exc:
            # Next report carries the latest count, so a lost one is harmless.
            self._pending = clicks if self._pending is None else max(self._pending, clicks)
            logger.warning("progress_report_failed", clicks=clicks, error=exc.code)
            return
        self._sent = max(self._sent, clicks)

    async def flush(self) -> None:
        """Send any pending count now and wait for in-flight reports."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight)
        await self._emit()

    async def aclose(self) -> None:
        """Drop the pending count without sending it."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight)
