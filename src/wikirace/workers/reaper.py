"""Stale room reaper: periodic sweep of abandoned rooms.

A room is deleted when it has no players, or when nothing has touched it
for longer than the inactivity timeout. The delete re-checks the condition
under WATCH, so a room that receives a heartbeat or a join mid-sweep
survives. One unreadable room never stops the sweep.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import structlog

from wikirace.clock import now_ms
from wikirace.rooms.coordinator import ROOMS_NAMESPACE, room_path
from wikirace.store.documents import DocumentStore, Mutation, Snapshot

logger = structlog.get_logger()


@dataclass
class SweepStats:
    scanned: int = 0
    deleted_empty: int = 0
    deleted_stale: int = 0
    errors: int = 0

    @property
    def deleted(self) -> int:
        return self.deleted_empty + self.deleted_stale


def reap_reason(doc: dict[str, Any], now: int, timeout_ms: int) -> str | None:
    """``"empty"``, ``"stale"`` or None if the room should live."""
    if not doc.get("players"):
        return "empty"
    last_activity = doc.get("lastActivityAt") or doc.get("createdAt") or 0
    if now - int(last_activity) > timeout_ms:
        return "stale"
    return None


class StaleRoomReaper:
    def __init__(
        self,
        store: DocumentStore,
        inactivity_timeout_seconds: float = 300,
        interval_seconds: float = 15,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.timeout_ms = int(inactivity_timeout_seconds * 1000)
        self.interval_seconds = interval_seconds
        self.clock = clock

    async def reap_room(self, code: str) -> str | None:
        """Delete one room if it qualifies. Returns the reason it was deleted."""
        now = self.clock()

        def _reap(current: Snapshot) -> Mutation:
            if current is None:
                return Mutation()
            reason = reap_reason(current, now, self.timeout_ms)
            if reason is None:
                return Mutation()
            return Mutation(delete=True, result=reason)

        return await self.store.transact(room_path(code), _reap)

    async def sweep(self) -> SweepStats:
        """One pass over every room."""
        stats = SweepStats()
        codes = [code async for code in self.store.scan(ROOMS_NAMESPACE)]

        for code in codes:
            stats.scanned += 1
            try:
                reason = await self.reap_room(code)
            except Exception:
                stats.errors += 1
                logger.exception("room_reap_failed", room_code=code)
                continue

            if reason == "empty":
                stats.deleted_empty += 1
            elif reason == "stale":
                stats.deleted_stale += 1
            if reason:
                logger.info("room_reaped", room_code=code, reason=reason)

        if stats.deleted or stats.errors:
            logger.info(
                "reaper_sweep_done",
                scanned=stats.scanned,
                deleted_empty=stats.deleted_empty,
                deleted_stale=stats.deleted_stale,
                errors=stats.errors,
            )
        return stats

    async def run(self, stop: asyncio.Event) -> None:
        """Sweep every ``interval_seconds`` until ``stop`` is set."""
        logger.info(
            "reaper_started",
            interval_seconds=self.interval_seconds,
            timeout_seconds=self.timeout_ms // 1000,
        )
        while not stop.is_set():
            try:
                await self.sweep()
            except Exception:
                # Scan failed (e.g. store unreachable); try again next interval.
                logger.exception("reaper_sweep_failed")
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
        logger.info("reaper_stopped")
