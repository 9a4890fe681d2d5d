"""Player-side driver of the room protocol.

A RaceSession follows one player in one room: it keeps the latest room
snapshot from the watch stream, pre-checks ownership before starting,
debounces click reports, keeps the room alive while playing, and reports
the finish.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import suppress

import structlog

from wikirace.clock import now_ms
from wikirace.config import get_settings
from wikirace.errors import GameNotStarted, NotRoomOwner, RaceError, RoomNotFound
from wikirace.rooms.coordinator import RoomCoordinator, WinOutcome
from wikirace.rooms.models import Room
from wikirace.rooms.progress import ProgressDebouncer

logger = structlog.get_logger()


class RaceSession:
    def __init__(
        self,
        coordinator: RoomCoordinator,
        room_code: str,
        player_id: str,
        nick: str,
        progress_delay: float | None = None,
        heartbeat_interval: float | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.coordinator = coordinator
        self.room_code = room_code
        self.player_id = player_id
        self.nick = nick
        settings = get_settings()
        if progress_delay is None:
            progress_delay = settings.progress_debounce_seconds
        self.heartbeat_interval = (
            settings.heartbeat_interval_seconds if heartbeat_interval is None else heartbeat_interval
        )
        self.clock = clock
        self.clicks = 0
        self.latest: Room | None = None
        self.closed = False
        self._progress = ProgressDebouncer(self._send_progress, progress_delay)

    async def _send_progress(self, clicks: int) -> None:
        await self.coordinator.report_progress(self.room_code, self.player_id, clicks)

    # ── Observation ──

    async def refresh(self) -> Room:
        """Point read of the room; marks the session closed if it is gone."""
        try:
            self.latest = await self.coordinator.get_room(self.room_code)
        except RoomNotFound:
            self.latest = None
            self.closed = True
            raise
        return self.latest

    async def snapshots(self, poll_timeout: float = 1.0) -> AsyncIterator[Room | None]:
        """Every room snapshot until the room closes (final ``None``)."""
        async for room in self.coordinator.watch_room(self.room_code, poll_timeout):
            self.latest = room
            if room is None:
                self.closed = True
                logger.info("session_room_closed", room_code=self.room_code, player_id=self.player_id)
            yield room

    @property
    def is_owner(self) -> bool:
        return self.latest is not None and self.latest.owner_id == self.player_id

    # ── Actions ──

    async def start(self) -> None:
        """Start the game if this player owns the room (per the latest snapshot)."""
        if self.latest is None:
            await self.refresh()
        if not self.is_owner:
            raise NotRoomOwner(f"Player {self.player_id} does not own room {self.room_code}")
        await self.coordinator.start_game(self.room_code)

    def click(self) -> int:
        """Count one navigation step; the report goes out after a quiet period."""
        self.clicks += 1
        self._progress.record(self.clicks)
        return self.clicks

    async def finish(self) -> WinOutcome:
        """Report reaching the target, timed from the room's start."""
        room = self.latest
        if room is None or room.started_at is None:
            room = await self.refresh()
        if room.started_at is None:
            raise GameNotStarted(f"Room {self.room_code} has not started")
        await self._progress.flush()
        elapsed = self.clock() - room.started_at
        return await self.coordinator.report_win(
            self.room_code, self.player_id, self.nick, elapsed, self.clicks,
        )

    async def leave(self) -> None:
        await self._progress.aclose()
        await self.coordinator.leave_room(self.room_code, self.player_id)
        self.closed = True

    async def heartbeat_loop(self, stop: asyncio.Event) -> None:
        """Bump the room's activity stamp until stopped or the room closes."""
        while not stop.is_set() and not self.closed:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.heartbeat_interval)
            if stop.is_set():
                break
            try:
                await self.coordinator.heartbeat(self.room_code)
            except RoomNotFound:
                self.closed = True
            except RaceError as exc:
                logger.warning("heartbeat_failed", room_code=self.room_code, error=exc.code)
