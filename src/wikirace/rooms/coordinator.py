"""Room coordinator: membership, ownership, phase changes and win arbitration.

There is no room server. Every operation is one optimistic transaction on
the room document (see ``DocumentStore.transact``) that writes only the
fields it owns, so the invariants hold whichever client applies it:

- a room with no players is deleted in the same commit that empties it;
- ownership moves to the earliest-joined remaining player in the same
  commit as the owner's departure;
- ``winner`` is written only by a commit that read it unset, and the WATCH
  on the room key rejects a second claim made from a stale read.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from wikirace.clock import format_time, now_ms
from wikirace.content.catalog import ContentCatalog
from wikirace.errors import (
    GameAlreadyStarted,
    GameNotStarted,
    ImplausibleResult,
    PlayerNotFound,
    RoomFull,
    RoomNotFound,
)
from wikirace.rankings.service import RankingAggregator
from wikirace.rooms.models import Player, Room, RoomConfig, Winner
from wikirace.rooms.rules import (
    InvalidPhaseTransition,
    elect_successor,
    generate_room_code,
    new_player_id,
    validate_transition,
)
from wikirace.store.documents import DocumentNotFound, DocumentStore, Mutation, Snapshot

logger = structlog.get_logger()

ROOMS_NAMESPACE = "rooms"
MAX_CODE_ATTEMPTS = 10


def room_path(code: str) -> str:
    return f"{ROOMS_NAMESPACE}/{code}"


@dataclass(frozen=True)
class WinOutcome:
    """What a win report achieved."""

    is_winner: bool
    winner: Winner
    phase: str


@dataclass(frozen=True)
class _WinCommit:
    is_winner: bool
    winner: Winner
    phase: str
    theme: str
    time_ms: int
    clicks: int
    replay: bool = False
    ranked: bool = False


def _require_room(code: str, current: Snapshot) -> dict[str, Any]:
    if current is None:
        raise RoomNotFound(f"Room {code} does not exist")
    return current


def _require_player(code: str, room: dict[str, Any], player_id: str) -> dict[str, Any]:
    player = (room.get("players") or {}).get(player_id)
    if player is None:
        raise PlayerNotFound(f"Player {player_id} is not in room {code}")
    return player


class RoomCoordinator:
    """The room protocol every client applies against the shared store."""

    def __init__(
        self,
        store: DocumentStore,
        catalog: ContentCatalog,
        rankings: RankingAggregator,
        min_plausible_time_ms: int = 1000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.rankings = rankings
        self.min_plausible_time_ms = min_plausible_time_ms
        self.clock = clock

    # ── Reads ──

    async def get_room(self, room_code: str) -> Room:
        doc = await self.store.get(room_path(room_code))
        return Room.model_validate(_require_room(room_code, doc))

    async def list_public_rooms(self) -> list[Room]:
        """Public rooms still waiting for players and not full."""
        rooms: list[Room] = []
        async for code in self.store.scan(ROOMS_NAMESPACE):
            try:
                doc = await self.store.get(room_path(code))
                if doc is None:
                    continue
                room = Room.model_validate(doc)
            except ValueError:
                logger.warning("room_unreadable", room_code=code)
                continue
            if (
                room.visibility == "public"
                and room.phase == "waiting"
                and 0 < len(room.players) < room.max_players
            ):
                rooms.append(room)
        return sorted(rooms, key=lambda r: r.created_at, reverse=True)

    async def watch_room(self, room_code: str, poll_timeout: float = 1.0) -> AsyncIterator[Room | None]:
        """Full room snapshots; ``None`` once the room is gone (terminal)."""
        async for doc in self.store.watch(room_path(room_code), poll_timeout):
            yield Room.model_validate(doc) if doc is not None else None

    # ── Membership ──

    async def create_room(self, config: RoomConfig, creator_nick: str) -> tuple[str, str]:
        """Create a room owned by its creator. Returns (room_code, player_id)."""
        start_page = await self.catalog.random_start_page()
        theme = await self.catalog.random_theme()
        now = self.clock()
        player_id = new_player_id()

        creator = Player(
            id=player_id,
            nick=creator_nick,
            is_owner=True,
            joined_at=now,
            target_title=theme.title,
            target_slug=theme.slug,
        )

        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_room_code()
            room = Room(
                **config.model_dump(),
                code=code,
                owner_id=player_id,
                phase="waiting",
                start_page=start_page,
                target_title=theme.title,
                target_slug=theme.slug,
                created_at=now,
                last_activity_at=now,
                players={player_id: creator},
            )
            if await self.store.create(room_path(code), room.to_document()):
                logger.info(
                    "room_created",
                    room_code=code,
                    player_id=player_id,
                    visibility=config.visibility,
                    max_players=config.max_players,
                )
                return code, player_id
            logger.debug("room_code_collision", room_code=code)

        raise RuntimeError(f"Failed to allocate a unique room code after {MAX_CODE_ATTEMPTS} attempts")

    async def join_room(self, room_code: str, nick: str) -> str:
        """Add a player. Writes only the new player's subtree and the activity stamp."""
        room = await self.get_room(room_code)
        self._check_joinable(room.model_dump(by_alias=True), room_code)

        if room.per_player_themes:
            theme = await self.catalog.random_theme()
            target_title, target_slug = theme.title, theme.slug
        else:
            target_title, target_slug = room.target_title, room.target_slug

        player_id = new_player_id()

        def _join(current: Snapshot) -> Mutation:
            doc = _require_room(room_code, current)
            self._check_joinable(doc, room_code)
            now = self.clock()
            player = Player(
                id=player_id,
                nick=nick,
                joined_at=now,
                target_title=target_title,
                target_slug=target_slug,
            )
            return Mutation(update={
                f"players/{player_id}": player.to_document(),
                "lastActivityAt": now,
            })

        await self.store.transact(room_path(room_code), _join)
        logger.info("room_joined", room_code=room_code, player_id=player_id)
        return player_id

    @staticmethod
    def _check_joinable(doc: dict[str, Any], room_code: str) -> None:
        if doc.get("phase", "waiting") != "waiting":
            raise GameAlreadyStarted(f"Room {room_code} is no longer accepting players")
        if len(doc.get("players") or {}) >= int(doc.get("maxPlayers", 0)):
            raise RoomFull(f"Room {room_code} is full")

    async def leave_room(self, room_code: str, player_id: str) -> None:
        """Remove a player; delete the room if empty, hand off ownership if needed."""

        def _leave(current: Snapshot) -> Mutation:
            if current is None:
                return Mutation(result=("room_missing", None))
            players = current.get("players") or {}
            if player_id not in players:
                return Mutation(result=("player_missing", None))
            if len(players) == 1:
                return Mutation(delete=True, result=("room_deleted", None))

            updates: dict[str, Any] = {
                f"players/{player_id}": None,
                "lastActivityAt": self.clock(),
            }
            owner_id = current.get("ownerId")
            if owner_id != player_id and owner_id in players:
                return Mutation(update=updates, result=("left", None))

            successor = elect_successor(players, player_id)
            updates["ownerId"] = successor
            updates[f"players/{successor}/isOwner"] = True
            return Mutation(update=updates, result=("owner_handoff", successor))

        outcome, successor = await self.store.transact(room_path(room_code), _leave)
        if successor is not None:
            logger.info(
                "room_owner_changed",
                room_code=room_code,
                previous_owner=player_id,
                new_owner=successor,
            )
        else:
            logger.info("room_leave", room_code=room_code, player_id=player_id, outcome=outcome)

    # ── Game flow ──

    async def start_game(self, room_code: str) -> None:
        """waiting -> playing. Owner authorization is the caller's pre-check."""

        def _start(current: Snapshot) -> Mutation:
            doc = _require_room(room_code, current)
            try:
                validate_transition(doc.get("phase", "waiting"), "playing")
            except InvalidPhaseTransition as exc:
                raise GameAlreadyStarted(f"Room {room_code} has already started") from exc
            if not doc.get("players"):
                raise RoomNotFound(f"Room {room_code} has no players")
            now = self.clock()
            return Mutation(update={
                "phase": "playing",
                "startedAt": now,
                "lastActivityAt": now,
            })

        await self.store.transact(room_path(room_code), _start)
        logger.info("game_started", room_code=room_code)

    async def report_progress(self, room_code: str, player_id: str, clicks: int) -> int:
        """Raise the player's click counter; never lowers it. Returns the stored value."""

        def _progress(current: Snapshot) -> Mutation:
            doc = _require_room(room_code, current)
            player = _require_player(room_code, doc, player_id)
            stored = int(player.get("clicks", 0))
            if clicks <= stored:
                return Mutation(result=stored)
            return Mutation(
                update={
                    f"players/{player_id}/clicks": clicks,
                    "lastActivityAt": self.clock(),
                },
                result=clicks,
            )

        return await self.store.transact(room_path(room_code), _progress)

    async def heartbeat(self, room_code: str) -> None:
        """Keep the room alive for the reaper."""
        try:
            await self.store.update(room_path(room_code), {"lastActivityAt": self.clock()})
        except DocumentNotFound as exc:
            raise RoomNotFound(f"Room {room_code} does not exist") from exc

    async def report_win(
        self,
        room_code: str,
        player_id: str,
        nick: str,
        time_ms: int,
        clicks: int,
        stop_on_first_win: bool | None = None,
    ) -> WinOutcome:
        """Record a finish and arbitrate the room-level winner.

        The player's first report writes their own result. The first commit
        that finds ``winner`` unset also claims it and, with stop-on-first-win,
        finishes the room. The result then feeds the global ranking as a win
        only for the claimer, once: ``rankedAt`` marks it merged. A repeated
        report keeps the stored result and only retries a missing ranking.
        """
        if time_ms < self.min_plausible_time_ms:
            raise ImplausibleResult(
                f"Time {time_ms} ms is below the {self.min_plausible_time_ms} ms floor"
            )

        def _win(current: Snapshot) -> Mutation:
            doc = _require_room(room_code, current)
            player = _require_player(room_code, doc, player_id)
            phase = doc.get("phase", "waiting")
            if phase == "waiting":
                raise GameNotStarted(f"Room {room_code} has not started")

            theme = player.get("targetTitle") or doc.get("targetTitle", "")
            existing = doc.get("winner")

            if player.get("finishedAt") is not None and existing:
                # Repeated report: the first stored result stands.
                winner = Winner.model_validate(existing)
                return Mutation(result=_WinCommit(
                    is_winner=winner.player_id == player_id,
                    winner=winner,
                    phase=phase,
                    theme=theme,
                    time_ms=int(player.get("timeMs", time_ms)),
                    clicks=int(player.get("clicks", clicks)),
                    replay=True,
                    ranked=player.get("rankedAt") is not None,
                ))

            now = self.clock()
            final_clicks = max(clicks, int(player.get("clicks", 0)))
            updates: dict[str, Any] = {
                f"players/{player_id}/finishedAt": now,
                f"players/{player_id}/timeMs": time_ms,
                f"players/{player_id}/timeStr": format_time(time_ms),
                f"players/{player_id}/clicks": final_clicks,
                "lastActivityAt": now,
            }

            if existing:
                winner = Winner.model_validate(existing)
                return Mutation(
                    update=updates,
                    result=_WinCommit(False, winner, phase, theme, time_ms, final_clicks),
                )

            winner = Winner(
                player_id=player_id,
                nick=nick,
                time_ms=time_ms,
                time_str=format_time(time_ms),
                clicks=final_clicks,
                timestamp=now,
            )
            updates["winner"] = winner.to_document()
            stop = doc.get("stopOnFirstWin", True) if stop_on_first_win is None else stop_on_first_win
            if stop and phase == "playing":
                validate_transition(phase, "finished")
                updates["phase"] = phase = "finished"
            return Mutation(
                update=updates,
                result=_WinCommit(True, winner, phase, theme, time_ms, final_clicks),
            )

        commit: _WinCommit = await self.store.transact(room_path(room_code), _win)
        logger.info(
            "win_reported",
            room_code=room_code,
            player_id=player_id,
            time_ms=commit.time_ms,
            clicks=commit.clicks,
            is_winner=commit.is_winner,
            phase=commit.phase,
            replay=commit.replay,
        )

        if not commit.ranked:
            await self.rankings.record_result(
                nick, commit.time_ms, commit.clicks, commit.is_winner, commit.theme,
            )
            await self._mark_ranked(room_code, player_id)
        return WinOutcome(is_winner=commit.is_winner, winner=commit.winner, phase=commit.phase)

    async def _mark_ranked(self, room_code: str, player_id: str) -> None:
        """Stamp the player's result as merged into the rankings."""

        def _mark(current: Snapshot) -> Mutation:
            if current is None or player_id not in (current.get("players") or {}):
                return Mutation()
            return Mutation(update={f"players/{player_id}/rankedAt": self.clock()})

        await self.store.transact(room_path(room_code), _mark)
