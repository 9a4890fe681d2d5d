"""Room and player documents.

Attributes are snake_case in Python and camelCase in the stored document
(``Room.model_dump(by_alias=True)``), matching what watchers receive.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Phase = Literal["waiting", "playing", "finished"]
Visibility = Literal["public", "private"]
WinCriterion = Literal["time", "clicks"]


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class RoomConfig(_Document):
    """Creation-time settings; immutable once the room exists."""

    name: str = Field(min_length=1, max_length=40)
    visibility: Visibility = "public"
    max_players: int = Field(default=4, ge=2, le=10)
    win_criterion: WinCriterion = "time"
    stop_on_first_win: bool = True
    per_player_themes: bool = False


class Player(_Document):
    id: str
    nick: str
    is_owner: bool = False
    joined_at: int
    clicks: int = 0
    finished_at: int | None = None
    time_ms: int | None = None
    time_str: str | None = None
    target_title: str | None = None
    target_slug: str | None = None
    ranked_at: int | None = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None


class Winner(_Document):
    player_id: str
    nick: str
    time_ms: int
    time_str: str
    clicks: int
    timestamp: int


class Room(RoomConfig):
    code: str
    owner_id: str
    phase: Phase = "waiting"
    start_page: str
    target_title: str
    target_slug: str
    created_at: int
    last_activity_at: int
    started_at: int | None = None
    winner: Winner | None = None
    players: dict[str, Player] = Field(default_factory=dict)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    def owners(self) -> list[Player]:
        return [p for p in self.players.values() if p.is_owner]

    def target_for(self, player_id: str) -> tuple[str, str]:
        """(title, slug) the given player races to."""
        player = self.players.get(player_id)
        if player and player.target_title and player.target_slug:
            return player.target_title, player.target_slug
        return self.target_title, self.target_slug
