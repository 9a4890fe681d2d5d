"""Pydantic models for the global ranking table."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GameResult(BaseModel):
    """One finished race as reported to the aggregator."""

    nick: str
    time_ms: int = Field(ge=0)
    clicks: int = Field(ge=0)
    is_win: bool
    theme: str = ""
    reported_at: int = 0


class RankingEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    nick: str
    best_time_ms: int
    best_time_str: str
    fewest_clicks: int
    best_game_theme: str = ""
    total_wins: int = 0
    total_games: int = 0
    last_update: int = 0


class RankingResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rank: int
    entry: RankingEntry


class RankingsResponse(BaseModel):
    entries: list[RankingResponse]
    total: int
