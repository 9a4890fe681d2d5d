"""Global ranking aggregator.

One hash per sanitized nickname under ``rankings:<nick>``, merged with a
monotone rule so results can arrive in any order: best time and fewest
clicks only decrease, win and game counters only increase.

Ordering lives in the sorted set ``leaderboard:rankings``; its score packs
wins (descending) and best time (ascending) into one float so a single
ZREVRANGE returns the table in display order.
"""

from __future__ import annotations

import re

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from wikirace.clock import format_time, now_ms
from wikirace.errors import StoreUnavailable
from wikirace.rankings.schemas import GameResult, RankingEntry

logger = structlog.get_logger()

RANKING_PREFIX = "rankings:"
INDEX_KEY = "leaderboard:rankings"
TIME_SCALE = 10**10  # bestTimeMs must stay below this to keep wins dominant

_UNSAFE_CHARS = re.compile(r"[^\w \-]")
MAX_NICK_KEY_LENGTH = 64
ANONYMOUS_KEY = "anonymous"


def sanitize_nick(nick: str) -> str:
    """Storage-safe ranking key: unsafe characters become ``_``."""
    safe = _UNSAFE_CHARS.sub("_", nick or "").strip()[:MAX_NICK_KEY_LENGTH].strip()
    return safe or ANONYMOUS_KEY


def merge_result(existing: RankingEntry | None, result: GameResult) -> RankingEntry:
    """Lattice join of a stored entry and a new result."""
    if existing is None:
        return RankingEntry(
            nick=result.nick,
            best_time_ms=result.time_ms,
            best_time_str=format_time(result.time_ms),
            fewest_clicks=result.clicks,
            best_game_theme=result.theme,
            total_wins=1 if result.is_win else 0,
            total_games=1,
            last_update=result.reported_at,
        )

    improved = result.time_ms < existing.best_time_ms
    return RankingEntry(
        nick=existing.nick or result.nick,
        best_time_ms=min(existing.best_time_ms, result.time_ms),
        best_time_str=format_time(result.time_ms) if improved else existing.best_time_str,
        fewest_clicks=min(existing.fewest_clicks, result.clicks),
        best_game_theme=result.theme if improved else existing.best_game_theme,
        total_wins=existing.total_wins + (1 if result.is_win else 0),
        total_games=existing.total_games + 1,
        last_update=max(existing.last_update, result.reported_at),
    )


def ranking_score(entry: RankingEntry) -> float:
    """Sort score: more wins first, then faster best time."""
    return float(entry.total_wins * TIME_SCALE - min(entry.best_time_ms, TIME_SCALE - 1))


def sort_rankings(entries: list[RankingEntry]) -> list[RankingEntry]:
    """Wins descending, best time ascending. Stable for remaining ties."""
    return sorted(entries, key=lambda e: (-e.total_wins, e.best_time_ms))


def _to_hash(entry: RankingEntry) -> dict[str, str]:
    return {k: str(v) for k, v in entry.model_dump(by_alias=True).items()}


def _from_hash(raw: dict[str, str]) -> RankingEntry:
    return RankingEntry.model_validate(raw)


class RankingAggregator:
    """RecordResult / FetchTopRankings over Redis."""

    def __init__(self, redis: aioredis.Redis, max_retries: int = 25) -> None:
        self.redis = redis
        self.max_retries = max_retries

    async def record_result(
        self,
        nick: str,
        time_ms: int,
        clicks: int,
        is_win: bool,
        theme: str = "",
    ) -> RankingEntry:
        """Merge one finished race into the nickname's entry."""
        safe = sanitize_nick(nick)
        key = f"{RANKING_PREFIX}{safe}"
        result = GameResult(
            nick=nick, time_ms=time_ms, clicks=clicks, is_win=is_win,
            theme=theme, reported_at=now_ms(),
        )

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for _attempt in range(self.max_retries):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.hgetall(key)
                        merged = merge_result(_from_hash(raw) if raw else None, result)

                        pipe.multi()
                        pipe.hset(key, mapping=_to_hash(merged))
                        pipe.zadd(INDEX_KEY, {safe: ranking_score(merged)})
                        await pipe.execute()
                    except WatchError:
                        continue

                    logger.info(
                        "ranking_recorded",
                        nick=safe,
                        is_win=is_win,
                        best_time_ms=merged.best_time_ms,
                        total_games=merged.total_games,
                    )
                    return merged
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailable() from exc

        raise StoreUnavailable(f"Too many concurrent updates for ranking {safe}, please retry")

    async def get_entry(self, nick: str) -> RankingEntry | None:
        try:
            raw = await self.redis.hgetall(f"{RANKING_PREFIX}{sanitize_nick(nick)}")
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailable() from exc
        return _from_hash(raw) if raw else None

    async def fetch_top_rankings(self, limit: int = 30) -> list[RankingEntry]:
        """Top ``limit`` entries, wins descending then best time ascending."""
        if limit <= 0:
            return []
        try:
            names = await self.redis.zrevrange(INDEX_KEY, 0, limit - 1)
            if not names:
                return []
            pipe = self.redis.pipeline()
            for name in names:
                pipe.hgetall(f"{RANKING_PREFIX}{name}")
            rows = await pipe.execute()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailable() from exc

        return sort_rankings([_from_hash(raw) for raw in rows if raw])
