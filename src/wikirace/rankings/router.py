"""Global rankings API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from wikirace.config import get_settings
from wikirace.dependencies import get_rankings
from wikirace.rankings.schemas import RankingResponse, RankingsResponse
from wikirace.rankings.service import RankingAggregator

router = APIRouter(prefix="/api/v1/rankings", tags=["Rankings"])


@router.get("", response_model=RankingsResponse)
async def top_rankings(
    limit: int | None = Query(None, ge=1, le=100),
    rankings: RankingAggregator = Depends(get_rankings),  # noqa: B008
) -> RankingsResponse:
    """Most wins first, then fastest best time."""
    entries = await rankings.fetch_top_rankings(limit or get_settings().rankings_default_limit)
    return RankingsResponse(
        entries=[RankingResponse(rank=i + 1, entry=e) for i, e in enumerate(entries)],
        total=len(entries),
    )
