"""Shared FastAPI dependencies.

Everything is built per request from the shared Redis pool, except the
content catalog, which is a per-process snapshot.
"""

from __future__ import annotations

from fastapi import Depends

from wikirace.config import get_settings
from wikirace.content.catalog import ContentCatalog
from wikirace.rankings.service import RankingAggregator
from wikirace.redis_client import get_redis
from wikirace.rooms.coordinator import RoomCoordinator
from wikirace.store.documents import DocumentStore

_catalog: ContentCatalog | None = None


def get_catalog() -> ContentCatalog:
    """Process-wide content catalog (loaded on first use)."""
    global _catalog  # noqa: PLW0603
    if _catalog is None:
        settings = get_settings()
        _catalog = ContentCatalog(
            settings.data_source_url,
            timeout=settings.data_source_timeout_seconds,
        )
    return _catalog


def get_store() -> DocumentStore:
    return DocumentStore(get_redis(), max_retries=get_settings().store_max_retries)


def get_rankings() -> RankingAggregator:
    return RankingAggregator(get_redis(), max_retries=get_settings().store_max_retries)


def get_coordinator(
    store: DocumentStore = Depends(get_store),  # noqa: B008
    catalog: ContentCatalog = Depends(get_catalog),  # noqa: B008
    rankings: RankingAggregator = Depends(get_rankings),  # noqa: B008
) -> RoomCoordinator:
    return RoomCoordinator(
        store,
        catalog,
        rankings,
        min_plausible_time_ms=get_settings().min_plausible_time_ms,
    )
