"""Shared test fixtures.

Redis is provided by fakeredis: a fresh in-memory server per test, reached
through the same ``redis.asyncio`` client API the application uses.
"""

from __future__ import annotations

import random
from collections.abc import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from wikirace.content.catalog import ContentCatalog, GameData
from wikirace.rankings.service import RankingAggregator
from wikirace.redis_client import close_redis, use_redis
from wikirace.rooms.coordinator import RoomCoordinator
from wikirace.store.documents import DocumentStore

START_PAGES = ["Brasil", "Futebol", "Pizza", "Astronomia"]
THEMES = [
    ("Albert Einstein", "Albert_Einstein"),
    ("Lua", "Lua"),
    ("Oceano Atlântico", "Oceano_Atl%C3%A2ntico"),
    ("Xadrez", "Xadrez"),
]


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> ContentCatalog:
    """Catalog pre-loaded with a small fixed data set."""
    data = GameData.model_validate({"startPages": START_PAGES, "themes": THEMES})
    return ContentCatalog("http://content.test/data.json", data=data, rng=random.Random(7))


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """Fresh fake Redis, also installed as the application's shared pool."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    use_redis(client)
    yield client
    await client.flushall()
    await close_redis()


@pytest.fixture
def store(redis_client) -> DocumentStore:
    return DocumentStore(redis_client)


@pytest.fixture
def rankings(redis_client) -> RankingAggregator:
    return RankingAggregator(redis_client)


@pytest.fixture
def coordinator(store, catalog, rankings, clock) -> RoomCoordinator:
    return RoomCoordinator(store, catalog, rankings, min_plausible_time_ms=1000, clock=clock)


@pytest.fixture
def app(redis_client, catalog) -> FastAPI:
    """Application wired to the fake Redis and the fixed catalog."""
    from wikirace.dependencies import get_catalog
    from wikirace.main import create_app

    application = create_app()
    application.dependency_overrides[get_catalog] = lambda: catalog
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
