"""Start pages and target themes.

The bulk data source is a static JSON document fetched once per process:
``{"startPages": [...], "themes": [[title, slug], ...]}`` (the legacy key
``startUrls`` is accepted for the start page list).
"""

from __future__ import annotations

import asyncio
import random
from typing import NamedTuple

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from wikirace.errors import DataUnavailable

logger = structlog.get_logger()


class Theme(NamedTuple):
    """A destination: display title plus the page identifier to reach."""

    title: str
    slug: str


class GameData(BaseModel):
    start_pages: list[str] = Field(
        min_length=1,
        validation_alias=AliasChoices("startPages", "startUrls", "start_pages"),
    )
    themes: list[tuple[str, str]] = Field(min_length=1)


class ContentCatalog:
    """Immutable snapshot of the bulk data, loaded lazily and cached."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        data: GameData | None = None,
        rng: random.Random | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport
        self._data = data
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._data is not None

    async def load(self) -> GameData:
        """Fetch the data source on first use. Failures are not cached."""
        if self._data is not None:
            return self._data

        async with self._lock:
            if self._data is None:
                self._data = await self._fetch()
        return self._data

    async def _fetch(self) -> GameData:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                data = GameData.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.error("content_fetch_failed", url=self.url, error=str(exc))
            raise DataUnavailable() from exc

        logger.info(
            "content_loaded",
            start_pages=len(data.start_pages),
            themes=len(data.themes),
        )
        return data

    async def random_start_page(self) -> str:
        data = await self.load()
        return self._rng.choice(data.start_pages)

    async def random_theme(self) -> Theme:
        data = await self.load()
        return Theme(*self._rng.choice(data.themes))
