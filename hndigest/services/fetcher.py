"""Candidate items from the HN Algolia search API."""

import asyncio
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel, ValidationError

from hndigest.core.config import Settings, get_settings
from hndigest.core.exceptions import ContentSourceError
from hndigest.core.logging import get_logger
from hndigest.models import Item

log = get_logger(__name__)

ALGOLIA_SEARCH_URL = "https://hn.algolia.com/api/v1/search"
MAX_HITS_PER_PAGE = 1000


class ContentSource(ABC):
    @abstractmethod
    async def fetch_candidate_items(self, min_count: int, min_score: int, since: int) -> dict[str, Item]:
        """Stories created at or after `since` (unix seconds): the top `min_count`
        by score plus every story with at least `min_score` points, keyed by id."""
        ...


class _SearchResponse(BaseModel):
    hits: list[Item]


class AlgoliaContentSource(ContentSource):
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    async def fetch_candidate_items(self, min_count: int, min_score: int, since: int) -> dict[str, Item]:
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds, transport=self._transport
        ) as client:
            top, by_points = await asyncio.gather(
                self._search(client, {"hitsPerPage": min_count, "numericFilters": f"created_at_i>={since}"}),
                self._search(
                    client,
                    {"hitsPerPage": MAX_HITS_PER_PAGE, "numericFilters": f"created_at_i>={since},points>={min_score}"},
                ),
            )
        combined = {item.id: item for item in top}
        combined.update((item.id, item) for item in by_points)
        log.info("candidates_fetched", top=len(top), by_points=len(by_points), total=len(combined))
        return combined

    async def _search(self, client: httpx.AsyncClient, params: dict) -> list[Item]:
        try:
            resp = await client.get(ALGOLIA_SEARCH_URL, params={"tags": "story", **params})
            resp.raise_for_status()
            return _SearchResponse.model_validate(resp.json()).hits
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            log.error("content_fetch_failed", params=params, error=str(e))
            raise ContentSourceError() from e
