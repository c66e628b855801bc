"""
Web search collaborator.

The pipeline calls ``search`` once per query variant. Providers return raw
hits in ranking order and never deduplicate; merging across variants is the
pipeline's job.

Example:
    >>> async with YouSearchProvider(settings) as provider:
    ...     hits = await provider.search("best crm software", count=10, country="US")
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import httpx

from citefix.config.settings import Settings, get_settings
from citefix.models.schemas import SearchHit, SourceType
from citefix.pipeline.errors import UpstreamFailure
from citefix.utils.logger import get_logger
from citefix.utils.retry import with_retry

logger = get_logger(__name__)

SEARCH_URL = "https://ydc-index.io/v1/search"


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, requests_per_second: float = 5.0):
        self.rate = requests_per_second
        self.tokens = requests_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """
        Acquire permission to make a request.

        Returns wait time in seconds (0 if immediate).
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0

            wait_time = (1 - self.tokens) / self.rate
            await asyncio.sleep(wait_time)
            self.tokens = 0
            return wait_time


# =============================================================================
# HTTP Client Base
# =============================================================================

class HttpCollaborator:
    """Shared httpx client lifecycle for the You.com-backed collaborators."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or RateLimiter()
        self._client = client
        self._owns_client = client is None
        self._request_count = 0
        self._error_count = 0

    @property
    def is_configured(self) -> bool:
        return self.settings.you_api_key is not None

    def _headers(self) -> dict[str, str]:
        if not self.settings.you_api_key:
            raise UpstreamFailure("YOU_API_KEY is not configured", collaborator=self.name, recoverable=False)
        return {"X-API-Key": self.settings.you_api_key.get_secret_value()}

    @property
    def name(self) -> str:
        return type(self).__name__

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=5.0),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
            self._owns_client = True

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @with_retry(max_attempts=3, min_wait=1, max_wait=8)
    async def _get_json(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            await self.connect()

        wait = await self.rate_limiter.acquire()
        if wait > 0:
            logger.debug("Rate limit applied", provider=self.name, wait_seconds=f"{wait:.2f}")

        self._request_count += 1
        response = await self._client.get(SEARCH_URL, params=params, headers=self._headers())
        response.raise_for_status()
        return response.json()

    def _failure(self, action: str, error: Exception) -> UpstreamFailure:
        self._error_count += 1
        if isinstance(error, httpx.HTTPStatusError):
            message = f"{action} failed: HTTP {error.response.status_code}: {error.response.text[:200]}"
            recoverable = error.response.status_code == 429 or error.response.status_code >= 500
        else:
            message = f"{action} failed: {error}"
            recoverable = True
        logger.error("Request failed", provider=self.name, error=message)
        return UpstreamFailure(message, collaborator=self.name, recoverable=recoverable)

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "configured": self.is_configured,
            "request_count": self._request_count,
            "error_count": self._error_count,
        }


# =============================================================================
# Search Providers
# =============================================================================

class SearchProvider(ABC):
    """Interface the discovery stage searches through."""

    @abstractmethod
    async def search(
        self,
        query: str,
        count: int,
        country: Optional[str] = None,
        source_types: Sequence[str] = (SourceType.WEB.value,),
    ) -> list[SearchHit]:
        """Raw hits for one query, in ranking order, without deduplication."""


class YouSearchProvider(HttpCollaborator, SearchProvider):
    """You.com web search index."""

    @property
    def name(self) -> str:
        return "you_search"

    async def search(
        self,
        query: str,
        count: int,
        country: Optional[str] = None,
        source_types: Sequence[str] = (SourceType.WEB.value,),
    ) -> list[SearchHit]:
        params: dict[str, Any] = {"query": query, "count": count}
        if country:
            params["country"] = country

        start_time = time.monotonic()
        try:
            data = await self._get_json(params)
        except UpstreamFailure:
            raise
        except (httpx.HTTPError, ValueError) as e:
            raise self._failure(f"Search for '{query}'", e) from e

        hits = self.parse_results(data, source_types)
        logger.info(
            "Search completed",
            query=query,
            results_count=len(hits),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return hits

    @staticmethod
    def parse_results(data: dict[str, Any], source_types: Sequence[str]) -> list[SearchHit]:
        results = data.get("results") or {}
        hits: list[SearchHit] = []
        for source in source_types:
            for item in results.get(source) or []:
                url = item.get("url")
                if not url:
                    continue
                hits.append(SearchHit(
                    url=url,
                    title=item.get("title") or "",
                    description=item.get("description") or "",
                    snippets=[s for s in item.get("snippets") or [] if isinstance(s, str)],
                    published_date=item.get("page_age") or item.get("age") or None,
                ))
        return hits
