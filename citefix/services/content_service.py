"""Rendered page content collaborator (You.com livecrawl)."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from citefix.models.schemas import host_key
from citefix.pipeline.errors import UpstreamFailure
from citefix.services.search_service import HttpCollaborator
from citefix.utils.logger import get_logger

logger = get_logger(__name__)


class RenderedContent(BaseModel):
    """Raw rendered content of one page."""
    url: str
    title: str = ""
    content: str = ""


class ContentFetcher(ABC):
    """Interface the extraction stage fetches pages through."""

    @abstractmethod
    async def fetch_rendered(self, url: str) -> RenderedContent:
        """
        Rendered content for ``url``.

        Raises:
            UpstreamFailure: If the page cannot be fetched.
        """


class LivecrawlContentFetcher(HttpCollaborator, ContentFetcher):
    """
    Fetches page markdown by running a ``site:`` search with livecrawl enabled.

    The search index returns a crawled copy of the best matching page on the
    host; a result whose URL equals the requested one is preferred.
    """

    @property
    def name(self) -> str:
        return "you_contents"

    async def fetch_rendered(self, url: str) -> RenderedContent:
        host = host_key(url)
        if not host:
            raise UpstreamFailure(f"Cannot fetch malformed URL: {url}", collaborator=self.name, recoverable=False)

        params = {
            "query": f"site:{host}",
            "count": 1,
            "livecrawl": "web",
            "livecrawl_formats": "markdown",
        }

        start_time = time.monotonic()
        try:
            data = await self._get_json(params)
        except UpstreamFailure:
            raise
        except (httpx.HTTPError, ValueError) as e:
            raise self._failure(f"Content fetch for {url}", e) from e

        match = self.pick_result(data, url)
        if match is None:
            logger.info("No crawled content found", url=url)
            return RenderedContent(url=url)

        contents = match.get("contents") or {}
        content = contents.get("markdown") or contents.get("html") or match.get("description") or ""
        logger.debug(
            "Content fetched",
            url=url,
            chars=len(content),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return RenderedContent(url=url, title=match.get("title") or "", content=content)

    @staticmethod
    def pick_result(data: dict[str, Any], url: str) -> Optional[dict[str, Any]]:
        results = (data.get("results") or {}).get("web") or []
        if not results:
            return None
        host = host_key(url)
        for item in results:
            if item.get("url") == url:
                return item
        for item in results:
            if host and host_key(item.get("url") or "") == host:
                return item
        return results[0]
