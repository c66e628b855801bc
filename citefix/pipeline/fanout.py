"""
Concurrent fan-out / fan-in helpers used by the discovery and extraction stages.

Discovery searches every query variant concurrently and merges the hits
once all branches have completed, so the per-URL citation counter needs no
lock. Extraction fetches pages concurrently under a semaphore; a failure or
timeout on one URL only turns that URL into the empty-page sentinel.
"""

import asyncio
from typing import Optional, Sequence

from citefix.extractors.signal_extractor import extract
from citefix.models.schemas import (
    CitedPage,
    ExtractionResult,
    JobConfig,
    Page,
    SearchHit,
    host_key,
)
from citefix.pipeline.errors import UpstreamFailure
from citefix.services.content_service import ContentFetcher
from citefix.services.search_service import SearchProvider
from citefix.utils.logger import get_logger
from citefix.utils.retry import ErrorHandler, call_with_timeout
from citefix.utils.tracking import ApiCallTracker

logger = get_logger(__name__)


# =============================================================================
# Discovery
# =============================================================================

def generate_query_variants(topic: str) -> list[str]:
    """The topic as typed plus four intent phrasings of it."""
    base = topic.lower().strip()
    return [
        topic,
        f"what is the best {base}",
        f"{base} comparison review",
        f"how to choose {base}",
        f"{base} vs alternatives",
    ]


async def search_variants(
    search: SearchProvider,
    variants: Sequence[str],
    config: JobConfig,
    timeout_seconds: Optional[float],
    tracker: ApiCallTracker,
) -> list[tuple[str, list[SearchHit]]]:
    """
    Search every variant concurrently.

    Raises:
        UpstreamFailure: If any variant's search fails or times out.
    """

    async def run(variant: str) -> tuple[str, list[SearchHit]]:
        async with tracker.track("search", f'Search: "{variant}"'):
            hits = await call_with_timeout(
                search.search(
                    variant,
                    count=config.result_count,
                    country=config.country,
                    source_types=list(config.source_types),
                ),
                timeout_seconds,
                "search",
            )
        return variant, hits

    outcomes = await asyncio.gather(*(run(v) for v in variants), return_exceptions=True)

    results: list[tuple[str, list[SearchHit]]] = []
    for variant, outcome in zip(variants, outcomes):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, UpstreamFailure):
                raise outcome
            raise UpstreamFailure(
                f"Search failed for '{variant}': {ErrorHandler.describe(outcome)}",
                collaborator="search",
            ) from outcome
        results.append(outcome)
    return results


def merge_citations(
    results_per_variant: Sequence[tuple[str, Sequence[SearchHit]]],
    count: int,
) -> list[CitedPage]:
    """
    Fan-in: deduplicate hits by URL and count the variants that surfaced each.

    Pages keep the metadata and query variant of their first occurrence.
    The merged list is sorted by citation count (descending, stable, so ties
    keep first-seen order) and truncated to ``count``.
    """
    merged: dict[str, CitedPage] = {}
    for variant, hits in results_per_variant:
        seen: set[str] = set()
        for hit in hits:
            if hit.url in seen:
                continue
            seen.add(hit.url)
            existing = merged.get(hit.url)
            if existing is None:
                merged[hit.url] = CitedPage.from_hit(hit, variant)
            else:
                existing.citation_count += 1

    ranked = sorted(merged.values(), key=lambda p: p.citation_count, reverse=True)
    return ranked[:count]


def find_user_domain(cited_pages: Sequence[CitedPage], domain: str) -> Optional[int]:
    """1-based position of the first cited page on ``domain``'s host, ignoring ``www.``."""
    target = host_key(domain)
    for position, page in enumerate(cited_pages, 1):
        if host_key(page.url) == target:
            return position
    return None


# =============================================================================
# Extraction
# =============================================================================

async def fetch_page(
    fetcher: ContentFetcher,
    url: str,
    timeout_seconds: Optional[float],
    tracker: ApiCallTracker,
) -> Page:
    """
    Fetch and extract one page.

    Raises:
        UpstreamFailure: If the fetch fails or times out.
    """
    async with tracker.track("contents", f"Livecrawl: {host_key(url) or url}"):
        rendered = await call_with_timeout(fetcher.fetch_rendered(url), timeout_seconds, "fetch")
    return extract(url, rendered.content, title=rendered.title)


async def extract_pages_concurrently(
    fetcher: ContentFetcher,
    urls: Sequence[str],
    max_concurrency: int,
    timeout_seconds: Optional[float],
    tracker: ApiCallTracker,
) -> ExtractionResult:
    """
    Fetch and extract ``urls`` concurrently; never raises for a single URL.

    Pages are returned in input order. A URL whose fetch fails becomes the
    empty-page sentinel and is listed in ``failed_urls``.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    failed: list[str] = []

    async def run(url: str) -> Page:
        async with semaphore:
            try:
                return await fetch_page(fetcher, url, timeout_seconds, tracker)
            except Exception as e:
                logger.warning(
                    "Page extraction failed",
                    url=url,
                    error=ErrorHandler.describe(e),
                    error_category=ErrorHandler.categorize_error(e),
                )
                failed.append(url)
                return Page.empty(url)

    pages = list(await asyncio.gather(*(run(url) for url in urls)))
    failed_set = set(failed)
    return ExtractionResult(
        pages=pages,
        extracted_count=sum(1 for p in pages if not p.is_empty),
        failed_urls=[url for url in urls if url in failed_set],
    )


def competitor_urls(cited_pages: Sequence[CitedPage], extra: Sequence[str]) -> list[str]:
    """Cited page URLs followed by configured competitors, without duplicates."""
    urls: list[str] = []
    for url in [p.url for p in cited_pages] + list(extra):
        if url not in urls:
            urls.append(url)
    return urls
