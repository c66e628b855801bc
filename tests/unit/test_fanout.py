import asyncio

import pytest

from citefix.models.schemas import JobConfig
from citefix.pipeline.errors import UpstreamFailure
from citefix.pipeline.fanout import (
    competitor_urls,
    extract_pages_concurrently,
    fetch_page,
    find_user_domain,
    generate_query_variants,
    merge_citations,
    search_variants,
)
from citefix.utils.tracking import ApiCallTracker
from tests.helpers import FakeFetcher, FakeSearch, competitor_markdown, hit


def test_query_variants():
    assert generate_query_variants("CRM Software") == [
        "CRM Software",
        "what is the best crm software",
        "crm software comparison review",
        "how to choose crm software",
        "crm software vs alternatives",
    ]


def test_merge_citations_counts_and_orders():
    results = [
        ("v1", [hit("https://a.com"), hit("https://b.com")]),
        ("v2", [hit("https://b.com", title="later title"), hit("https://c.com")]),
        ("v3", [hit("https://b.com"), hit("https://c.com")]),
    ]
    pages = merge_citations(results, count=10)

    assert [(p.url, p.citation_count) for p in pages] == [
        ("https://b.com", 3),
        ("https://c.com", 2),
        ("https://a.com", 1),
    ]
    b = pages[0]
    assert b.query_variant == "v1"
    assert b.title == "https://b.com"


def test_merge_citations_ties_keep_first_seen_and_truncate():
    results = [("v1", [hit("https://a.com"), hit("https://b.com"), hit("https://c.com")])]
    assert [p.url for p in merge_citations(results, count=2)] == ["https://a.com", "https://b.com"]


def test_merge_citations_counts_url_once_per_variant():
    results = [
        ("v1", [hit("https://a.com"), hit("https://a.com", title="news copy"), hit("https://b.com")]),
        ("v2", [hit("https://b.com"), hit("https://b.com")]),
    ]
    pages = merge_citations(results, count=10)

    assert [(p.url, p.citation_count) for p in pages] == [
        ("https://b.com", 2),
        ("https://a.com", 1),
    ]
    assert pages[1].title == "https://a.com"


def test_find_user_domain():
    pages = merge_citations([("v", [hit("https://a.com"), hit("https://www.example.com/blog")])], count=10)
    assert find_user_domain(pages, "https://example.com") == 2
    assert find_user_domain(pages, "https://nothere.com") is None


def test_competitor_urls_dedup():
    pages = merge_citations([("v", [hit("https://a.com"), hit("https://b.com")])], count=10)
    assert competitor_urls(pages, ["https://b.com", "https://z.com"]) == ["https://a.com", "https://b.com", "https://z.com"]


@pytest.mark.asyncio
async def test_search_variants_passes_config():
    search = FakeSearch([hit("https://a.com")])
    tracker = ApiCallTracker()
    config = JobConfig(depth="quick", country="gb")

    results = await search_variants(search, ["one", "two"], config, 5, tracker)

    assert [variant for variant, _ in results] == ["one", "two"]
    assert search.calls[0] == {"query": "one", "count": 5, "country": "GB", "source_types": ["web"]}
    assert [r.api for r in tracker.records] == ["search", "search"]


@pytest.mark.asyncio
async def test_search_variants_any_failure_fails_stage():
    search = FakeSearch([hit("https://a.com")], fail_on=["two"])
    tracker = ApiCallTracker()

    with pytest.raises(UpstreamFailure, match="search failed for two"):
        await search_variants(search, ["one", "two", "three"], JobConfig(), 5, tracker)
    assert [r.status for r in tracker.records].count("error") == 1


@pytest.mark.asyncio
async def test_search_variants_wraps_unexpected_errors():
    class BrokenSearch(FakeSearch):
        async def search(self, query, count, country=None, source_types=("web",)):
            raise KeyError("results")

    with pytest.raises(UpstreamFailure) as exc_info:
        await search_variants(BrokenSearch(), ["one"], JobConfig(), 5, ApiCallTracker())
    assert exc_info.value.collaborator == "search"


@pytest.mark.asyncio
async def test_unreachable_url_becomes_sentinel_and_batch_continues():
    fetcher = FakeFetcher(
        {"https://a.com": competitor_markdown("a.com"), "https://c.com": competitor_markdown("c.com")},
        failing=["https://b.com"],
    )
    tracker = ApiCallTracker()

    result = await extract_pages_concurrently(
        fetcher, ["https://a.com", "https://b.com", "https://c.com"], 2, 5, tracker
    )

    assert [p.url for p in result.pages] == ["https://a.com", "https://b.com", "https://c.com"]
    unreachable = result.pages[1]
    assert unreachable.word_count == 0
    assert unreachable.headings == [] and unreachable.faqs == [] and unreachable.structured_data == []
    assert result.extracted_count == 2
    assert result.failed_urls == ["https://b.com"]
    assert len(tracker.records) == 3


@pytest.mark.asyncio
async def test_extraction_respects_concurrency_limit():
    active = 0
    peak = 0

    class CountingFetcher(FakeFetcher):
        async def fetch_rendered(self, url):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await super().fetch_rendered(url)

    urls = [f"https://site{i}.com" for i in range(6)]
    fetcher = CountingFetcher({u: "# Title\ntext" for u in urls})
    result = await extract_pages_concurrently(fetcher, urls, 2, 5, ApiCallTracker())

    assert peak <= 2
    assert result.extracted_count == 6


@pytest.mark.asyncio
async def test_fetch_timeout_becomes_sentinel():
    class SlowFetcher(FakeFetcher):
        async def fetch_rendered(self, url):
            await asyncio.sleep(1)

    result = await extract_pages_concurrently(SlowFetcher(), ["https://slow.com"], 1, 0.01, ApiCallTracker())
    assert result.pages[0].is_empty
    assert result.failed_urls == ["https://slow.com"]


@pytest.mark.asyncio
async def test_fetch_page_raises_on_failure():
    with pytest.raises(UpstreamFailure):
        await fetch_page(FakeFetcher(), "https://missing.com", 5, ApiCallTracker())
