import httpx
import pytest

from citefix.pipeline.errors import UpstreamFailure
from citefix.services.content_service import LivecrawlContentFetcher
from citefix.services.search_service import SEARCH_URL, RateLimiter, YouSearchProvider

SEARCH_PAYLOAD = {
    "results": {
        "web": [
            {
                "url": "https://alpha.com/guide",
                "title": "Alpha Guide",
                "description": "The guide",
                "snippets": ["first", 3, "second"],
                "page_age": "2025-01-01",
            },
            {"title": "no url"},
            {"url": "https://beta.com/guide"},
        ],
        "news": [{"url": "https://news.com/story", "title": "Story"}],
    }
}


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# Search
# =============================================================================

def test_parse_results_web_only():
    hits = YouSearchProvider.parse_results(SEARCH_PAYLOAD, ["web"])
    assert [h.url for h in hits] == ["https://alpha.com/guide", "https://beta.com/guide"]
    assert hits[0].snippets == ["first", "second"]
    assert hits[0].published_date == "2025-01-01"
    assert hits[1].title == ""


def test_parse_results_multiple_sources_and_empty():
    hits = YouSearchProvider.parse_results(SEARCH_PAYLOAD, ["web", "news"])
    assert hits[-1].url == "https://news.com/story"
    assert YouSearchProvider.parse_results({}, ["web"]) == []
    assert YouSearchProvider.parse_results({"results": {"web": None}}, ["web"]) == []


@pytest.mark.asyncio
async def test_search_sends_query_and_key(settings):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=SEARCH_PAYLOAD)

    async with YouSearchProvider(settings, client=client_for(handler)) as provider:
        hits = await provider.search("best crm", count=10, country="GB")

    assert len(hits) == 2
    request = requests[0]
    assert str(request.url).startswith(SEARCH_URL)
    assert request.url.params["query"] == "best crm"
    assert request.url.params["count"] == "10"
    assert request.url.params["country"] == "GB"
    assert request.headers["X-API-Key"] == "you-test-key"
    assert provider.get_stats()["request_count"] == 1


@pytest.mark.asyncio
async def test_search_http_errors(settings):
    def server_error(request):
        return httpx.Response(500, text="upstream broke")

    def unauthorized(request):
        return httpx.Response(401, text="bad key")

    provider = YouSearchProvider(settings, client=client_for(server_error))
    with pytest.raises(UpstreamFailure, match="HTTP 500") as exc_info:
        await provider.search("crm", count=5)
    assert exc_info.value.recoverable
    assert provider.get_stats()["error_count"] == 1

    provider = YouSearchProvider(settings, client=client_for(unauthorized))
    with pytest.raises(UpstreamFailure) as exc_info:
        await provider.search("crm", count=5)
    assert not exc_info.value.recoverable


@pytest.mark.asyncio
async def test_search_retries_transient_errors(settings):
    calls = {"count": 0}

    def flaky(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json=SEARCH_PAYLOAD)

    provider = YouSearchProvider(settings, client=client_for(flaky))
    hits = await provider.search("crm", count=5)

    assert len(hits) == 2
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_search_without_key(settings):
    provider = YouSearchProvider(
        settings.model_copy(update={"you_api_key": None}),
        client=client_for(lambda request: httpx.Response(200, json={})),
    )
    assert not provider.is_configured
    with pytest.raises(UpstreamFailure, match="YOU_API_KEY"):
        await provider.search("crm", count=5)


@pytest.mark.asyncio
async def test_rate_limiter_immediate_then_waits():
    limiter = RateLimiter(requests_per_second=100)
    assert await limiter.acquire() == 0.0
    limiter.tokens = 0
    assert await limiter.acquire() > 0


# =============================================================================
# Content fetch
# =============================================================================

def test_pick_result_prefers_exact_then_host():
    data = {"results": {"web": [
        {"url": "https://other.com/x"},
        {"url": "https://www.alpha.com/page"},
        {"url": "https://alpha.com/guide"},
    ]}}
    assert LivecrawlContentFetcher.pick_result(data, "https://alpha.com/guide")["url"] == "https://alpha.com/guide"
    assert LivecrawlContentFetcher.pick_result(data, "https://alpha.com/other")["url"] == "https://www.alpha.com/page"
    assert LivecrawlContentFetcher.pick_result(data, "https://zeta.com")["url"] == "https://other.com/x"
    assert LivecrawlContentFetcher.pick_result({}, "https://alpha.com") is None


@pytest.mark.asyncio
async def test_fetch_rendered_markdown(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"results": {"web": [{
            "url": "https://alpha.com/guide",
            "title": "Alpha",
            "contents": {"markdown": "# Alpha\ntext"},
        }]}})

    fetcher = LivecrawlContentFetcher(settings, client=client_for(handler))
    rendered = await fetcher.fetch_rendered("https://www.alpha.com/guide")

    assert rendered.url == "https://www.alpha.com/guide"
    assert rendered.title == "Alpha"
    assert rendered.content == "# Alpha\ntext"
    params = requests[0].url.params
    assert params["query"] == "site:alpha.com"
    assert params["livecrawl"] == "web"
    assert params["livecrawl_formats"] == "markdown"


@pytest.mark.asyncio
async def test_fetch_rendered_falls_back_to_description_and_empty(settings):
    responses = iter([
        {"results": {"web": [{"url": "https://alpha.com", "description": "only a summary"}]}},
        {"results": {"web": []}},
    ])
    fetcher = LivecrawlContentFetcher(settings, client=client_for(lambda r: httpx.Response(200, json=next(responses))))

    assert (await fetcher.fetch_rendered("https://alpha.com")).content == "only a summary"
    assert (await fetcher.fetch_rendered("https://alpha.com")).content == ""


@pytest.mark.asyncio
async def test_fetch_rendered_errors(settings):
    fetcher = LivecrawlContentFetcher(settings, client=client_for(lambda r: httpx.Response(503, text="busy")))
    with pytest.raises(UpstreamFailure, match="Content fetch for https://alpha.com failed"):
        await fetcher.fetch_rendered("https://alpha.com")

    with pytest.raises(UpstreamFailure, match="malformed"):
        await fetcher.fetch_rendered("not a url")
