"""Content builders and fake collaborators shared by the test suite."""

import asyncio
import json
from typing import Optional, Sequence

from citefix.models.schemas import (
    AgentMode,
    Archetype,
    CitedPage,
    ContentSection,
    DiscoveryResult,
    FaqPair,
    Gap,
    GeneratedAssets,
    Heading,
    Job,
    Page,
    PatternResult,
    ResearchNotes,
    RewrittenCopy,
    SchemaMarkup,
    SearchHit,
    StructuredDataBlock,
)
from citefix.pipeline.errors import UpstreamFailure
from citefix.services.content_service import ContentFetcher, RenderedContent
from citefix.services.llm_service import ResearchAgent
from citefix.services.report_service import ReportRenderer
from citefix.services.search_service import SearchProvider


DOMAIN = "https://example.com"
COMPETITORS = ["https://alpha.com/guide", "https://beta.com/guide", "https://gamma.com/guide"]


# =============================================================================
# Content builders
# =============================================================================

FILLER = "alpha beta gamma delta epsilon zeta eta theta iota kappa "


def words(count: int) -> str:
    """``count`` lowercase filler words."""
    tokens = (FILLER * (count // 10 + 1)).split()[:count]
    return " ".join(tokens)


def competitor_markdown(
    host: str,
    word_count: int = 1800,
    faq_count: int = 3,
    schema_type: Optional[str] = "Article",
    links: int = 6,
) -> str:
    """Markdown for a strong competitor page."""
    parts = []
    if schema_type:
        payload = {"@context": "https://schema.org", "@type": schema_type, "name": "Guide"}
        parts.append(f'<script type="application/ld+json">{json.dumps(payload)}</script>')
    parts.append("# The Complete Guide")
    for i in range(4):
        parts.append(f"## Section {i}")
        parts.append("### Detail")
    for i in range(faq_count):
        parts.append(f"**What is question {i}?**")
        parts.append(f"Answer number {i}.")
    for i in range(links):
        parts.append(f"[link {i}](https://{host}/page-{i})")
    parts.append("Acme Corp and Globex Industries and Initech Systems and Umbrella Group and Stark Labs and Wayne Tech")
    parts.append(words(word_count))
    return "\n\n".join(parts)


def weak_markdown(word_count: int = 400) -> str:
    """Markdown for a thin page: one heading, no schema, no FAQ, no links."""
    return "# About Us\n\n" + words(word_count)


def make_page(
    url: str = "https://competitor.com/guide",
    word_count: int = 1800,
    headings: int = 6,
    faqs: int = 3,
    schema_types: Sequence[str] = ("Article",),
    links: int = 5,
    entities: int = 6,
) -> Page:
    """A ``Page`` built directly, bypassing the extractor."""
    heading_list = [Heading(level=1, text="Title")] + [
        Heading(level=2, text=f"Section {i}") for i in range(max(0, headings - 1))
    ]
    return Page(
        url=url,
        title="Title",
        content="content",
        headings=heading_list[:headings],
        structured_data=[StructuredDataBlock(type=t, properties={"@type": t}) for t in schema_types],
        faqs=[FaqPair(question=f"Q{i}?", answer=f"A{i}") for i in range(faqs)],
        word_count=word_count,
        internal_links=[f"/p{i}" for i in range(links)],
        entity_mentions=[f"Entity Name{i}" for i in range(entities)],
    )


def hit(url: str, title: str = "") -> SearchHit:
    return SearchHit(url=url, title=title or url, description="desc", snippets=["snippet"])


def finished_job(**kwargs) -> Job:
    """A job with every stage result filled in, as after a full run."""
    gaps = [
        Gap(name="Missing Structured Markup", description="67% of top pages use Article schema",
            impact_score=0.4, difficulty="easy", category="schema", asset_generated=True),
        Gap(name="Missing FAQ Section", description="67% of top pages include FAQs",
            impact_score=0.35, difficulty="easy", category="faq", asset_generated=True),
        Gap(name="Weak Internal Linking", description="Competitors link | internally",
            impact_score=0.18, difficulty="medium", category="structure"),
    ]
    values = dict(
        domain="example.com",
        topic="crm software",
        status="complete",
        stage=6,
        discovery=DiscoveryResult(
            cited_pages=[
                CitedPage(url=url, title=f"Guide {i}", citation_count=3 - i)
                for i, url in enumerate(COMPETITORS)
            ],
            query_variants=["crm software", "best crm software"],
            total_results=6,
        ),
        pattern_result=PatternResult(
            archetypes=[Archetype(name="Authority Hub with Schema", description="Deep pages", frequency=67)],
            gaps=gaps,
            current_score=15,
            projected_score=88,
            user_archetype_match=33,
        ),
        research_notes=ResearchNotes(
            contradictions=["Pricing claims differ"],
            knowledge_gaps=["No migration guides"],
            content_opportunities=["Comparison tables"],
        ),
        generated_assets=GeneratedAssets(
            schema_markup=SchemaMarkup(json_ld='{"@type": "FAQPage"}', types=["FAQPage"], is_valid=True),
            content_sections=[ContentSection(title="Frequently Asked Questions: crm software", markdown="**Q: What?**")],
            rewritten_copy=RewrittenCopy(markdown="# Better CRM", plain_text="Better CRM", word_count=2),
        ),
    )
    values.update(kwargs)
    return Job(**values)


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeSearch(SearchProvider):
    """Returns the same hit list for every query unless overridden per query."""

    def __init__(self, hits: Sequence[SearchHit] = (), per_query: Optional[dict] = None, fail_on: Sequence[str] = ()):
        self.hits = list(hits)
        self.per_query = per_query or {}
        self.fail_on = set(fail_on)
        self.calls: list[dict] = []

    async def search(self, query, count, country=None, source_types=("web",)):
        self.calls.append({"query": query, "count": count, "country": country, "source_types": list(source_types)})
        if query in self.fail_on:
            raise UpstreamFailure(f"search failed for {query}", collaborator="search")
        return list(self.per_query.get(query, self.hits))


class FakeFetcher(ContentFetcher):
    """Serves canned markdown per URL; listed or unknown URLs fail."""

    def __init__(self, pages: Optional[dict[str, str]] = None, failing: Sequence[str] = ()):
        self.pages = pages or {}
        self.failing = set(failing)
        self.calls: list[str] = []

    async def fetch_rendered(self, url: str) -> RenderedContent:
        self.calls.append(url)
        if url in self.failing or url not in self.pages:
            raise UpstreamFailure(f"fetch failed for {url}", collaborator="contents")
        return RenderedContent(url=url, title="", content=self.pages[url])


RESEARCH_RESPONSE = """CONTRADICTIONS:
- Sources disagree on pricing
- Engines cite outdated limits

KNOWLEDGE_GAPS:
- Migration guides
- Security comparisons
- Total cost of ownership

CONTENT_OPPORTUNITIES:
- Publish a comparison table
- Add expert quotes
"""

SCHEMA_RESPONSE = """```json
{"@context": "https://schema.org", "@type": "FAQPage", "mainEntity": []}
```"""

FAQ_RESPONSE = """Q: What is a CRM?
A: Software for managing customer relationships.
Q: Is it worth it?
A: Usually, for growing teams."""

COPY_RESPONSE = "# Best CRM Software\n\n## Why it matters\n\n" + words(50)

SUGGEST_RESPONSE = "- best crm for startups\n- crm vs spreadsheet\n- cheapest crm 2025"


class FakeAgent(ResearchAgent):
    """Answers by prompt content; ``fail_on`` keywords raise ``UpstreamFailure``."""

    def __init__(self, fail_on: Sequence[str] = (), responses: Optional[dict[str, str]] = None):
        self.fail_on = list(fail_on)
        self.responses = {
            "CONTRADICTIONS": RESEARCH_RESPONSE,
            "JSON-LD": SCHEMA_RESPONSE,
            "FAQ questions": FAQ_RESPONSE,
            "Rewrite the page": COPY_RESPONSE,
            "search intent": SUGGEST_RESPONSE,
        }
        self.responses.update(responses or {})
        self.calls: list[tuple[str, str]] = []

    async def run_agent(self, prompt: str, mode=AgentMode.EXPRESS) -> str:
        self.calls.append((prompt, mode.value if isinstance(mode, AgentMode) else mode))
        for keyword in self.fail_on:
            if keyword in prompt:
                raise UpstreamFailure(f"agent failed on {keyword}", collaborator="agent")
        for keyword, response in self.responses.items():
            if keyword in prompt:
                return response
        return ""


class FailingRenderer(ReportRenderer):
    def __init__(self, name: str, remote: bool = True):
        self._name = name
        self.remote = remote
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def format(self) -> str:
        return "pdf"

    async def render(self, job: Job) -> bytes:
        self.calls += 1
        raise UpstreamFailure(f"{self._name} unavailable", collaborator="document")


class HangingRenderer(ReportRenderer):
    """A remote tier that never answers within any reasonable deadline."""

    def __init__(self, name: str = "html_pdf", delay: float = 10.0):
        self._name = name
        self.delay = delay
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def format(self) -> str:
        return "pdf"

    async def render(self, job: Job) -> bytes:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return b"%PDF-1.4 late"


class StaticRenderer(ReportRenderer):
    def __init__(self, name: str = "static_pdf", content: bytes = b"%PDF-1.4 test"):
        self._name = name
        self.content = content

    @property
    def name(self) -> str:
        return self._name

    @property
    def format(self) -> str:
        return "pdf"

    async def render(self, job: Job) -> bytes:
        return self.content
