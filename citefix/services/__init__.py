"""Collaborator services: search, content fetch, generative agent and report rendering."""

from citefix.services.search_service import SearchProvider, YouSearchProvider, RateLimiter
from citefix.services.content_service import ContentFetcher, LivecrawlContentFetcher, RenderedContent
from citefix.services.llm_service import ResearchAgent, ClaudeResearchAgent, TokenUsage
from citefix.services.document_service import DocumentServiceClient
from citefix.services.report_service import (
    ReportRenderer,
    HtmlPdfRenderer,
    TemplateDocumentRenderer,
    LocalDocumentRenderer,
    ReportAssembler,
)

__all__ = [
    "SearchProvider",
    "YouSearchProvider",
    "RateLimiter",
    "ContentFetcher",
    "LivecrawlContentFetcher",
    "RenderedContent",
    "ResearchAgent",
    "ClaudeResearchAgent",
    "TokenUsage",
    "DocumentServiceClient",
    "ReportRenderer",
    "HtmlPdfRenderer",
    "TemplateDocumentRenderer",
    "LocalDocumentRenderer",
    "ReportAssembler",
]
