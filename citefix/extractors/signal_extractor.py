"""
Signal extractor.

Turns raw rendered page content (markdown, possibly with embedded HTML such
as JSON-LD script tags) into a normalized ``Page``. Extraction is pure and
never raises: content that cannot be processed yields the empty-page
sentinel so that a single broken page cannot abort a batch.

Example:
    >>> page = extract("https://example.com/guide", "# Guide\\n\\nSome text")
    >>> page.title, page.word_count
    ('Guide', 4)
"""

import json
import re
from typing import Any, Optional
from urllib.parse import urlparse

from citefix.models.schemas import (
    FaqPair,
    Heading,
    Page,
    StructuredDataBlock,
    host_key,
)
from citefix.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Patterns
# =============================================================================

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")

JSON_LD_RE = re.compile(
    r"<script[^>]*type\s*=\s*[\"']application/ld\+json[\"'][^>]*>(.*?)</script>",
    re.IGNORECASE | re.DOTALL,
)

MARKDOWN_LINK_RE = re.compile(r"\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+[\"'][^\"']*[\"'])?\s*\)")
HTML_HREF_RE = re.compile(r"href\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)

ENTITY_RE = re.compile(r"\b([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)+)\b")

QUESTION_PREFIX_RE = re.compile(r"^(?:q\s*[:.]|question\s*:)\s*", re.IGNORECASE)
ANSWER_PREFIX_RE = re.compile(r"^(?:a\s*[:.]|answer\s*:)\s*", re.IGNORECASE)

MAX_ANSWER_LINES = 4
MAX_ENTITIES = 30


# =============================================================================
# Public API
# =============================================================================

def extract(url: str, raw_content: Optional[str], title: str = "") -> Page:
    """
    Extract structural signals from ``raw_content``.

    Args:
        url: Page URL, used to decide which links are internal.
        raw_content: Rendered page content; ``None`` or blank gives the
            empty-page sentinel.
        title: Title reported by the fetcher. Falls back to the first H1.

    Returns:
        A frozen ``Page``.
    """
    if not raw_content or not raw_content.strip():
        return Page.empty(url, title=title or "")

    try:
        headings = extract_headings(raw_content)
        if not title:
            title = next((h.text for h in headings if h.level == 1), "")

        return Page(
            url=url,
            title=title,
            content=raw_content,
            headings=headings,
            structured_data=extract_structured_data(raw_content),
            faqs=extract_faqs(raw_content),
            word_count=count_words(raw_content),
            internal_links=extract_internal_links(raw_content, url),
            entity_mentions=extract_entities(raw_content),
        )
    except Exception as e:
        logger.warning("Signal extraction failed, using empty page", url=url, error=str(e))
        return Page.empty(url, title=title or "")


def count_words(content: str) -> int:
    return len(content.split())


def extract_headings(content: str) -> list[Heading]:
    headings = []
    for line in content.splitlines():
        match = HEADING_RE.match(line.strip())
        if match:
            text = _strip_emphasis(match.group(2))
            if text:
                headings.append(Heading(level=len(match.group(1)), text=text))
    return headings


def extract_structured_data(content: str) -> list[StructuredDataBlock]:
    """
    Collect every embedded JSON-LD block.

    Blocks that fail to parse are kept as ``type="Invalid"`` so that broken
    markup stays visible to gap analysis. ``@graph`` containers and
    top-level arrays contribute one block per contained object.
    """
    blocks: list[StructuredDataBlock] = []
    for raw in JSON_LD_RE.findall(content):
        try:
            payload = json.loads(raw.strip())
        except (json.JSONDecodeError, ValueError):
            blocks.append(StructuredDataBlock(type="Invalid", properties={}, is_valid=False))
            continue

        nodes = _json_ld_nodes(payload)
        if not nodes:
            blocks.append(StructuredDataBlock(type="Invalid", properties={}, is_valid=False))
            continue
        for node in nodes:
            blocks.append(StructuredDataBlock(
                type=_schema_type(node),
                properties=node,
                is_valid=True,
            ))
    return blocks


def extract_faqs(content: str) -> list[FaqPair]:
    """
    Pair question lines with the answer lines that follow them.

    A question is a line ending in ``?`` that is a heading, bolded, or
    ``Q:``-prefixed. Its answer is the next non-blank lines (at most four)
    up to the following heading or question. Unanswered questions are dropped.
    """
    lines = [line.strip() for line in content.splitlines()]
    faqs: list[FaqPair] = []

    i = 0
    while i < len(lines):
        question = _question_text(lines[i])
        if question is None:
            i += 1
            continue

        answer_lines: list[str] = []
        j = i + 1
        while j < len(lines) and len(answer_lines) < MAX_ANSWER_LINES:
            line = lines[j]
            if HEADING_RE.match(line) or _question_text(line) is not None:
                break
            if line:
                answer_lines.append(ANSWER_PREFIX_RE.sub("", _strip_emphasis(line)))
            j += 1

        answer = " ".join(a for a in answer_lines if a).strip()
        if answer:
            faqs.append(FaqPair(question=question, answer=answer))
        i = j
    return faqs


def extract_internal_links(content: str, page_url: str) -> list[str]:
    """Links on the page's own host (``www.`` insensitive) or root-relative, in order."""
    own_host = host_key(page_url)
    links: list[str] = []

    candidates = MARKDOWN_LINK_RE.findall(content) + HTML_HREF_RE.findall(content)
    for href in candidates:
        href = href.strip()
        if not href or href in links:
            continue
        if _is_internal(href, own_host):
            links.append(href)
    return links


def extract_entities(content: str) -> list[str]:
    """Distinct runs of two or more capitalized words, first 30."""
    entities: list[str] = []
    for match in ENTITY_RE.finditer(content):
        entity = match.group(1)
        if entity not in entities:
            entities.append(entity)
            if len(entities) >= MAX_ENTITIES:
                break
    return entities


# =============================================================================
# Helpers
# =============================================================================

def _strip_emphasis(text: str) -> str:
    return text.strip().strip("*_").strip()


def _question_text(line: str) -> Optional[str]:
    """Return the question text if ``line`` is a question, else ``None``."""
    if not line:
        return None
    core = line.rstrip("*_ ")
    if not core.endswith("?"):
        return None

    heading = HEADING_RE.match(line)
    if heading:
        return _strip_emphasis(heading.group(2))
    if line.startswith(("**", "__")):
        return _strip_emphasis(line)
    if QUESTION_PREFIX_RE.match(line):
        return _strip_emphasis(QUESTION_PREFIX_RE.sub("", line))
    return None


def _is_internal(href: str, own_host: str) -> bool:
    if href.startswith("//"):
        return bool(own_host) and host_key(f"https:{href}") == own_host
    if href.startswith("/"):
        return True
    scheme = urlparse(href).scheme.lower()
    if scheme not in ("http", "https"):
        return False
    return bool(own_host) and host_key(href) == own_host


def _json_ld_nodes(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [node for node in payload if isinstance(node, dict)]
    if isinstance(payload, dict):
        graph = payload.get("@graph")
        if isinstance(graph, list):
            nodes = [node for node in graph if isinstance(node, dict)]
            if nodes:
                return nodes
        return [payload]
    return []


def _schema_type(node: dict[str, Any]) -> str:
    value = node.get("@type")
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, str) and v), None)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return "Unknown"
