"""
Best-effort parsing of generative agent responses.

Agent output is free text that usually, but not always, follows the format
requested in the prompt. Every function here degrades to an empty or
default value instead of raising, and none of these heuristics are used by
the deterministic pattern engine.
"""

import html
import json
import re
from typing import Any, Optional

from citefix.models.schemas import ResearchNotes
from citefix.pipeline.errors import ParseFailure
from citefix.utils.logger import get_logger

logger = get_logger(__name__)

RESEARCH_SECTIONS = ("CONTRADICTIONS", "KNOWLEDGE_GAPS", "CONTENT_OPPORTUNITIES")
MAX_SECTION_ITEMS = 5
MIN_ITEM_LENGTH = 10

LABEL_BODY = r"^[ \t]*[#*]*[ \t]*[A-Z][A-Z_ ]+[A-Z][ \t]*\**[ \t]*:"
# Section labels are upper case even when the section itself is matched loosely
NEXT_LABEL = r"(?-i:" + LABEL_BODY + r")"
SECTION_LABEL_RE = re.compile(LABEL_BODY)
BULLET_PREFIX_RE = re.compile(r"^[-•*\d.)\s]+")
CODE_BLOCK_RE = re.compile(r"```(?:json|jsonld|json-ld)?\s*([\s\S]*?)```", re.IGNORECASE)
MARKDOWN_SYMBOLS_RE = re.compile(r"[#*_\[\]()`>]")

# Substring fallback when generated markup does not parse
KNOWN_SCHEMA_TYPES = ("FAQPage", "Article", "BreadcrumbList", "WebPage", "Product", "HowTo", "Organization")


# =============================================================================
# Labelled sections
# =============================================================================

def extract_section(text: str, label: str, limit: int = MAX_SECTION_ITEMS) -> list[str]:
    """
    Items listed under ``LABEL:`` in ``text``.

    The section runs until the next ``UPPER_CASE:`` label. Bullet and
    numbering prefixes are stripped and items of 10 characters or fewer are
    ignored. If no line-leading label matches, the lines following the
    first occurrence of the label anywhere in the text are used instead.
    """
    if not text:
        return []

    items = _strict_section(text, label)
    if not items:
        items = _loose_section(text, label)
    return items[:limit]


def _label_pattern(label: str) -> str:
    # KNOWLEDGE_GAPS also matches "Knowledge Gaps" and "**KNOWLEDGE GAPS:**"
    words = [re.escape(w) for w in label.split("_")]
    return r"[#* \t]*" + r"[_ \t]+".join(words) + r"[* \t]*:?"


def _strict_section(text: str, label: str) -> list[str]:
    match = re.search(
        r"^" + _label_pattern(label) + r"[^\n]*\n([\s\S]*?)(?=" + NEXT_LABEL + r"|\Z)",
        text,
        re.IGNORECASE | re.MULTILINE,
    )
    if not match:
        return []
    return [item for item in (_clean_item(line) for line in match.group(1).splitlines()) if item]


def _loose_section(text: str, label: str) -> list[str]:
    match = re.search(_label_pattern(label), text, re.IGNORECASE)
    if not match:
        return []

    items: list[str] = []
    for line in text[match.end():].splitlines()[1:]:
        if SECTION_LABEL_RE.match(line):
            break
        item = _clean_item(line)
        if item:
            items.append(item)
    return items


def _clean_item(line: str) -> Optional[str]:
    cleaned = BULLET_PREFIX_RE.sub("", line).strip().strip("*").strip()
    if len(cleaned) <= MIN_ITEM_LENGTH:
        return None
    return cleaned


def parse_research_notes(text: str) -> ResearchNotes:
    """Split a deep research response into its three labelled lists."""
    sections = {label: extract_section(text, label) for label in RESEARCH_SECTIONS}
    missing = [label for label, items in sections.items() if not items]
    if missing:
        logger.info("Research response missing sections", sections=missing)

    return ResearchNotes(
        insights=text or "",
        contradictions=sections["CONTRADICTIONS"],
        knowledge_gaps=sections["KNOWLEDGE_GAPS"],
        content_opportunities=sections["CONTENT_OPPORTUNITIES"],
        degraded=len(missing) == len(RESEARCH_SECTIONS),
        note="No labelled sections found in research response" if len(missing) == len(RESEARCH_SECTIONS) else None,
    )


def parse_list_items(text: str, limit: int = 8) -> list[str]:
    """Bulleted or numbered lines of ``text`` with their prefixes removed."""
    items = []
    for line in (text or "").splitlines():
        if not BULLET_PREFIX_RE.match(line):
            continue
        cleaned = BULLET_PREFIX_RE.sub("", line).strip().strip("\"'*").strip()
        if cleaned and cleaned not in items:
            items.append(cleaned)
    return items[:limit]


# =============================================================================
# JSON-LD
# =============================================================================

def extract_code_block(text: str) -> str:
    """Body of the first fenced code block, else the outermost ``{...}`` span."""
    if not text:
        return ""
    match = CODE_BLOCK_RE.search(text)
    if match:
        return match.group(1).strip()

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError) as e:
        raise ParseFailure(f"Generated markup is not valid JSON: {e}", raw=text)


def detect_schema_types(json_ld: str) -> list[str]:
    """``@type`` values found in generated markup, defaulting to ``WebPage``."""
    try:
        types = _collect_types(_load_json(json_ld))
    except ParseFailure:
        types = [t for t in KNOWN_SCHEMA_TYPES if t in json_ld]
    return types or ["WebPage"]


def _collect_types(node: Any) -> list[str]:
    found: list[str] = []

    def walk(value: Any) -> None:
        if isinstance(value, dict):
            declared = value.get("@type")
            for t in declared if isinstance(declared, list) else [declared]:
                if isinstance(t, str) and t and t not in found:
                    found.append(t)
            for child in value.values():
                walk(child)
        elif isinstance(value, list):
            for child in value:
                walk(child)

    walk(node)
    return found


def is_valid_json_ld(json_ld: str) -> bool:
    """Markup parses and declares both ``@context`` and ``@type``."""
    try:
        payload = _load_json(json_ld)
    except ParseFailure:
        return False

    nodes = payload if isinstance(payload, list) else [payload]
    for node in nodes:
        if not isinstance(node, dict) or "@context" not in node:
            continue
        if "@type" in node:
            return True
        graph = node.get("@graph")
        if isinstance(graph, list) and any(isinstance(n, dict) and "@type" in n for n in graph):
            return True
    return False


# =============================================================================
# FAQ / copy
# =============================================================================

QUESTION_LINE_RE = re.compile(r"^(?:\*\*)?\s*Q\s*[:.]?\s*(?:\*\*)?\s*[:.]?\s*", re.IGNORECASE)
ANSWER_LINE_RE = re.compile(r"^(?:\*\*)?\s*A\s*[:.]?\s*(?:\*\*)?\s*[:.]?\s*", re.IGNORECASE)


def parse_faq_pairs(text: str) -> list[tuple[str, str]]:
    """``Q:`` / ``A:`` line pairs; answers may span several lines."""
    pairs: list[tuple[str, str]] = []
    question: Optional[str] = None
    answer: list[str] = []

    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        if _is_marked(line, "Q"):
            if question and answer:
                pairs.append((question, " ".join(answer)))
            question, answer = QUESTION_LINE_RE.sub("", line).strip(" *"), []
        elif _is_marked(line, "A") and question:
            answer.append(ANSWER_LINE_RE.sub("", line).strip(" *"))
        elif question and answer:
            answer.append(line)

    if question and answer:
        pairs.append((question, " ".join(answer)))
    return pairs


def _is_marked(line: str, letter: str) -> bool:
    bare = line.lstrip("*").lstrip()
    return bool(re.match(rf"{letter}\s*[:.]|{letter}\*\*\s*[:.]?", bare))


def faq_to_html(text: str) -> str:
    """Render ``Q:``/``A:`` text as a ``faq-section`` HTML fragment."""
    parts = ['<div class="faq-section">']
    for question, answer in parse_faq_pairs(text):
        parts.append(
            '<div class="faq-item">'
            f'<h3 class="faq-question">{html.escape(question)}</h3>'
            f'<p class="faq-answer">{html.escape(answer)}</p>'
            "</div>"
        )
    parts.append("</div>")
    return "".join(parts)


def strip_markdown(text: str) -> str:
    return MARKDOWN_SYMBOLS_RE.sub("", text or "").strip()
