"""Analyzers module for CiteFix: profiling, pattern scoring and response parsing."""

from citefix.analyzers.domain_profiler import profile
from citefix.analyzers.pattern_engine import analyze
from citefix.analyzers.response_parser import (
    extract_section,
    parse_research_notes,
    extract_code_block,
    faq_to_html,
)

__all__ = [
    "profile",
    "analyze",
    "extract_section",
    "parse_research_notes",
    "extract_code_block",
    "faq_to_html",
]
