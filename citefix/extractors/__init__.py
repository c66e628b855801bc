"""Extractors module for CiteFix."""

from citefix.extractors.signal_extractor import (
    extract,
    extract_headings,
    extract_structured_data,
    extract_faqs,
    extract_internal_links,
    extract_entities,
    count_words,
)

__all__ = [
    "extract",
    "extract_headings",
    "extract_structured_data",
    "extract_faqs",
    "extract_internal_links",
    "extract_entities",
    "count_words",
]
