"""
Pattern engine.

Compares the pages AI answer engines currently cite for a topic against
the user's domain profile and produces:

    - archetypes: recurring structural patterns among the cited pages
    - gaps: deficiencies of the user's page, ordered by estimated impact
    - current / projected citation probability scores
    - how closely the user's page matches the dominant archetype

Everything here is deterministic and side-effect free. An empty competitor
set is valid input and yields a degenerate but well-formed result, since
every ratio divides by ``max(1, len(pages))``.

Rounding is half-up (``2.5 -> 3``), not Python's banker's rounding.
"""

import math
from collections import Counter
from typing import Sequence

from citefix.models.schemas import (
    Archetype,
    Difficulty,
    DomainProfile,
    Gap,
    GapCategory,
    Page,
    PatternResult,
    Signal,
)


# =============================================================================
# Constants
# =============================================================================

AUTHORITY_MIN_HEADINGS = 5
AUTHORITY_MIN_WORDS = 1500
FAQ_HEAVY_MIN_PAIRS = 3

SCHEMA_TYPE_RATE_THRESHOLD = 0.3
HEADING_RATIO = 0.5
MIN_HEADINGS = 5
WORD_RATIO = 0.5
MIN_CONTENT_DEPTH = 50
LINK_RATIO = 0.3

IMPACT_SCALE = 40
CURRENT_SCORE_CAP = 100
PROJECTED_SCORE_CAP = 95

# Types that do not name a concrete schema.org type
NON_SPECIFIC_TYPES = frozenset({"Invalid", "Unknown"})

AUTHORITY_ARCHETYPE = (
    "Authority Hub with Schema",
    "Pages with structured schema markup, strong heading hierarchy, and comprehensive content depth.",
    (("JSON-LD Schema", 0.9), ("Deep heading hierarchy", 0.85), ("1500+ word content", 0.8)),
)
FAQ_ARCHETYPE = (
    "FAQ-Rich Content Page",
    "Pages featuring extensive Q&A sections that directly answer user queries.",
    (("FAQ sections (3+)", 0.88), ("Question-answer format", 0.82), ("Direct answer snippets", 0.75)),
)
DEEP_ARCHETYPE = (
    "Deep Comparison Article",
    "Comprehensive comparison content with detailed analysis and multiple option coverage.",
    (("Comparative structure", 0.85), ("Multiple H2/H3 sections", 0.8), ("High word count", 0.78)),
)
FALLBACK_ARCHETYPE = (
    "General Content Page",
    "Standard content page without distinctive structural patterns.",
    (("Basic content structure", 0.5),),
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percent(rate: float) -> int:
    return round_half_up(rate * 100)


# =============================================================================
# Entry Point
# =============================================================================

def analyze(competitor_pages: Sequence[Page], domain_profile: DomainProfile) -> PatternResult:
    """
    Run archetype identification, gap identification and scoring.

    Args:
        competitor_pages: Extracted pages of the currently cited competitors.
        domain_profile: Profile of the user's own page.

    Returns:
        A complete ``PatternResult``; never raises on valid input.
    """
    archetypes = identify_archetypes(competitor_pages)
    gaps = identify_gaps(competitor_pages, domain_profile)
    current = calculate_current_score(domain_profile)

    return PatternResult(
        archetypes=archetypes,
        gaps=gaps,
        current_score=current,
        projected_score=project_score(current, gaps),
        user_archetype_match=archetype_match(domain_profile, archetypes[0]),
    )


# =============================================================================
# Archetypes
# =============================================================================

def identify_archetypes(pages: Sequence[Page]) -> list[Archetype]:
    total = max(1, len(pages))
    authority = faq_heavy = deep = 0

    for page in pages:
        strong_headings = len(page.headings) >= AUTHORITY_MIN_HEADINGS
        long_form = page.word_count > AUTHORITY_MIN_WORDS

        if page.structured_data and strong_headings and long_form:
            authority += 1
        if len(page.faqs) >= FAQ_HEAVY_MIN_PAIRS:
            faq_heavy += 1
        if long_form and strong_headings:
            deep += 1

    archetypes = [
        _archetype(template, tally, total)
        for template, tally in (
            (AUTHORITY_ARCHETYPE, authority),
            (FAQ_ARCHETYPE, faq_heavy),
            (DEEP_ARCHETYPE, deep),
        )
        if tally > 0
    ]
    if not archetypes:
        archetypes = [_archetype(FALLBACK_ARCHETYPE, total, total)]

    # sorted() is stable, so ties keep authority -> faq -> deep order
    return sorted(archetypes, key=lambda a: a.frequency, reverse=True)


def _archetype(template: tuple, tally: int, total: int) -> Archetype:
    name, description, signals = template
    return Archetype(
        name=name,
        description=description,
        frequency=min(100, percent(tally / total)),
        signals=[Signal(name=n, present=True, score=s) for n, s in signals],
    )


# =============================================================================
# Gaps
# =============================================================================

def identify_gaps(pages: Sequence[Page], domain: DomainProfile) -> list[Gap]:
    """Evaluate every gap rule independently, then order by impact."""
    total = max(1, len(pages))
    user_page = domain.page
    gaps: list[Gap] = []

    schema_rate = sum(1 for p in pages if _valid_types(p)) / total
    if not domain.existing_schema_types:
        description = (
            f"{percent(schema_rate)}% of top-cited pages carry JSON-LD structured data. "
        )
        if domain.invalid_schema_count:
            description += (
                f"Your page has {domain.invalid_schema_count} markup block(s) that fail to parse."
            )
        else:
            description += "Your page has none."
        gaps.append(Gap(
            name="Missing Structured Markup",
            description=description,
            impact_score=0.40,
            difficulty=Difficulty.EASY,
            category=GapCategory.SCHEMA,
        ))

    faq_rate = sum(1 for p in pages if p.faqs) / total
    if not domain.has_faq:
        gaps.append(Gap(
            name="Missing FAQ Section",
            description=(
                f"{percent(faq_rate)}% of top-cited pages include FAQ sections. "
                "AI engines favor pages with direct question-and-answer content."
            ),
            impact_score=0.35,
            difficulty=Difficulty.EASY,
            category=GapCategory.FAQ,
        ))

    avg_headings = sum(len(p.headings) for p in pages) / total
    user_headings = len(user_page.headings)
    if user_headings < avg_headings * HEADING_RATIO or user_headings < MIN_HEADINGS:
        gaps.append(Gap(
            name="Weak Heading Hierarchy",
            description=(
                f"Top-cited pages average {round_half_up(avg_headings)} headings. "
                f"Your page has {user_headings}."
            ),
            impact_score=0.28,
            difficulty=Difficulty.MEDIUM,
            category=GapCategory.HEADINGS,
        ))

    avg_words = sum(p.word_count for p in pages) / total
    if user_page.word_count < avg_words * WORD_RATIO or domain.content_depth < MIN_CONTENT_DEPTH:
        gaps.append(Gap(
            name="Insufficient Content Depth",
            description=(
                f"Top-cited pages average {round_half_up(avg_words)} words. "
                f"Your page has {user_page.word_count} (depth score {domain.content_depth}/100)."
            ),
            impact_score=0.32,
            difficulty=Difficulty.HARD,
            category=GapCategory.CONTENT,
        ))

    gaps.extend(_schema_type_gaps(pages, domain, total))

    avg_links = sum(len(p.internal_links) for p in pages) / total
    user_links = len(user_page.internal_links)
    if user_links < avg_links * LINK_RATIO:
        gaps.append(Gap(
            name="Weak Internal Linking",
            description=(
                f"Top-cited pages average {round_half_up(avg_links)} internal links. "
                f"Your page has {user_links}."
            ),
            impact_score=0.18,
            difficulty=Difficulty.MEDIUM,
            category=GapCategory.STRUCTURE,
        ))

    return sorted(gaps, key=lambda g: g.impact_score, reverse=True)


def _schema_type_gaps(pages: Sequence[Page], domain: DomainProfile, total: int) -> list[Gap]:
    """One gap per schema type used by >30% of competitors but absent on the domain."""
    counts: Counter[str] = Counter()
    for page in pages:
        counts.update(_valid_types(page))

    gaps = []
    for schema_type, count in counts.items():
        rate = count / total
        if rate <= SCHEMA_TYPE_RATE_THRESHOLD or schema_type in domain.existing_schema_types:
            continue
        gaps.append(Gap(
            name=f"Missing {schema_type} Markup",
            description=(
                f"{percent(rate)}% of top-cited pages use {schema_type} markup. "
                "Adding it helps AI engines understand the page."
            ),
            impact_score=round(0.20 + rate * 0.10, 4),
            difficulty=Difficulty.EASY,
            category=GapCategory.SCHEMA,
        ))
    return gaps


def _valid_types(page: Page) -> list[str]:
    """Distinct specific schema types on a page, in document order."""
    types: list[str] = []
    for block in page.structured_data:
        if block.is_valid and block.type not in NON_SPECIFIC_TYPES and block.type not in types:
            types.append(block.type)
    return types


# =============================================================================
# Scoring
# =============================================================================

def calculate_current_score(domain: DomainProfile) -> int:
    score = 10.0
    if domain.is_cited:
        score += 30
    if domain.has_schema:
        score += 15
    if domain.has_faq:
        score += 12
    score += min(domain.content_depth * 0.2, 15)
    score += min(domain.heading_score * 0.15, 12)
    if len(domain.page.entity_mentions) > 5:
        score += 6
    return min(CURRENT_SCORE_CAP, round_half_up(score))


def project_score(current_score: int, gaps: Sequence[Gap]) -> int:
    """Score if every identified gap were remediated, capped at 95."""
    improvement = sum(g.impact_score for g in gaps) * IMPACT_SCALE
    return min(PROJECTED_SCORE_CAP, round_half_up(current_score + improvement))


def archetype_match(domain: DomainProfile, archetype: Archetype) -> int:
    """Percentage of ``archetype``'s signals judged present on the domain."""
    total = max(1, len(archetype.signals))
    present = sum(1 for s in archetype.signals if signal_present(domain, s.name))
    return percent(present / total)


def signal_present(domain: DomainProfile, signal_name: str) -> bool:
    """Keyword heuristic; unmatched signal names count as absent."""
    name = signal_name.lower()
    if "schema" in name or "json-ld" in name:
        return domain.has_schema
    if "faq" in name:
        return domain.has_faq
    if "heading" in name:
        return domain.heading_score > 40
    if "word" in name or "content" in name or "deep" in name:
        return domain.content_depth > 50
    return False
