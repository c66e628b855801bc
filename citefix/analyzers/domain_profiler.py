"""
Domain profiler.

Scores the user's own page on content depth and heading structure. Pure:
no I/O, same page in, same profile out.
"""

from citefix.models.schemas import CitationStatus, DomainProfile, Page

# (word count threshold, points)
WORD_COUNT_TIERS: tuple[tuple[int, int], ...] = ((500, 20), (1000, 20), (2000, 15))
FAQ_POINTS = 15
ENTITY_POINTS = 10
ENTITY_THRESHOLD = 5
STRUCTURED_DATA_POINTS = 10
POINTS_PER_HEADING = 2
MAX_HEADING_POINTS = 10


def profile(page: Page, is_cited: bool) -> DomainProfile:
    """Build the ``DomainProfile`` for ``page``."""
    valid_types: list[str] = []
    for block in page.structured_data:
        if block.is_valid and block.type not in valid_types:
            valid_types.append(block.type)

    return DomainProfile(
        page=page,
        existing_schema_types=valid_types,
        invalid_schema_count=sum(1 for b in page.structured_data if not b.is_valid),
        has_faq=len(page.faqs) > 0,
        content_depth=score_content_depth(page),
        heading_score=score_headings(page),
        citation_status=CitationStatus.CITED if is_cited else CitationStatus.NOT_CITED,
    )


def score_content_depth(page: Page) -> int:
    score = 0
    for threshold, points in WORD_COUNT_TIERS:
        if page.word_count > threshold:
            score += points
    if page.faqs:
        score += FAQ_POINTS
    if len(page.entity_mentions) >= ENTITY_THRESHOLD:
        score += ENTITY_POINTS
    if page.structured_data:
        score += STRUCTURED_DATA_POINTS
    score += min(len(page.headings) * POINTS_PER_HEADING, MAX_HEADING_POINTS)
    return min(score, 100)


def score_headings(page: Page) -> int:
    h1 = page.heading_count(1)
    h2 = page.heading_count(2)
    h3 = page.heading_count(3)

    score = 0
    if h1 == 1:
        score += 30
    elif h1 > 1:
        score += 10
    score += min(h2 * 10, 40)
    score += min(h3 * 5, 20)
    if h2 and h3:
        score += 10  # multi-level hierarchy
    return min(score, 100)
