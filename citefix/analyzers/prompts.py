"""
Prompt templates for the generative research agent.

Templates are plain ``str.format`` strings; the ``build_*`` helpers fill
them from job data so callers never format prompts by hand.
"""

from citefix.models.schemas import Job

# =============================================================================
# System Prompts
# =============================================================================

SYSTEM_PROMPTS = {
    "research": """You are an Answer Engine Optimization (AEO) research analyst.
You study which pages AI answer engines cite for a topic and explain, with
specific and verifiable observations, how a site could become citable.
Follow the requested output format exactly. Use plain bulleted lists under
each upper-case section label and nothing else.""",

    "assets": """You are a technical content strategist producing ready-to-publish
web assets. Output only what is asked for: no preamble, no explanation, no
closing remarks.""",
}


# =============================================================================
# Deep Research
# =============================================================================

RESEARCH_PROMPT = """Analyze the following topic in depth.

Topic: "{topic}"
Domain: {domain}
Current Citation Score: {current_score}/100
Detected Gaps: {gaps}
Winning Archetypes: {archetypes}

Perform the following analysis:

1. CONTRADICTIONS: Identify 2-3 cases where different sources or AI engines cite
   conflicting information about this topic. What are the conflicting claims?

2. KNOWLEDGE GAPS: Identify 3-5 subtopics related to "{topic}" that have high
   search interest but little authoritative coverage.

3. CONTENT OPPORTUNITIES: Based on what is currently cited, which specific content
   pieces would give {domain} the highest probability of being cited?

Format your response EXACTLY as:
CONTRADICTIONS:
- [contradiction 1]
- [contradiction 2]

KNOWLEDGE_GAPS:
- [gap 1]
- [gap 2]
- [gap 3]

CONTENT_OPPORTUNITIES:
- [opportunity 1]
- [opportunity 2]
- [opportunity 3]"""


# =============================================================================
# Asset Generation
# =============================================================================

SCHEMA_PROMPT = """Generate valid JSON-LD schema markup for a webpage about "{topic}" on the domain "{domain}".
Include the following schema types as appropriate: {schema_types}.
Use realistic data based on the topic. Return ONLY the JSON-LD code block, no explanation.
The markup must be ready to paste into a <script type="application/ld+json"> tag."""

FAQ_PROMPT = """Generate {count} high-quality FAQ questions and answers about "{topic}" for the website {domain}.
Put each question on its own line starting with "Q: " and each answer on the next line starting with "A: ".
Answers should be comprehensive, authoritative and professional in tone.
The questions should reflect what real users ask AI search engines about this topic."""

REWRITE_PROMPT = """Rewrite the page content for the topic "{topic}" on {domain}.
The rewrite should match this citation archetype: "{archetype}".
Key requirements:
- Strong H1 followed by a clear H2/H3 hierarchy
- Comprehensive coverage of the topic (minimum {min_words} words)
- Specific facts, statistics and expert-level detail
- An authoritative, professional tone
- Structure that lets AI engines extract direct answers
- Natural question-and-answer patterns within the content

Current page content summary: {current_summary}

Return the rewritten content in markdown format."""


# =============================================================================
# Topic Suggestions
# =============================================================================

SUGGEST_PROMPT = """Given the topic "{topic}", generate exactly {count} related search intent variants a user might type into AI engines such as ChatGPT, Perplexity or Google AI Overviews.
Return ONLY the queries, one per line, each prefixed with "- ".
Cover different intent types: informational, comparison, buying, how-to and expert opinion."""

DEFAULT_SCHEMA_TYPES = ("Article", "FAQPage", "BreadcrumbList", "WebPage")
DEFAULT_FAQ_COUNT = 10
DEFAULT_REWRITE_WORDS = 800
SUMMARY_CHARS = 500


def build_research_prompt(job: Job) -> str:
    result = job.pattern_result
    return RESEARCH_PROMPT.format(
        topic=job.topic,
        domain=job.domain,
        current_score=result.current_score if result else 0,
        gaps=", ".join(g.name for g in result.gaps) if result and result.gaps else "none detected",
        archetypes=", ".join(a.name for a in result.archetypes) if result else "unknown",
    )


def build_schema_prompt(job: Job) -> str:
    types = list(DEFAULT_SCHEMA_TYPES)
    if job.pattern_result:
        # Types competitors use that the domain is missing come first
        for gap in job.pattern_result.gaps:
            if gap.name.startswith("Missing ") and gap.name.endswith(" Markup"):
                schema_type = gap.name[len("Missing "):-len(" Markup")]
                if schema_type != "Structured" and schema_type not in types:
                    types.insert(0, schema_type)
    return SCHEMA_PROMPT.format(topic=job.topic, domain=job.domain, schema_types=", ".join(types))


def build_faq_prompt(job: Job, count: int = DEFAULT_FAQ_COUNT) -> str:
    return FAQ_PROMPT.format(count=count, topic=job.topic, domain=job.domain)


def build_rewrite_prompt(job: Job) -> str:
    archetype = "Authority Hub with Schema"
    if job.pattern_result and job.pattern_result.archetypes:
        archetype = job.pattern_result.archetypes[0].name

    summary = ""
    if job.domain_profile:
        summary = job.domain_profile.page.content[:SUMMARY_CHARS]

    return REWRITE_PROMPT.format(
        topic=job.topic,
        domain=job.domain,
        archetype=archetype,
        min_words=DEFAULT_REWRITE_WORDS,
        current_summary=summary or "(no content could be extracted)",
    )


def build_suggest_prompt(topic: str, count: int = 5) -> str:
    return SUGGEST_PROMPT.format(topic=topic, count=count)
