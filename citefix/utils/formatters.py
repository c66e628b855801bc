"""
Implementation brief formatting and job export.

Provides the markdown brief, its styled HTML rendering (markdown2), the flat
value map used to fill document templates, and the JSON export of a job.
"""

import json
from datetime import datetime
from typing import Any, List, Optional

import markdown2

from citefix.models.schemas import (
    Archetype,
    CitedPage,
    Gap,
    GeneratedAssets,
    Job,
    utcnow,
)

GENERATOR = "CiteFix"
EXPORT_VERSION = "1.0"
MAX_BRIEF_CITATIONS = 10

MARKDOWN_EXTRAS = ["tables", "fenced-code-blocks", "header-ids", "break-on-newline"]

CHECKLIST = (
    "Add JSON-LD schema to the page <head>",
    "Replace page content with the rewritten copy",
    "Add the FAQ section to the page body",
    "Update the internal link structure",
    "Verify the schema with a Schema.org validator",
    "Re-run the analysis to verify improvement",
)


def _cell(text: str) -> str:
    return (text or "").replace("|", "-").replace("\n", " ")


def impact_label(impact: float) -> str:
    if impact > 0.3:
        return "high"
    if impact > 0.2:
        return "medium"
    return "low"


def format_gap_table(gaps: List[Gap]) -> str:
    """
    Markdown table of gaps.

    | Gap | Impact | Difficulty | Fix Status |
    |-----|--------|------------|------------|
    | Missing FAQ Section | +35% (high) | easy | Generated |
    """
    if not gaps:
        return "*No gaps detected.*"

    header = "| Gap | Impact | Difficulty | Fix Status |\n|-----|--------|------------|------------|"
    rows = [
        f"| **{_cell(g.name)}**<br>{_cell(g.description)} "
        f"| +{round(g.impact_score * 100)}% ({impact_label(g.impact_score)}) "
        f"| {g.difficulty} | {'Generated' if g.asset_generated else '-'} |"
        for g in gaps
    ]
    return header + "\n" + "\n".join(rows)


def format_citation_list(pages: List[CitedPage], limit: int = MAX_BRIEF_CITATIONS) -> str:
    if not pages:
        return "*No cited pages were found.*"
    return "\n".join(
        f"{i}. [{_cell(p.title or p.url)}]({p.url}) ({p.citation_count}x cited)"
        for i, p in enumerate(pages[:limit], 1)
    )


def format_archetypes(archetypes: List[Archetype]) -> str:
    return "\n\n".join(
        f"### {a.name} ({a.frequency}% of top pages)\n{a.description}"
        for a in archetypes
    )


def format_assets(assets: Optional[GeneratedAssets]) -> str:
    if assets is None:
        return "*No assets were generated.*"

    parts: list[str] = []
    if assets.schema_markup:
        parts.append(
            "### Schema Markup (JSON-LD)\n"
            "Paste this into the page's `<head>` section:\n\n"
            f"```json\n{assets.schema_markup.json_ld}\n```\n\n"
            f"Schema types: {', '.join(assets.schema_markup.types) or 'n/a'}"
            f"{'' if assets.schema_markup.is_valid else ' (markup did not validate)'}"
        )
    if assets.rewritten_copy:
        parts.append(
            "### Rewritten Page Copy\n"
            f"*{assets.rewritten_copy.word_count} words, structured to match the winning archetype*\n\n"
            f"{assets.rewritten_copy.markdown}"
        )
    for section in assets.content_sections:
        parts.append(f"### {section.title} ({section.type})\n\n{section.markdown}")

    return "\n\n".join(parts) if parts else "*No assets were generated.*"


def format_checklist(gaps: List[Gap]) -> str:
    items = [f"{g.name}: see the generated asset above" for g in gaps if g.asset_generated]
    items.extend(CHECKLIST)
    return "\n".join(f"- [ ] {item}" for item in items)


def generate_brief_markdown(job: Job, generated_at: Optional[datetime] = None) -> str:
    """
    Full implementation brief for a job.

    Structure:
    # Implementation Brief: {domain}
    ## 1. Executive Summary
    ## 2. Citation Analysis
    ## 3. Citation Archetypes
    ## 4. Gap Report
    ## 5. Generated Assets
    ## 6. Research Notes
    ## 7. Implementation Checklist
    """
    timestamp = (generated_at or utcnow()).strftime("%Y-%m-%d %H:%M UTC")
    result = job.pattern_result
    cited = job.discovery.cited_pages if job.discovery else []
    gaps = result.gaps if result else []
    score = result.current_score if result else 0
    projected = result.projected_score if result else 0

    if job.domain_profile and job.domain_profile.is_cited:
        citation_status = "Your domain appears in current citations."
    else:
        citation_status = "Your domain does not currently appear in AI citations for this topic."

    research = "*Deep research was not available for this run.*"
    notes = job.research_notes
    if notes and not notes.degraded:
        research = "\n\n".join(
            f"**{title}:**\n" + ("\n".join(f"- {item}" for item in items) or "- none")
            for title, items in (
                ("Contradictions", notes.contradictions),
                ("Knowledge Gaps", notes.knowledge_gaps),
                ("Content Opportunities", notes.content_opportunities),
            )
        )

    return f"""# Implementation Brief: {job.domain}

**Topic:** {job.topic}
**Pages analyzed:** {len(cited)}
**Generated:** {timestamp}

## 1. Executive Summary
This brief provides deployment-ready assets to improve **{job.domain}**'s visibility in AI-generated answers for "**{job.topic}**". Based on live citation analysis of {len(cited)} top-cited pages, {len(gaps)} actionable gaps were identified.

| Current Score | Projected Score | Change |
|---------------|-----------------|--------|
| {score} | {projected} | +{projected - score} points |

## 2. Citation Analysis
{format_citation_list(cited)}

{citation_status}

## 3. Citation Archetypes
{format_archetypes(result.archetypes) if result else '*Pattern analysis did not run.*'}

## 4. Gap Report
{format_gap_table(gaps)}

## 5. Generated Assets
{format_assets(job.generated_assets)}

## 6. Research Notes
{research}

## 7. Implementation Checklist
{format_checklist(gaps)}

---
Generated by {GENERATOR}
"""


def markdown_to_html(markdown_text: str, title: str = "Implementation Brief") -> str:
    """Render markdown as a standalone, styled HTML document."""
    html_content = markdown2.markdown(markdown_text, extras=MARKDOWN_EXTRAS)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, system-ui, sans-serif; max-width: 900px; margin: 0 auto; padding: 40px; line-height: 1.6; color: #333; }}
table {{ border-collapse: collapse; width: 100%; margin: 20px 0; }}
th, td {{ border: 1px solid #ddd; padding: 12px; text-align: left; }}
th {{ background-color: #f5f5f5; }}
h1, h2, h3 {{ color: #2c3e50; margin-top: 30px; }}
h1 {{ border-bottom: 2px solid #E74C3C; padding-bottom: 10px; }}
pre, code {{ background: #f5f5f5; padding: 2px 5px; border-radius: 3px; white-space: pre-wrap; }}
</style>
</head>
<body>
{html_content}
</body>
</html>
"""


def generate_brief_html(job: Job) -> str:
    return markdown_to_html(generate_brief_markdown(job), title=f"Implementation Brief: {job.domain}")


def brief_template_values(job: Job) -> dict[str, Any]:
    """Flat ``{{tag}}`` values for document templates."""
    result = job.pattern_result
    assets = job.generated_assets
    cited = job.discovery.cited_pages if job.discovery else []
    return {
        "domain": job.domain,
        "topic": job.topic,
        "generatedDate": utcnow().strftime("%B %d, %Y"),
        "currentScore": result.current_score if result else 0,
        "projectedScore": result.projected_score if result else 0,
        "archetypeMatch": result.user_archetype_match if result else 0,
        "pagesAnalyzed": len(cited),
        "citationStatus": "cited" if job.domain_profile and job.domain_profile.is_cited else "not cited",
        "gaps": [
            {
                "name": g.name,
                "description": g.description,
                "impact": f"+{round(g.impact_score * 100)}%",
                "difficulty": g.difficulty,
                "status": "Generated" if g.asset_generated else "-",
            }
            for g in (result.gaps if result else [])
        ],
        "citations": [
            {"title": p.title or p.url, "url": p.url, "count": p.citation_count}
            for p in cited[:MAX_BRIEF_CITATIONS]
        ],
        "schemaMarkup": assets.schema_markup.json_ld if assets and assets.schema_markup else "",
        "rewrittenCopy": assets.rewritten_copy.plain_text if assets and assets.rewritten_copy else "",
    }


# =============================================================================
# Export
# =============================================================================

def _dump(model: Any) -> Optional[dict[str, Any]]:
    return model.model_dump(mode="json") if model is not None else None


def export_job(job: Job, exported_at: Optional[datetime] = None) -> dict[str, Any]:
    """JSON-serializable export of a job with a ``_meta`` header."""
    result = job.pattern_result
    discovery = job.discovery
    assets = job.generated_assets

    return {
        "_meta": {
            "exported_at": (exported_at or utcnow()).isoformat(),
            "generator": GENERATOR,
            "version": EXPORT_VERSION,
            "job_id": job.job_id,
        },
        "domain": job.domain,
        "topic": job.topic,
        "status": job.status,
        "stage": job.stage,
        "error": job.error,
        "config": job.config.model_dump(mode="json"),
        "citation_score": result.current_score if result else None,
        "projected_score": result.projected_score if result else None,
        "user_archetype_match": result.user_archetype_match if result else None,
        "gaps": [g.model_dump(mode="json") for g in result.gaps] if result else [],
        "archetypes": [a.model_dump(mode="json") for a in result.archetypes] if result else [],
        "cited_pages": [p.model_dump(mode="json") for p in discovery.cited_pages] if discovery else [],
        "query_variants": discovery.query_variants if discovery else job.query_variants,
        "user_domain_found": discovery.user_domain_found if discovery else False,
        "user_domain_position": discovery.user_domain_position if discovery else None,
        "domain_profile": _dump(job.domain_profile),
        "generated_assets": {
            "schema_markup": _dump(assets.schema_markup) if assets else None,
            "rewritten_copy": _dump(assets.rewritten_copy) if assets else None,
            "content_sections": [s.model_dump(mode="json") for s in assets.content_sections] if assets else [],
        },
        "research_notes": _dump(job.research_notes),
        "report": _dump(job.report),
        "api_calls": [c.model_dump(mode="json") for c in job.api_calls],
        "timing": {
            "created_at": job.created_at.isoformat(),
            "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        },
    }


def export_job_json(job: Job) -> str:
    return json.dumps(export_job(job), indent=2)
