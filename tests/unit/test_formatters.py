import json
from datetime import datetime, timezone

import pytest

from citefix.models.schemas import Job, ReportResult
from citefix.utils.formatters import (
    brief_template_values,
    export_job,
    export_job_json,
    format_assets,
    format_checklist,
    format_citation_list,
    format_gap_table,
    generate_brief_html,
    generate_brief_markdown,
    impact_label,
    markdown_to_html,
)
from tests.helpers import finished_job

GENERATED_AT = datetime(2025, 6, 1, 12, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("impact,label", [
    (0.4, "high"),
    (0.31, "high"),
    (0.3, "medium"),
    (0.25, "medium"),
    (0.2, "low"),
    (0.0, "low"),
])
def test_impact_label(impact, label):
    assert impact_label(impact) == label


def test_gap_table():
    table = format_gap_table(finished_job().pattern_result.gaps)
    lines = table.splitlines()

    assert lines[0] == "| Gap | Impact | Difficulty | Fix Status |"
    assert len(lines) == 5
    assert "+40% (high)" in lines[2]
    assert lines[2].endswith("| easy | Generated |")
    assert "Competitors link - internally" in lines[4]
    assert lines[4].endswith("| medium | - |")
    assert format_gap_table([]) == "*No gaps detected.*"


def test_citation_list_and_limit():
    pages = finished_job().discovery.cited_pages
    text = format_citation_list(pages, limit=2)
    assert text.splitlines() == [
        "1. [Guide 0](https://alpha.com/guide) (3x cited)",
        "2. [Guide 1](https://beta.com/guide) (2x cited)",
    ]
    assert format_citation_list([]) == "*No cited pages were found.*"


def test_assets_and_checklist():
    job = finished_job()
    assets = format_assets(job.generated_assets)
    assert "### Schema Markup (JSON-LD)" in assets
    assert "Schema types: FAQPage" in assets
    assert "*2 words, structured to match the winning archetype*" in assets
    assert "### Frequently Asked Questions: crm software (faq)" in assets
    assert format_assets(None) == "*No assets were generated.*"

    checklist = format_checklist(job.pattern_result.gaps).splitlines()
    assert checklist[0] == "- [ ] Missing Structured Markup: see the generated asset above"
    assert checklist[2] == "- [ ] Add JSON-LD schema to the page <head>"


def test_brief_markdown_sections():
    brief = generate_brief_markdown(finished_job(), generated_at=GENERATED_AT)

    assert brief.startswith("# Implementation Brief: example.com")
    for number, title in enumerate([
        "Executive Summary",
        "Citation Analysis",
        "Citation Archetypes",
        "Gap Report",
        "Generated Assets",
        "Research Notes",
        "Implementation Checklist",
    ], 1):
        assert f"## {number}. {title}" in brief
    assert "**Generated:** 2025-06-01 12:30 UTC" in brief
    assert "| 15 | 88 | +73 points |" in brief
    assert "3 actionable gaps" in brief
    assert "- Pricing claims differ" in brief
    assert "does not currently appear" in brief
    assert brief.rstrip().endswith("Generated by CiteFix")


def test_brief_markdown_for_early_failure():
    job = Job(domain="example.com", topic="crm", status="failed")
    brief = generate_brief_markdown(job)
    assert "*Pattern analysis did not run.*" in brief
    assert "*Deep research was not available for this run.*" in brief
    assert "*No gaps detected.*" in brief


def test_html_rendering():
    html = markdown_to_html("# Title\n\n| a | b |\n|---|---|\n| 1 | 2 |", title="Brief")
    assert html.startswith("<!DOCTYPE html>")
    assert "<title>Brief</title>" in html
    assert "<table>" in html
    assert "<title>Implementation Brief: example.com</title>" in generate_brief_html(finished_job())


def test_template_values():
    values = brief_template_values(finished_job())
    assert values["currentScore"] == 15
    assert values["projectedScore"] == 88
    assert values["archetypeMatch"] == 33
    assert values["pagesAnalyzed"] == 3
    assert values["citationStatus"] == "not cited"
    assert values["gaps"][0] == {
        "name": "Missing Structured Markup",
        "description": "67% of top pages use Article schema",
        "impact": "+40%",
        "difficulty": "easy",
        "status": "Generated",
    }
    assert values["citations"][0]["count"] == 3
    assert values["schemaMarkup"] == '{"@type": "FAQPage"}'
    assert values["rewrittenCopy"] == "Better CRM"


def test_export_job():
    job = finished_job(report=ReportResult(location="/tmp/r.pdf", format="pdf"))
    exported = export_job(job, exported_at=GENERATED_AT)

    assert exported["_meta"] == {
        "exported_at": "2025-06-01T12:30:00+00:00",
        "generator": "CiteFix",
        "version": "1.0",
        "job_id": job.job_id,
    }
    assert exported["citation_score"] == 15
    assert exported["projected_score"] == 88
    assert [g["name"] for g in exported["gaps"]][:2] == ["Missing Structured Markup", "Missing FAQ Section"]
    assert exported["query_variants"] == ["crm software", "best crm software"]
    assert exported["generated_assets"]["schema_markup"]["types"] == ["FAQPage"]
    assert exported["report"]["format"] == "pdf"
    assert exported["timing"]["completed_at"] is None
    assert json.loads(export_job_json(job))["domain"] == "example.com"


def test_export_pending_job():
    job = Job(domain="example.com", topic="crm", query_variants=["crm"])
    exported = export_job(job)
    assert exported["citation_score"] is None
    assert exported["gaps"] == []
    assert exported["query_variants"] == ["crm"]
    assert exported["generated_assets"]["content_sections"] == []
