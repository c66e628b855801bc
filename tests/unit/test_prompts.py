from citefix.analyzers.prompts import (
    DEFAULT_SCHEMA_TYPES,
    build_faq_prompt,
    build_research_prompt,
    build_rewrite_prompt,
    build_schema_prompt,
    build_suggest_prompt,
)
from citefix.models.schemas import Archetype, Gap, Job, PatternResult, Signal


def make_job(**kwargs) -> Job:
    return Job(domain="example.com", topic="crm software", **kwargs)


def pattern_result(*gap_names: str) -> PatternResult:
    return PatternResult(
        archetypes=[Archetype(name="FAQ-Rich Content Page", frequency=80, signals=[Signal(name="FAQ sections (3+)", score=0.88)])],
        gaps=[Gap(name=n, impact_score=0.3, difficulty="easy", category="schema") for n in gap_names],
        current_score=22,
        projected_score=60,
    )


def test_research_prompt_includes_job_context():
    prompt = build_research_prompt(make_job(pattern_result=pattern_result("Missing FAQ Section")))
    assert '"crm software"' in prompt
    assert "https://example.com" in prompt
    assert "22/100" in prompt
    assert "Missing FAQ Section" in prompt
    assert "FAQ-Rich Content Page" in prompt
    assert "CONTRADICTIONS:" in prompt


def test_research_prompt_without_patterns():
    prompt = build_research_prompt(make_job())
    assert "0/100" in prompt
    assert "none detected" in prompt


def test_schema_prompt_puts_missing_types_first():
    prompt = build_schema_prompt(
        make_job(pattern_result=pattern_result("Missing Structured Markup", "Missing Product Markup"))
    )
    assert "Product, Article, FAQPage" in prompt
    assert "Structured," not in prompt


def test_schema_prompt_defaults():
    prompt = build_schema_prompt(make_job())
    assert ", ".join(DEFAULT_SCHEMA_TYPES) in prompt
    assert "JSON-LD" in prompt


def test_faq_prompt_count():
    assert build_faq_prompt(make_job(), count=4).startswith("Generate 4 high-quality FAQ questions")


def test_rewrite_prompt_defaults():
    prompt = build_rewrite_prompt(make_job())
    assert '"Authority Hub with Schema"' in prompt
    assert "(no content could be extracted)" in prompt


def test_rewrite_prompt_uses_top_archetype():
    prompt = build_rewrite_prompt(make_job(pattern_result=pattern_result()))
    assert '"FAQ-Rich Content Page"' in prompt


def test_suggest_prompt():
    prompt = build_suggest_prompt("crm", 3)
    assert 'topic "crm"' in prompt
    assert "exactly 3" in prompt
