"""
Pydantic models and schemas for the CiteFix analysis pipeline.

This module defines all data structures used throughout the pipeline,
ensuring type safety, validation, and serialization consistency.

Models:
    - JobConfig / Job: the unit of work and its configuration
    - CitedPage / DiscoveryResult: stage 1 output
    - Page / ExtractionResult / DomainProfile: stage 2 output
    - Archetype / Gap / PatternResult: stage 3 output
    - ResearchNotes: stage 4 output
    - GeneratedAssets: stage 5 output
    - ReportResult: stage 6 output
    - StageResult: tagged union merged into a Job by the state machine
"""

from __future__ import annotations

import re
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Self, Union
from urllib.parse import urlparse

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
        ser_json_timedelta="iso8601",
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class JobStatus(str, Enum):
    """Lifecycle status of an analysis job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class Depth(str, Enum):
    """Search depth tier."""
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


class SourceType(str, Enum):
    WEB = "web"
    NEWS = "news"


class OutputFormat(str, Enum):
    PDF = "pdf"
    JSON = "json"
    BOTH = "both"


class CitationStatus(str, Enum):
    CITED = "cited"
    NOT_CITED = "not_cited"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class GapCategory(str, Enum):
    """Remediation category a gap belongs to."""
    SCHEMA = "schema"
    FAQ = "faq"
    HEADINGS = "headings"
    CONTENT = "content"
    STRUCTURE = "structure"


class AgentMode(str, Enum):
    """Generative agent effort level."""
    EXPRESS = "express"
    ADVANCED = "advanced"


class ErrorType(str, Enum):
    """Error type classification."""
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    PRECONDITION_ERROR = "precondition_error"
    UPSTREAM_ERROR = "upstream_error"
    PARSE_ERROR = "parse_error"
    TIMEOUT_ERROR = "timeout_error"
    INTERNAL_ERROR = "internal_error"


# =============================================================================
# Constants
# =============================================================================

DEPTH_RESULT_COUNT: dict[str, int] = {
    Depth.QUICK.value: 5,
    Depth.STANDARD.value: 10,
    Depth.DEEP.value: 20,
}

# Stage index -> label shown once that stage has completed
STAGE_LABELS: dict[int, str] = {
    0: "Queued",
    1: "Citations discovered",
    2: "Pages extracted",
    3: "Patterns analyzed",
    4: "Research complete",
    5: "Assets generated",
    6: "Report ready",
}

FINAL_STAGE = 6


# =============================================================================
# Validators (Reusable)
# =============================================================================

# Host validation pattern: valid TLD, labels of 1-63 chars
HOST_PATTERN = re.compile(
    r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.[A-Za-z0-9-]{1,63})*\.[A-Za-z]{2,}$"
)


def normalize_domain(domain: str) -> str:
    """
    Normalize a user supplied domain into an ``https://`` URL.

    Bare hosts get an ``https://`` scheme; existing http(s) URLs keep their
    scheme and path. The host is lowercased and validated.
    """
    value = (domain or "").strip()
    if not value:
        raise ValueError("Domain is required")

    if not value.lower().startswith(("http://", "https://")):
        value = f"https://{value}"

    parsed = urlparse(value)
    host = (parsed.hostname or "").lower()
    if not HOST_PATTERN.match(host):
        raise ValueError(
            f"Invalid domain format: '{domain}'. "
            "Must be a valid domain with TLD (e.g., 'example.com')"
        )

    netloc = host if parsed.port is None else f"{host}:{parsed.port}"
    return parsed._replace(netloc=netloc).geturl()


def host_key(url: str) -> str:
    """Lowercased host of ``url`` with any leading ``www.`` removed."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def generate_job_id() -> str:
    """Job ids look like ``cf_<epoch-ms>_<6 hex chars>``."""
    return f"cf_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


# =============================================================================
# Input Models
# =============================================================================

class JobConfig(BaseModel):
    """
    Per-job analysis configuration.

    Example:
        >>> JobConfig(depth="quick").result_count
        5
    """

    depth: Depth = Field(
        default=Depth.STANDARD,
        description="Search depth tier (quick=5, standard=10, deep=20 results)",
    )
    country: str = Field(
        default="US",
        min_length=2,
        max_length=2,
        description="ISO 3166 country code for search localization",
        examples=["US", "GB", "DE"],
    )
    source_types: list[SourceType] = Field(
        default_factory=lambda: [SourceType.WEB],
        min_length=1,
        description="Search verticals to query",
    )
    output_format: OutputFormat = Field(
        default=OutputFormat.BOTH,
        description="Requested report output format",
    )
    competitors: list[str] = Field(
        default_factory=list,
        description="Additional competitor URLs to benchmark against",
    )

    @field_validator("country", mode="before")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return (v or "US").strip().upper()

    @field_validator("competitors", mode="before")
    @classmethod
    def normalize_competitors(cls, v: Optional[list[str]]) -> list[str]:
        """Normalize competitor URLs and drop duplicates."""
        seen: list[str] = []
        for raw in v or []:
            if not raw or not str(raw).strip():
                continue
            url = normalize_domain(str(raw))
            if url not in seen:
                seen.append(url)
        return seen

    @property
    def result_count(self) -> int:
        return DEPTH_RESULT_COUNT[self.depth]


# =============================================================================
# Discovery Models (Stage 1)
# =============================================================================

class SearchHit(BaseModel):
    """One raw search result as returned by the search collaborator."""
    url: str
    title: str = ""
    description: str = ""
    snippets: list[str] = Field(default_factory=list)
    published_date: Optional[str] = None


class CitedPage(BaseModel):
    """A competitor page surfaced by one or more query variants."""

    url: str = Field(..., description="Page URL, the deduplication key")
    title: str = Field(default="")
    description: str = Field(default="")
    snippets: list[str] = Field(default_factory=list)
    citation_count: int = Field(
        default=1,
        ge=1,
        description="Number of query variants that surfaced this page",
    )
    query_variant: str = Field(
        default="",
        description="First query variant that produced this page",
    )
    published_date: Optional[str] = None

    @classmethod
    def from_hit(cls, hit: SearchHit, query_variant: str) -> CitedPage:
        return cls(
            url=hit.url,
            title=hit.title,
            description=hit.description,
            snippets=list(hit.snippets),
            query_variant=query_variant,
            published_date=hit.published_date,
        )


class DiscoveryResult(BaseModel):
    """Citation discovery output."""
    cited_pages: list[CitedPage] = Field(default_factory=list)
    query_variants: list[str] = Field(default_factory=list)
    total_results: int = Field(default=0, ge=0)
    user_domain_found: bool = False
    user_domain_position: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based rank of the user's domain among cited pages",
    )


# =============================================================================
# Extraction Models (Stage 2)
# =============================================================================

class Heading(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1, le=6)
    text: str


class StructuredDataBlock(BaseModel):
    """One embedded JSON-LD block."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Schema.org @type, 'Unknown' or 'Invalid'")
    properties: dict[str, Any] = Field(default_factory=dict)
    is_valid: bool = True


class FaqPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    answer: str


class Page(BaseModel):
    """
    Normalized page content produced by the signal extractor.

    Pages are immutable once produced. A page that could not be fetched or
    parsed is represented by the empty-page sentinel (see ``Page.empty``).
    """

    model_config = ConfigDict(frozen=True)

    url: str
    title: str = ""
    content: str = ""
    headings: list[Heading] = Field(default_factory=list)
    structured_data: list[StructuredDataBlock] = Field(default_factory=list)
    faqs: list[FaqPair] = Field(default_factory=list)
    word_count: int = Field(default=0, ge=0)
    internal_links: list[str] = Field(default_factory=list)
    entity_mentions: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls, url: str, title: str = "") -> Page:
        """The empty-page sentinel."""
        return cls(url=url, title=title)

    @property
    def is_empty(self) -> bool:
        return self.word_count == 0 and not self.headings and not self.structured_data

    def heading_count(self, level: int) -> int:
        return sum(1 for h in self.headings if h.level == level)


class ExtractionResult(BaseModel):
    """Competitor extraction output."""
    pages: list[Page] = Field(default_factory=list)
    extracted_count: int = Field(
        default=0,
        ge=0,
        description="Pages that yielded content",
    )
    failed_urls: list[str] = Field(default_factory=list)


class DomainProfile(BaseModel):
    """The user's own page plus derived structural scores."""

    page: Page
    existing_schema_types: list[str] = Field(
        default_factory=list,
        description="Distinct types of valid structured-data blocks",
    )
    invalid_schema_count: int = Field(default=0, ge=0)
    has_faq: bool = False
    content_depth: int = Field(default=0, ge=0, le=100)
    heading_score: int = Field(default=0, ge=0, le=100)
    citation_status: CitationStatus = CitationStatus.NOT_CITED

    @property
    def has_schema(self) -> bool:
        return len(self.existing_schema_types) > 0

    @property
    def is_cited(self) -> bool:
        return self.citation_status == CitationStatus.CITED.value


# =============================================================================
# Pattern Models (Stage 3)
# =============================================================================

class Signal(BaseModel):
    name: str
    present: bool = True
    score: float = Field(..., ge=0.0, le=1.0)


class Archetype(BaseModel):
    """A recurring structural pattern among competitor pages."""
    name: str
    description: str = ""
    frequency: int = Field(..., ge=0, le=100, description="% of competitor pages matching")
    signals: list[Signal] = Field(default_factory=list)


class Gap(BaseModel):
    """A deficiency of the user's domain relative to competitors."""
    name: str
    description: str = ""
    impact_score: float = Field(..., ge=0.0, le=1.0)
    difficulty: Difficulty
    category: GapCategory
    asset_generated: bool = False


class PatternResult(BaseModel):
    """Immutable snapshot of one pattern-analysis run."""
    archetypes: list[Archetype] = Field(..., min_length=1)
    gaps: list[Gap] = Field(default_factory=list)
    current_score: int = Field(..., ge=0, le=100)
    projected_score: int = Field(..., ge=0, le=95)
    user_archetype_match: int = Field(default=0, ge=0, le=100)


# =============================================================================
# Research / Asset / Report Models (Stages 4-6)
# =============================================================================

class ResearchNotes(BaseModel):
    """Deep research output; degraded notes carry empty lists."""
    insights: str = ""
    contradictions: list[str] = Field(default_factory=list, max_length=5)
    knowledge_gaps: list[str] = Field(default_factory=list, max_length=5)
    content_opportunities: list[str] = Field(default_factory=list, max_length=5)
    degraded: bool = False
    note: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class SchemaMarkup(BaseModel):
    json_ld: str
    types: list[str] = Field(default_factory=list)
    is_valid: bool = False


class ContentSection(BaseModel):
    title: str
    type: str = Field(default="faq", description="Section kind, e.g. 'faq'")
    markdown: str = ""
    html: str = ""


class RewrittenCopy(BaseModel):
    markdown: str
    plain_text: str = ""
    word_count: int = Field(default=0, ge=0)


class GeneratedAssets(BaseModel):
    schema_markup: Optional[SchemaMarkup] = None
    content_sections: list[ContentSection] = Field(default_factory=list)
    rewritten_copy: Optional[RewrittenCopy] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def categories(self) -> set[str]:
        """Gap categories these assets address."""
        covered: set[str] = set()
        if self.schema_markup is not None:
            covered.add(GapCategory.SCHEMA.value)
        if any(s.type == "faq" for s in self.content_sections):
            covered.add(GapCategory.FAQ.value)
        if self.rewritten_copy is not None:
            covered.update({GapCategory.CONTENT.value, GapCategory.HEADINGS.value})
        return covered


class RendererAttempt(BaseModel):
    renderer: str
    error: str


class ReportResult(BaseModel):
    """Where the rendered report ended up and how it got there."""
    location: Optional[str] = None
    format: Optional[str] = None
    renderer: Optional[str] = None
    degraded: bool = False
    attempts: list[RendererAttempt] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ApiCallRecord(BaseModel):
    """One collaborator call made while running a stage."""
    api: str
    endpoint: str
    timestamp: datetime = Field(default_factory=utcnow)
    duration_ms: int = Field(default=0, ge=0)
    status: Literal["success", "error"] = "success"
    details: Optional[str] = None


# =============================================================================
# Job
# =============================================================================

class Job(BaseModel):
    """
    The unit of work.

    ``stage`` never decreases, and each stage's result field is populated
    exactly when ``stage`` has reached that stage's index.
    """

    job_id: str = Field(default_factory=generate_job_id)
    domain: str
    topic: str = Field(..., min_length=1, max_length=300)
    query_variants: list[str] = Field(default_factory=list)
    config: JobConfig = Field(default_factory=JobConfig)

    status: JobStatus = JobStatus.PENDING
    stage: int = Field(default=0, ge=0, le=FINAL_STAGE)
    stage_label: str = STAGE_LABELS[0]
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    discovery: Optional[DiscoveryResult] = None
    extraction: Optional[ExtractionResult] = None
    domain_profile: Optional[DomainProfile] = None
    pattern_result: Optional[PatternResult] = None
    research_notes: Optional[ResearchNotes] = None
    generated_assets: Optional[GeneratedAssets] = None
    report: Optional[ReportResult] = None

    api_calls: list[ApiCallRecord] = Field(default_factory=list)

    @field_validator("domain", mode="before")
    @classmethod
    def validate_domain_format(cls, v: str) -> str:
        return normalize_domain(v)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETE.value, JobStatus.FAILED.value)


# =============================================================================
# Stage Results (tagged union)
# =============================================================================

class StageStarted(BaseModel):
    kind: Literal["started"] = "started"
    label: str


class DiscoveryStageResult(BaseModel):
    kind: Literal["discovery"] = "discovery"
    discovery: DiscoveryResult
    api_calls: list[ApiCallRecord] = Field(default_factory=list)


class ExtractionStageResult(BaseModel):
    kind: Literal["extraction"] = "extraction"
    extraction: ExtractionResult
    domain_profile: DomainProfile
    api_calls: list[ApiCallRecord] = Field(default_factory=list)


class PatternStageResult(BaseModel):
    kind: Literal["patterns"] = "patterns"
    pattern_result: PatternResult


class ResearchStageResult(BaseModel):
    kind: Literal["research"] = "research"
    research_notes: ResearchNotes
    api_calls: list[ApiCallRecord] = Field(default_factory=list)


class AssetStageResult(BaseModel):
    kind: Literal["assets"] = "assets"
    generated_assets: GeneratedAssets
    api_calls: list[ApiCallRecord] = Field(default_factory=list)


class ReportStageResult(BaseModel):
    kind: Literal["report"] = "report"
    report: ReportResult
    api_calls: list[ApiCallRecord] = Field(default_factory=list)


class StageFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    error: str
    api_calls: list[ApiCallRecord] = Field(default_factory=list)


StageResult = Annotated[
    Union[
        StageStarted,
        DiscoveryStageResult,
        ExtractionStageResult,
        PatternStageResult,
        ResearchStageResult,
        AssetStageResult,
        ReportStageResult,
        StageFailure,
    ],
    Field(discriminator="kind"),
]
