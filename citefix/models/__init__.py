"""Data models module for CiteFix."""

from citefix.models.schemas import (
    # Base Models
    BaseModel,

    # Enums
    JobStatus,
    Depth,
    SourceType,
    OutputFormat,
    CitationStatus,
    Difficulty,
    GapCategory,
    AgentMode,
    ErrorType,

    # Constants
    DEPTH_RESULT_COUNT,
    STAGE_LABELS,
    FINAL_STAGE,

    # Input Models
    JobConfig,

    # Discovery Models (Stage 1)
    SearchHit,
    CitedPage,
    DiscoveryResult,

    # Extraction Models (Stage 2)
    Heading,
    StructuredDataBlock,
    FaqPair,
    Page,
    ExtractionResult,
    DomainProfile,

    # Pattern Models (Stage 3)
    Signal,
    Archetype,
    Gap,
    PatternResult,

    # Stages 4-6
    ResearchNotes,
    SchemaMarkup,
    ContentSection,
    RewrittenCopy,
    GeneratedAssets,
    RendererAttempt,
    ReportResult,
    ApiCallRecord,

    # Job
    Job,

    # Stage results
    StageStarted,
    DiscoveryStageResult,
    ExtractionStageResult,
    PatternStageResult,
    ResearchStageResult,
    AssetStageResult,
    ReportStageResult,
    StageFailure,
    StageResult,

    # Validators
    normalize_domain,
    host_key,
    generate_job_id,
)

__all__ = [
    "BaseModel",
    "JobStatus",
    "Depth",
    "SourceType",
    "OutputFormat",
    "CitationStatus",
    "Difficulty",
    "GapCategory",
    "AgentMode",
    "ErrorType",
    "DEPTH_RESULT_COUNT",
    "STAGE_LABELS",
    "FINAL_STAGE",
    "JobConfig",
    "SearchHit",
    "CitedPage",
    "DiscoveryResult",
    "Heading",
    "StructuredDataBlock",
    "FaqPair",
    "Page",
    "ExtractionResult",
    "DomainProfile",
    "Signal",
    "Archetype",
    "Gap",
    "PatternResult",
    "ResearchNotes",
    "SchemaMarkup",
    "ContentSection",
    "RewrittenCopy",
    "GeneratedAssets",
    "RendererAttempt",
    "ReportResult",
    "ApiCallRecord",
    "Job",
    "StageStarted",
    "DiscoveryStageResult",
    "ExtractionStageResult",
    "PatternStageResult",
    "ResearchStageResult",
    "AssetStageResult",
    "ReportStageResult",
    "StageFailure",
    "StageResult",
    "normalize_domain",
    "host_key",
    "generate_job_id",
]
