"""
Job state machine.

Owns the lifecycle of a ``Job``: ``pending -> running -> {complete, failed}``
with a secondary ``stage`` counter (0-6). Each stage operation

    1. loads the job (``NotFound`` if unknown),
    2. checks that the job is not terminal and that the upstream result it
       needs exists (``PreconditionFailed``, job left untouched),
    3. marks the job running with a progress label,
    4. does its work under a timeout,
    5. merges a typed stage result through ``merge_stage_result``.

Discovery, extraction, pattern analysis and asset generation are fatal on
failure: the job is marked failed and the ``UpstreamFailure`` re-raised.
Deep research and report rendering degrade instead and the job continues.
"""

import asyncio
from typing import Callable, Optional

from pydantic import ValidationError

from citefix.analyzers import domain_profiler, pattern_engine
from citefix.analyzers.prompts import (
    build_faq_prompt,
    build_research_prompt,
    build_rewrite_prompt,
    build_schema_prompt,
    build_suggest_prompt,
)
from citefix.analyzers.response_parser import (
    detect_schema_types,
    extract_code_block,
    faq_to_html,
    is_valid_json_ld,
    parse_list_items,
    parse_research_notes,
    strip_markdown,
)
from citefix.config.settings import Settings, get_settings
from citefix.models.schemas import (
    AgentMode,
    AssetStageResult,
    ContentSection,
    DiscoveryResult,
    DiscoveryStageResult,
    ExtractionStageResult,
    GapCategory,
    GeneratedAssets,
    Job,
    JobConfig,
    PatternStageResult,
    ReportResult,
    ReportStageResult,
    ResearchNotes,
    ResearchStageResult,
    RewrittenCopy,
    SchemaMarkup,
    StageFailure,
    StageResult,
    StageStarted,
)
from citefix.pipeline.errors import (
    InvalidInput,
    PreconditionFailed,
    UpstreamFailure,
)
from citefix.pipeline.fanout import (
    competitor_urls,
    extract_pages_concurrently,
    fetch_page,
    find_user_domain,
    generate_query_variants,
    merge_citations,
    search_variants,
)
from citefix.pipeline.merge import merge_stage_result
from citefix.services.content_service import ContentFetcher
from citefix.services.llm_service import ResearchAgent
from citefix.services.report_service import ReportAssembler
from citefix.services.search_service import SearchProvider
from citefix.store.job_store import JobStore
from citefix.utils.logger import LogContext, get_logger
from citefix.utils.retry import ErrorHandler, call_with_timeout
from citefix.utils.tracking import ApiCallTracker

logger = get_logger(__name__)


# =============================================================================
# Stage Definitions
# =============================================================================

STAGES = ("discovery", "extraction", "patterns", "research", "assets", "report")

PROGRESS_LABELS = {
    "discovery": "Discovering cited pages...",
    "extraction": "Extracting page content...",
    "patterns": "Running citation pattern analysis...",
    "research": "Running deep research...",
    "assets": "Generating implementation assets...",
    "report": "Rendering implementation brief...",
}

# Stage -> (required job field, message when missing)
PRECONDITIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "discovery": ((), ""),
    "extraction": (("discovery",), "Run discovery stage first"),
    "patterns": (("extraction", "domain_profile"), "Run extraction stage first"),
    "research": (("pattern_result",), "Run pattern analysis first"),
    "assets": (("research_notes",), "Run deep research first"),
    "report": (("generated_assets",), "Run asset generation first"),
}

SUGGESTION_COUNT = 5

FAQ_SECTION_TITLE = "Frequently Asked Questions: {topic}"


def fallback_suggestions(topic: str) -> list[str]:
    """Deterministic intent variants used when the agent is unavailable."""
    base = topic.strip()
    return [
        f"best {base} 2025",
        f"{base} vs competitors",
        f"how to choose {base}",
        f"{base} reviews and ratings",
        f"is {base} worth it",
    ]


def _as_failure(error: Exception, stage: str) -> UpstreamFailure:
    if isinstance(error, UpstreamFailure):
        return error
    return UpstreamFailure(
        f"{stage.capitalize()} failed: {ErrorHandler.describe(error)}",
        collaborator=stage,
        recoverable=False,
    )


# =============================================================================
# State Machine
# =============================================================================

class JobStateMachine:
    """
    Stage-gated driver of analysis jobs.

    Collaborators are injected so tests can substitute fakes; job state
    lives only in the injected ``JobStore``.

    Example:
        >>> machine = JobStateMachine(store, search, fetcher, agent, assembler)
        >>> job = await machine.create_job("example.com", "crm software")
        >>> job = await machine.discover(job.job_id)
        >>> job.stage
        1
    """

    def __init__(
        self,
        store: JobStore,
        search: SearchProvider,
        fetcher: ContentFetcher,
        agent: ResearchAgent,
        assembler: ReportAssembler,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.search = search
        self.fetcher = fetcher
        self.agent = agent
        self.assembler = assembler
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Job lifecycle
    # -------------------------------------------------------------------------

    async def create_job(
        self,
        domain: str,
        topic: str,
        config: Optional[JobConfig | dict] = None,
    ) -> Job:
        """
        Validate input and store a new pending job.

        Raises:
            InvalidInput: If the domain, topic or config is invalid.
        """
        try:
            if isinstance(config, dict):
                config = JobConfig.model_validate(config)
            job = Job(domain=domain, topic=topic, config=config or JobConfig())
        except ValidationError as e:
            raise InvalidInput(
                "Invalid job submission",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e
        except ValueError as e:
            raise InvalidInput(str(e)) from e

        job = await self.store.create(job)
        logger.info("Job created", job_id=job.job_id, domain=job.domain, topic=job.topic)
        return job

    async def get_job(self, job_id: str) -> Job:
        """Raises ``NotFound`` for unknown ids."""
        return await self.store.require(job_id)

    async def _apply(self, job_id: str, result: StageResult) -> Job:
        current = await self.store.require(job_id)
        return await self.store.update(job_id, merge_stage_result(current, result))

    async def _begin(self, job_id: str, stage: str) -> Job:
        job = await self.store.require(job_id)

        if job.is_terminal:
            raise PreconditionFailed(
                f"Job {job_id} is already {job.status}",
                job_id=job_id,
                stage=stage,
            )

        fields, message = PRECONDITIONS[stage]
        if any(getattr(job, field) is None for field in fields):
            raise PreconditionFailed(message, job_id=job_id, stage=stage)

        return await self._apply(job_id, StageStarted(label=PROGRESS_LABELS[stage]))

    async def _fail(
        self,
        job_id: str,
        error: Exception,
        stage: str,
        tracker: ApiCallTracker,
    ) -> UpstreamFailure:
        """Mark the job failed and return the error for the caller to raise."""
        failure = _as_failure(error, stage)
        await self._apply(job_id, StageFailure(error=failure.message, api_calls=tracker.drain()))
        logger.error(
            "Stage failed",
            error=failure.message,
            error_category=ErrorHandler.categorize_error(error),
        )
        return failure

    async def _agent(self, prompt: str, mode: AgentMode, tracker: ApiCallTracker, endpoint: str) -> str:
        async with tracker.track("agent", endpoint, details=mode.value):
            return await call_with_timeout(
                self.agent.run_agent(prompt, mode=mode),
                self.settings.agent_timeout_seconds,
                "agent",
            )

    # -------------------------------------------------------------------------
    # Stage 1: discovery
    # -------------------------------------------------------------------------

    async def discover(self, job_id: str) -> Job:
        job = await self._begin(job_id, "discovery")
        tracker = ApiCallTracker()

        with LogContext(job_id=job_id, stage="discovery"):
            variants = generate_query_variants(job.topic)
            try:
                results = await search_variants(
                    self.search,
                    variants,
                    job.config,
                    self.settings.search_timeout_seconds,
                    tracker,
                )
            except Exception as e:
                raise await self._fail(job_id, e, "discovery", tracker)

            cited = merge_citations(results, job.config.result_count)
            position = find_user_domain(cited, job.domain)
            discovery = DiscoveryResult(
                cited_pages=cited,
                query_variants=variants,
                total_results=sum(len(hits) for _, hits in results),
                user_domain_found=position is not None,
                user_domain_position=position,
            )
            logger.info(
                "Discovery complete",
                cited_pages=len(cited),
                total_results=discovery.total_results,
                user_domain_position=position,
            )
            return await self._apply(job_id, DiscoveryStageResult(
                discovery=discovery,
                api_calls=tracker.drain(),
            ))

    # -------------------------------------------------------------------------
    # Stage 2: extraction
    # -------------------------------------------------------------------------

    async def extract(self, job_id: str) -> Job:
        job = await self._begin(job_id, "extraction")
        tracker = ApiCallTracker()

        with LogContext(job_id=job_id, stage="extraction"):
            urls = competitor_urls(job.discovery.cited_pages, job.config.competitors)
            extraction = await extract_pages_concurrently(
                self.fetcher,
                urls,
                self.settings.max_concurrent_requests,
                self.settings.fetch_timeout_seconds,
                tracker,
            )

            try:
                own_page = await fetch_page(
                    self.fetcher,
                    job.domain,
                    self.settings.fetch_timeout_seconds,
                    tracker,
                )
            except Exception as e:
                raise await self._fail(job_id, e, "extraction", tracker)

            profile = domain_profiler.profile(own_page, is_cited=job.discovery.user_domain_found)
            logger.info(
                "Extraction complete",
                extracted=extraction.extracted_count,
                failed=len(extraction.failed_urls),
                content_depth=profile.content_depth,
            )
            return await self._apply(job_id, ExtractionStageResult(
                extraction=extraction,
                domain_profile=profile,
                api_calls=tracker.drain(),
            ))

    # -------------------------------------------------------------------------
    # Stage 3: pattern analysis
    # -------------------------------------------------------------------------

    async def analyze_patterns(self, job_id: str) -> Job:
        job = await self._begin(job_id, "patterns")

        with LogContext(job_id=job_id, stage="patterns"):
            pages = [page for page in job.extraction.pages if not page.is_empty]
            try:
                result = pattern_engine.analyze(pages, job.domain_profile)
            except Exception as e:
                raise await self._fail(job_id, e, "patterns", ApiCallTracker())

            logger.info(
                "Pattern analysis complete",
                archetypes=len(result.archetypes),
                gaps=len(result.gaps),
                current_score=result.current_score,
                projected_score=result.projected_score,
            )
            return await self._apply(job_id, PatternStageResult(pattern_result=result))

    # -------------------------------------------------------------------------
    # Stage 4: deep research (non-critical)
    # -------------------------------------------------------------------------

    async def research(self, job_id: str) -> Job:
        job = await self._begin(job_id, "research")
        tracker = ApiCallTracker()

        with LogContext(job_id=job_id, stage="research"):
            try:
                text = await self._agent(
                    build_research_prompt(job),
                    AgentMode.ADVANCED,
                    tracker,
                    f"Research: {job.topic}",
                )
                notes = parse_research_notes(text)
            except Exception as e:
                message = ErrorHandler.describe(e)
                logger.warning(
                    "Deep research unavailable",
                    error=message,
                    error_category=ErrorHandler.categorize_error(e),
                )
                notes = ResearchNotes(degraded=True, note=f"Deep research unavailable: {message}")

            return await self._apply(job_id, ResearchStageResult(
                research_notes=notes,
                api_calls=tracker.drain(),
            ))

    # -------------------------------------------------------------------------
    # Stage 5: asset generation
    # -------------------------------------------------------------------------

    async def generate_assets(self, job_id: str) -> Job:
        job = await self._begin(job_id, "assets")
        tracker = ApiCallTracker()

        with LogContext(job_id=job_id, stage="assets"):
            categories = {gap.category for gap in job.pattern_result.gaps}
            wants_schema = GapCategory.SCHEMA.value in categories
            wants_faq = GapCategory.FAQ.value in categories
            wants_copy = bool(categories & {GapCategory.CONTENT.value, GapCategory.HEADINGS.value})

            try:
                schema, faq, copy = await asyncio.gather(
                    self._generate(wants_schema, self._schema_markup, job, tracker),
                    self._generate(wants_faq, self._faq_section, job, tracker),
                    self._generate(wants_copy, self._rewritten_copy, job, tracker),
                )
            except Exception as e:
                raise await self._fail(job_id, e, "assets", tracker)

            assets = GeneratedAssets(
                schema_markup=schema,
                content_sections=[faq] if faq else [],
                rewritten_copy=copy,
            )
            logger.info(
                "Assets generated",
                schema=schema is not None,
                faq=faq is not None,
                rewritten_copy=copy is not None,
            )
            return await self._apply(job_id, AssetStageResult(
                generated_assets=assets,
                api_calls=tracker.drain(),
            ))

    async def _generate(
        self,
        wanted: bool,
        build: Callable,
        job: Job,
        tracker: ApiCallTracker,
    ):
        if not wanted:
            return None
        return await build(job, tracker)

    async def _schema_markup(self, job: Job, tracker: ApiCallTracker) -> SchemaMarkup:
        text = await self._agent(build_schema_prompt(job), AgentMode.EXPRESS, tracker, "Assets: schema markup")
        json_ld = extract_code_block(text)
        return SchemaMarkup(
            json_ld=json_ld,
            types=detect_schema_types(json_ld),
            is_valid=is_valid_json_ld(json_ld),
        )

    async def _faq_section(self, job: Job, tracker: ApiCallTracker) -> ContentSection:
        text = await self._agent(build_faq_prompt(job), AgentMode.EXPRESS, tracker, "Assets: FAQ section")
        return ContentSection(
            title=FAQ_SECTION_TITLE.format(topic=job.topic),
            type="faq",
            markdown=text,
            html=faq_to_html(text),
        )

    async def _rewritten_copy(self, job: Job, tracker: ApiCallTracker) -> RewrittenCopy:
        text = await self._agent(build_rewrite_prompt(job), AgentMode.EXPRESS, tracker, "Assets: rewritten copy")
        return RewrittenCopy(
            markdown=text,
            plain_text=strip_markdown(text),
            word_count=len(text.split()),
        )

    # -------------------------------------------------------------------------
    # Stage 6: report (non-critical, always completes the job)
    # -------------------------------------------------------------------------

    async def generate_report(self, job_id: str) -> Job:
        job = await self._begin(job_id, "report")
        tracker = ApiCallTracker()

        with LogContext(job_id=job_id, stage="report"):
            try:
                report = await self.assembler.assemble(job, tracker)
            except Exception as e:
                message = ErrorHandler.describe(e)
                logger.error("Report rendering failed", error=message)
                report = ReportResult(degraded=True, error=message)

            job = await self._apply(job_id, ReportStageResult(report=report, api_calls=tracker.drain()))
            logger.info(
                "Job complete",
                location=report.location,
                renderer=report.renderer,
                degraded=report.degraded,
            )
            return job

    # -------------------------------------------------------------------------
    # Topic suggestions
    # -------------------------------------------------------------------------

    async def suggest_topics(self, topic: str, count: int = SUGGESTION_COUNT) -> list[str]:
        """
        Related search intents for ``topic``.

        Falls back to a fixed list when the agent fails or returns nothing.
        """
        topic = (topic or "").strip()
        if not topic:
            raise InvalidInput("Topic is required")

        tracker = ApiCallTracker()
        try:
            text = await self._agent(build_suggest_prompt(topic, count), AgentMode.EXPRESS, tracker, f"Suggest: {topic}")
            suggestions = parse_list_items(text, limit=count)
        except Exception as e:
            logger.warning("Topic suggestion failed", topic=topic, error=ErrorHandler.describe(e))
            suggestions = []

        return suggestions or fallback_suggestions(topic)[:count]
