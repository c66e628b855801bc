"""
Pipeline driver using LangGraph.

Plays the "driving client" of the job state machine: creates a job and
invokes the six stages in order, stopping as soon as a fatal stage fails.

Graph structure:

    create_job -> discover -> extract -> analyze_patterns -> research
                     |          |              |                 |
                     +----------+--------------+--> END (failed) |
                                                                 v
                                   END <- generate_report <- generate_assets
                                                                 |
                                                                 +--> END (failed)

Features:
    - Stateful execution with LangGraph StateGraph
    - Conditional edges that end the run on a fatal stage failure
    - Progress tracking through a callback
    - Per-node timing and structured logging
    - Testing hooks to replace individual stage operations
"""

import operator
import time
from functools import wraps
from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, TypedDict

from langgraph.graph import END, StateGraph

from citefix.config.settings import Settings, get_settings
from citefix.models.schemas import FINAL_STAGE, Job, JobConfig, JobStatus, utcnow
from citefix.pipeline.errors import PipelineError, UpstreamFailure
from citefix.pipeline.state_machine import JobStateMachine
from citefix.services.content_service import ContentFetcher, LivecrawlContentFetcher
from citefix.services.document_service import DocumentServiceClient
from citefix.services.llm_service import ClaudeResearchAgent, ResearchAgent
from citefix.services.report_service import ReportAssembler
from citefix.services.search_service import RateLimiter, SearchProvider, YouSearchProvider
from citefix.store.job_store import FileJobRepository, JobStore
from citefix.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class PipelineStateDict(TypedDict, total=False):
    """
    TypedDict-based pipeline state for LangGraph.

    The job itself lives in the job store; the graph state only carries its
    id and enough status to route between nodes.
    """
    # Input
    domain: str
    topic: str
    config: dict

    # Job tracking
    job_id: str
    status: str
    stage: int

    # Error handling (uses operator.add for accumulation)
    errors: Annotated[list[str], operator.add]

    # Metadata
    step_timings: dict  # Node name -> duration_ms
    progress_percent: int
    started_at: str
    completed_at: str | None


ProgressCallback = Callable[[int, str], None]

NODE_STAGES = {
    "discover": "discovery",
    "extract": "extraction",
    "analyze_patterns": "patterns",
    "research": "research",
    "generate_assets": "assets",
    "generate_report": "report",
}


def track_timing(func: Callable):
    """Decorator to track node execution timing."""
    @wraps(func)
    async def wrapper(self, state: PipelineStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.info("Starting node", node=node_name, job_id=state.get("job_id"))

        try:
            result = await func(self, state)
        except Exception as e:
            logger.error(
                "Node failed",
                node=node_name,
                job_id=state.get("job_id"),
                duration_ms=int((time.time() - start_time) * 1000),
                error=str(e),
            )
            raise
        duration_ms = int((time.time() - start_time) * 1000)

        step_timings = state.get("step_timings", {}).copy()
        step_timings[node_name] = duration_ms
        result["step_timings"] = step_timings

        if self.progress_callback and "progress_percent" in result:
            try:
                self.progress_callback(result["progress_percent"], f"Completed {node_name}")
            except Exception as cb_err:
                logger.warning("Progress callback failed", error=str(cb_err))

        logger.info(
            "Completed node",
            node=node_name,
            job_id=result.get("job_id", state.get("job_id")),
            duration_ms=duration_ms,
        )
        return result

    return wrapper


def progress_for(stage: int) -> int:
    return round(stage / FINAL_STAGE * 100)


# =============================================================================
# Pipeline
# =============================================================================

class AnalysisPipeline:
    """
    LangGraph-based driver for a full citation analysis.

    Collaborators that are not supplied are built from settings when the
    pipeline is entered, and closed again on exit.

    Example:
        >>> async with AnalysisPipeline() as pipeline:
        ...     job = await pipeline.run("example.com", "crm software")
        ...     print(job.pattern_result.current_score)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[JobStore] = None,
        search: Optional[SearchProvider] = None,
        fetcher: Optional[ContentFetcher] = None,
        agent: Optional[ResearchAgent] = None,
        assembler: Optional[ReportAssembler] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.progress_callback = progress_callback

        self._store = store
        self._search = search
        self._fetcher = fetcher
        self._agent = agent
        self._assembler = assembler
        self._document_client: Optional[DocumentServiceClient] = None
        self._owned: list[Any] = []
        self._machine: Optional[JobStateMachine] = None

        self._graph = self._build_graph()

        # Testing hooks
        self._mock_nodes: dict[str, Callable[[PipelineStateDict], Awaitable[Job]]] = {}

    async def __aenter__(self):
        await self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _initialize_services(self) -> None:
        """Build whichever collaborators were not injected."""
        if self._machine is not None:
            return

        if self._store is None:
            self._store = JobStore(FileJobRepository(self.settings.job_store_dir))
        if self._search is None or self._fetcher is None:
            limiter = RateLimiter()
            if self._search is None:
                self._search = YouSearchProvider(self.settings, rate_limiter=limiter)
                self._owned.append(self._search)
            if self._fetcher is None:
                self._fetcher = LivecrawlContentFetcher(self.settings, rate_limiter=limiter)
                self._owned.append(self._fetcher)
        if self._agent is None:
            self._agent = ClaudeResearchAgent(self.settings)
            self._owned.append(self._agent)
        if self._assembler is None:
            if self.settings.has_document_credentials:
                self._document_client = DocumentServiceClient(self.settings)
                self._owned.append(self._document_client)
            self._assembler = ReportAssembler.from_settings(self.settings, self._document_client)

        self._machine = JobStateMachine(
            self._store,
            self._search,
            self._fetcher,
            self._agent,
            self._assembler,
            self.settings,
        )

    @property
    def machine(self) -> JobStateMachine:
        if self._machine is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._machine

    @property
    def store(self) -> JobStore:
        return self.machine.store

    def _build_graph(self):
        graph = StateGraph(PipelineStateDict)

        graph.add_node("create_job", self._create_job_node)
        graph.add_node("discover", self._discover_node)
        graph.add_node("extract", self._extract_node)
        graph.add_node("analyze_patterns", self._analyze_patterns_node)
        graph.add_node("research", self._research_node)
        graph.add_node("generate_assets", self._generate_assets_node)
        graph.add_node("generate_report", self._generate_report_node)

        graph.set_entry_point("create_job")

        chain = [
            "create_job",
            "discover",
            "extract",
            "analyze_patterns",
            "research",
            "generate_assets",
            "generate_report",
        ]
        for current, following in zip(chain, chain[1:]):
            graph.add_conditional_edges(
                current,
                self._route_after_stage,
                {"continue": following, "stop": END},
            )
        graph.add_edge("generate_report", END)

        return graph.compile()

    def _route_after_stage(self, state: PipelineStateDict) -> Literal["continue", "stop"]:
        if state.get("status") == JobStatus.FAILED.value:
            return "stop"
        return "continue"

    # =========================================================================
    # Node Implementations
    # =========================================================================

    async def _run_stage(self, node_name: str, state: PipelineStateDict) -> dict[str, Any]:
        job_id = state["job_id"]
        try:
            if node_name in self._mock_nodes:
                job = await self._mock_nodes[node_name](state)
            else:
                operation = getattr(self.machine, node_name)
                job = await operation(job_id)
        except UpstreamFailure as e:
            # The state machine already marked the job failed
            return {
                "status": JobStatus.FAILED.value,
                "errors": [f"{NODE_STAGES[node_name]}: {e.message}"],
            }

        return {
            "status": job.status,
            "stage": job.stage,
            "progress_percent": progress_for(job.stage),
        }

    @track_timing
    async def _create_job_node(self, state: PipelineStateDict) -> dict[str, Any]:
        job = await self.machine.create_job(state["domain"], state["topic"], state.get("config"))
        return {
            "job_id": job.job_id,
            "status": job.status,
            "stage": job.stage,
            "progress_percent": 0,
        }

    @track_timing
    async def _discover_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._run_stage("discover", state)

    @track_timing
    async def _extract_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._run_stage("extract", state)

    @track_timing
    async def _analyze_patterns_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._run_stage("analyze_patterns", state)

    @track_timing
    async def _research_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._run_stage("research", state)

    @track_timing
    async def _generate_assets_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._run_stage("generate_assets", state)

    @track_timing
    async def _generate_report_node(self, state: PipelineStateDict) -> dict[str, Any]:
        result = await self._run_stage("generate_report", state)
        result["completed_at"] = utcnow().isoformat()
        return result

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(
        self,
        domain: str,
        topic: str,
        config: Optional[JobConfig | dict] = None,
    ) -> Job:
        """
        Run every stage for ``domain`` / ``topic`` and return the final job.

        A fatal stage failure does not raise: the returned job has
        ``status == "failed"`` and its ``error`` set.

        Raises:
            InvalidInput: If the submission is invalid.
        """
        await self._initialize_services()

        if isinstance(config, JobConfig):
            config = config.model_dump(mode="json")

        initial_state: PipelineStateDict = {
            "domain": domain,
            "topic": topic,
            "config": config or {},
            "errors": [],
            "step_timings": {},
            "progress_percent": 0,
            "started_at": utcnow().isoformat(),
            "completed_at": None,
        }

        logger.info("Starting pipeline run", domain=domain, topic=topic)

        try:
            final_state = await self._graph.ainvoke(initial_state)
        except PipelineError:
            raise
        except Exception as e:
            logger.error("Pipeline failed with unexpected error", domain=domain, error=str(e))
            raise PipelineError(
                message=f"Unexpected pipeline error: {e}",
                details={"domain": domain, "topic": topic},
            ) from e

        job = await self.store.require(final_state["job_id"])
        logger.info(
            "Pipeline finished",
            job_id=job.job_id,
            status=job.status,
            stage=job.stage,
            errors=final_state.get("errors", []),
            duration_ms=sum(final_state.get("step_timings", {}).values()),
        )
        return job

    def mock_node(self, node_name: str, mock_func: Callable[[PipelineStateDict], Awaitable[Job]]) -> None:
        """
        Replace a stage operation (testing).

        Args:
            node_name: One of the stage node names, e.g. ``"research"``
            mock_func: Async function receiving the graph state and returning the job
        """
        if node_name not in NODE_STAGES:
            raise ValueError(f"Unknown stage node: {node_name}")
        self._mock_nodes[node_name] = mock_func

    def clear_mocks(self) -> None:
        """Clear all registered mocks."""
        self._mock_nodes.clear()

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Flush pending job writes and close owned collaborators."""
        if self._store is not None:
            await self._store.flush()
        for service in self._owned:
            if hasattr(service, "get_usage_stats"):
                logger.info("Agent usage", **service.get_usage_stats())
            elif hasattr(service, "get_stats"):
                logger.info("Collaborator usage", **service.get_stats())
            try:
                if hasattr(service, "disconnect"):
                    await service.disconnect()
                else:
                    await service.close()
            except Exception as e:
                logger.warning("Error closing service", service=type(service).__name__, error=str(e))
        self._owned.clear()


# =============================================================================
# Convenience Functions
# =============================================================================

async def analyze_domain(
    domain: str,
    topic: str,
    config: Optional[JobConfig | dict] = None,
    settings: Optional[Settings] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Job:
    """
    Convenience function to run a full analysis.

    Example:
        >>> job = await analyze_domain("example.com", "crm software")
        >>> job.status
        'complete'
    """
    async with AnalysisPipeline(settings=settings, progress_callback=progress_callback) as pipeline:
        return await pipeline.run(domain, topic, config)
