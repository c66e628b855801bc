"""
Report rendering: an ordered, self-degrading chain of renderers.

    1. HtmlPdfRenderer           brief HTML -> document service -> PDF
    2. TemplateDocumentRenderer  DOCX template filled by the document service,
                                 with an optional compression sub-step
    3. LocalDocumentRenderer     brief HTML written locally (markdown2)

Each tier runs under its own deadline. A tier that fails or times out is
logged and the next tier is tried. If a later tier
succeeds the result is marked ``degraded`` but carries no error ("soft
failure"); if every tier fails the result carries an error string ("hard
failure"). Neither case raises: the report stage never fails a job.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

from citefix.config.settings import Settings, get_settings
from citefix.models.schemas import (
    Job,
    OutputFormat,
    RendererAttempt,
    ReportResult,
    host_key,
)
from citefix.pipeline.errors import UpstreamFailure
from citefix.services.document_service import DocumentServiceClient
from citefix.utils.formatters import (
    brief_template_values,
    export_job_json,
    generate_brief_html,
)
from citefix.utils.logger import get_logger
from citefix.utils.retry import ErrorHandler, call_with_timeout
from citefix.utils.tracking import ApiCallTracker

logger = get_logger(__name__)


# =============================================================================
# Renderers
# =============================================================================

class ReportRenderer(ABC):
    """One tier of the report chain."""

    #: Whether rendering calls the remote document service
    remote: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Renderer name recorded on the report."""

    @property
    @abstractmethod
    def format(self) -> str:
        """Artifact format, also used as the file extension."""

    @abstractmethod
    async def render(self, job: Job) -> bytes:
        """Rendered artifact bytes; raises on failure."""


class HtmlPdfRenderer(ReportRenderer):
    """Uploads the HTML brief, converts it to PDF and optionally watermarks it."""

    def __init__(self, client: DocumentServiceClient, watermark: Optional[str] = None):
        self.client = client
        self.watermark = watermark

    @property
    def name(self) -> str:
        return "html_pdf"

    @property
    def format(self) -> str:
        return "pdf"

    async def render(self, job: Job) -> bytes:
        html = generate_brief_html(job)
        uploaded = await self.client.upload(html.encode("utf-8"), "brief.html")
        document_id = await self.client.wait_for_task(await self.client.html_to_pdf(uploaded))

        if self.watermark:
            text = self.watermark.replace("{domain}", host_key(job.domain))
            try:
                document_id = await self.client.wait_for_task(
                    await self.client.add_watermark(document_id, text)
                )
            except UpstreamFailure as e:
                logger.warning("Watermark skipped", job_id=job.job_id, error=e.message)

        return await self.client.download(document_id, f"brief-{job.job_id}.pdf")


class TemplateDocumentRenderer(ReportRenderer):
    """Fills a DOCX template through the document generation API."""

    def __init__(self, client: DocumentServiceClient, template_path: Optional[Path], compress: bool = True):
        self.client = client
        self.template_path = Path(template_path) if template_path else None
        self.compress = compress

    @property
    def name(self) -> str:
        return "template_document"

    @property
    def format(self) -> str:
        return "pdf"

    async def render(self, job: Job) -> bytes:
        if self.template_path is None or not self.template_path.exists():
            raise UpstreamFailure(
                f"Report template not found: {self.template_path}",
                collaborator="document",
                recoverable=False,
            )

        template = await asyncio.to_thread(self.template_path.read_bytes)
        pdf = await self.client.generate_document(
            template,
            brief_template_values(job),
            output_format="PDF",
        )
        if self.compress:
            pdf = await self._compressed(job, pdf)
        return pdf

    async def _compressed(self, job: Job, pdf: bytes) -> bytes:
        """Compressed copy of ``pdf``, or ``pdf`` unchanged if compression fails."""
        try:
            uploaded = await self.client.upload(pdf, "brief.pdf")
            document_id = await self.client.wait_for_task(await self.client.compress(uploaded))
            return await self.client.download(document_id, f"brief-{job.job_id}.pdf")
        except UpstreamFailure as e:
            logger.warning("Compression skipped", job_id=job.job_id, error=e.message)
            return pdf


class LocalDocumentRenderer(ReportRenderer):
    """Renders the brief to standalone HTML without any remote call."""

    remote = False

    @property
    def name(self) -> str:
        return "local_html"

    @property
    def format(self) -> str:
        return "html"

    async def render(self, job: Job) -> bytes:
        return generate_brief_html(job).encode("utf-8")


# =============================================================================
# Assembler
# =============================================================================

class ReportAssembler:
    """
    Runs the renderer chain for a job and writes the artifact to
    ``output_dir/<job_id>.<format>``.

    Example:
        >>> assembler = ReportAssembler.from_settings(settings)
        >>> report = await assembler.assemble(job)
        >>> report.location
        'outputs/reports/cf_1718000000000_a1b2c3.pdf'
    """

    def __init__(
        self,
        renderers: Sequence[ReportRenderer],
        output_dir: Path | str,
        renderer_timeout: Optional[float] = None,
    ):
        self.renderers = list(renderers)
        self.output_dir = Path(output_dir)
        self.renderer_timeout = renderer_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        client: Optional[DocumentServiceClient] = None,
    ) -> "ReportAssembler":
        settings = settings or get_settings()
        renderers: list[ReportRenderer] = []
        if settings.has_document_credentials:
            client = client or DocumentServiceClient(settings)
            renderers.append(HtmlPdfRenderer(client, watermark=settings.report_watermark))
            renderers.append(TemplateDocumentRenderer(
                client,
                settings.document_template_path,
                compress=settings.report_compression,
            ))
        renderers.append(LocalDocumentRenderer())
        return cls(renderers, settings.output_dir, renderer_timeout=settings.report_timeout_seconds)

    def _write_sync(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def _write(self, job: Job, content: bytes, extension: str) -> Path:
        path = self.output_dir / f"{job.job_id}.{extension}"
        await asyncio.to_thread(self._write_sync, path, content)
        return path

    async def assemble(self, job: Job, tracker: Optional[ApiCallTracker] = None) -> ReportResult:
        """Render the job's report. Never raises for renderer failures."""
        tracker = tracker or ApiCallTracker()

        export_path: Optional[Path] = None
        if job.config.output_format in (OutputFormat.JSON.value, OutputFormat.BOTH.value):
            export_path = await self._write(job, export_job_json(job).encode("utf-8"), "json")
            if job.config.output_format == OutputFormat.JSON.value:
                logger.info("Report exported", job_id=job.job_id, location=str(export_path))
                return ReportResult(location=str(export_path), format="json", renderer="json_export")

        attempts: list[RendererAttempt] = []
        for index, renderer in enumerate(self.renderers):
            try:
                if renderer.remote:
                    async with tracker.track("document", f"Report: {renderer.name}"):
                        content = await call_with_timeout(
                            renderer.render(job),
                            self.renderer_timeout,
                            f"Report: {renderer.name}",
                        )
                else:
                    content = await renderer.render(job)
                path = await self._write(job, content, renderer.format)
            except Exception as e:
                message = ErrorHandler.describe(e)
                attempts.append(RendererAttempt(renderer=renderer.name, error=message))
                logger.warning(
                    "Report renderer failed",
                    job_id=job.job_id,
                    renderer=renderer.name,
                    error=message,
                    error_category=ErrorHandler.categorize_error(e),
                )
                continue

            logger.info(
                "Report rendered",
                job_id=job.job_id,
                renderer=renderer.name,
                location=str(path),
                degraded=index > 0,
            )
            return ReportResult(
                location=str(path),
                format=renderer.format,
                renderer=renderer.name,
                degraded=index > 0,
                attempts=attempts,
            )

        error = "; ".join(f"{a.renderer}: {a.error}" for a in attempts) or "no renderers configured"
        logger.error("All report renderers failed", job_id=job.job_id, error=error)
        return ReportResult(
            location=str(export_path) if export_path else None,
            format="json" if export_path else None,
            degraded=True,
            attempts=attempts,
            error=f"All report renderers failed ({error})",
        )
