import asyncio
import json

import pytest
from pydantic import SecretStr
from unittest.mock import AsyncMock, MagicMock, patch

from citefix.models.schemas import JobConfig
from citefix.pipeline.errors import UpstreamFailure
from citefix.services.report_service import (
    HtmlPdfRenderer,
    LocalDocumentRenderer,
    ReportAssembler,
    TemplateDocumentRenderer,
)
from citefix.utils.tracking import ApiCallTracker
from tests.helpers import FailingRenderer, HangingRenderer, StaticRenderer, finished_job


@pytest.fixture
def doc_client():
    client = MagicMock()
    client.upload = AsyncMock(return_value="doc-1")
    client.html_to_pdf = AsyncMock(return_value="task-pdf")
    client.add_watermark = AsyncMock(return_value="task-mark")
    client.compress = AsyncMock(return_value="task-compress")
    client.wait_for_task = AsyncMock(side_effect=lambda task_id: f"result-of-{task_id}")
    client.download = AsyncMock(return_value=b"%PDF final")
    client.generate_document = AsyncMock(return_value=b"%PDF generated")
    return client


# =============================================================================
# Assembler
# =============================================================================

@pytest.mark.asyncio
async def test_json_only_skips_renderers(tmp_path):
    primary = FailingRenderer("html_pdf")
    assembler = ReportAssembler([primary], tmp_path)
    job = finished_job(config=JobConfig(output_format="json"))

    report = await assembler.assemble(job)

    assert report.format == "json"
    assert report.renderer == "json_export"
    assert not report.degraded
    assert primary.calls == 0
    exported = json.loads((tmp_path / f"{job.job_id}.json").read_text())
    assert exported["_meta"]["job_id"] == job.job_id


@pytest.mark.asyncio
async def test_pdf_only_writes_no_export(tmp_path):
    assembler = ReportAssembler([StaticRenderer()], tmp_path)
    job = finished_job(config=JobConfig(output_format="pdf"))

    report = await assembler.assemble(job)

    assert report.location == str(tmp_path / f"{job.job_id}.pdf")
    assert not (tmp_path / f"{job.job_id}.json").exists()


@pytest.mark.asyncio
async def test_fallback_records_attempts_and_tracks_remote_calls(tmp_path):
    tracker = ApiCallTracker()
    assembler = ReportAssembler(
        [FailingRenderer("html_pdf"), FailingRenderer("template_document"), LocalDocumentRenderer()],
        tmp_path,
    )
    job = finished_job()

    report = await assembler.assemble(job, tracker)

    assert report.renderer == "local_html"
    assert report.degraded
    assert report.error is None
    assert [a.renderer for a in report.attempts] == ["html_pdf", "template_document"]
    assert report.attempts[0].error == "html_pdf unavailable"
    records = tracker.drain()
    assert [r.endpoint for r in records] == ["Report: html_pdf", "Report: template_document"]
    assert all(r.status == "error" for r in records)
    assert "<html>" in (tmp_path / f"{job.job_id}.html").read_text()


@pytest.mark.asyncio
async def test_slow_renderer_times_out_and_next_tier_runs(tmp_path):
    tracker = ApiCallTracker()
    slow = HangingRenderer("html_pdf")
    assembler = ReportAssembler([slow, LocalDocumentRenderer()], tmp_path, renderer_timeout=0.05)
    job = finished_job(config=JobConfig(output_format="pdf"))

    report = await assembler.assemble(job, tracker)

    assert slow.calls == 1
    assert report.renderer == "local_html"
    assert report.location == str(tmp_path / f"{job.job_id}.html")
    assert report.degraded
    assert report.error is None
    assert report.attempts[0].renderer == "html_pdf"
    assert "timed out after 0.05 seconds" in report.attempts[0].error
    records = tracker.drain()
    assert [r.endpoint for r in records] == ["Report: html_pdf"]
    assert records[0].status == "error"


@pytest.mark.asyncio
async def test_all_renderers_fail_falls_back_to_export(tmp_path):
    assembler = ReportAssembler([FailingRenderer("html_pdf"), FailingRenderer("local", remote=False)], tmp_path)
    job = finished_job()

    report = await assembler.assemble(job)

    assert report.format == "json"
    assert report.location.endswith(".json")
    assert report.error == "All report renderers failed (html_pdf: html_pdf unavailable; local: local unavailable)"


@pytest.mark.asyncio
async def test_no_renderers_and_no_export(tmp_path):
    report = await ReportAssembler([], tmp_path).assemble(finished_job(config=JobConfig(output_format="pdf")))
    assert report.location is None
    assert report.error == "All report renderers failed (no renderers configured)"


def test_from_settings_without_credentials(settings):
    assembler = ReportAssembler.from_settings(settings)
    assert [r.name for r in assembler.renderers] == ["local_html"]
    assert assembler.output_dir == settings.output_dir
    assert assembler.renderer_timeout == settings.report_timeout_seconds


def test_from_settings_with_credentials(settings, doc_client):
    configured = settings.model_copy(update={
        "document_client_id": SecretStr("id"),
        "document_client_secret": SecretStr("secret"),
        "report_watermark": "Draft for {domain}",
        "report_compression": False,
    })
    assembler = ReportAssembler.from_settings(configured, client=doc_client)

    assert [r.name for r in assembler.renderers] == ["html_pdf", "template_document", "local_html"]
    assert assembler.renderers[0].watermark == "Draft for {domain}"
    assert assembler.renderers[1].compress is False


# =============================================================================
# Renderers
# =============================================================================

@pytest.mark.asyncio
async def test_html_pdf_renderer_with_watermark(doc_client):
    renderer = HtmlPdfRenderer(doc_client, watermark="Prepared for {domain}")
    job = finished_job()

    pdf = await renderer.render(job)

    assert pdf == b"%PDF final"
    uploaded, filename = doc_client.upload.await_args.args
    assert filename == "brief.html"
    assert b"Implementation Brief: example.com" in uploaded
    doc_client.add_watermark.assert_awaited_once_with("result-of-task-pdf", "Prepared for example.com")
    doc_client.download.assert_awaited_once_with("result-of-task-mark", f"brief-{job.job_id}.pdf")


@pytest.mark.asyncio
async def test_html_pdf_renderer_skips_failed_watermark(doc_client):
    doc_client.add_watermark.side_effect = UpstreamFailure("watermark down", collaborator="document")
    renderer = HtmlPdfRenderer(doc_client, watermark="Draft")
    job = finished_job()

    assert await renderer.render(job) == b"%PDF final"
    doc_client.download.assert_awaited_once_with("result-of-task-pdf", f"brief-{job.job_id}.pdf")


@pytest.mark.asyncio
async def test_template_renderer_missing_template(doc_client, tmp_path):
    renderer = TemplateDocumentRenderer(doc_client, tmp_path / "missing.docx")
    with pytest.raises(UpstreamFailure, match="template not found"):
        await renderer.render(finished_job())
    doc_client.generate_document.assert_not_called()

    with pytest.raises(UpstreamFailure):
        await TemplateDocumentRenderer(doc_client, None).render(finished_job())


@pytest.mark.asyncio
async def test_template_renderer_compresses(doc_client, tmp_path):
    template = tmp_path / "brief.docx"
    template.write_bytes(b"docx")
    renderer = TemplateDocumentRenderer(doc_client, template)

    assert await renderer.render(finished_job()) == b"%PDF final"

    template_bytes, values = doc_client.generate_document.await_args.args[:2]
    assert template_bytes == b"docx"
    assert values["domain"] == "example.com"
    doc_client.upload.assert_awaited_once_with(b"%PDF generated", "brief.pdf")


@pytest.mark.asyncio
async def test_template_renderer_keeps_pdf_when_compression_fails(doc_client, tmp_path):
    template = tmp_path / "brief.docx"
    template.write_bytes(b"docx")
    doc_client.compress.side_effect = UpstreamFailure("compress down", collaborator="document")

    assert await TemplateDocumentRenderer(doc_client, template).render(finished_job()) == b"%PDF generated"
    assert await TemplateDocumentRenderer(doc_client, template, compress=False).render(finished_job()) == b"%PDF generated"


# =============================================================================
# File I/O
# =============================================================================

@pytest.mark.asyncio
async def test_artifact_writes_run_off_the_event_loop(tmp_path):
    assembler = ReportAssembler([LocalDocumentRenderer()], tmp_path / "nested")
    job = finished_job(config=JobConfig(output_format="both"))

    with patch("citefix.services.report_service.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
        report = await assembler.assemble(job)

    assert to_thread.call_count == 2
    assert (tmp_path / "nested" / f"{job.job_id}.json").exists()
    assert report.location == str(tmp_path / "nested" / f"{job.job_id}.html")


@pytest.mark.asyncio
async def test_template_read_runs_off_the_event_loop(doc_client, tmp_path):
    template = tmp_path / "brief.docx"
    template.write_bytes(b"docx")

    with patch("citefix.services.report_service.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
        await TemplateDocumentRenderer(doc_client, template, compress=False).render(finished_job())

    assert to_thread.call_args.args == (template.read_bytes,)
