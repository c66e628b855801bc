"""
CiteFix - CLI Entry Point.
Command line front end using Click and Rich.
"""

import asyncio
import sys
from functools import wraps
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from citefix import __version__
from citefix.config.settings import Settings, get_settings
from citefix.models.schemas import Depth, Job, JobConfig, JobStatus, OutputFormat
from citefix.pipeline.errors import PipelineError
from citefix.pipeline.orchestrator import AnalysisPipeline
from citefix.pipeline.state_machine import fallback_suggestions
from citefix.store.job_store import FileJobRepository, JobStore, job_summary
from citefix.utils.formatters import export_job_json, impact_label
from citefix.utils.logger import configure_from_settings, setup_logging

# Initialize Rich Console
console = Console()

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def setup_logger(verbose: bool, settings: Optional[Settings] = None):
    """Configure logging based on verbosity."""
    level = "DEBUG" if verbose else "WARNING"
    if settings is None:
        setup_logging(level=level, json_format=False)
    else:
        configure_from_settings(settings, level=level)


def open_store(settings: Settings) -> JobStore:
    return JobStore(FileJobRepository(settings.job_store_dir))


def status_style(status: str) -> str:
    return {
        JobStatus.COMPLETE.value: "green",
        JobStatus.FAILED.value: "red",
        JobStatus.RUNNING.value: "yellow",
    }.get(status, "blue")


def print_job(job: Job) -> None:
    """Score, gap and report summary of a job."""
    style = status_style(job.status)
    table = Table(title="Analysis Summary", show_header=False)
    table.add_row("Job ID", job.job_id)
    table.add_row("Domain", job.domain)
    table.add_row("Topic", job.topic)
    table.add_row("Status", f"[{style}]{job.status}[/{style}]")
    table.add_row("Stage", f"{job.stage}/6 - {job.stage_label}")

    if job.discovery:
        position = job.discovery.user_domain_position
        table.add_row("Cited pages", str(len(job.discovery.cited_pages)))
        table.add_row("Your domain cited", f"yes (#{position})" if position else "no")
    if job.pattern_result:
        result = job.pattern_result
        table.add_row("Citation score", f"{result.current_score}/100")
        table.add_row("Projected score", f"{result.projected_score}/100")
        table.add_row("Archetype match", f"{result.user_archetype_match}%")
    if job.report and job.report.location:
        suffix = " (degraded)" if job.report.degraded else ""
        table.add_row("Report", f"{job.report.location}{suffix}")
    if job.error:
        table.add_row("Error", f"[red]{job.error}[/red]")
    console.print(table)

    if job.pattern_result and job.pattern_result.gaps:
        gaps = Table(title="Gaps", show_header=True, header_style="bold magenta")
        gaps.add_column("Gap")
        gaps.add_column("Impact")
        gaps.add_column("Difficulty")
        gaps.add_column("Asset")
        for gap in job.pattern_result.gaps:
            gaps.add_row(
                gap.name,
                f"+{round(gap.impact_score * 100)}% ({impact_label(gap.impact_score)})",
                gap.difficulty,
                "[green]generated[/green]" if gap.asset_generated else "-",
            )
        console.print(gaps)


# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version=__version__)
def cli():
    """CiteFix - citation probability analysis for AI answer engines"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument("domain")
@click.argument("topic")
@click.option("--depth", type=click.Choice([d.value for d in Depth]), default=Depth.STANDARD.value, help="Search depth")
@click.option("--country", default="US", help="Two-letter country code for search localization")
@click.option("--competitor", "competitors", multiple=True, help="Extra competitor URL (repeatable)")
@click.option(
    "--output-format",
    type=click.Choice([f.value for f in OutputFormat]),
    default=OutputFormat.BOTH.value,
    help="Report output format",
)
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def analyze(
    domain: str,
    topic: str,
    depth: str,
    country: str,
    competitors: tuple[str, ...],
    output_format: str,
    verbose: bool,
):
    """
    Run the full analysis pipeline.

    DOMAIN: The domain to assess (e.g., example.com)
    TOPIC: The topic users ask AI engines about
    """
    settings = get_settings()
    setup_logger(verbose, settings)

    missing = settings.missing_keys()
    if missing:
        console.print(f"[bold red]Missing configuration:[/bold red] {', '.join(missing)}")
        sys.exit(1)

    console.print(Panel.fit(
        f"[bold blue]CiteFix Citation Analysis[/bold blue]\n"
        f"Target: [cyan]{domain}[/cyan]\nTopic: [cyan]{topic}[/cyan]"
    ))

    config = {
        "depth": depth,
        "country": country,
        "competitors": list(competitors),
        "output_format": output_format,
    }
    start_time = asyncio.get_running_loop().time()

    try:
        async with AnalysisPipeline(settings=settings) as pipeline:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("[cyan]Running pipeline...", total=None)

                def update_progress(pct, msg):
                    progress.update(task, description=f"[cyan]{msg} ({pct}%)")

                pipeline.progress_callback = update_progress
                job = await pipeline.run(domain, topic, config)
                progress.update(task, completed=True, description="[green]Pipeline finished")

    except PipelineError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    print_job(job)
    duration = asyncio.get_running_loop().time() - start_time
    console.print(f"[dim]Duration: {duration:.2f}s[/dim]")

    if job.status == JobStatus.FAILED.value:
        sys.exit(1)
    console.print("[green]✓[/green] Analysis complete.")


@cli.command()
@click.argument("job_id")
@async_command
async def status(job_id: str):
    """Show the current state of a job."""
    store = open_store(get_settings())
    job = await store.get(job_id)
    if job is None:
        console.print(f"[bold red]Job not found:[/bold red] {job_id}")
        sys.exit(1)
    print_job(job)


@cli.command()
@click.argument("job_id")
@click.option("--output", type=click.Path(dir_okay=False), help="Write the export to this file")
@async_command
async def export(job_id: str, output: Optional[str]):
    """Export a job as JSON."""
    store = open_store(get_settings())
    job = await store.get(job_id)
    if job is None:
        console.print(f"[bold red]Job not found:[/bold red] {job_id}")
        sys.exit(1)

    payload = export_job_json(job)
    if output:
        Path(output).write_text(payload, encoding="utf-8")
        console.print(f"[green]✓[/green] Exported to {output}")
    else:
        console.print_json(payload)


@cli.command()
@click.option("--domain", default=None, help="Only jobs for this domain")
@click.option("--limit", default=20, show_default=True, help="Maximum rows")
@async_command
async def history(domain: Optional[str], limit: int):
    """List past jobs, newest first."""
    store = open_store(get_settings())
    jobs = await store.list_jobs(domain)
    if not jobs:
        console.print("[yellow]No jobs found.[/yellow]")
        return

    table = Table(title="Job History", show_header=True, header_style="bold magenta")
    for column in ("Job ID", "Domain", "Topic", "Status", "Score", "Gaps", "Created"):
        table.add_column(column)
    for job in jobs[:limit]:
        row = job_summary(job)
        style = status_style(row["status"])
        table.add_row(
            row["job_id"],
            row["domain"],
            row["topic"],
            f"[{style}]{row['status']}[/{style}]",
            "-" if row["score"] is None else f"{row['score']} -> {row['projected_score']}",
            str(row["gap_count"]),
            row["created_at"][:16],
        )
    console.print(table)


@cli.command()
@click.argument("topic")
@click.option("--count", default=5, show_default=True, help="Number of suggestions")
@async_command
async def suggest(topic: str, count: int):
    """Suggest related search intents for TOPIC."""
    settings = get_settings()
    setup_logger(False, settings)

    if not settings.anthropic_api_key:
        console.print("[yellow]ANTHROPIC_API_KEY not configured; showing default suggestions.[/yellow]")
        suggestions = fallback_suggestions(topic)[:count]
    else:
        try:
            async with AnalysisPipeline(settings=settings) as pipeline:
                suggestions = await pipeline.machine.suggest_topics(topic, count)
        except PipelineError as e:
            console.print(f"[bold red]Error:[/bold red] {e.message}")
            sys.exit(1)

    for index, suggestion in enumerate(suggestions, 1):
        console.print(f"{index}. {suggestion}")


@cli.command()
def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    def row(name: str, ok: bool, details: str, required: bool = True):
        if ok:
            mark = "[green]Pass[/green]"
        else:
            mark = "[red]Fail[/red]" if required else "[yellow]Skip[/yellow]"
        table.add_row(name, mark, details)

    row("You.com API Key", settings.you_api_key is not None, "search and page content")
    row("Anthropic API Key", settings.anthropic_api_key is not None, settings.claude_model)
    row(
        "Document Service",
        settings.has_document_credentials,
        settings.document_service_url if settings.has_document_credentials else "local HTML reports only",
        required=False,
    )
    table.add_row("Output Dir", "[green]Pass[/green]", str(settings.output_dir))
    table.add_row("Job Store", "[green]Pass[/green]", str(settings.job_store_dir))
    table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)
    console.print(table)

    missing = settings.missing_keys()
    if missing:
        console.print(f"\n[yellow]Warning: missing {', '.join(missing)}. Analysis cannot run.[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
