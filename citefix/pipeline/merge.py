"""
Merging typed stage results into a job.

Every mutation of a job after creation goes through ``merge_stage_result``:
it maps one variant of the ``StageResult`` union to the partial update the
job store applies. Each variant only touches the fields its stage owns, and
the ``match`` is checked exhaustively with ``assert_never``.
"""

from typing import Any, assert_never

from citefix.models.schemas import (
    AssetStageResult,
    DiscoveryStageResult,
    ExtractionStageResult,
    FINAL_STAGE,
    Job,
    JobStatus,
    PatternStageResult,
    ReportStageResult,
    ResearchStageResult,
    STAGE_LABELS,
    StageFailure,
    StageResult,
    StageStarted,
    utcnow,
)

# Stage index reached once each successful result is merged
STAGE_INDEX = {
    "discovery": 1,
    "extraction": 2,
    "patterns": 3,
    "research": 4,
    "assets": 5,
    "report": FINAL_STAGE,
}


def _advance(job: Job, kind: str) -> dict[str, Any]:
    stage = max(job.stage, STAGE_INDEX[kind])
    return {"stage": stage, "stage_label": STAGE_LABELS[stage]}


def merge_stage_result(job: Job, result: StageResult) -> dict[str, Any]:
    """
    Partial update that applies ``result`` to ``job``.

    The returned dict is handed to ``JobStore.update``; ``job`` itself is
    never modified. ``stage`` only ever moves forward.
    """
    calls = list(job.api_calls)

    match result:
        case StageStarted(label=label):
            return {"status": JobStatus.RUNNING.value, "stage_label": label}

        case DiscoveryStageResult(discovery=discovery, api_calls=api_calls):
            return {
                "discovery": discovery,
                "query_variants": list(discovery.query_variants),
                "api_calls": calls + api_calls,
                **_advance(job, result.kind),
            }

        case ExtractionStageResult(extraction=extraction, domain_profile=profile, api_calls=api_calls):
            return {
                "extraction": extraction,
                "domain_profile": profile,
                "api_calls": calls + api_calls,
                **_advance(job, result.kind),
            }

        case PatternStageResult(pattern_result=pattern_result):
            return {"pattern_result": pattern_result, **_advance(job, result.kind)}

        case ResearchStageResult(research_notes=notes, api_calls=api_calls):
            return {
                "research_notes": notes,
                "api_calls": calls + api_calls,
                **_advance(job, result.kind),
            }

        case AssetStageResult(generated_assets=assets, api_calls=api_calls):
            update: dict[str, Any] = {
                "generated_assets": assets,
                "api_calls": calls + api_calls,
                **_advance(job, result.kind),
            }
            if job.pattern_result is not None:
                # The only post-creation change a gap ever receives
                covered = assets.categories
                gaps = [
                    gap.model_copy(update={"asset_generated": True}) if gap.category in covered else gap
                    for gap in job.pattern_result.gaps
                ]
                update["pattern_result"] = job.pattern_result.model_copy(update={"gaps": gaps})
            return update

        case ReportStageResult(report=report, api_calls=api_calls):
            update = {
                "report": report,
                "api_calls": calls + api_calls,
                "status": JobStatus.COMPLETE.value,
                "completed_at": utcnow(),
                **_advance(job, result.kind),
            }
            if report.error:
                update["error"] = f"Report: {report.error}"
            return update

        case StageFailure(error=error, api_calls=api_calls):
            return {
                "status": JobStatus.FAILED.value,
                "error": error,
                "api_calls": calls + api_calls,
            }

        case _:
            assert_never(result)
