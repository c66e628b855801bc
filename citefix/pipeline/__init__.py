"""
Pipeline module for CiteFix.

Only the error taxonomy is re-exported here; services import it, so the
state machine and orchestrator are imported from their own modules to avoid
circular imports.
"""

from citefix.pipeline.errors import (
    PipelineError,
    InvalidInput,
    NotFound,
    PreconditionFailed,
    UpstreamFailure,
    StageTimeout,
    ParseFailure,
)

__all__ = [
    "PipelineError",
    "InvalidInput",
    "NotFound",
    "PreconditionFailed",
    "UpstreamFailure",
    "StageTimeout",
    "ParseFailure",
]
