"""
Pipeline error taxonomy.

    PipelineError
    ├── InvalidInput        bad job submission
    ├── NotFound            unknown job id
    ├── PreconditionFailed  stage invoked out of order or on a terminal job
    ├── UpstreamFailure     a collaborator call failed
    │   └── StageTimeout    a collaborator call exceeded its deadline
    └── ParseFailure        a collaborator response could not be interpreted
"""

from citefix.models.schemas import ErrorType


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        details: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_type": self.error_type.value,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class InvalidInput(PipelineError):
    """Job submission failed validation."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            error_type=ErrorType.VALIDATION_ERROR,
            details=details,
            recoverable=False,
        )


class NotFound(PipelineError):
    """Job id unknown to the store."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job not found: {job_id}",
            error_type=ErrorType.NOT_FOUND_ERROR,
            details={"job_id": job_id},
            recoverable=False,
        )
        self.job_id = job_id


class PreconditionFailed(PipelineError):
    """Stage invoked before its upstream result exists, or on a finished job."""

    def __init__(self, message: str, job_id: str, stage: str):
        super().__init__(
            message=message,
            error_type=ErrorType.PRECONDITION_ERROR,
            details={"job_id": job_id, "stage": stage},
            recoverable=False,
        )


class UpstreamFailure(PipelineError):
    """A collaborator (search, fetch, agent, renderer) call failed."""

    def __init__(
        self,
        message: str,
        collaborator: str = "",
        details: dict | None = None,
        recoverable: bool = True,
    ):
        super().__init__(
            message=message,
            error_type=ErrorType.UPSTREAM_ERROR,
            details={"collaborator": collaborator, **(details or {})},
            recoverable=recoverable,
        )
        self.collaborator = collaborator


class StageTimeout(UpstreamFailure):
    """A collaborator call did not finish within its deadline."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            message=f"'{operation}' timed out after {timeout_seconds:g} seconds",
            collaborator=operation,
            details={"timeout": timeout_seconds},
            recoverable=True,
        )
        self.error_type = ErrorType.TIMEOUT_ERROR


class ParseFailure(PipelineError):
    """A collaborator response could not be interpreted."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(
            message=message,
            error_type=ErrorType.PARSE_ERROR,
            details={"raw_preview": raw[:200]},
            recoverable=True,
        )
