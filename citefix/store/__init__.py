"""Job persistence for CiteFix."""

from citefix.store.job_store import (
    JobRepository,
    InMemoryJobRepository,
    FileJobRepository,
    JobStore,
    job_summary,
)

__all__ = [
    "JobRepository",
    "InMemoryJobRepository",
    "FileJobRepository",
    "JobStore",
    "job_summary",
]
