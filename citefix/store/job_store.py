"""
Job store: an in-process cache in front of a durable repository.

Writes update the cache synchronously and return the new value; the durable
write is scheduled as a background task and not awaited ("write-behind").
Reads hit the cache first and fall through to the repository only on a
miss, promoting whatever they load back into the cache ("warm-through").

Known limitation: the durable copy can lag the cache. Each background write
persists the newest cached snapshot of its job at the moment it runs, but
two writes for the same job may still complete out of order, so after a
crash the durable record can be older than the last value a caller saw.
Stage operations are driven by a single client per job, and field-level
last-write-wins is accepted.
"""

import asyncio
import secrets
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from citefix.models.schemas import Job, host_key
from citefix.pipeline.errors import NotFound
from citefix.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Durable Repositories
# =============================================================================

class JobRepository(ABC):
    """Durable storage for job records."""

    @abstractmethod
    async def save(self, job: Job) -> None:
        """Persist ``job``, replacing any earlier record with the same id."""

    @abstractmethod
    async def load(self, job_id: str) -> Optional[Job]:
        """Return the stored record or ``None``."""

    @abstractmethod
    async def list_all(self) -> list[Job]:
        """Every stored record, in no particular order."""


class InMemoryJobRepository(JobRepository):
    """Keeps serialized records in a dict; records round-trip through JSON like a real store."""

    def __init__(self):
        self._records: dict[str, str] = {}
        self.save_count = 0

    async def save(self, job: Job) -> None:
        self._records[job.job_id] = job.model_dump_json()
        self.save_count += 1

    async def load(self, job_id: str) -> Optional[Job]:
        raw = self._records.get(job_id)
        return Job.model_validate_json(raw) if raw is not None else None

    async def list_all(self) -> list[Job]:
        return [Job.model_validate_json(raw) for raw in self._records.values()]


class FileJobRepository(JobRepository):
    """One JSON document per job under ``directory``; file I/O runs off the event loop."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        return self.directory / f"{job_id}.json"

    async def save(self, job: Job) -> None:
        await asyncio.to_thread(self._write, job.job_id, job.model_dump_json(indent=2))

    def _write(self, job_id: str, payload: str) -> None:
        target = self._path(job_id)
        tmp = target.with_name(f"{target.name}.{secrets.token_hex(4)}.tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(target)

    async def load(self, job_id: str) -> Optional[Job]:
        path = self._path(job_id)
        raw = await asyncio.to_thread(self._read, path)
        return Job.model_validate_json(raw) if raw is not None else None

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def list_all(self) -> list[Job]:
        paths = await asyncio.to_thread(lambda: sorted(self.directory.glob("*.json")))
        jobs = []
        for path in paths:
            raw = await asyncio.to_thread(self._read, path)
            if raw is None:
                continue
            try:
                jobs.append(Job.model_validate_json(raw))
            except ValueError as e:
                logger.warning("Skipping unreadable job record", path=str(path), error=str(e))
        return jobs


# =============================================================================
# Cache-over-durable Store
# =============================================================================

class JobStore:
    """
    Write-behind job cache.

    Example:
        >>> store = JobStore(InMemoryJobRepository())
        >>> job = await store.create(Job(domain="example.com", topic="crm"))
        >>> (await store.get(job.job_id)) == job
        True
    """

    def __init__(self, repository: Optional[JobRepository] = None):
        self.repository = repository or InMemoryJobRepository()
        self._cache: dict[str, Job] = {}
        self._pending: set[asyncio.Task] = set()

    async def create(self, job: Job) -> Job:
        self._cache[job.job_id] = job
        self._schedule_write(job.job_id)
        logger.debug("Job created", job_id=job.job_id)
        return job

    async def get(self, job_id: str) -> Optional[Job]:
        cached = self._cache.get(job_id)
        if cached is not None:
            return cached

        job = await self.repository.load(job_id)
        if job is None:
            return None
        # A write may have landed in the cache while the load was in flight
        return self._cache.setdefault(job_id, job)

    async def require(self, job_id: str) -> Job:
        job = await self.get(job_id)
        if job is None:
            raise NotFound(job_id)
        return job

    async def update(self, job_id: str, changes: dict[str, Any]) -> Job:
        """
        Apply a partial update: only the keys in ``changes`` are replaced.

        Raises:
            NotFound: If the job is neither cached nor stored.
        """
        current = await self.require(job_id)
        updated = Job.model_validate({**current.model_dump(), **changes})
        self._cache[job_id] = updated
        self._schedule_write(job_id)
        return updated

    async def list_jobs(self, domain: Optional[str] = None) -> list[Job]:
        """Known jobs, newest first, optionally filtered by domain host."""
        jobs = {job.job_id: job for job in await self.repository.list_all()}
        jobs.update(self._cache)

        result = list(jobs.values())
        if domain:
            wanted = host_key(domain if "://" in domain else f"https://{domain}")
            result = [j for j in result if host_key(j.domain) == wanted]
        return sorted(result, key=lambda j: j.created_at, reverse=True)

    async def flush(self) -> None:
        """Wait for every scheduled durable write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def _schedule_write(self, job_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._persist(job_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, job_id: str) -> None:
        job = self._cache.get(job_id)
        if job is None:
            return
        try:
            await self.repository.save(job)
        except Exception as e:
            logger.error(
                "Durable job write failed",
                job_id=job_id,
                error=str(e),
                error_type=type(e).__name__,
            )


def job_summary(job: Job) -> dict[str, Any]:
    """Lightweight history row without the heavy stage payloads."""
    result = job.pattern_result
    return {
        "job_id": job.job_id,
        "domain": job.domain,
        "topic": job.topic,
        "status": job.status,
        "stage": job.stage,
        "stage_label": job.stage_label,
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "score": result.current_score if result else None,
        "projected_score": result.projected_score if result else None,
        "gap_count": len(result.gaps) if result else 0,
        "cited_url_count": len(job.discovery.cited_pages) if job.discovery else 0,
        "user_domain_found": job.discovery.user_domain_found if job.discovery else False,
        "depth": job.config.depth,
        "has_report": bool(job.report and job.report.location),
    }
