"""Recording of collaborator calls made while a stage runs."""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from citefix.models.schemas import ApiCallRecord
from citefix.utils.retry import error_details


class ApiCallTracker:
    """
    Collects one ``ApiCallRecord`` per tracked call.

    Example:
        >>> tracker = ApiCallTracker()
        >>> async with tracker.track("search", "what is the best crm"):
        ...     hits = await search.search(...)
        >>> tracker.records[0].status
        'success'
    """

    def __init__(self):
        self.records: list[ApiCallRecord] = []

    @asynccontextmanager
    async def track(self, api: str, endpoint: str, details: Optional[str] = None) -> AsyncIterator[None]:
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            info = error_details(e)
            self._record(api, endpoint, start, "error", f"{info['category']}: {info['message']}")
            raise
        else:
            self._record(api, endpoint, start, "success", details)

    def _record(self, api: str, endpoint: str, start: float, status: str, details: Optional[str]) -> None:
        self.records.append(ApiCallRecord(
            api=api,
            endpoint=endpoint[:200],
            duration_ms=int((time.perf_counter() - start) * 1000),
            status=status,
            details=details,
        ))

    def drain(self) -> list[ApiCallRecord]:
        """Return the collected records and start a fresh list."""
        records, self.records = self.records, []
        return records
