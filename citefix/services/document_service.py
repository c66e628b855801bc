"""
Client for the remote document rendering service.

Two APIs are used:

    - PDF services: upload a document, convert HTML to PDF, watermark,
      compress and download. Conversions are asynchronous tasks that are
      polled until they complete.
    - Document generation: fill a DOCX template with values and receive
      the rendered file base64-encoded.

All failures are raised as ``UpstreamFailure``; deciding whether a failure
is fatal is left to the report renderers.
"""

from __future__ import annotations

import asyncio
import base64
import time
from typing import Any, Optional

import httpx

from citefix.config.settings import Settings, get_settings
from citefix.pipeline.errors import UpstreamFailure
from citefix.utils.logger import get_logger

logger = get_logger(__name__)

UPLOAD_PATH = "/pdf-services/api/documents/upload"
HTML_TO_PDF_PATH = "/pdf-services/api/documents/create/pdf-from-html"
TASK_PATH = "/pdf-services/api/tasks/{task_id}"
WATERMARK_PATH = "/pdf-services/api/documents/enhance/pdf-watermark"
COMPRESS_PATH = "/pdf-services/api/documents/modify/pdf-compress"
DOWNLOAD_PATH = "/pdf-services/api/documents/{document_id}/download"
GENERATE_PATH = "/document-generation/api/GenerateDocumentBase64"

TASK_POLL_INTERVAL_SECONDS = 1.0
TASK_MAX_WAIT_SECONDS = 30.0

# US Letter in points
PAGE_DIMENSION = {"width": 612, "height": 792}

# Empty-credential basic auth some deployments require on upload
EMPTY_BASIC_AUTH = "Basic Og=="


class DocumentServiceClient:
    """
    Thin async client for the document rendering service.

    Example:
        >>> async with DocumentServiceClient(settings) as client:
        ...     document_id = await client.upload(html.encode(), "brief.html")
        ...     task_id = await client.html_to_pdf(document_id)
        ...     pdf_id = await client.wait_for_task(task_id)
        ...     pdf = await client.download(pdf_id, "brief.pdf")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = TASK_POLL_INTERVAL_SECONDS,
        max_wait: float = TASK_MAX_WAIT_SECONDS,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.document_service_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._client = client
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return self.settings.has_document_credentials

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
            self._owns_client = True

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "DocumentServiceClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _auth_headers(self, basic_auth: bool = False) -> dict[str, str]:
        if not self.is_configured:
            raise UpstreamFailure(
                "DOCUMENT_CLIENT_ID and DOCUMENT_CLIENT_SECRET must be set",
                collaborator="document",
                recoverable=False,
            )
        headers = {
            "client_id": self.settings.document_client_id.get_secret_value(),
            "client_secret": self.settings.document_client_secret.get_secret_value(),
        }
        if basic_auth:
            headers["Authorization"] = EMPTY_BASIC_AUTH
        return headers

    async def _request(self, method: str, path: str, action: str, **kwargs) -> httpx.Response:
        if self._client is None:
            await self.connect()
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"{action} failed: {e}", collaborator="document") from e

        if response.is_error:
            raise UpstreamFailure(
                f"{action} failed ({response.status_code}): {response.text[:200]}",
                collaborator="document",
                details={"status_code": response.status_code},
                recoverable=response.status_code >= 500,
            )
        return response

    async def _json(self, method: str, path: str, action: str, **kwargs) -> dict[str, Any]:
        response = await self._request(method, path, action, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFailure(f"{action} returned invalid JSON", collaborator="document") from e

    # =========================================================================
    # PDF services
    # =========================================================================

    async def upload(self, content: bytes, filename: str) -> str:
        """Upload a file and return its document id."""
        last_error: Optional[UpstreamFailure] = None
        for basic_auth in (False, True):
            try:
                data = await self._json(
                    "POST",
                    UPLOAD_PATH,
                    "Document upload",
                    headers=self._auth_headers(basic_auth),
                    files={"file": (filename, content, "application/octet-stream")},
                )
            except UpstreamFailure as e:
                last_error = e
                if e.details.get("status_code") == 401 and not basic_auth:
                    logger.debug("Upload rejected, retrying with basic auth")
                    continue
                raise
            logger.info("Document uploaded", filename=filename, size=len(content), basic_auth=basic_auth)
            return data["documentId"]
        raise last_error

    async def _start_task(self, path: str, action: str, document_id: str, config: dict[str, Any]) -> str:
        data = await self._json(
            "POST",
            path,
            action,
            headers=self._auth_headers(),
            json={"documentId": document_id, "config": config},
        )
        task_id = data.get("taskId")
        if not task_id:
            raise UpstreamFailure(f"{action} returned no task id", collaborator="document")
        logger.debug("Document task created", action=action, task_id=task_id)
        return task_id

    async def html_to_pdf(self, document_id: str) -> str:
        return await self._start_task(
            HTML_TO_PDF_PATH,
            "HTML to PDF conversion",
            document_id,
            {
                "dimension": PAGE_DIMENSION,
                "rotation": "NONE",
                "pageMode": "MULTIPLE_PAGE",
                "scalingMode": "SCALE",
            },
        )

    async def add_watermark(self, document_id: str, text: str) -> str:
        return await self._start_task(
            WATERMARK_PATH,
            "Watermark",
            document_id,
            {"text": text, "opacity": 15, "rotation": -45, "fontSize": 48, "color": "#CCCCCC"},
        )

    async def compress(self, document_id: str) -> str:
        return await self._start_task(
            COMPRESS_PATH,
            "Compression",
            document_id,
            {"compressionLevel": "MEDIUM"},
        )

    async def task_status(self, task_id: str) -> dict[str, Any]:
        return await self._json(
            "GET",
            TASK_PATH.format(task_id=task_id),
            "Task status check",
            headers=self._auth_headers(),
        )

    async def wait_for_task(self, task_id: str) -> str:
        """Poll ``task_id`` until it completes and return the result document id."""
        deadline = time.monotonic() + self.max_wait
        while time.monotonic() < deadline:
            status = await self.task_status(task_id)
            state = status.get("status")
            if state == "COMPLETED" and status.get("resultDocumentId"):
                return status["resultDocumentId"]
            if state == "FAILED":
                raise UpstreamFailure(f"Document task {task_id} failed", collaborator="document")
            await asyncio.sleep(self.poll_interval)

        raise UpstreamFailure(
            f"Document task {task_id} did not complete within {self.max_wait:g} seconds",
            collaborator="document",
        )

    async def download(self, document_id: str, filename: Optional[str] = None) -> bytes:
        params = {"filename": filename} if filename else None
        response = await self._request(
            "GET",
            DOWNLOAD_PATH.format(document_id=document_id),
            "Document download",
            headers=self._auth_headers(),
            params=params,
        )
        return response.content

    # =========================================================================
    # Document generation
    # =========================================================================

    async def generate_document(
        self,
        template: bytes,
        values: dict[str, Any],
        output_format: str = "PDF",
    ) -> bytes:
        """Render ``template`` (a DOCX with ``{{tags}}``) with ``values``."""
        data = await self._json(
            "POST",
            GENERATE_PATH,
            "Document generation",
            headers=self._auth_headers(),
            json={
                "base64FileString": base64.b64encode(template).decode("ascii"),
                "documentValues": values,
                "outputFormat": output_format,
            },
        )
        encoded = data.get("base64FileString")
        if not encoded:
            raise UpstreamFailure("Document generation returned no file data", collaborator="document")
        logger.info("Document generated", output_format=output_format, extension=data.get("fileExtension"))
        return base64.b64decode(encoded)
