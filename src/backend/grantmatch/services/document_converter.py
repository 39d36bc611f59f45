"""
Document conversion service for announcement attachments.

Downloads an attachment and converts it to plain text:
- Azure Document Intelligence (prebuilt-read) when configured
- pypdf / python-docx otherwise, chosen by content type or extension

Conversion is budgeted per minute; exhaustion raises
QuotaExhaustedException so the caller can defer the work.
"""

import asyncio
import io
import time
import zipfile
from functools import partial

import httpx
from azure.ai.formrecognizer import DocumentAnalysisClient
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import DocumentConversionException
from grantmatch.core.logging import LoggerMixin
from grantmatch.services.budget import CallBudget

PDF_TYPES = ("application/pdf",)
DOCX_TYPES = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)


class FallbackTextExtractor:
    """Local text extraction using pypdf and python-docx."""

    @staticmethod
    def extract_from_pdf(pdf_bytes: bytes, page_limit: int = 0) -> str:
        """
        Extract text from PDF using pypdf.

        Args:
            pdf_bytes: The PDF content as bytes
            page_limit: Maximum number of pages to process (0 for all)
        """
        import pypdf
        from pypdf.errors import PyPdfError

        try:
            reader = pypdf.PdfReader(io.BytesIO(pdf_bytes))
            pages = reader.pages[:page_limit] if page_limit else reader.pages
            return "\n".join(page.extract_text() or "" for page in pages)
        except (PyPdfError, ValueError, KeyError, TypeError) as e:
            raise DocumentConversionException(f"PDF extraction failed: {e}") from e

    @staticmethod
    def extract_from_docx(docx_bytes: bytes) -> str:
        """Extract text from DOCX using python-docx."""
        from docx import Document
        from docx.opc.exceptions import PackageNotFoundError

        try:
            doc = Document(io.BytesIO(docx_bytes))
        except (zipfile.BadZipFile, PackageNotFoundError, ValueError, KeyError) as e:
            raise DocumentConversionException(f"DOCX extraction failed: {e}") from e
        parts = [para.text for para in doc.paragraphs]
        for table in doc.tables:
            for row in table.rows:
                parts.append(" | ".join(cell.text for cell in row.cells))
        return "\n".join(parts)


class DocumentConverter(LoggerMixin):
    """Converts attachment URLs into plain text."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        budget: CallBudget | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.page_limit = self.settings.document_page_limit
        self.budget = budget or CallBudget(
            "DocumentConversion", self.settings.extraction_tier3_documents_per_minute
        )
        self._http = http_client
        self._client: DocumentAnalysisClient | None = None

    @property
    def uses_document_intelligence(self) -> bool:
        return bool(
            self.settings.azure_doc_intelligence_endpoint and self.settings.azure_doc_intelligence_key
        )

    @property
    def client(self) -> DocumentAnalysisClient:
        """Lazy-initialize the Document Analysis client."""
        if self._client is None:
            self._client = DocumentAnalysisClient(
                endpoint=self.settings.azure_doc_intelligence_endpoint,
                credential=AzureKeyCredential(self.settings.azure_doc_intelligence_key),
            )
        return self._client

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.crawler_timeout, connect=15.0),
                follow_redirects=True,
                headers={"User-Agent": self.settings.crawler_user_agent},
            )
        return self._http

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def download(self, url: str) -> tuple[bytes, str]:
        """Download an attachment; returns (content, content_type)."""
        response = await self._http_client().get(url)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        self.logger.info("attachment_downloaded", url=url, bytes=len(response.content))
        return response.content, content_type

    def _analyze(self, document_bytes: bytes) -> str:
        kwargs = {}
        if self.page_limit:
            kwargs["pages"] = f"1-{self.page_limit}"
        poller = self.client.begin_analyze_document(
            "prebuilt-read",
            document=io.BytesIO(document_bytes),
            **kwargs,
        )
        result = poller.result()
        return "\n".join(line.content for page in result.pages for line in page.lines)

    def _convert_locally(self, url: str, content: bytes, content_type: str) -> str:
        lowered = url.lower().split("?")[0]
        if content_type in PDF_TYPES or lowered.endswith(".pdf") or content[:4] == b"%PDF":
            return FallbackTextExtractor.extract_from_pdf(content, self.page_limit)
        if content_type in DOCX_TYPES or lowered.endswith(".docx"):
            return FallbackTextExtractor.extract_from_docx(content)
        raise DocumentConversionException(f"Unsupported attachment type '{content_type}'", url=url)

    async def to_text(self, url: str) -> str:
        """
        Convert one attachment to text.

        Raises:
            QuotaExhaustedException: Conversion budget exhausted
            DocumentConversionException: Download or conversion failed
        """
        self.budget.acquire()
        start = time.time()
        try:
            content, content_type = await self.download(url)
        except httpx.HTTPError as e:
            raise DocumentConversionException(f"Download failed: {e}", url=url) from e

        loop = asyncio.get_running_loop()
        if self.uses_document_intelligence:
            try:
                text = await loop.run_in_executor(None, partial(self._analyze, content))
            except AzureError as e:
                self.logger.warning("document_intelligence_failed", url=url, error=str(e))
                text = await loop.run_in_executor(
                    None, partial(self._convert_locally, url, content, content_type)
                )
        else:
            text = await loop.run_in_executor(
                None, partial(self._convert_locally, url, content, content_type)
            )

        self.logger.info(
            "attachment_converted",
            url=url,
            chars=len(text),
            duration=round(time.time() - start, 2),
        )
        return text

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
