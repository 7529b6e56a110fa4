# offer_tracker/services/report_downloader.py
"""
Fire-and-forget download of finished reports.

REPORT_PROCESSING_FINISHED only tells us a report document is ready. The
downloader fetches it in a background task and hands the content to the
callback registered for the report's type. Parsing belongs to the callbacks.
"""
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Set

import httpx

from offer_tracker.core.config import Settings, get_settings
from offer_tracker.core.enums import ReportType
from offer_tracker.models.report import Report

logger = logging.getLogger(__name__)

ReportCallback = Callable[[Report, bytes], Awaitable[None]]


def _key(report_type) -> str:
    return report_type.value if isinstance(report_type, Enum) else str(report_type)


class ReportCallbackRegistry:
    """Maps a report type to the coroutine that consumes its document."""

    def __init__(self, callbacks: Optional[Dict[str, ReportCallback]] = None):
        self._callbacks: Dict[str, ReportCallback] = {}
        for report_type, callback in (callbacks or {}).items():
            self.register(report_type, callback)

    def register(self, report_type: str, callback: ReportCallback) -> None:
        self._callbacks[_key(report_type)] = callback

    def get(self, report_type: Optional[str]) -> Optional[ReportCallback]:
        if report_type is None:
            return None
        return self._callbacks.get(_key(report_type))

    def __contains__(self, report_type) -> bool:
        return _key(report_type) in self._callbacks


class ReportDownloader:
    """Downloads report documents from the reports API."""

    DOCUMENT_PATH = "/reports/2021-06-30/documents/{document_id}"

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 60.0):
        self.settings = settings or get_settings()
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, report: Report, callback: ReportCallback) -> asyncio.Task:
        """Schedule the download; returns immediately."""
        task = asyncio.create_task(self._run(report, callback), name=f"report-{report.amz_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Dispatched download of report {report.amz_id} ({report.type})")
        return task

    async def _run(self, report: Report, callback: ReportCallback) -> None:
        try:
            content = await self.download(report)
            await callback(report, content)
            logger.info(f"Report {report.amz_id} ({report.type}) processed")
        except Exception as e:
            logger.exception(f"Error downloading report {report.amz_id}: {str(e)}")

    async def download(self, report: Report) -> bytes:
        if not report.document_id:
            raise ValueError(f"Report {report.amz_id} has no document id")

        url = f"{self.settings.REPORTS_API_BASE_URL.rstrip('/')}{self.DOCUMENT_PATH.format(document_id=report.document_id)}"
        headers = {"x-amz-access-token": self.settings.PRICING_API_ACCESS_TOKEN}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            document = response.json()

            # The document endpoint returns a pre-signed URL to the content
            content_response = await client.get(document["url"])
            content_response.raise_for_status()
            return content_response.content


class ReportDocumentStore:
    """Default report consumer: keeps the raw document on disk for later parsing."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def path_for(self, report: Report) -> Path:
        return self.directory / f"{report.type}_{report.amz_id}.txt"

    async def __call__(self, report: Report, content: bytes) -> None:
        path = self.path_for(report)
        await asyncio.to_thread(self._write, path, content)
        logger.info(f"Stored report {report.amz_id} ({len(content)} bytes) at {path}")

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


def default_report_callbacks(settings: Optional[Settings] = None) -> ReportCallbackRegistry:
    """Registry storing every known report type's document under REPORTS_DIR."""
    settings = settings or get_settings()
    store = ReportDocumentStore(settings.REPORTS_DIR)
    return ReportCallbackRegistry({report_type: store for report_type in ReportType})
