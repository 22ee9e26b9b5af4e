"""Client for the SP-API Reports 2021-06-30 create/poll/download protocol."""

import asyncio
import gzip
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from vendor_tracker.config import settings
from vendor_tracker.metrics import record_quota_exceeded, record_report_job
from vendor_tracker.reports.auth import TokenManager
from vendor_tracker.reports.kinds import FALLBACK_DATA_KEY, ReportKind, build_report_options
from vendor_tracker.reports.windows import ReportWindow
from vendor_tracker.utils.retry import with_timeout

logger = logging.getLogger(__name__)

REPORTS_PATH = "/reports/2021-06-30"
ERROR_DOCUMENT_LIMIT = 2000


class ReportJobError(Exception):
    """Base class for report pipeline failures."""


class ReportRequestError(ReportJobError):
    """An HTTP call to the Reports API failed. Retryable."""

    def __init__(self, label: str, status_code: Optional[int], detail: str):
        self.label = label
        self.status_code = status_code
        self.detail = detail
        status = f" ({status_code})" if status_code else ""
        super().__init__(f"{label} failed{status}: {detail}")


class QuotaExceededError(ReportRequestError):
    """The provider throttled us (HTTP 429 or a QuotaExceeded error code)."""


class TerminalJobError(ReportJobError):
    """The job ended CANCELLED or FATAL. Polling again will not help."""

    def __init__(self, status: "ReportStatus", report_id: str, detail: Optional[str] = None):
        self.status = status
        self.report_id = report_id
        self.detail = detail
        super().__init__(
            f"Report {report_id} ended {status.value}"
            f"{f': {detail[:200]}' if detail else ''}"
        )


class ReportTimeoutError(ReportJobError):
    """Polling attempts ran out before the job finished."""

    def __init__(self, report_id: str, attempts: int):
        self.report_id = report_id
        self.attempts = attempts
        super().__init__(f"Report {report_id} not done after {attempts} polls")


class UnknownReportStatusError(ReportJobError):
    def __init__(self, status: Any):
        self.status = status
        super().__init__(f"Unknown report processing status: {status!r}")


class IllegalTransitionError(RuntimeError):
    pass


class ReportStatus(str, Enum):
    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    FATAL = "FATAL"

    @classmethod
    def parse(cls, value: Any) -> "ReportStatus":
        try:
            return cls(value)
        except ValueError:
            raise UnknownReportStatusError(value) from None


class JobState(str, Enum):
    CREATED = "created"
    POLLING = "polling"
    DONE = "done"
    DOWNLOADED = "downloaded"
    CANCELLED = "cancelled"
    FATAL = "fatal"
    TIMED_OUT = "timed_out"


JOB_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.CREATED: frozenset({JobState.POLLING}),
    JobState.POLLING: frozenset({JobState.DONE, JobState.CANCELLED, JobState.FATAL, JobState.TIMED_OUT}),
    JobState.DONE: frozenset({JobState.DOWNLOADED}),
    JobState.DOWNLOADED: frozenset(),
    JobState.CANCELLED: frozenset(),
    JobState.FATAL: frozenset(),
    JobState.TIMED_OUT: frozenset(),
}

TERMINAL_STATES = {
    ReportStatus.CANCELLED: JobState.CANCELLED,
    ReportStatus.FATAL: JobState.FATAL,
}

# Outcomes counted in report_jobs_total, one per job
RECORDED_STATES = frozenset({JobState.DOWNLOADED, JobState.CANCELLED, JobState.FATAL, JobState.TIMED_OUT})


@dataclass
class ReportJob:
    """One submitted report and where it is in its lifecycle."""

    window: ReportWindow
    report_id: str
    state: JobState = JobState.CREATED
    document_id: Optional[str] = None
    polls: int = 0
    history: list[JobState] = field(default_factory=lambda: [JobState.CREATED])

    def advance(self, new_state: JobState) -> None:
        if new_state not in JOB_TRANSITIONS[self.state]:
            raise IllegalTransitionError(f"Report {self.report_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        if new_state in RECORDED_STATES:
            record_report_job(self.window.report_type, new_state.value)


@dataclass
class ReportDocument:
    document_id: str
    url: str
    compression: Optional[str] = None


def extract_item_rows(kind: ReportKind, payload: Any) -> list:
    """
    Per-ASIN items from a report payload.

    Uses the kind's data key, then a bare list payload, then `reportData`.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []

    items = payload.get(kind.data_key)
    if items is None:
        items = payload.get(FALLBACK_DATA_KEY)
    if not isinstance(items, list):
        return []
    return items


def _is_quota_response(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    try:
        errors = response.json().get("errors")
    except (ValueError, AttributeError):
        return False
    if not isinstance(errors, list):
        return False
    return bool(errors) and isinstance(errors[0], dict) and errors[0].get("code") == "QuotaExceeded"


class ReportJobClient:
    """
    Drives Create -> Poll -> Download for vendor reports.

    Every call is time-boxed and authenticated with a token from the
    TokenManager; AuthRefreshError is never caught here.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        client: Optional[httpx.AsyncClient] = None,
        endpoint: Optional[str] = None,
        marketplace_id: Optional[str] = None,
        poll_interval: Optional[float] = None,
        poll_max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.token_manager = token_manager
        self._client = client
        self._owns_client = client is None
        self.endpoint = (endpoint or settings.sp_api_endpoint).rstrip("/")
        self.marketplace_id = marketplace_id or settings.marketplace_id
        self.poll_interval = settings.report_poll_interval_seconds if poll_interval is None else poll_interval
        self.poll_max_attempts = poll_max_attempts or settings.report_poll_max_attempts
        self.timeout_seconds = timeout_seconds or settings.sp_api_timeout_seconds
        self.sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        label: str,
        report_type: Optional[str] = None,
        json_body: Optional[dict] = None,
        authorized: bool = True,
    ) -> httpx.Response:
        headers = {}
        if authorized:
            headers["x-amz-access-token"] = await self.token_manager.get_access_token()
            headers["Content-Type"] = "application/json"

        try:
            response = await with_timeout(
                self.client.request(method, url, json=json_body, headers=headers),
                self.timeout_seconds,
                label,
            )
        except httpx.TransportError as e:
            raise ReportRequestError(label, None, f"{type(e).__name__}: {e}") from e

        if _is_quota_response(response):
            if report_type:
                record_quota_exceeded(report_type)
            raise QuotaExceededError(label, response.status_code, response.text[:500])
        if response.status_code >= 400:
            raise ReportRequestError(label, response.status_code, response.text[:500])
        return response

    async def _request_json(self, method: str, url: str, label: str, **kwargs) -> dict:
        response = await self._request(method, url, label, **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            raise ReportRequestError(label, response.status_code, f"non-JSON response: {response.text[:200]}") from e
        if not isinstance(data, dict):
            raise ReportRequestError(label, response.status_code, f"unexpected response: {data!r}"[:200])
        return data

    async def create_report(self, window: ReportWindow) -> ReportJob:
        """Submit a report request for one window."""
        body = {
            "reportType": window.report_type,
            "marketplaceIds": [self.marketplace_id],
            "dataStartTime": window.data_start_time,
            "dataEndTime": window.data_end_time,
        }
        options = build_report_options(window.report_kind, window.period)
        if options:
            body["reportOptions"] = options

        label = f"create {window.report_type}"
        data = await self._request_json(
            "POST",
            f"{self.endpoint}{REPORTS_PATH}/reports",
            label,
            report_type=window.report_type,
            json_body=body,
        )
        report_id = data.get("reportId")
        if not report_id:
            raise ReportRequestError(label, None, f"no reportId in response: {data}")

        logger.info(f"Created report {report_id} for {window}")
        return ReportJob(window=window, report_id=str(report_id))

    async def get_report_status(self, report_id: str, report_type: Optional[str] = None) -> tuple[ReportStatus, dict]:
        data = await self._request_json(
            "GET",
            f"{self.endpoint}{REPORTS_PATH}/reports/{report_id}",
            f"status {report_id}",
            report_type=report_type,
        )
        return ReportStatus.parse(data.get("processingStatus")), data

    async def wait_for_report(
        self,
        job: ReportJob,
        max_attempts: Optional[int] = None,
        fetch_error_document: bool = True,
    ) -> str:
        """
        Poll until the job finishes.

        With fetch_error_document set, a CANCELLED or FATAL job's error
        document is downloaded into the raised error's detail.

        Returns:
            The report document id

        Raises:
            TerminalJobError: Job ended CANCELLED or FATAL
            ReportTimeoutError: Still running after max_attempts polls
            UnknownReportStatusError: Provider returned an unrecognized status
        """
        max_attempts = max_attempts or self.poll_max_attempts
        job.advance(JobState.POLLING)

        for attempt in range(1, max_attempts + 1):
            await self.sleep(self.poll_interval)
            status, data = await self.get_report_status(job.report_id, job.window.report_type)
            job.polls = attempt

            if status == ReportStatus.DONE:
                document_id = data.get("reportDocumentId")
                if not document_id:
                    raise ReportRequestError(f"status {job.report_id}", None, "DONE without reportDocumentId")
                job.document_id = str(document_id)
                job.advance(JobState.DONE)
                return job.document_id

            if status in TERMINAL_STATES:
                job.advance(TERMINAL_STATES[status])
                detail = None
                if fetch_error_document and data.get("reportDocumentId"):
                    detail = await self._error_document(str(data["reportDocumentId"]))
                logger.warning(f"Report {job.report_id} ({job.window}) ended {status.value}")
                raise TerminalJobError(status, job.report_id, detail)

            if attempt % 4 == 0:
                logger.info(f"Report {job.report_id}: {status.value} after {attempt} polls")

        job.advance(JobState.TIMED_OUT)
        raise ReportTimeoutError(job.report_id, max_attempts)

    async def get_document(self, document_id: str) -> ReportDocument:
        label = f"document {document_id}"
        data = await self._request_json("GET", f"{self.endpoint}{REPORTS_PATH}/documents/{document_id}", label)
        if not data.get("url"):
            raise ReportRequestError(label, None, "document has no url")
        return ReportDocument(
            document_id=document_id,
            url=data["url"],
            compression=data.get("compressionAlgorithm"),
        )

    async def download_document(self, document: ReportDocument) -> str:
        """Fetch a document's content, gunzipping when flagged."""
        response = await self._request("GET", document.url, f"download {document.document_id}", authorized=False)
        content = response.content
        if document.compression == "GZIP":
            try:
                content = gzip.decompress(content)
            except (OSError, EOFError) as e:
                raise ReportRequestError(f"download {document.document_id}", None, f"bad GZIP content: {e}") from e
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ReportRequestError(f"download {document.document_id}", None, f"document is not UTF-8: {e}") from e

    async def download_report(self, job: ReportJob) -> Any:
        """Download and parse a finished job's JSON document."""
        if job.document_id is None:
            raise ReportRequestError(f"download {job.report_id}", None, "job has no document")
        document = await self.get_document(job.document_id)
        text = await self.download_document(document)
        try:
            payload = json.loads(text)
        except ValueError as e:
            raise ReportRequestError(f"download {job.report_id}", None, f"invalid report JSON: {e}") from e
        job.advance(JobState.DOWNLOADED)
        return payload

    async def fetch_report(self, window: ReportWindow, max_attempts: Optional[int] = None) -> list:
        """Full Create -> Poll -> Download cycle; returns the per-ASIN items."""
        job = await self.create_report(window)
        await self.wait_for_report(job, max_attempts)
        payload = await self.download_report(job)
        items = extract_item_rows(window.report_kind, payload)
        logger.info(f"Downloaded {len(items)} items for {window}")
        return items

    async def probe_window(self, window: ReportWindow, max_attempts: Optional[int] = None) -> ReportJob:
        """Create -> Poll only, to learn whether the provider serves a window."""
        job = await self.create_report(window)
        await self.wait_for_report(job, max_attempts, fetch_error_document=False)
        return job

    async def _error_document(self, document_id: str) -> str:
        try:
            document = await self.get_document(document_id)
            text = await self.download_document(document)
        except (ReportJobError, httpx.HTTPError, TimeoutError) as e:
            return f"Failed to download error document: {e}"
        return text[:ERROR_DOCUMENT_LIMIT]
