"""
Tests for the Reports API client.

Uses httpx.MockTransport to stand in for the SP-API endpoints:
- Create request bodies per report kind
- Poll outcomes (DONE, FATAL, CANCELLED, unknown status, timeout)
- GZIP document download
- Quota detection
"""

import gzip
import json
from datetime import date

import httpx
import pytest
from prometheus_client import REGISTRY

from vendor_tracker.reports.client import (
    IllegalTransitionError,
    JobState,
    QuotaExceededError,
    ReportJob,
    ReportJobClient,
    ReportRequestError,
    ReportTimeoutError,
    TerminalJobError,
    UnknownReportStatusError,
    extract_item_rows,
)
from vendor_tracker.reports.kinds import (
    INVENTORY,
    REAL_TIME_SALES,
    SALES,
    TRAFFIC,
    get_report_kind,
)
from vendor_tracker.reports.windows import Granularity, ReportWindow

ENDPOINT = "https://sp.test"
DOCUMENT_URL = "https://s3.test/doc-1"


class StaticTokens:
    async def get_access_token(self):
        return "Atza|test"


async def no_sleep(seconds):
    pass


class FakeReportsApi:
    """Scripted SP-API: a list of processing statuses and a document."""

    def __init__(
        self,
        statuses=("DONE",),
        payload=None,
        compression=None,
        create_status=202,
        create_body=None,
        raw_document=None,
    ):
        self.statuses = list(statuses)
        self.payload = payload if payload is not None else {"salesByAsin": [{"asin": "B000TEST01"}]}
        self.compression = compression
        self.create_status = create_status
        self.create_body = create_body
        self.raw_document = raw_document
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/reports"):
            return httpx.Response(self.create_status, json=self.create_body or {"reportId": "R1"})

        if path.endswith("/reports/R1"):
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            body = {"reportId": "R1", "processingStatus": status}
            if status in ("DONE", "FATAL"):
                body["reportDocumentId"] = "doc-1"
            return httpx.Response(200, json=body)

        if path.endswith("/documents/doc-1"):
            body = {"reportDocumentId": "doc-1", "url": DOCUMENT_URL}
            if self.compression:
                body["compressionAlgorithm"] = self.compression
            return httpx.Response(200, json=body)

        if str(request.url) == DOCUMENT_URL:
            content = self.raw_document if self.raw_document is not None else json.dumps(self.payload).encode()
            if self.compression == "GZIP":
                content = gzip.compress(content)
            return httpx.Response(200, content=content)

        return httpx.Response(404, json={"errors": [{"code": "NotFound"}]})

    def document_requests(self) -> list:
        return [r for r in self.requests if "/documents/" in r.url.path or str(r.url) == DOCUMENT_URL]

    def create_body_sent(self) -> dict:
        create = next(r for r in self.requests if r.method == "POST")
        return json.loads(create.content)


def make_client(api, poll_max_attempts=5):
    return ReportJobClient(
        StaticTokens(),
        client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        endpoint=ENDPOINT,
        marketplace_id="A2EUQ1WTGCTBG2",
        poll_interval=0,
        poll_max_attempts=poll_max_attempts,
        timeout_seconds=5,
        sleep=no_sleep,
    )


def weekly(report_type=SALES):
    return ReportWindow(get_report_kind(report_type), Granularity.WEEK, date(2026, 3, 1), date(2026, 3, 7))


class TestCreateReport:
    @pytest.mark.asyncio
    async def test_sales_body_has_distributor_view(self):
        api = FakeReportsApi()
        await make_client(api).create_report(weekly(SALES))

        body = api.create_body_sent()
        assert body["reportType"] == SALES
        assert body["marketplaceIds"] == ["A2EUQ1WTGCTBG2"]
        assert body["dataStartTime"] == "2026-03-01T00:00:00Z"
        assert body["dataEndTime"] == "2026-03-07T23:59:59Z"
        assert body["reportOptions"] == {
            "reportPeriod": "WEEK",
            "distributorView": "MANUFACTURING",
            "sellingProgram": "RETAIL",
        }

    @pytest.mark.asyncio
    async def test_traffic_body_has_period_only(self):
        api = FakeReportsApi()
        await make_client(api).create_report(weekly(TRAFFIC))

        assert api.create_body_sent()["reportOptions"] == {"reportPeriod": "WEEK"}

    @pytest.mark.asyncio
    async def test_real_time_body_has_no_options(self):
        api = FakeReportsApi()
        window = ReportWindow(get_report_kind(REAL_TIME_SALES), None, date(2026, 3, 1), date(2026, 3, 14))
        await make_client(api).create_report(window)

        assert "reportOptions" not in api.create_body_sent()

    @pytest.mark.asyncio
    async def test_access_token_header(self):
        api = FakeReportsApi()
        await make_client(api).create_report(weekly())

        assert api.requests[0].headers["x-amz-access-token"] == "Atza|test"

    @pytest.mark.asyncio
    async def test_http_429_is_quota(self):
        api = FakeReportsApi(create_status=429, create_body={"errors": [{"code": "TooManyRequests"}]})
        with pytest.raises(QuotaExceededError):
            await make_client(api).create_report(weekly())

    @pytest.mark.asyncio
    async def test_quota_error_code_is_quota(self):
        api = FakeReportsApi(
            create_status=400,
            create_body={"errors": [{"code": "QuotaExceeded", "message": "You exceeded your quota"}]},
        )
        with pytest.raises(QuotaExceededError):
            await make_client(api).create_report(weekly())

    @pytest.mark.asyncio
    async def test_server_error_is_request_error(self):
        api = FakeReportsApi(create_status=500, create_body={"errors": [{"code": "InternalFailure"}]})
        with pytest.raises(ReportRequestError) as exc_info:
            await make_client(api).create_report(weekly())

        assert not isinstance(exc_info.value, QuotaExceededError)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_errors_object_is_request_error(self):
        api = FakeReportsApi(create_status=400, create_body={"errors": {"code": "InvalidInput"}})
        with pytest.raises(ReportRequestError) as exc_info:
            await make_client(api).create_report(weekly())

        assert not isinstance(exc_info.value, QuotaExceededError)
        assert exc_info.value.status_code == 400


class TestFetchReport:
    @pytest.mark.asyncio
    async def test_done_after_polling(self):
        api = FakeReportsApi(statuses=["IN_QUEUE", "IN_PROGRESS", "DONE"])
        items = await make_client(api).fetch_report(weekly())

        assert items == [{"asin": "B000TEST01"}]

    @pytest.mark.asyncio
    async def test_gzip_document(self):
        payload = {"inventoryByAsin": [{"asin": "B000TEST01", "sellableOnHandInventoryUnits": 4}]}
        api = FakeReportsApi(payload=payload, compression="GZIP")
        items = await make_client(api).fetch_report(weekly(INVENTORY))

        assert items[0]["sellableOnHandInventoryUnits"] == 4

    @pytest.mark.asyncio
    async def test_fatal_reads_error_document(self):
        api = FakeReportsApi(statuses=["IN_PROGRESS", "FATAL"], payload={"errorDetails": "Date range too old"})
        client = make_client(api)
        job = await client.create_report(weekly())

        with pytest.raises(TerminalJobError) as exc_info:
            await client.wait_for_report(job)

        assert exc_info.value.status.value == "FATAL"
        assert "Date range too old" in exc_info.value.detail
        assert job.state == JobState.FATAL

    @pytest.mark.asyncio
    async def test_cancelled(self):
        api = FakeReportsApi(statuses=["CANCELLED"])
        client = make_client(api)
        job = await client.create_report(weekly())

        with pytest.raises(TerminalJobError):
            await client.wait_for_report(job)
        assert job.state == JobState.CANCELLED

    @pytest.mark.asyncio
    async def test_fatal_with_undecodable_error_document(self):
        api = FakeReportsApi(statuses=["FATAL"], raw_document=b"\xff\xfe\x00\x80")
        client = make_client(api)
        job = await client.create_report(weekly())

        with pytest.raises(TerminalJobError) as exc_info:
            await client.wait_for_report(job)

        assert exc_info.value.detail.startswith("Failed to download error document")
        assert job.state == JobState.FATAL

    @pytest.mark.asyncio
    async def test_undecodable_document_is_request_error(self):
        api = FakeReportsApi(raw_document=b"\xff\xfe\x00\x80")
        with pytest.raises(ReportRequestError, match="not UTF-8"):
            await make_client(api).fetch_report(weekly())

    @pytest.mark.asyncio
    async def test_probe_window_skips_error_document(self):
        api = FakeReportsApi(statuses=["FATAL"], raw_document=b"\xff\xfe\x00\x80")
        client = make_client(api)

        with pytest.raises(TerminalJobError) as exc_info:
            await client.probe_window(weekly())

        assert exc_info.value.detail is None
        assert api.document_requests() == []

    @pytest.mark.asyncio
    async def test_poll_timeout(self):
        api = FakeReportsApi(statuses=["IN_PROGRESS"])
        client = make_client(api, poll_max_attempts=3)
        job = await client.create_report(weekly())

        with pytest.raises(ReportTimeoutError):
            await client.wait_for_report(job)
        assert job.state == JobState.TIMED_OUT
        assert job.polls == 3

    @pytest.mark.asyncio
    async def test_unknown_status(self):
        api = FakeReportsApi(statuses=["EXPLODED"])
        with pytest.raises(UnknownReportStatusError):
            await make_client(api).fetch_report(weekly())

    @pytest.mark.asyncio
    async def test_job_history(self):
        api = FakeReportsApi()
        client = make_client(api)
        job = await client.create_report(weekly())
        await client.wait_for_report(job)
        await client.download_report(job)

        assert job.history == [JobState.CREATED, JobState.POLLING, JobState.DONE, JobState.DOWNLOADED]

    @pytest.mark.asyncio
    async def test_successful_job_counted_once(self):
        def count(state):
            return REGISTRY.get_sample_value("report_jobs_total", {"report_type": TRAFFIC, "state": state}) or 0

        done_before, downloaded_before = count("done"), count("downloaded")
        await make_client(FakeReportsApi()).fetch_report(weekly(TRAFFIC))

        assert count("done") == done_before
        assert count("downloaded") == downloaded_before + 1


class TestExtractItemRows:
    def test_data_key(self):
        kind = get_report_kind(SALES)
        assert extract_item_rows(kind, {"salesByAsin": [{"asin": "A"}]}) == [{"asin": "A"}]

    def test_report_data_fallback(self):
        kind = get_report_kind(SALES)
        assert extract_item_rows(kind, {"reportData": [{"asin": "A"}]}) == [{"asin": "A"}]

    def test_bare_list(self):
        kind = get_report_kind(TRAFFIC)
        assert extract_item_rows(kind, [{"asin": "A"}]) == [{"asin": "A"}]

    def test_unrecognized_shape(self):
        kind = get_report_kind(TRAFFIC)
        assert extract_item_rows(kind, {"somethingElse": []}) == []
        assert extract_item_rows(kind, "garbage") == []


def test_illegal_transition():
    job = ReportJob(window=weekly(), report_id="R1")
    with pytest.raises(IllegalTransitionError):
        job.advance(JobState.DOWNLOADED)
