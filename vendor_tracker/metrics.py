"""Prometheus metrics for the vendor tracker jobs."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("vendor_tracker", "Vendor tracker application info")
app_info.info({"version": "0.1.0", "name": "vendor-tracker"})

# Scrape metrics
scrape_outcomes_total = Counter(
    "scrape_outcomes_total",
    "Total number of completed scrape attempts",
    ["outcome"],
)

scrape_duration_seconds = Histogram(
    "scrape_duration_seconds",
    "Time spent scraping a single item",
    buckets=[1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 50.0, 60.0],
)

browser_restarts_total = Counter(
    "browser_restarts_total",
    "Total number of browser session restarts",
    ["reason"],
)

page_recoveries_total = Counter(
    "page_recoveries_total",
    "Total number of page-only recoveries after timeouts",
    ["status"],
)

scrape_last_progress_timestamp = Gauge(
    "scrape_last_progress_timestamp",
    "Timestamp of the last completed scrape attempt",
)

# Report pipeline metrics
report_jobs_total = Counter(
    "report_jobs_total",
    "Total number of report jobs by final state",
    ["report_type", "state"],
)

report_quota_exceeded_total = Counter(
    "report_quota_exceeded_total",
    "Total number of quota-exceeded responses",
    ["report_type"],
)

backfill_windows_total = Counter(
    "backfill_windows_total",
    "Historical windows processed by result",
    ["report_type", "result"],
)

token_refreshes_total = Counter(
    "token_refreshes_total",
    "Total number of OAuth access token refreshes",
    ["status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)

decryption_failures_total = Counter(
    "decryption_failures_total",
    "Total number of failed decryptions of stored secrets",
    ["exception_type"],
)


def record_scrape_outcome(outcome: str, duration: float):
    """Record a completed scrape attempt."""
    scrape_outcomes_total.labels(outcome=outcome).inc()
    scrape_duration_seconds.observe(duration)
    scrape_last_progress_timestamp.set(time.time())


def record_browser_restart(reason: str):
    """Record a browser restart."""
    browser_restarts_total.labels(reason=reason).inc()


def record_page_recovery(success: bool):
    """Record a page-only recovery."""
    page_recoveries_total.labels(status="success" if success else "error").inc()


def record_report_job(report_type: str, state: str):
    """Record the final state of a report job."""
    report_jobs_total.labels(report_type=report_type, state=state).inc()


def record_quota_exceeded(report_type: str):
    """Record a quota-exceeded response."""
    report_quota_exceeded_total.labels(report_type=report_type).inc()


def record_backfill_window(report_type: str, result: str):
    """Record a processed backfill window (fetched, skipped, abandoned, failed)."""
    backfill_windows_total.labels(report_type=report_type, result=result).inc()


def record_token_refresh(success: bool):
    """Record an access token refresh."""
    token_refreshes_total.labels(status="success" if success else "error").inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())


def record_decryption_failure(exception_type: str):
    """Record a failed decryption."""
    decryption_failures_total.labels(exception_type=exception_type).inc()
