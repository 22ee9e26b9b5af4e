"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from vendor_tracker.config import settings
from vendor_tracker.worker.tasks import task_runner

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Daily scrape of every tracked item at settings.scrape_cron_hour
    - Daily sync of recent vendor reports at settings.report_sync_cron_hour

    Historical backfills and boundary probes are run by hand from scripts/.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        task_runner.run_scrape,
        CronTrigger(hour=settings.scrape_cron_hour, minute=0),
        id="daily_scrape",
        name="Scrape tracked product pages",
        max_instances=1,  # Only one browser session at a time
        coalesce=True,
        misfire_grace_time=3600,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.run_report_sync,
        CronTrigger(hour=settings.report_sync_cron_hour, minute=0),
        id="report_sync",
        name="Sync recent vendor reports",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: scrape daily at %02d:00 UTC, report sync daily at %02d:00 UTC",
        settings.scrape_cron_hour,
        settings.report_sync_cron_hour,
    )

    return scheduler
