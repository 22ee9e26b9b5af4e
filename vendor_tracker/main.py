"""Long-running worker process: metrics endpoint plus the scheduler."""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from vendor_tracker.config import settings
from vendor_tracker.db.models import Base
from vendor_tracker.db.session import engine
from vendor_tracker.logging_config import setup_logging
from vendor_tracker.metrics import app_info
from vendor_tracker.worker.scheduler import setup_scheduler

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    logger.info("Starting vendor tracker worker...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    start_http_server(settings.metrics_port)
    app_info.info({"version": "0.1.0", "marketplace": settings.marketplace_id})
    logger.info(f"Metrics exposed on port {settings.metrics_port}")

    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("Scheduler started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown(wait=False)
        await engine.dispose()
        logger.info("Shutdown complete")


def main() -> None:
    setup_logging(job="worker")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
