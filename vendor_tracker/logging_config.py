"""Logging setup shared by the worker process and the CLI scripts.

Console output is plain text. Files under logs/ are JSON lines so the
scrape and backfill runs can be filtered by job, report type or ASIN.
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from pythonjsonlogger import jsonlogger

from vendor_tracker.config import settings

LOG_FILE_MAX_BYTES = 20 * 1024 * 1024
LOG_FILE_BACKUPS = 5

QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "apscheduler": logging.WARNING,
    "asyncio": logging.WARNING,
}


class JobJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines tagged with the job that produced them."""

    def __init__(self, *args, job: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.job = job

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        if self.job:
            log_record['job'] = self.job
        if record.exc_info:
            log_record['exception_type'] = record.exc_info[0].__name__


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None, job: str | None = None) -> logging.Logger:
    """Configure the root logger for one process.

    Args:
        base_dir: Directory holding logs/ (defaults to the working directory)
        job: Job name ("worker", "scrape", "backfill", ...). JSON logs go to
             logs/<job>.log so a multi-hour backfill has its own file.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        logging.Formatter(f"%(asctime)s [{job or 'app'}] %(levelname)s %(name)s: %(message)s")
    )
    root_logger.addHandler(console)

    json_formatter = JobJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s", job=job)
    root_logger.addHandler(_file_handler(logs_dir / f"{job or 'app'}.log", logging.DEBUG, json_formatter))
    root_logger.addHandler(_file_handler(logs_dir / "error.log", logging.ERROR, json_formatter))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return root_logger


class ContextAdapter(logging.LoggerAdapter):
    """Adds bound fields (report_type, asin, ...) to every record's extra."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """Module logger with context fields, e.g. get_logger(__name__, report_type=SALES)."""
    return ContextAdapter(logging.getLogger(name), context)
