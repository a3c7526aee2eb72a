# portal/adapters/outbound/logging/sinks.py

"""
Sinks that receive every structured log entry.

The local sink writes to a dedicated stdlib logger (console and, when a log
directory is configured, a daily rotating file). The database sink appends
to the ``log_records`` table.
"""

import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from portal.adapters.outbound.persistence.repositories.log_repository import log_repository
from portal.application.ports.outbound import ILogSink
from portal.domain.models.log_domain_model import HTTP_LEVEL_NUM, LogEntry

logging.addLevelName(HTTP_LEVEL_NUM, "HTTP")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
EVENTS_LOGGER_NAME = "portal.events"


class LocalLogSink(ILogSink):
    """Writes entries to the stdlib logging tree."""

    def __init__(self, logger_name: str = EVENTS_LOGGER_NAME):
        self._logger = logging.getLogger(logger_name)

    async def write(self, entry: LogEntry) -> None:
        line = entry.message
        if entry.metadata:
            line = f"{line} | {entry.serialized_metadata()}"
        if entry.stack:
            line = f"{line}\n{entry.stack}"
        self._logger.log(entry.level.stdlib_level, line)


class DatabaseLogSink(ILogSink):
    """Appends entries to the log table, one session per entry."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def write(self, entry: LogEntry) -> None:
        async with self._session_factory() as session:
            await log_repository.add(session, entry)


def attach_file_handler(log_dir: str, retention_days: int, logger_name: str = EVENTS_LOGGER_NAME) -> Optional[logging.Handler]:
    """Add a daily rotating file handler to the events logger."""
    os.makedirs(log_dir, exist_ok=True)
    target = logging.getLogger(logger_name)
    path = os.path.join(log_dir, "portal.log")

    for handler in target.handlers:
        if isinstance(handler, TimedRotatingFileHandler) and handler.baseFilename == os.path.abspath(path):
            return None

    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=retention_days, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.addHandler(handler)
    return handler


def cleanup_old_log_files(log_dir: str, max_age_days: int = 30) -> int:
    """
    Delete files in ``log_dir`` whose modification time is older than
    ``max_age_days``. Returns the number of deleted files.
    """
    if not os.path.isdir(log_dir):
        return 0

    cutoff = time.time() - max_age_days * 24 * 60 * 60
    deleted = 0
    for name in os.listdir(log_dir):
        path = os.path.join(log_dir, name)
        if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
            os.remove(path)
            deleted += 1
    return deleted
