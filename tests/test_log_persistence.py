"""
Tests for log persistence, the local sink, DTO mapping and retention.
"""

import logging
import os
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from portal.adapters.outbound.logging.sinks import (
    EVENTS_LOGGER_NAME,
    DatabaseLogSink,
    LocalLogSink,
    cleanup_old_log_files,
)
from portal.adapters.outbound.persistence.repositories.log_repository import log_repository
from portal.application.dtos.log_dto import LogRecordOutput
from portal.application.use_cases.log_use_cases import AsyncLogService
from portal.domain.exceptions import DatabaseOperationException
from portal.domain.models.log_domain_model import LogEntry, LogLevel
from portal.main import cleanup_expired_logs

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_entry(level=LogLevel.WARN, **metadata) -> LogEntry:
    return LogEntry(level=level, message="disk almost full", timestamp=NOW, metadata=metadata,
                    user_id="u1", ip="10.0.0.1")


def make_db():
    db = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    db.close = AsyncMock()
    return db


class TestLogRepository:

    @pytest.mark.asyncio
    async def test_add_maps_entry_to_record(self):
        db = make_db()
        record = await log_repository.add(db, make_entry(free_mb=12))

        db.add.assert_called_once_with(record)
        db.commit.assert_awaited_once()
        assert record.level == "warn"
        assert record.meta == '{"free_mb": 12}'
        assert record.user_id == "u1"
        assert record.created_at == NOW

    @pytest.mark.asyncio
    async def test_add_failure_is_wrapped(self):
        db = make_db()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))

        with pytest.raises(DatabaseOperationException):
            await log_repository.add(db, make_entry())
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_older_than_returns_rowcount(self):
        db = make_db()
        db.execute.return_value = SimpleNamespace(rowcount=7)

        assert await log_repository.delete_older_than(db, NOW) == 7
        db.commit.assert_awaited_once()


class TestSinks:

    @pytest.mark.asyncio
    async def test_local_sink_uses_stdlib_levels(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=EVENTS_LOGGER_NAME):
            await LocalLogSink().write(make_entry(LogLevel.HTTP, status=200))
            await LocalLogSink().write(make_entry(LogLevel.ERROR))

        assert [r.levelname for r in caplog.records] == ["HTTP", "ERROR"]
        assert '{"status": 200}' in caplog.records[0].getMessage()

    @pytest.mark.asyncio
    async def test_database_sink_opens_a_session_per_entry(self):
        session = MagicMock()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=session)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)

        with patch.object(log_repository, "add", AsyncMock()) as add:
            await DatabaseLogSink(factory).write(make_entry())

        add.assert_awaited_once()
        assert add.await_args.args[0] is session


class TestLogRecordOutput:

    def test_from_record(self):
        record = SimpleNamespace(id=3, level="error", message="boom", meta='{"a": 1}', user_id=None,
                                 ip=None, user_agent=None, created_at=NOW)
        output = LogRecordOutput.model_validate(record)

        assert output.metadata == {"a": 1}
        assert "user_id" not in output.model_dump()

    def test_undecodable_metadata_is_kept_raw(self):
        record = SimpleNamespace(id=3, level="error", message="boom", meta="not json", user_id=None,
                                 ip=None, user_agent=None, created_at=NOW)
        assert LogRecordOutput.model_validate(record).metadata == {"raw": "not json"}


class TestRetention:

    @pytest.mark.asyncio
    async def test_purge_uses_retention_cutoff(self):
        repository = SimpleNamespace(delete_older_than=AsyncMock(return_value=4))
        service = AsyncLogService(MagicMock(), db_session=make_db(), repository=repository)

        assert await service.purge_expired(30) == 4
        _, cutoff = repository.delete_older_than.await_args.args
        expected = datetime.now(timezone.utc) - timedelta(days=30)
        assert abs((cutoff - expected).total_seconds()) < 5

    def test_old_log_files_are_removed(self, tmp_path):
        old = tmp_path / "portal.log.2024-01-01"
        fresh = tmp_path / "portal.log"
        old.write_text("old")
        fresh.write_text("fresh")
        stale = time.time() - 40 * 24 * 60 * 60
        os.utime(old, (stale, stale))

        assert cleanup_old_log_files(str(tmp_path), max_age_days=30) == 1
        assert not old.exists()
        assert fresh.exists()

    def test_missing_log_dir(self, tmp_path):
        assert cleanup_old_log_files(str(tmp_path / "nope")) == 0

    @pytest.mark.asyncio
    async def test_cleanup_task_body(self, app, tmp_path):
        app.state.settings.LOG_DIR = str(tmp_path)
        session = make_db()
        app.state.session_factory = MagicMock(return_value=session)

        with patch.object(log_repository, "delete_older_than", AsyncMock(return_value=2)) as delete:
            assert await cleanup_expired_logs(app) == 2

        assert delete.await_args.args[0] is session
        session.commit.assert_awaited()
        session.close.assert_awaited_once()

    def test_lifespan_runs_and_cancels_background_tasks(self, app):
        from fastapi.testclient import TestClient

        with TestClient(app):
            tasks = [app.state.cleanup_task, app.state.analytics_task]
            assert not any(task.done() for task in tasks)

        assert all(task.done() for task in tasks)
