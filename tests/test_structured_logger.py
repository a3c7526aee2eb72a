"""
Tests for the structured logger and its context-scoped variant.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from portal.application.services.structured_logger import StructuredLogger
from portal.domain.models.log_domain_model import LogEntry, LogLevel
from tests.conftest import RecordingForwarder, RecordingSink

FIXED_NOW = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def forwarder():
    return RecordingForwarder()


@pytest.fixture
def structured_logger(sink, forwarder):
    return StructuredLogger(persistence=sink, forwarders=[forwarder], clock=lambda: FIXED_NOW)


class TestLevels:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", list(LogLevel))
    async def test_one_record_per_call(self, structured_logger, sink, level):
        entry = await structured_logger.log(level, "something happened", {"k": "v"})

        assert isinstance(entry, LogEntry)
        assert len(sink.entries) == 1
        assert sink.entries[0].level is level
        assert sink.entries[0].metadata == {"k": "v"}
        assert sink.entries[0].timestamp == FIXED_NOW

    @pytest.mark.asyncio
    async def test_error_is_forwarded_debug_is_not(self, structured_logger, forwarder):
        await structured_logger.error("boom")
        await structured_logger.debug("noise")
        await structured_logger.drain()

        assert [e.message for e in forwarder.forwarded] == ["boom"]

    @pytest.mark.asyncio
    async def test_forward_threshold(self, sink, forwarder):
        strict = StructuredLogger(persistence=sink, forwarders=[forwarder], min_forward_level=LogLevel.ERROR)
        await strict.warn("careful")
        await strict.error("broken")
        await strict.drain()
        assert [e.level for e in forwarder.forwarded] == [LogLevel.ERROR]

        forwarder.forwarded.clear()
        chatty = StructuredLogger(persistence=sink, forwarders=[forwarder], min_forward_level="info")
        await chatty.info("hello")
        await chatty.http("GET / 200")
        await chatty.drain()
        assert [e.level for e in forwarder.forwarded] == [LogLevel.INFO]

    @pytest.mark.asyncio
    async def test_level_names_are_parsed(self, structured_logger, sink):
        await structured_logger.log("WARNING", "legacy name")
        assert sink.entries[0].level is LogLevel.WARN

    @pytest.mark.asyncio
    async def test_critical_flag(self, structured_logger, sink):
        await structured_logger.error("db down", critical=True)
        assert sink.entries[0].metadata["critical"] is True


class TestFieldExtraction:

    @pytest.mark.asyncio
    async def test_request_fields_are_lifted(self, structured_logger, sink):
        await structured_logger.info("login", {"userId": "u7", "ip_address": "1.2.3.4", "userAgent": "curl"})
        entry = sink.entries[0]
        assert (entry.user_id, entry.ip, entry.user_agent) == ("u7", "1.2.3.4", "curl")

    @pytest.mark.asyncio
    async def test_nested_user_id(self, structured_logger, sink):
        await structured_logger.info("login", {"user": {"id": "u8"}})
        assert sink.entries[0].user_id == "u8"

    @pytest.mark.asyncio
    async def test_exception_becomes_stack(self, structured_logger, sink):
        try:
            raise KeyError("missing")
        except KeyError as e:
            await structured_logger.error("lookup failed", {"error": e})

        entry = sink.entries[0]
        assert entry.metadata["error_type"] == "KeyError"
        assert "missing" in entry.metadata["error"]
        assert "KeyError" in entry.stack
        assert "stack" not in entry.metadata

    @pytest.mark.asyncio
    async def test_explicit_stack(self, structured_logger, sink):
        await structured_logger.error("client error", {"stack": "at foo (app.js:1:1)"})
        assert sink.entries[0].stack == "at foo (app.js:1:1)"

    @pytest.mark.asyncio
    async def test_default_metadata_is_merged(self, sink):
        structured_logger = StructuredLogger(persistence=sink, default_metadata={"service": "portal"})
        await structured_logger.info("hi", {"service": "override", "x": 1})
        assert sink.entries[0].metadata == {"service": "override", "x": 1}


class TestContextLogger:

    @pytest.mark.asyncio
    async def test_context_and_call_metadata_are_merged(self, structured_logger, sink):
        bound = structured_logger.bind({"user_id": "u1"})
        await bound.info("signed in", {"action": "login"})

        entry = sink.entries[0]
        assert entry.metadata == {"user_id": "u1", "action": "login"}
        assert entry.user_id == "u1"

    @pytest.mark.asyncio
    async def test_context_wins_on_conflict(self, structured_logger, sink):
        await structured_logger.bind({"user_id": "u1"}).warn("x", {"user_id": "spoofed"})
        assert sink.entries[0].metadata["user_id"] == "u1"

    @pytest.mark.asyncio
    async def test_nested_bind(self, structured_logger, sink):
        bound = structured_logger.bind({"user_id": "u1"}).bind({"request_id": "r9"})
        await bound.error("failed")
        assert sink.entries[0].metadata == {"user_id": "u1", "request_id": "r9"}


class TestFaultIsolation:

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_raise(self, forwarder):
        healthy = RecordingSink()
        structured_logger = StructuredLogger(
            persistence=RecordingSink(fail=True), local=healthy, forwarders=[forwarder]
        )
        entry = await structured_logger.error("still delivered")
        await structured_logger.drain()

        assert entry.message == "still delivered"
        assert len(healthy.entries) == 1
        assert len(forwarder.forwarded) == 1

    @pytest.mark.asyncio
    async def test_failing_forwarder_does_not_block_others(self, sink):
        good = RecordingForwarder()
        structured_logger = StructuredLogger(persistence=sink, forwarders=[RecordingForwarder(fail=True), good])
        await structured_logger.error("boom")
        await structured_logger.drain()

        assert len(sink.entries) == 1
        assert len(good.forwarded) == 1


class GatedForwarder(RecordingForwarder):

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def forward(self, entry: LogEntry) -> None:
        await self.gate.wait()
        await super().forward(entry)


class TestBackgroundForwarding:

    @pytest.mark.asyncio
    async def test_log_returns_before_forwarding_finishes(self, sink):
        gated = GatedForwarder()
        structured_logger = StructuredLogger(persistence=sink, forwarders=[gated])

        await structured_logger.error("boom")

        assert len(sink.entries) == 1
        assert gated.forwarded == []
        assert structured_logger.pending_forwards == 1

        gated.gate.set()
        await structured_logger.drain()
        assert [e.message for e in gated.forwarded] == ["boom"]
        assert structured_logger.pending_forwards == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_after_timeout(self, sink):
        gated = GatedForwarder()
        structured_logger = StructuredLogger(persistence=sink, forwarders=[gated])
        await structured_logger.error("stuck")

        await structured_logger.drain(timeout=0.01)

        assert structured_logger.pending_forwards == 0
        assert gated.forwarded == []

    @pytest.mark.asyncio
    async def test_entries_nobody_accepts_schedule_nothing(self, sink, forwarder):
        structured_logger = StructuredLogger(persistence=sink, forwarders=[forwarder])
        await structured_logger.http("GET / 200")
        assert structured_logger.pending_forwards == 0

    @pytest.mark.asyncio
    async def test_inline_forwarding(self, sink, forwarder):
        structured_logger = StructuredLogger(persistence=sink, forwarders=[forwarder], background_forwarding=False)
        await structured_logger.error("boom")
        assert len(forwarder.forwarded) == 1
